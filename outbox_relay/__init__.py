"""
Outbox Relay

Tenant-scoped delivery of transactional outbox events to real-time
subscribers, with dead-lettering and storage reclamation.
"""

__version__ = "1.0.0"
