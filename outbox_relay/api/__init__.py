"""
Outbox Relay HTTP API
"""
