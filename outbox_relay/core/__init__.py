"""
Outbox Relay Core Package

Database access, observability and the outbox delivery subsystem.
"""

from . import database
from . import outbox

__all__ = ["database", "outbox"]
