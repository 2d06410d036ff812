"""
Processor API Routers
"""

from .notification import router as notification_router
from .maintenance import router as maintenance_router

__all__ = ["notification_router", "maintenance_router"]
