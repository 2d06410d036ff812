"""
Request-scoped accessors for objects the app creates at startup.
"""

from fastapi import Request

from ...core.config import OutboxSettings, get_settings
from ...core.database.adapter import DatabaseAdapter, get_database


async def get_db(request: Request) -> DatabaseAdapter:
    """The adapter stored on app.state by the lifespan, else the global one."""
    db = getattr(request.app.state, "db", None)
    if db is None:
        db = await get_database()
    return db


def get_app_settings(request: Request) -> OutboxSettings:
    """Settings the app was built with, else the process-wide ones."""
    settings = getattr(request.app.state, "settings", None)
    return settings or get_settings()
