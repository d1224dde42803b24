"""Database package"""

from helpdesk.db.session import AsyncSessionLocal, engine, get_session, enable_sqlite_savepoints
from helpdesk.db.seed import seed_defaults
from helpdesk.models.base import Base

__all__ = [
    "Base",
    "AsyncSessionLocal",
    "engine",
    "get_session",
    "enable_sqlite_savepoints",
    "seed_defaults",
]
