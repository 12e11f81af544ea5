"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobqueue.db.connection import (
    close_db,
    get_async_session,
    get_engine,
    get_session_context,
    init_db,
)
from jobqueue.db.models import Base, DeadLetter, Job, SideEffect

__all__ = [
    "get_async_session",
    "get_session_context",
    "get_engine",
    "init_db",
    "close_db",
    "Job",
    "SideEffect",
    "DeadLetter",
    "Base",
]
