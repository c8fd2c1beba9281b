"""
Database module.
Contains database connection, models, and repository implementations.
"""

from jobqueue.db.connection import (
    close_db,
    create_engine,
    create_session_factory,
    get_engine,
    init_db,
    init_models,
)
from jobqueue.db.models import Base, Job

__all__ = [
    "create_engine",
    "create_session_factory",
    "get_engine",
    "init_db",
    "init_models",
    "close_db",
    "Job",
    "Base",
]
