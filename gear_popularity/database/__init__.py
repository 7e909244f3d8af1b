"""
Database Module
"""
from .connection import (
    init_database,
    close_database,
    get_db,
    get_db_factory,
    session_context,
    dialect_insert,
)
from .models import Base

__all__ = [
    "init_database",
    "close_database",
    "get_db",
    "get_db_factory",
    "session_context",
    "dialect_insert",
    "Base",
]
