"""
Database package: async SQLAlchemy engine shared by the PostgreSQL stores.

Usage:
    from knowledge_engine.db import get_engine, init_db, close_engine
"""

from knowledge_engine.db.session import close_engine, get_engine, init_db

__all__ = [
    "get_engine",
    "init_db",
    "close_engine",
]
