"""Database connection management."""

from .connection import DatabaseManager, enable_sqlite_transactional_ddl

__all__ = ["DatabaseManager", "enable_sqlite_transactional_ddl"]
