"""
PostgreSQL-backed collaborators of the staging pipeline.

The abstract contracts live in ``base``; the psycopg implementations share a
``DatabaseConnectionPool``.
"""

from .base import CursorStore, LockStore, ResourceStore, UploadQueue
from .connection import DatabaseConnectionPool

__all__ = [
    "CursorStore",
    "LockStore",
    "ResourceStore",
    "UploadQueue",
    "DatabaseConnectionPool",
]
