"""Database module for SQLite persistence.

Provides:
- Database connection management
- Schema initialization
- Repository functions for runs, curriculum, attempts and transcript
"""

from learnrun.db.database import get_db, init_db

__all__ = ["get_db", "init_db"]
