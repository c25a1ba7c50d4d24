"""
Infrastructure module: Database and Redis/events.

Provides:
- Database sessions (db.py) and social graph models (models.py)
- Correlation IDs for logging (correlation.py)
- Redis pub/sub for status events (events/)
"""

from shared.infrastructure.db import get_db_context, get_engine, dispose_engine

__all__ = [
    "get_db_context",
    "get_engine",
    "dispose_engine",
]
