"""Database module for rx-caller.

Provides:
- SQLAlchemy ORM models for patients, calls, logs and campaigns
- Async session management with dependency injection
- Repository pattern for data access
"""
from rx_caller.db.base import (
    Base,
    TimestampMixin,
    UUIDMixin,
)
from rx_caller.db.session import (
    close_db,
    create_test_engine,
    get_db,
    get_db_context,
    get_engine,
    get_session_factory,
    get_test_session_factory,
    init_db,
)

__all__ = [
    # Base and mixins
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    # Session management
    "get_engine",
    "get_session_factory",
    "get_db",
    "get_db_context",
    "init_db",
    "close_db",
    # Testing
    "create_test_engine",
    "get_test_session_factory",
]
