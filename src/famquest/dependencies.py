"""Shared FastAPI dependencies."""

from famquest.database import get_session_factory
from famquest.store.base import GamificationStore
from famquest.store.sql import SqlStore

_store: SqlStore | None = None


def get_store() -> GamificationStore:
    """The process-wide SQL store (overridden with an in-memory store in tests)."""
    global _store  # noqa: PLW0603
    if _store is None:
        _store = SqlStore(get_session_factory())
    return _store


def reset_store() -> None:
    global _store  # noqa: PLW0603
    _store = None
