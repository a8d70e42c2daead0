"""SQLAlchemy persistence for sessions, readings and alerts."""

from .store import SqlPressureStore, SqlStoreTransaction

__all__ = ["SqlPressureStore", "SqlStoreTransaction"]
