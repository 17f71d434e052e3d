"""Storage layer for call logs and saved views."""

from .call_log_repository import CallLogRepository
from .database import DatabaseManager
from .saved_view_store import SavedViewStore

__all__ = ["CallLogRepository", "DatabaseManager", "SavedViewStore"]
