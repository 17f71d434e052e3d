"""Persistence for saved call-log views."""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from ..models.call_models import SavedViewRecord
from ..models.query_models import SavedView
from .database import get_database_manager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SavedViewStore:
    """CRUD over saved views, scoped to an agent."""

    def __init__(
        self,
        session: Optional[Session] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize store.

        Args:
            session: Optional SQLAlchemy session. If None, uses database manager.
            clock: Source of created/updated timestamps
        """
        self.session = session
        self.clock = clock
        self._db_manager = get_database_manager() if session is None else None

    def _get_session_context(self):
        if self.session:
            @contextmanager
            def session_context():
                try:
                    yield self.session
                except Exception:
                    self.session.rollback()
                    raise

            return session_context()
        else:
            return self._db_manager.get_session()

    @staticmethod
    def _to_view(record: SavedViewRecord) -> SavedView:
        return SavedView.model_validate(record)

    def save(self, view: SavedView) -> Optional[SavedView]:
        """
        Create the view if it has no id, otherwise update it.

        Returns:
            The stored view with id and timestamps, or None when updating
            an id that does not exist for the view's agent
        """
        now = self.clock()
        filters = [group.model_dump(mode="json", by_alias=True) for group in view.filters]
        visible_columns = view.visible_columns.model_dump(mode="json")

        with self._get_session_context() as session:
            if view.id is None:
                record = SavedViewRecord(
                    id=str(uuid.uuid4()),
                    agent_id=view.agent_id,
                    name=view.name,
                    filters=filters,
                    visible_columns=visible_columns,
                    created_at=now,
                    updated_at=now,
                )
                session.add(record)
                logger.info(f"Created saved view '{view.name}' for agent {view.agent_id}")
            else:
                record = (
                    session.query(SavedViewRecord)
                    .filter(
                        SavedViewRecord.id == view.id,
                        SavedViewRecord.agent_id == view.agent_id,
                    )
                    .first()
                )
                if record is None:
                    logger.warning(f"Saved view {view.id} not found for agent {view.agent_id}")
                    return None
                record.name = view.name
                record.filters = filters
                record.visible_columns = visible_columns
                record.updated_at = now

            session.flush()
            return self._to_view(record)

    def get(self, view_id: str) -> Optional[SavedView]:
        with self._get_session_context() as session:
            record = session.query(SavedViewRecord).filter(SavedViewRecord.id == view_id).first()
            return self._to_view(record) if record else None

    def list(self, agent_id: str) -> List[SavedView]:
        """Views of an agent, most recently updated first."""
        with self._get_session_context() as session:
            records = (
                session.query(SavedViewRecord)
                .filter(SavedViewRecord.agent_id == agent_id)
                .order_by(desc(SavedViewRecord.updated_at), desc(SavedViewRecord.created_at))
                .all()
            )
            return [self._to_view(r) for r in records]

    def delete(self, view_id: str) -> bool:
        """Delete a view. Asking the user for confirmation is up to the caller."""
        with self._get_session_context() as session:
            record = session.query(SavedViewRecord).filter(SavedViewRecord.id == view_id).first()
            if record is None:
                return False
            session.delete(record)
            session.flush()
            return True
