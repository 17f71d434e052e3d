"""Repository for call-log data access.

Applies compiled predicate lists to SQLAlchemy queries. JSON subkeys are
read through SQLAlchemy's portable JSON operators so the same predicates
run on PostgreSQL (``->>``) and SQLite (``JSON_EXTRACT``).
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from sqlalchemy import Float, String, and_, asc, cast, desc, false, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.types import JSON, DateTime

from ..models.call_models import CallLog
from ..models.query_models import ColumnExpression, Predicate, SortState
from ..utils.errors import BackendQueryError, DiscoverySamplingFailure
from .database import get_database_manager

logger = logging.getLogger(__name__)

# Columns read when computing percentile signals
SIGNAL_COLUMNS = (
    "duration_seconds",
    "avg_latency",
    "total_llm_cost",
    "total_tts_cost",
    "total_stt_cost",
    "metadata",
)


class CallLogRepository:
    """Repository for call-log queries driven by predicate lists."""

    def __init__(self, session: Optional[Session] = None):
        """
        Initialize repository.

        Args:
            session: Optional SQLAlchemy session. If None, uses database manager.
        """
        self.session = session
        self._db_manager = get_database_manager() if session is None else None

    def _get_session_context(self):
        """Get database session context manager."""
        if self.session:
            # For direct session, create a context manager that handles rollback
            @contextmanager
            def session_context():
                try:
                    yield self.session
                    # Don't commit for provided sessions - let the caller handle it
                except Exception:
                    self.session.rollback()
                    raise

            return session_context()
        else:
            return self._db_manager.get_session()

    # Writes

    def add_calls(self, records: Sequence[Dict[str, Any]]) -> int:
        """
        Insert call logs.

        Args:
            records: Dictionaries keyed by column name (``metadata`` included)

        Returns:
            Number of inserted rows
        """
        with self._get_session_context() as session:
            for record in records:
                data = {}
                for key, value in record.items():
                    column = CallLog.__table__.columns.get(key)
                    if column is not None and isinstance(column.type, DateTime) and isinstance(value, str):
                        value = datetime.fromisoformat(value)
                    data[CallLog.attribute_for(key)] = value
                session.add(CallLog(**data))
            session.flush()
        return len(records)

    # Predicate translation

    def _column(self, expression: ColumnExpression):
        table_column = CallLog.__table__.columns.get(expression.column)
        if table_column is None:
            raise BackendQueryError(f"Unknown column '{expression.column}'")
        attr = getattr(CallLog, CallLog.attribute_for(expression.column))

        if expression.json_field:
            if not isinstance(table_column.type, JSON):
                raise BackendQueryError(f"Column '{expression.column}' is not a JSON column")
            path = expression.json_field.split(".")
            element = attr[path[0]] if len(path) == 1 else attr[tuple(path)]
            sql_expr = element.as_string()
        else:
            sql_expr = attr

        if expression.numeric:
            sql_expr = cast(sql_expr, Float)
        return sql_expr, table_column

    @staticmethod
    def _coerce(value: Any, table_column, expression: ColumnExpression) -> Any:
        """Convert wire values to what the column's SQL type binds."""
        if value is None or expression.json_field or not isinstance(value, str):
            return value
        if isinstance(table_column.type, DateTime):
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                raise BackendQueryError(f"Invalid datetime value '{value}'") from None
        if isinstance(table_column.type, Float):
            try:
                return float(value)
            except ValueError:
                raise BackendQueryError(f"Invalid numeric value '{value}'") from None
        return value

    def _condition(self, predicate: Predicate):
        expression = predicate.expression
        sql_expr, table_column = self._column(expression)
        operator = predicate.operator
        if operator == "pattern_match":
            value = predicate.value
        else:
            value = self._coerce(predicate.value, table_column, expression)
        if value is None and operator in ("gte", "lte", "gt", "lt"):
            # A NULL bound compares as unknown, so the predicate matches nothing
            return false()

        if operator == "equals":
            return sql_expr == value
        if operator == "pattern_match":
            is_text = expression.json_field is not None or isinstance(table_column.type, String)
            target = sql_expr if is_text and not expression.numeric else cast(sql_expr, String)
            return target.ilike(value)
        if operator == "gte":
            return sql_expr >= value
        if operator == "lte":
            return sql_expr <= value
        if operator == "gt":
            return sql_expr > value
        if operator == "lt":
            return sql_expr < value
        if operator == "not_null":
            return sql_expr.isnot(None)
        if operator == "is_null":
            if isinstance(table_column.type, String) or expression.json_field:
                return or_(sql_expr.is_(None), sql_expr == "")
            return sql_expr.is_(None)
        raise BackendQueryError(f"Unsupported predicate operator '{operator}'")

    def apply_predicates(self, query, predicates: Sequence[Predicate]):
        """AND every predicate onto ``query``."""
        conditions = [self._condition(p) for p in predicates]
        return query.filter(and_(*conditions)) if conditions else query

    def _apply_sort(self, query, sort: SortState):
        name = sort.column if sort.column in CallLog.__table__.columns else "created_at"
        order_field = getattr(CallLog, CallLog.attribute_for(name))
        direction = asc if sort.ascending else desc
        # id tie-breaker keeps offset pagination stable
        return query.order_by(direction(order_field), direction(CallLog.id))

    # Reads

    def fetch_page(
        self,
        predicates: Sequence[Predicate],
        sort: Optional[SortState] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """
        Fetch one page of call logs matching every predicate.

        Raises:
            BackendQueryError: If the store rejects or fails the query
        """
        try:
            with self._get_session_context() as session:
                query = self.apply_predicates(session.query(CallLog), predicates)
                query = self._apply_sort(query, sort or SortState())
                rows = query.offset(offset).limit(limit).all()
                return [row.to_dict() for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch call logs at offset {offset}: {e}")
            raise BackendQueryError(str(e), offset=offset) from e

    def count(self, predicates: Sequence[Predicate]) -> int:
        try:
            with self._get_session_context() as session:
                return self.apply_predicates(session.query(CallLog), predicates).count()
        except SQLAlchemyError as e:
            raise BackendQueryError(str(e)) from e

    def iter_matching(
        self,
        predicates: Sequence[Predicate],
        sort: Optional[SortState] = None,
        batch_size: int = 1000,
    ) -> Iterator[Dict[str, Any]]:
        """Yield every matching row, batch by batch (used for export)."""
        offset = 0
        while True:
            batch = self.fetch_page(predicates, sort, offset=offset, limit=batch_size)
            yield from batch
            if len(batch) < batch_size:
                return
            offset += batch_size

    def sample_records(self, agent_id: str, limit: int = 500) -> List[Dict[str, Any]]:
        """
        Most recent call logs for an agent, used for field discovery.

        Raises:
            DiscoverySamplingFailure: If the sample cannot be read
        """
        try:
            with self._get_session_context() as session:
                rows = (
                    session.query(CallLog)
                    .filter(CallLog.agent_id == agent_id)
                    .order_by(desc(CallLog.created_at), desc(CallLog.id))
                    .limit(limit)
                    .all()
                )
                return [row.to_dict() for row in rows]
        except SQLAlchemyError as e:
            raise DiscoverySamplingFailure(f"Sampling failed for agent {agent_id}: {e}") from e

    def signal_rows(self, agent_id: str, lookback_days: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Percentile inputs over the agent's unfiltered population.

        Raises:
            BackendQueryError: If the rows cannot be read
        """
        columns = [getattr(CallLog, CallLog.attribute_for(name)) for name in SIGNAL_COLUMNS]
        try:
            with self._get_session_context() as session:
                query = session.query(*columns).filter(CallLog.agent_id == agent_id)
                if lookback_days:
                    since = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=lookback_days)
                    query = query.filter(CallLog.created_at >= since)
                return [dict(zip(SIGNAL_COLUMNS, row)) for row in query.all()]
        except SQLAlchemyError as e:
            raise BackendQueryError(f"Failed to read signals for agent {agent_id}: {e}") from e
