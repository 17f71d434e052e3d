"""Database models for call logs and saved views.

The call-log table is the row store the compiled predicates run against:
a handful of fixed columns plus three JSON blobs (general metadata,
transcription-derived metrics and scored metrics) whose keys vary per
agent.
"""

from datetime import datetime, timezone
from typing import Any, Dict
import uuid

from sqlalchemy import (
    Column, Integer, String, DateTime, Float, Text, JSON, Index
)
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CallLog(Base):
    """One call handled by a voice agent."""
    __tablename__ = 'call_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_id = Column(String(255), nullable=False, doc="Owning agent")

    # Call identity
    call_id = Column(String(255), nullable=True)
    customer_number = Column(String(64), nullable=True)
    call_ended_reason = Column(String(100), nullable=True, doc="Call status")
    environment = Column(String(50), nullable=True)
    transcript_type = Column(String(50), nullable=True)
    recording_url = Column(Text, nullable=True)

    # Timing
    call_started_at = Column(DateTime, nullable=True)
    call_ended_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    duration_seconds = Column(Float, nullable=True)
    billing_duration_seconds = Column(Float, nullable=True)
    avg_latency = Column(Float, nullable=True)

    # Costs
    total_cost = Column(Float, nullable=True)
    total_llm_cost = Column(Float, nullable=True)
    total_tts_cost = Column(Float, nullable=True)
    total_stt_cost = Column(Float, nullable=True)

    # Semi-structured payloads; "metadata" is reserved on declarative classes
    call_metadata = Column('metadata', JSON, nullable=True)
    transcription_metrics = Column(JSON, nullable=True)
    metrics = Column(JSON, nullable=True, doc="Scored metrics keyed by metric id")

    __table_args__ = (
        Index('idx_call_logs_agent_started', 'agent_id', 'call_started_at'),
        Index('idx_call_logs_agent_created', 'agent_id', 'created_at'),
        Index('idx_call_logs_call_id', 'call_id'),
    )

    def __repr__(self):
        return f"<CallLog(id={self.id}, agent_id='{self.agent_id}', call_id='{self.call_id}')>"

    def to_dict(self) -> Dict[str, Any]:
        """Convert call log to dictionary format, keyed by column name."""
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, self.attribute_for(column.name))
            if isinstance(value, datetime):
                value = value.isoformat()
            data[column.name] = value
        return data

    @staticmethod
    def attribute_for(column_name: str) -> str:
        return 'call_metadata' if column_name == 'metadata' else column_name


class SavedViewRecord(Base):
    """Persisted filter tree + visible column configuration."""
    __tablename__ = 'call_log_views'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    filters = Column(JSON, nullable=False, default=list)
    visible_columns = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index('idx_views_agent_updated', 'agent_id', 'updated_at'),
    )

    def __repr__(self):
        return f"<SavedViewRecord(id={self.id}, name='{self.name}')>"


def create_tables(engine):
    """Create all tables in the database."""
    Base.metadata.create_all(engine)

