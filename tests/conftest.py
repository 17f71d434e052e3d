from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from calllog_query.models.call_models import Base
from calllog_query.storage.call_log_repository import CallLogRepository


@pytest.fixture
def in_memory_db():
    """Create in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    return engine, SessionLocal


@pytest.fixture
def test_session(in_memory_db):
    """Create test database session."""
    engine, SessionLocal = in_memory_db
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def call_repository(test_session):
    return CallLogRepository(session=test_session)


@pytest.fixture
def sample_calls():
    """Six calls for agent-1 and one for agent-2, one call per day."""
    base = datetime(2024, 1, 14, 9, 30)
    calls = []
    for i in range(6):
        calls.append(
            {
                "agent_id": "agent-1",
                "call_id": f"call-{i}",
                "customer_number": f"+1555000{i}",
                "call_ended_reason": "completed" if i % 2 == 0 else "customer_hangup",
                "call_started_at": base + timedelta(days=i),
                "created_at": base + timedelta(days=i),
                "duration_seconds": 60.0 * (i + 1),
                "avg_latency": 1.0 + i / 10,
                "total_cost": 0.1 * (i + 1),
                "metadata": {
                    "intent": "billing" if i < 3 else "refund request",
                    "score": 0.2 * i,
                    "customer_charge": 0.5 * (i + 1),
                },
                "transcription_metrics": {"word_count": 100 + i},
                "metrics": {"csat": {"score": i}} if i % 2 else None,
            }
        )
    calls.append(
        {
            "agent_id": "agent-2",
            "call_id": "other-agent-call",
            "customer_number": "+19990000",
            "call_started_at": base,
            "created_at": base,
            "duration_seconds": 999.0,
            "metadata": {"intent": "billing"},
        }
    )
    return calls


@pytest.fixture
def seeded_repository(call_repository, test_session, sample_calls):
    call_repository.add_calls(sample_calls)
    test_session.commit()
    return call_repository
