"""Test cases for saved-view persistence."""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from calllog_query.models.call_models import SavedViewRecord
from calllog_query.models.filters import FilterGroup, FilterRule
from calllog_query.models.query_models import SavedView, VisibleColumns
from calllog_query.storage.saved_view_store import SavedViewStore


class StepClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, 12, 0)

    def __call__(self):
        self.current += timedelta(minutes=1)
        return self.current


@pytest.fixture
def store(test_session):
    return SavedViewStore(session=test_session, clock=StepClock())


def _view(name="Long calls", agent_id="agent-1", **kwargs):
    groups = [
        FilterGroup(
            logic="OR",
            filters=[
                FilterRule(column="duration_seconds", operation="greater_than", value="300"),
                FilterRule(column="metadata", operation="json_equals", value="billing", json_field="intent"),
            ],
        )
    ]
    return SavedView(
        agent_id=agent_id,
        name=name,
        filters=groups,
        visible_columns=VisibleColumns(basic=["call_id", "duration_seconds"], metadata=["intent"]),
        **kwargs,
    )


class TestSavedViewStore:
    """Test create, update, list and delete."""

    def test_create_assigns_id_and_timestamps(self, store):
        saved = store.save(_view())

        assert saved.id
        assert saved.created_at == saved.updated_at
        assert saved.name == "Long calls"

    def test_round_trip_preserves_filter_tree(self, store):
        original = _view()
        saved = store.save(original)
        loaded = store.get(saved.id)

        assert loaded.filters == original.filters
        assert loaded.filters[0].filters[1].json_field == "intent"
        assert loaded.visible_columns.basic == ["call_id", "duration_seconds"]
        assert loaded.visible_columns.metadata == ["intent"]

    def test_stored_rules_use_camel_case_json_field(self, store, test_session):
        saved = store.save(_view())

        record = test_session.query(SavedViewRecord).filter_by(id=saved.id).one()
        stored_rule = record.filters[0]["filters"][1]
        assert stored_rule["jsonField"] == "intent"
        assert "json_field" not in stored_rule
        assert store.get(saved.id).filters[0].filters[1].json_field == "intent"

    def test_update_existing_view(self, store):
        saved = store.save(_view())
        updated = store.save(saved.model_copy(update={"name": "Very long calls"}))

        assert updated.id == saved.id
        assert updated.name == "Very long calls"
        assert updated.created_at == saved.created_at
        assert updated.updated_at > saved.updated_at
        assert len(store.list("agent-1")) == 1

    def test_update_missing_view(self, store):
        assert store.save(_view(id="does-not-exist")) is None
        assert store.list("agent-1") == []

    def test_update_is_scoped_to_agent(self, store):
        saved = store.save(_view())
        assert store.save(saved.model_copy(update={"agent_id": "agent-2"})) is None

    def test_list_most_recently_updated_first(self, store):
        first = store.save(_view("First"))
        store.save(_view("Second"))
        store.save(_view("Other agent", agent_id="agent-2"))
        store.save(first.model_copy(update={"name": "First, edited"}))

        assert [v.name for v in store.list("agent-1")] == ["First, edited", "Second"]

    def test_delete(self, store):
        saved = store.save(_view())
        assert store.delete(saved.id)
        assert store.get(saved.id) is None
        assert not store.delete(saved.id)


class TestSavedViewModel:
    """Test the saved-view wire model."""

    def test_empty_name_rejected(self):
        with pytest.raises(PydanticValidationError):
            SavedView(agent_id="agent-1", name="")

    def test_camel_case_payload(self):
        view = SavedView.model_validate(
            {
                "agentId": "agent-1",
                "name": "From client",
                "filters": [
                    {
                        "logic": "AND",
                        "filters": [
                            {"column": "metadata", "operation": "json_exists", "jsonField": "intent"}
                        ],
                    }
                ],
                "visibleColumns": {"basic": ["call_id"], "transcription_metrics": ["word_count"], "custom": ["x"]},
            }
        )
        assert view.agent_id == "agent-1"
        assert view.filters[0].filters[0].json_field == "intent"
        assert view.visible_columns.transcription == ["word_count"]
        assert view.visible_columns.model_dump()["custom"] == ["x"]
