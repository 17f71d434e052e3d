"""Test cases for CallLogRepository against an in-memory SQLite store."""

import pytest

from calllog_query.models.query_models import Predicate, SortState
from calllog_query.storage.call_log_repository import SIGNAL_COLUMNS
from calllog_query.utils.errors import BackendQueryError


def _owner(agent_id="agent-1"):
    return Predicate(column="agent_id", operator="equals", value=agent_id)


def _call_ids(rows):
    return [row["call_id"] for row in rows]


class TestPredicates:
    """Test predicate translation."""

    def test_owner_scope(self, seeded_repository):
        assert seeded_repository.count([_owner()]) == 6
        assert seeded_repository.count([_owner("agent-2")]) == 1
        assert seeded_repository.count([]) == 7

    def test_pattern_match_is_case_insensitive(self, seeded_repository):
        predicates = [_owner(), Predicate(column="call_ended_reason", operator="pattern_match", value="%HANGUP%")]
        assert seeded_repository.count(predicates) == 3

    def test_text_equals(self, seeded_repository):
        predicates = [_owner(), Predicate(column="call_id", operator="equals", value="call-2")]
        assert _call_ids(seeded_repository.fetch_page(predicates)) == ["call-2"]

    def test_number_comparison(self, seeded_repository):
        predicates = [_owner(), Predicate(column="duration_seconds", operator="gt", value=200)]
        assert seeded_repository.count(predicates) == 3

    def test_number_comparison_with_string_value(self, seeded_repository):
        predicates = [_owner(), Predicate(column="duration_seconds", operator="lte", value="120")]
        assert seeded_repository.count(predicates) == 2

    def test_date_day_range(self, seeded_repository):
        predicates = [
            _owner(),
            Predicate(column="call_started_at", operator="gte", value="2024-01-15 00:00:00"),
            Predicate(column="call_started_at", operator="lte", value="2024-01-15 23:59:59.999"),
        ]
        assert _call_ids(seeded_repository.fetch_page(predicates)) == ["call-1"]

    def test_json_equals(self, seeded_repository):
        predicates = [_owner(), Predicate(column="metadata.intent", operator="equals", value="billing")]
        assert seeded_repository.count(predicates) == 3

    def test_json_pattern_match(self, seeded_repository):
        predicates = [_owner(), Predicate(column="metadata.intent", operator="pattern_match", value="%Refund%")]
        assert seeded_repository.count(predicates) == 3

    def test_json_numeric(self, seeded_repository):
        predicates = [_owner(), Predicate(column="metadata.score (numeric)", operator="gt", value=0.5)]
        assert _call_ids(seeded_repository.fetch_page(predicates, SortState(column="duration_seconds", ascending=True))) == [
            "call-3", "call-4", "call-5"
        ]

    def test_json_numeric_null_value_matches_nothing(self, seeded_repository):
        predicates = [_owner(), Predicate(column="metadata.score (numeric)", operator="gt", value=None)]
        assert seeded_repository.count(predicates) == 0

    def test_null_upper_bound_matches_nothing(self, seeded_repository):
        predicates = [_owner(), Predicate(column="metadata.score (numeric)", operator="lte", value=None)]
        assert seeded_repository.count(predicates) == 0
        assert seeded_repository.fetch_page(predicates) == []

    def test_pattern_match_on_number_column_matches_text_form(self, seeded_repository):
        miss = [_owner(), Predicate(column="duration_seconds", operator="pattern_match", value="%refund%")]
        hit = [_owner(), Predicate(column="duration_seconds", operator="pattern_match", value="%36%")]
        assert seeded_repository.count(miss) == 0
        assert seeded_repository.count(hit) == 1

    def test_pattern_match_on_date_column(self, seeded_repository):
        predicates = [_owner(), Predicate(column="call_started_at", operator="pattern_match", value="2024-01-15%")]
        assert _call_ids(seeded_repository.fetch_page(predicates)) == ["call-1"]

    def test_json_not_null(self, seeded_repository):
        predicates = [_owner(), Predicate(column="metrics.csat", operator="not_null")]
        assert seeded_repository.count(predicates) == 3

    def test_is_null(self, seeded_repository):
        predicates = [_owner("agent-2"), Predicate(column="call_ended_reason", operator="is_null")]
        assert seeded_repository.count(predicates) == 1

    def test_unknown_column(self, seeded_repository):
        with pytest.raises(BackendQueryError):
            seeded_repository.fetch_page([Predicate(column="nope", operator="equals", value="x")])

    def test_json_field_on_plain_column(self, seeded_repository):
        with pytest.raises(BackendQueryError):
            seeded_repository.count([Predicate(column="call_id.x", operator="equals", value="x")])


class TestPaging:
    """Test sorting and offset pagination."""

    def test_default_sort_is_newest_first(self, seeded_repository):
        rows = seeded_repository.fetch_page([_owner()], limit=2)
        assert _call_ids(rows) == ["call-5", "call-4"]

    def test_pages_follow_sort(self, seeded_repository):
        sort = SortState(column="duration_seconds", ascending=True)
        first = seeded_repository.fetch_page([_owner()], sort, offset=0, limit=4)
        second = seeded_repository.fetch_page([_owner()], sort, offset=4, limit=4)
        assert _call_ids(first) == ["call-0", "call-1", "call-2", "call-3"]
        assert _call_ids(second) == ["call-4", "call-5"]

    def test_unknown_sort_column_falls_back(self, seeded_repository):
        rows = seeded_repository.fetch_page([_owner()], SortState(column="no_such_column"), limit=1)
        assert _call_ids(rows) == ["call-5"]

    def test_iter_matching(self, seeded_repository):
        rows = list(seeded_repository.iter_matching([_owner()], batch_size=4))
        assert len(rows) == 6

    def test_rows_are_keyed_by_column_name(self, seeded_repository):
        row = seeded_repository.fetch_page([_owner()], limit=1)[0]
        assert row["metadata"]["intent"] == "refund request"
        assert row["call_started_at"] == "2024-01-19T09:30:00"
        assert "call_metadata" not in row


class TestSampling:
    """Test the discovery and percentile reads."""

    def test_sample_records(self, seeded_repository):
        rows = seeded_repository.sample_records("agent-1", limit=3)
        assert _call_ids(rows) == ["call-5", "call-4", "call-3"]

    def test_signal_rows(self, seeded_repository):
        rows = seeded_repository.signal_rows("agent-1")
        assert len(rows) == 6
        assert set(rows[0]) == set(SIGNAL_COLUMNS)
        assert all(isinstance(row["metadata"], dict) for row in rows)

    def test_signal_rows_lookback(self, seeded_repository):
        # Seeded calls are from 2024
        assert seeded_repository.signal_rows("agent-1", lookback_days=1) == []


def test_add_calls_parses_iso_dates(call_repository, test_session):
    call_repository.add_calls(
        [{"agent_id": "a", "call_id": "iso", "call_started_at": "2024-05-01T12:00:00"}]
    )
    test_session.commit()
    row = call_repository.fetch_page([_owner("a")])[0]
    assert row["call_started_at"] == "2024-05-01T12:00:00"
