"""Test cases for p95 anomaly thresholds."""

import math
from unittest.mock import MagicMock

import pytest

from calllog_query.core.percentiles import (
    PercentileAnomalyService,
    call_cost,
    nearest_rank_percentile,
)
from calllog_query.models.query_models import AnomalyToggle, PercentileThresholds
from calllog_query.utils.errors import BackendQueryError, InsufficientDataError


def _rows(n, **overrides):
    rows = []
    for i in range(1, n + 1):
        row = {
            "duration_seconds": float(i * 10),
            "avg_latency": float(i),
            "total_llm_cost": None,
            "total_tts_cost": None,
            "total_stt_cost": None,
            "metadata": {"customer_charge": i / 10},
        }
        row.update(overrides)
        rows.append(row)
    return rows


class TestNearestRankPercentile:

    def test_one_to_hundred(self):
        assert nearest_rank_percentile(range(1, 101), 95) == 95

    def test_unsorted_input(self):
        assert nearest_rank_percentile([5, 1, 4, 2, 3], 95) == 5
        assert nearest_rank_percentile([5, 1, 4, 2, 3], 50) == 3

    def test_nan_ignored_zero_kept(self):
        values = [0.0, 0.0, float("nan"), 1.0]
        assert nearest_rank_percentile(values, 50) == 0.0

    def test_empty(self):
        assert nearest_rank_percentile([], 95) is None
        assert nearest_rank_percentile([float("nan")], 95) is None


class TestCallCost:

    def test_customer_charge_wins(self):
        assert call_cost({"metadata": {"customer_charge": 0.8}, "total_llm_cost": 5.0}) == 0.8

    def test_string_charge(self):
        assert call_cost({"metadata": {"customer_charge": "1.25"}}) == 1.25

    def test_component_sum(self):
        row = {"metadata": {}, "total_llm_cost": 0.1, "total_tts_cost": 0.2, "total_stt_cost": None}
        assert math.isclose(call_cost(row), 0.3)

    def test_no_cost(self):
        assert call_cost({"metadata": None, "total_llm_cost": 0.0}) is None


class TestPercentileAnomalyService:

    def setup_method(self):
        self.repository = MagicMock()
        self.repository.signal_rows.return_value = _rows(100)
        self.service = PercentileAnomalyService(self.repository)

    def test_compute_thresholds(self):
        thresholds = self.service.get_thresholds("agent-1")

        assert thresholds.duration_p95 == 950.0
        assert thresholds.latency_p95 == 95.0
        assert thresholds.cost_p95 == pytest.approx(9.5)
        assert thresholds.sample_sizes == {"duration": 100, "cost": 100, "latency": 100}
        assert thresholds.computed_at is not None
        self.repository.signal_rows.assert_called_once_with("agent-1", lookback_days=None)

    def test_small_sample_has_no_threshold(self):
        self.repository.signal_rows.return_value = _rows(19)
        thresholds = self.service.get_thresholds("agent-1")
        assert thresholds.is_empty
        assert thresholds.sample_sizes["duration"] == 19

    def test_exactly_minimum_samples(self):
        self.repository.signal_rows.return_value = _rows(20)
        assert self.service.get_thresholds("agent-1").duration_p95 == 190.0

    def test_each_signal_is_independent(self):
        self.repository.signal_rows.return_value = _rows(30, avg_latency=None)
        thresholds = self.service.get_thresholds("agent-1")
        assert thresholds.duration_p95 is not None
        assert thresholds.latency_p95 is None

    def test_thresholds_are_cached(self):
        self.service.get_thresholds("agent-1")
        self.service.get_thresholds("agent-1")
        assert self.repository.signal_rows.call_count == 1

        self.service.refresh("agent-1")
        assert self.repository.signal_rows.call_count == 2

        self.service.invalidate()
        self.service.get_thresholds("agent-1")
        assert self.repository.signal_rows.call_count == 3

    def test_backend_failure_returns_empty_thresholds(self):
        self.repository.signal_rows.side_effect = BackendQueryError("down")
        assert self.service.get_thresholds("agent-1").is_empty

        self.repository.signal_rows.side_effect = None
        assert not self.service.get_thresholds("agent-1").is_empty

    def test_unexpected_failure_returns_empty_thresholds(self):
        self.repository.signal_rows.side_effect = RuntimeError("connection reset")
        assert self.service.get_thresholds("agent-1").is_empty

        # Failures are not cached
        self.repository.signal_rows.side_effect = None
        assert not self.service.get_thresholds("agent-1").is_empty


class TestPercentileThresholds:

    def test_for_toggle(self):
        thresholds = PercentileThresholds(duration_p95=245.0)
        assert thresholds.for_toggle(AnomalyToggle.DURATION) == 245.0
        assert thresholds.for_toggle("cost") is None

    def test_require(self):
        thresholds = PercentileThresholds(sample_sizes={"latency": 4})
        with pytest.raises(InsufficientDataError) as exc_info:
            thresholds.require(AnomalyToggle.LATENCY, minimum=20)
        assert exc_info.value.sample_size == 4
        assert exc_info.value.signal == "latency"
