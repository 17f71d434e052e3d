"""95th-percentile thresholds for the anomaly ("smart") filters.

Thresholds are computed over an agent's whole unfiltered population so
they stay fixed reference points while the user changes filters.
"""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..models.query_models import PercentileThresholds
from ..utils.errors import BackendQueryError
from .json_values import as_number, get_path

logger = logging.getLogger(__name__)

DEFAULT_MIN_SAMPLES = 20
DEFAULT_PERCENTILE = 95.0


def nearest_rank_percentile(values: Iterable[float], percentile: float) -> Optional[float]:
    """Nearest-rank percentile; NaN values are ignored, zeros are kept."""
    cleaned = sorted(v for v in values if v is not None and not math.isnan(v))
    if not cleaned:
        return None
    index = math.ceil((percentile / 100.0) * len(cleaned)) - 1
    return cleaned[max(0, index)]


def call_cost(row: Dict[str, Any]) -> Optional[float]:
    """Customer-facing cost of a call.

    ``metadata.customer_charge`` when present, otherwise the sum of the
    LLM, TTS and STT costs when that sum is positive.
    """
    charge = as_number(get_path(row.get("metadata"), "customer_charge"))
    if charge is not None:
        return charge
    total = sum(as_number(row.get(k)) or 0.0 for k in ("total_llm_cost", "total_tts_cost", "total_stt_cost"))
    return total if total > 0 else None


def _numbers(rows: List[Dict[str, Any]], column: str) -> List[float]:
    values = []
    for row in rows:
        value = row.get(column)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            values.append(float(value))
    return values


@dataclass
class _CacheEntry:
    thresholds: PercentileThresholds
    created: float


class PercentileAnomalyService:
    """Compute and cache p95 thresholds for duration, cost and latency."""

    def __init__(
        self,
        repository,
        min_samples: int = DEFAULT_MIN_SAMPLES,
        percentile: float = DEFAULT_PERCENTILE,
        cache_ttl: float = 300.0,
        lookback_days: Optional[int] = None,
    ):
        """
        Args:
            repository: Object with ``signal_rows(agent_id, lookback_days)``
            min_samples: Smallest sample that yields a threshold
            percentile: Percentile to compute
            cache_ttl: Seconds thresholds stay fresh; 0 disables expiry
            lookback_days: Restrict the population to recent calls
        """
        self.repository = repository
        self.min_samples = min_samples
        self.percentile = percentile
        self.cache_ttl = cache_ttl
        self.lookback_days = lookback_days
        self._cache: Dict[str, _CacheEntry] = {}

    def get_thresholds(self, agent_id: str, force_refresh: bool = False) -> PercentileThresholds:
        if not force_refresh:
            entry = self._cache.get(agent_id)
            if entry is not None and self._is_fresh(entry):
                return entry.thresholds

        try:
            rows = self.repository.signal_rows(agent_id, lookback_days=self.lookback_days)
        except BackendQueryError as e:
            logger.warning(f"Percentile computation failed for agent {agent_id}: {e}")
            return PercentileThresholds()
        except Exception as e:
            logger.error(f"Unexpected error reading signals for agent {agent_id}: {e}", exc_info=True)
            return PercentileThresholds()

        thresholds = self.compute(rows)
        self._cache[agent_id] = _CacheEntry(thresholds=thresholds, created=time.monotonic())
        logger.info(
            f"Percentiles for agent {agent_id}: duration={thresholds.duration_p95} "
            f"cost={thresholds.cost_p95} latency={thresholds.latency_p95}"
        )
        return thresholds

    def refresh(self, agent_id: str) -> PercentileThresholds:
        return self.get_thresholds(agent_id, force_refresh=True)

    def invalidate(self, agent_id: Optional[str] = None) -> None:
        if agent_id is None:
            self._cache.clear()
        else:
            self._cache.pop(agent_id, None)

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        if not self.cache_ttl:
            return True
        return (time.monotonic() - entry.created) < self.cache_ttl

    def compute(self, rows: List[Dict[str, Any]]) -> PercentileThresholds:
        signals = {
            "duration": _numbers(rows, "duration_seconds"),
            "cost": [c for c in (call_cost(row) for row in rows) if c is not None],
            "latency": _numbers(rows, "avg_latency"),
        }
        values = {name: self._threshold(samples) for name, samples in signals.items()}
        return PercentileThresholds(
            duration_p95=values["duration"],
            cost_p95=values["cost"],
            latency_p95=values["latency"],
            sample_sizes={name: len(samples) for name, samples in signals.items()},
            computed_at=datetime.now(timezone.utc),
        )

    def _threshold(self, samples: List[float]) -> Optional[float]:
        if len(samples) < self.min_samples:
            return None
        return nearest_rank_percentile(samples, self.percentile)
