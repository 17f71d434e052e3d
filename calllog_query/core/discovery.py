"""Discover queryable fields from sampled call logs.

Only the fixed columns are known up front; the keys inside the JSON
columns vary per agent and are inferred from a sample of recent calls.
The catalog is advisory: a failed discovery yields an empty catalog and
callers fall back to the fixed column set.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..models.query_models import FieldInfo
from ..utils.errors import DiscoverySamplingFailure
from .json_values import canonical_key, infer_type

logger = logging.getLogger(__name__)

MAX_SAMPLE_VALUES = 5

# Physical columns, not JSON subkeys
BASIC_FIELDS: Tuple[FieldInfo, ...] = (
    FieldInfo(name="Call ID", type="string", path="call_id", category="basic"),
    FieldInfo(name="Customer Number", type="string", path="customer_number", category="basic"),
    FieldInfo(name="Agent ID", type="string", path="agent_id", category="basic"),
    FieldInfo(name="Status", type="string", path="call_ended_reason", category="basic"),
    FieldInfo(name="Duration (seconds)", type="number", path="duration_seconds", category="basic"),
    FieldInfo(name="Billing Duration", type="number", path="billing_duration_seconds", category="basic"),
    FieldInfo(name="Total Cost", type="number", path="total_cost", category="basic"),
    FieldInfo(name="Start Time", type="date", path="call_started_at", category="basic"),
    FieldInfo(name="End Time", type="date", path="call_ended_at", category="basic"),
    FieldInfo(name="Created At", type="date", path="created_at", category="basic"),
    FieldInfo(name="Avg Latency (ms)", type="number", path="avg_latency", category="basic"),
    FieldInfo(name="LLM Cost", type="number", path="total_llm_cost", category="basic"),
    FieldInfo(name="TTS Cost", type="number", path="total_tts_cost", category="basic"),
    FieldInfo(name="STT Cost", type="number", path="total_stt_cost", category="basic"),
    FieldInfo(name="Recording URL", type="string", path="recording_url", category="basic"),
    FieldInfo(name="Environment", type="string", path="environment", category="basic"),
    FieldInfo(name="Transcript Type", type="string", path="transcript_type", category="basic"),
)

# JSON column -> catalog category
JSON_COLUMNS: Dict[str, str] = {
    "metadata": "metadata",
    "transcription_metrics": "transcription",
    "metrics": "metrics",
}


@dataclass
class _FieldStats:
    """Running statistics for one field path."""
    type: Optional[str] = None
    count: int = 0
    distinct: Dict[str, Any] = field(default_factory=dict)

    def observe(self, value: Any) -> None:
        self.count += 1
        if self.type is None and value is not None:
            self.type = infer_type(value)
        key = canonical_key(value)
        if key not in self.distinct:
            self.distinct[key] = value

    def sample_values(self) -> List[Any]:
        return list(self.distinct.values())[:MAX_SAMPLE_VALUES]


@dataclass
class _CacheEntry:
    fields: List[FieldInfo]
    created: float


class FieldDiscoveryService:
    """Infer a per-agent catalog of queryable fields."""

    def __init__(
        self,
        repository,
        sample_size: int = 500,
        cache_ttl: float = 300.0,
    ):
        """
        Args:
            repository: Object with ``sample_records(agent_id, limit)``
            sample_size: Number of most recent calls to scan
            cache_ttl: Seconds a catalog stays fresh; 0 disables expiry
        """
        self.repository = repository
        self.sample_size = sample_size
        self.cache_ttl = cache_ttl
        self._cache: Dict[Tuple[str, int], _CacheEntry] = {}

    def discover(
        self,
        agent_id: str,
        sample_size: Optional[int] = None,
        force_refresh: bool = False,
    ) -> List[FieldInfo]:
        """Return the field catalog for ``agent_id``, computing it if needed."""
        size = sample_size or self.sample_size
        key = (agent_id, size)

        if not force_refresh:
            entry = self._cache.get(key)
            if entry is not None and self._is_fresh(entry):
                logger.debug(f"Field catalog cache hit for agent {agent_id}")
                return list(entry.fields)

        try:
            records = self.repository.sample_records(agent_id, limit=size)
        except DiscoverySamplingFailure as e:
            logger.warning(f"Field discovery failed for agent {agent_id}: {e}")
            return []
        except Exception as e:
            logger.error(f"Unexpected error sampling calls for agent {agent_id}: {e}", exc_info=True)
            return []

        fields = self.build_catalog(records)
        self._cache[key] = _CacheEntry(fields=fields, created=time.monotonic())
        logger.info(f"Discovered {len(fields)} fields for agent {agent_id} from {len(records)} calls")
        return list(fields)

    def refresh(self, agent_id: str, sample_size: Optional[int] = None) -> List[FieldInfo]:
        return self.discover(agent_id, sample_size=sample_size, force_refresh=True)

    def invalidate(self, agent_id: Optional[str] = None) -> None:
        if agent_id is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == agent_id]:
            del self._cache[key]

    def _is_fresh(self, entry: _CacheEntry) -> bool:
        if not self.cache_ttl:
            return True
        return (time.monotonic() - entry.created) < self.cache_ttl

    @staticmethod
    def build_catalog(records: List[Dict[str, Any]]) -> List[FieldInfo]:
        """Fixed fields followed by every JSON subkey seen in ``records``."""
        basic_stats: Dict[str, _FieldStats] = {f.path: _FieldStats() for f in BASIC_FIELDS}
        json_stats: Dict[str, Dict[str, _FieldStats]] = {column: {} for column in JSON_COLUMNS}

        for record in records:
            for path, stats in basic_stats.items():
                value = record.get(path)
                if value is not None:
                    stats.observe(value)

            for column, keys in json_stats.items():
                payload = record.get(column)
                if not isinstance(payload, dict):
                    continue
                for key, value in payload.items():
                    keys.setdefault(key, _FieldStats()).observe(value)

        catalog: List[FieldInfo] = []
        for info in BASIC_FIELDS:
            stats = basic_stats[info.path]
            catalog.append(
                info.model_copy(
                    update={
                        "sample_values": stats.sample_values() if stats.count else None,
                        "count": stats.count,
                        "unique_count": len(stats.distinct),
                    }
                )
            )

        for column, category in JSON_COLUMNS.items():
            for key, stats in json_stats[column].items():
                catalog.append(
                    FieldInfo(
                        name=key,
                        path=f"{column}.{key}",
                        type=stats.type or "string",
                        category=category,
                        sample_values=stats.sample_values(),
                        count=stats.count,
                        unique_count=len(stats.distinct),
                    )
                )
        return catalog


def fields_by_category(fields: List[FieldInfo]) -> Dict[str, List[FieldInfo]]:
    grouped: Dict[str, List[FieldInfo]] = {
        "basic": [],
        "metadata": [],
        "transcription": [],
        "metrics": [],
    }
    for info in fields:
        grouped.setdefault(info.category, []).append(info)
    return grouped


def available_json_fields(fields: List[FieldInfo], column: str) -> List[str]:
    """Sorted subkey names discovered under one JSON column."""
    category = JSON_COLUMNS.get(column)
    return sorted(f.name for f in fields if f.category == category and f.path.startswith(f"{column}."))
