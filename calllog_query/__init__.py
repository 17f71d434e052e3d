"""
calllog-query: filter composition and query compilation for voice-agent call logs.

Turn filter trees, search-box text and anomaly toggles into predicates:
    compiler = QueryCompiler()
    predicates = compiler.compile(groups, owner=owner_scope(agent_id))
"""

__version__ = "0.1.0"

from .core.compiler import QueryCompiler, owner_scope
from .core.cursor import PaginatedQueryCursor
from .core.discovery import FieldDiscoveryService
from .core.engine import QueryEngine
from .core.percentiles import PercentileAnomalyService
from .core.search import SearchDSLParser
from .models.filters import FilterGroup, FilterRule
from .models.query_models import (
    AnomalyToggle,
    FieldInfo,
    PercentileThresholds,
    Predicate,
    SavedView,
    SearchQuery,
    SortState,
)
from .settings import QuerySettings

__all__ = [
    "AnomalyToggle",
    "FieldDiscoveryService",
    "FieldInfo",
    "FilterGroup",
    "FilterRule",
    "PaginatedQueryCursor",
    "PercentileAnomalyService",
    "PercentileThresholds",
    "Predicate",
    "QueryCompiler",
    "QueryEngine",
    "QuerySettings",
    "SavedView",
    "SearchDSLParser",
    "SearchQuery",
    "SortState",
    "owner_scope",
]
