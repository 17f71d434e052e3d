"""Wire search, discovery, percentiles, compilation and pagination together."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Union

from ..models.filters import FilterGroup
from ..models.query_models import AnomalyToggle, Predicate, SearchQuery, SortState
from ..settings import QuerySettings
from .compiler import CompilationResult, QueryCompiler, owner_scope
from .cursor import PaginatedQueryCursor, repository_fetcher
from .discovery import FieldDiscoveryService
from .percentiles import PercentileAnomalyService
from .search import SearchDSLParser

logger = logging.getLogger(__name__)


class QueryEngine:
    """Per-agent entry point: user intent in, predicates and cursors out."""

    def __init__(self, agent_id: str, repository, settings: Optional[QuerySettings] = None):
        self.agent_id = agent_id
        self.repository = repository
        self.settings = settings or QuerySettings()

        self.parser = SearchDSLParser()
        self.discovery = FieldDiscoveryService(
            repository,
            sample_size=self.settings.discovery_sample_size,
            cache_ttl=self.settings.cache_ttl_seconds,
        )
        self.percentiles = PercentileAnomalyService(
            repository,
            min_samples=self.settings.percentile_min_samples,
            cache_ttl=self.settings.cache_ttl_seconds,
            lookback_days=self.settings.percentile_lookback_days,
        )

    def compile(
        self,
        groups: Iterable[FilterGroup] = (),
        search: Optional[SearchQuery] = None,
        anomaly_toggles: Iterable[Union[AnomalyToggle, str]] = (),
        now: Optional[datetime] = None,
    ) -> CompilationResult:
        """Compile filter groups, an optional search and active toggles."""
        groups = list(groups)
        if search is not None and search.text.strip():
            groups.append(self.parser.parse_query(search))

        toggles = list(anomaly_toggles)
        thresholds = self.percentiles.get_thresholds(self.agent_id) if toggles else None
        compiler = QueryCompiler(self.discovery.discover(self.agent_id))
        return compiler.compile_with_report(
            groups,
            owner=owner_scope(self.agent_id),
            anomaly_toggles=toggles,
            thresholds=thresholds,
            now=now,
        )

    def cursor(
        self,
        predicates: Optional[List[Predicate]] = None,
        sort: Optional[SortState] = None,
    ) -> PaginatedQueryCursor:
        return PaginatedQueryCursor(
            repository_fetcher(self.repository),
            predicates=predicates if predicates is not None else [owner_scope(self.agent_id)],
            sort=sort,
            page_size=self.settings.page_size,
        )
