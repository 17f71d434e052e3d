"""Infinite-scroll pagination over compiled predicates.

Each change of predicates or sort starts a new generation. A fetch whose
generation is stale by the time it resolves is discarded, never merged,
so no explicit cancellation is needed.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from ..models.query_models import Predicate, SortState
from ..utils.errors import BackendQueryError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
PageFetcher = Callable[[List[Predicate], SortState, int, int], Awaitable[List[Row]]]

DEFAULT_PAGE_SIZE = 50


def repository_fetcher(repository) -> PageFetcher:
    """Adapt a synchronous ``fetch_page`` repository to the cursor's fetcher."""

    async def fetch(predicates: List[Predicate], sort: SortState, offset: int, limit: int) -> List[Row]:
        return await asyncio.to_thread(repository.fetch_page, predicates, sort, offset, limit)

    return fetch


class PaginatedQueryCursor:
    """Fetch pages on demand and keep them merged in fetch order."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        predicates: Iterable[Predicate] = (),
        sort: Optional[SortState] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._fetch_page = fetch_page
        self._predicates: List[Predicate] = list(predicates)
        self._sort = sort or SortState()
        self.page_size = page_size

        self.generation = 0
        self.has_more = True
        self.error: Optional[BackendQueryError] = None
        self._pages: List[List[Row]] = []
        self._inflight: Optional["asyncio.Future[List[Row]]"] = None
        self._inflight_generation = -1

    # State

    @property
    def predicates(self) -> List[Predicate]:
        return list(self._predicates)

    @property
    def sort(self) -> SortState:
        return self._sort

    @property
    def items(self) -> List[Row]:
        return [row for page in self._pages for row in page]

    @property
    def page_count(self) -> int:
        return len(self._pages)

    @property
    def is_loading(self) -> bool:
        return (
            self._inflight is not None
            and not self._inflight.done()
            and self._inflight_generation == self.generation
        )

    # Query changes

    def set_predicates(self, predicates: Iterable[Predicate]) -> bool:
        """Replace the compiled predicates; returns True if anything changed."""
        predicates = list(predicates)
        if predicates == self._predicates:
            return False
        self._predicates = predicates
        self.reset()
        return True

    def set_sort(self, sort: SortState) -> bool:
        if sort == self._sort:
            return False
        self._sort = sort
        self.reset()
        return True

    def toggle_sort(self, column: str) -> bool:
        """Header click; non-sortable columns leave everything untouched."""
        return self.set_sort(self._sort.toggled(column))

    def reset(self) -> None:
        """Drop every fetched page and start again from the first page."""
        self.generation += 1
        self._pages = []
        self.has_more = True
        self.error = None
        self._inflight = None
        logger.debug(f"Cursor reset to generation {self.generation}")

    # Fetching

    async def load_more(self) -> List[Row]:
        """
        Fetch the next page.

        Concurrent calls share the single in-flight fetch of the current
        generation. Once a short page has been seen this is a no-op.

        Returns:
            The rows of the fetched page (empty for no-ops and stale pages)

        Raises:
            BackendQueryError: If the page fetch failed; call again to retry
        """
        if self.is_loading:
            return await asyncio.shield(self._inflight)
        if not self.has_more:
            return []

        generation = self.generation
        offset = sum(len(page) for page in self._pages)
        task = asyncio.ensure_future(
            self._fetch(generation, list(self._predicates), self._sort, offset)
        )
        self._inflight = task
        self._inflight_generation = generation
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight is task:
                self._inflight = None

    async def on_sentinel_visible(self, visible: bool = True) -> bool:
        """
        Viewport signal from the trailing sentinel row.

        Loads the next page only when more rows exist, nothing is in
        flight and the previous attempt did not fail. A failure is kept on
        ``self.error`` until a manual ``load_more()`` retry.

        Returns:
            True if a page was requested
        """
        if not visible or not self.has_more or self.is_loading or self.error is not None:
            return False
        try:
            await self.load_more()
        except BackendQueryError:
            return True
        return True

    async def _fetch(
        self,
        generation: int,
        predicates: List[Predicate],
        sort: SortState,
        offset: int,
    ) -> List[Row]:
        try:
            rows = await self._fetch_page(predicates, sort, offset, self.page_size)
        except Exception as e:
            error = e if isinstance(e, BackendQueryError) else BackendQueryError(str(e), offset=offset)
            if generation != self.generation:
                logger.debug(f"Ignoring failure of stale page fetch (generation {generation}): {e}")
                return []
            self.error = error
            logger.warning(f"Page fetch failed: {error}")
            if error is e:
                raise
            raise error from e

        if generation != self.generation:
            logger.debug(f"Discarding stale page (generation {generation}, current {self.generation})")
            return []

        rows = list(rows)
        self._pages.append(rows)
        self.error = None
        if len(rows) < self.page_size:
            self.has_more = False
        return rows
