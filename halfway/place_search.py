import asyncio
import logging
from typing import Iterable, List, Optional

from .errors import SearchBackendUnavailable
from .models import Category, Coordinate, RawCandidate

logger = logging.getLogger(__name__)

RESULTS_PER_QUERY = 5
REGION_FACTOR = 2.0  # backends under-fill small regions


class PlaceSearchAdapter:
    """
    Fans one query per category (or a single free-text query) out to a
    place-search backend and joins on all of them.

    The backend must provide ``search_places_async(center, radius_m, query, limit)``.
    """

    def __init__(self, backend, results_per_query: int = RESULTS_PER_QUERY, timeout: Optional[float] = 10.0):
        self.backend = backend
        self.results_per_query = results_per_query
        self.timeout = timeout

    @staticmethod
    def build_queries(categories: Iterable[Category], free_text: Optional[str] = None) -> List[str]:
        if free_text and free_text.strip():
            return [free_text.strip()]
        wanted = set(categories)
        # Stable order so the first-occurrence dedupe is deterministic
        ordered = [c for c in Category if c in wanted]
        return [c.query for c in ordered]

    async def _run_query(self, center: Coordinate, region_radius_m: float, query: str) -> List[RawCandidate]:
        call = self.backend.search_places_async(center, region_radius_m, query, self.results_per_query)
        if self.timeout:
            results = await asyncio.wait_for(call, timeout=self.timeout)
        else:
            results = await call
        return list(results)[: self.results_per_query]

    async def search(
        self,
        center: Coordinate,
        radius_m: float,
        categories: Iterable[Category],
        free_text: Optional[str] = None,
    ) -> List[List[RawCandidate]]:
        """
        Run every query concurrently against a region twice the requested radius.
        Returns one (possibly empty) list per query, in query order; a failed
        query contributes an empty list.
        """
        return await self.run_queries(center, radius_m, self.build_queries(categories, free_text))

    async def run_queries(self, center: Coordinate, radius_m: float, queries: List[str]) -> List[List[RawCandidate]]:
        """Same as ``search`` for an explicit list of keywords"""
        if not queries:
            return []
        region_radius_m = radius_m * REGION_FACTOR
        tasks = [self._run_query(center, region_radius_m, q) for q in queries]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        per_query: List[List[RawCandidate]] = []
        for query, result in zip(queries, results):
            if isinstance(result, SearchBackendUnavailable):
                logger.warning("Search query failed, treating as empty: %s", result)
                per_query.append([])
            elif isinstance(result, asyncio.TimeoutError):
                logger.warning("Search query '%s' timed out after %ss, treating as empty", query, self.timeout)
                per_query.append([])
            elif isinstance(result, Exception):
                logger.error("Unexpected error in search query '%s': %r", query, result)
                per_query.append([])
            else:
                per_query.append(result)

        logger.info(
            "Place search at (%.5f, %.5f) region=%.0fm queries=%s -> %d raw candidates",
            center.lat, center.lng, region_radius_m, queries, sum(len(r) for r in per_query),
        )
        return per_query
