import asyncio
import logging
import math
from typing import Dict, List, Optional, Tuple

from . import geo
from .aggregator import aggregate, filter_places
from .enrichment import EnrichmentQueue, EnrichmentRequest
from .errors import GeocodeFailed, NoResultsFound, StaleResult
from .models import (
    CandidatePlace,
    Category,
    Coordinate,
    Origin,
    SearchParameters,
    SessionState,
)
from .place_search import PlaceSearchAdapter

logger = logging.getLogger(__name__)

# --- Module-level constants ---
MIN_RADIUS_M = 100.0
DEFAULT_MAX_ORIGINS = 5
DEFAULT_MAX_RETRY_RADIUS_M = 5000.0
RETRY_RADIUS_FACTOR = 2.0

_UNSET = object()


def _check_text(name: str, value) -> None:
    if value is not None and not isinstance(value, str):
        raise ValueError(f"{name} must be a string or null, got {type(value).__name__}")


class SessionOrchestrator:
    """
    One user's search session: origins, midpoint, parameters and results.

    Every change to origins or parameters starts a new search generation; a
    search, retry or travel-time completion that finishes after a newer
    generation has started is discarded. Places are published as soon as the
    search returns and travel times fill in afterwards through the enrichment
    queue owned by this session.
    """

    def __init__(
        self,
        search_backend,
        directions=None,
        geocoder=None,
        max_origins: int = DEFAULT_MAX_ORIGINS,
        default_radius_m: float = 1000.0,
        max_retry_radius_m: float = DEFAULT_MAX_RETRY_RADIUS_M,
        results_per_query: int = 5,
        enrichment_interval: float = 1.0,
        request_timeout: Optional[float] = 10.0,
    ):
        self.adapter = PlaceSearchAdapter(search_backend, results_per_query=results_per_query, timeout=request_timeout)
        self.enrichment = EnrichmentQueue(
            directions,
            on_result=self._apply_travel_time,
            interval=enrichment_interval,
            timeout=request_timeout,
        )
        self.geocoder = geocoder if geocoder is not None else search_backend
        self.max_origins = max_origins
        self.max_retry_radius_m = max_retry_radius_m
        self.request_timeout = request_timeout

        self.origins: List[Origin] = []
        self.parameters = SearchParameters(radius_m=default_radius_m)
        self.text_filter: Optional[str] = None
        self.midpoint: Optional[Coordinate] = None
        self.results: List[CandidatePlace] = []
        self.state = SessionState.NO_ORIGINS
        self.is_loading = False
        self.error_message: Optional[str] = None
        self.effective_radius_m: Optional[float] = None
        self.generation = 0
        self._by_id: Dict[str, CandidatePlace] = {}

    @classmethod
    def from_settings(cls, settings, search_backend, directions=None, geocoder=None) -> 'SessionOrchestrator':
        return cls(
            search_backend,
            directions=directions,
            geocoder=geocoder,
            max_origins=settings.MAX_ORIGINS,
            default_radius_m=settings.DEFAULT_RADIUS_M,
            max_retry_radius_m=settings.MAX_RETRY_RADIUS_M,
            results_per_query=settings.RESULTS_PER_QUERY,
            enrichment_interval=settings.ENRICHMENT_INTERVAL_S,
            request_timeout=settings.REQUEST_TIMEOUT_S,
        )

    # --- Lifecycle ---
    def start(self) -> None:
        """Start the travel-time worker on the running event loop"""
        self.enrichment.start()

    async def close(self) -> None:
        self._invalidate()
        await self.enrichment.stop()

    # --- Derived state ---
    @property
    def max_radius_m(self) -> float:
        return geo.max_search_radius(o.coordinate for o in self.origins)

    @property
    def visible_results(self) -> List[CandidatePlace]:
        return filter_places(self.results, self.parameters.category, self.text_filter)

    # --- Origins ---
    async def set_origin(self, index: int, origin: Origin) -> List[CandidatePlace]:
        """Replace the origin at ``index``, or append when ``index`` is one past the end"""
        if index < 0 or index > len(self.origins) or index >= self.max_origins:
            raise IndexError(f"Origin index {index} out of range (have {len(self.origins)}, max {self.max_origins})")
        if index < len(self.origins):
            self.origins[index] = origin
        else:
            self.origins.append(origin)
        self.error_message = None
        logger.info("Origin %d set to %s (%.5f, %.5f)", index, origin.name, origin.coordinate.lat, origin.coordinate.lng)
        return await self._origins_changed()

    async def add_origin(self, origin: Origin) -> List[CandidatePlace]:
        return await self.set_origin(len(self.origins), origin)

    async def use_current_location(self, index: int, coordinate: Coordinate) -> List[CandidatePlace]:
        return await self.set_origin(index, Origin.current_location(coordinate))

    async def resolve_origin(self, index: int, address: str) -> List[CandidatePlace]:
        """
        Geocode ``address`` and set it as origin ``index``.
        A failed lookup is recorded in ``error_message`` and re-raised; no search runs.
        """
        if index < 0 or index > len(self.origins) or index >= self.max_origins:
            raise IndexError(f"Origin index {index} out of range")
        try:
            call = self.geocoder.geocode_address_async(address)
            if self.request_timeout:
                found = await asyncio.wait_for(call, timeout=self.request_timeout)
            else:
                found = await call
        except asyncio.TimeoutError as e:
            self.error_message = str(GeocodeFailed(address, 'timed out'))
            raise GeocodeFailed(address, 'timed out') from e
        except GeocodeFailed as e:
            self.error_message = str(e)
            raise
        return await self.set_origin(index, Origin(name=found['name'], coordinate=found['coordinate']))

    async def remove_origin(self, index: int) -> List[CandidatePlace]:
        if index < 0 or index >= len(self.origins):
            raise IndexError(f"Origin index {index} out of range")
        removed = self.origins.pop(index)
        self.error_message = None
        logger.info("Origin %d (%s) removed", index, removed.name)
        return await self._origins_changed()

    async def clear_origins(self) -> None:
        self.origins = []
        self.parameters.category = None
        self.parameters.query = None
        self.text_filter = None
        self.error_message = None
        await self._origins_changed()

    async def _origins_changed(self) -> List[CandidatePlace]:
        self._invalidate()
        if len(self.origins) < 2:
            self.midpoint = None
            self.state = SessionState.NO_ORIGINS if not self.origins else SessionState.PARTIAL_ORIGINS
            return []
        self.midpoint = geo.midpoint(o.coordinate for o in self.origins)
        self.state = SessionState.ORIGINS_SET
        if self.parameters.radius_m > self.max_radius_m:
            self.parameters.radius_m = self.max_radius_m
        return await self.refresh()

    # --- Parameters ---
    async def update_parameters(self, radius_m=_UNSET, category=_UNSET, query=_UNSET) -> List[CandidatePlace]:
        """
        Apply any combination of parameter changes, then search once.
        Raises ValueError, leaving every parameter untouched, when a value is unusable.
        """
        if radius_m is not _UNSET:
            if isinstance(radius_m, bool) or not isinstance(radius_m, (int, float)) or not math.isfinite(radius_m):
                raise ValueError(f"radius_m must be a finite number, got {radius_m!r}")
        if category is not _UNSET and category is not None and not isinstance(category, Category):
            raise ValueError(f"category must be a Category or None, got {category!r}")
        if query is not _UNSET:
            _check_text('query', query)

        changed = False
        if radius_m is not _UNSET:
            radius = min(max(float(radius_m), MIN_RADIUS_M), self.max_radius_m)
            if radius != self.parameters.radius_m:
                self.parameters.radius_m = radius
                changed = True
        if category is not _UNSET and category != self.parameters.category:
            self.parameters.category = category
            changed = True
        if query is not _UNSET and query != self.parameters.query:
            self.parameters.query = query
            changed = True
        if not changed:
            return self.results
        self.error_message = None
        if self.midpoint is None:
            return []
        return await self.refresh()

    async def set_radius(self, radius_m: float) -> List[CandidatePlace]:
        return await self.update_parameters(radius_m=radius_m)

    async def set_category(self, category: Optional[Category]) -> List[CandidatePlace]:
        return await self.update_parameters(category=category)

    async def set_query(self, query: Optional[str]) -> List[CandidatePlace]:
        return await self.update_parameters(query=query)

    def set_text_filter(self, text: Optional[str]) -> List[CandidatePlace]:
        """Narrow the displayed results without searching again"""
        _check_text('text_filter', text)
        self.text_filter = text
        return self.visible_results

    # --- Search ---
    def _invalidate(self) -> int:
        """Supersede whatever is in flight and drop the current result set"""
        self.generation += 1
        self.enrichment.reset(self.generation)
        self._set_results([])
        self.is_loading = False
        self.effective_radius_m = None
        return self.generation

    def _set_results(self, places: List[CandidatePlace]) -> None:
        self.results = places
        self._by_id = {p.id: p for p in places}

    def _check_generation(self, generation: int) -> None:
        if generation != self.generation:
            raise StaleResult(generation, self.generation)

    async def refresh(self) -> List[CandidatePlace]:
        """Run a new search around the current midpoint; the latest call wins"""
        if self.midpoint is None:
            return []
        generation = self._invalidate()
        self.is_loading = True
        self.state = SessionState.SEARCHING
        self.error_message = None

        midpoint = self.midpoint
        origins = list(self.origins)
        radius = self.parameters.radius_m
        categories = self.parameters.categories()
        free_text = self.parameters.free_text
        logger.info(
            "Search generation %d: midpoint=(%.5f, %.5f) radius=%.0fm categories=%s query=%s",
            generation, midpoint.lat, midpoint.lng, radius,
            sorted(c.value for c in categories), free_text,
        )

        try:
            places, radius_used = await self._search(midpoint, radius, categories, free_text, generation)
        except StaleResult as e:
            logger.info("%s", e)
            return self.results
        except NoResultsFound as e:
            self.is_loading = False
            self.state = SessionState.EMPTY
            self.effective_radius_m = e.radius_m
            self.error_message = str(e)
            logger.info("Search generation %d found nothing (up to %.0fm)", generation, e.radius_m)
            return []

        self._set_results(places)
        self.effective_radius_m = radius_used
        self.is_loading = False
        self.state = SessionState.RESULTS
        logger.info("Search generation %d: %d places within %.0fm", generation, len(places), radius_used)
        self.enrichment.enqueue_result_set(places, origins, generation)
        return places

    async def _search(self, midpoint, radius, categories, free_text, generation) -> Tuple[List[CandidatePlace], float]:
        queries = self.adapter.build_queries(categories, free_text)
        raw = await self.adapter.run_queries(midpoint, radius, queries)
        self._check_generation(generation)
        places = aggregate(raw, midpoint, radius)
        if places:
            return places, radius

        synonyms = self._synonyms(categories, free_text)
        if synonyms:
            logger.info("No places for %s within %.0fm, trying %s", queries, radius, synonyms)
            raw = await self.adapter.run_queries(midpoint, radius, synonyms)
            self._check_generation(generation)
            places = aggregate(raw, midpoint, radius)
            if places:
                return places, radius
            queries = queries + synonyms

        larger = min(radius * RETRY_RADIUS_FACTOR, self.max_retry_radius_m)
        if larger <= radius:
            raise NoResultsFound(radius)
        logger.info("No places within %.0fm, retrying once at %.0fm", radius, larger)
        raw = await self.adapter.run_queries(midpoint, larger, queries)
        self._check_generation(generation)
        places = aggregate(raw, midpoint, larger)
        if not places:
            raise NoResultsFound(larger)
        return places, larger

    @staticmethod
    def _synonyms(categories, free_text) -> List[str]:
        # Only a single selected category is widened; free text is taken literally
        if free_text or len(categories) != 1:
            return []
        (category,) = categories
        return category.synonyms

    def _apply_travel_time(self, request: EnrichmentRequest, minutes: int) -> None:
        if request.generation != self.generation:
            return
        place = self._by_id.get(request.place_id)
        if place is None:
            return
        place.set_travel_time(request.origin_index, request.mode, minutes)

    # --- Presentation ---
    def snapshot(self) -> Dict:
        visible = self.visible_results
        return {
            'state': self.state.value,
            'generation': self.generation,
            'origins': [o.to_dict() for o in self.origins],
            'midpoint': self.midpoint.to_dict() if self.midpoint else None,
            'parameters': self.parameters.to_dict(),
            'text_filter': self.text_filter,
            'effective_radius_m': self.effective_radius_m,
            'max_radius_m': self.max_radius_m,
            'is_loading': self.is_loading,
            'error': self.error_message,
            'result_count': len(self.results),
            'results': [p.to_dict(len(self.origins)) for p in visible],
            'pending_travel_time_requests': len(self.enrichment),
        }
