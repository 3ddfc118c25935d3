import googlemaps
from googlemaps import exceptions as gm_exceptions
from typing import Dict, List, Optional
import asyncio
import concurrent.futures
import logging

from .errors import DirectionsUnavailable, GeocodeFailed, SearchBackendUnavailable
from .models import Coordinate, RawCandidate, TravelMode


logger = logging.getLogger(__name__)

# --- Module-level constants ---
DEFAULT_TIMEOUT_S = 10.0
MAX_WORKERS = 10

_GOOGLE_ERRORS = (
    gm_exceptions.ApiError,
    gm_exceptions.TransportError,
    gm_exceptions.Timeout,
)
_PAYLOAD_ERRORS = (KeyError, IndexError, TypeError, ValueError)


def _fmt(point: Coordinate) -> str:
    return f"{point.lat},{point.lng}"


class GoogleMapsService:
    """Geocoding, place search and directions backed by the Google Maps APIs"""

    def __init__(self, api_key: str, timeout: float = DEFAULT_TIMEOUT_S):
        if not api_key or api_key == "your_api_key_here":
            raise ValueError("Valid Google Maps API key is required")
        self.client = googlemaps.Client(key=api_key, timeout=timeout)
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=MAX_WORKERS)

    def cleanup(self):
        """Clean up resources"""
        if hasattr(self, 'executor'):
            self.executor.shutdown(wait=True)

    def geocode_address(self, address: str) -> Dict:
        """
        Geocode an address using Google Maps Geocoding API
        Returns formatted address and coordinates, raises GeocodeFailed when nothing matches
        """
        try:
            result = self.client.geocode(address)
        except _GOOGLE_ERRORS as e:
            logger.warning("Geocoding error for '%s': %s", address, e)
            raise GeocodeFailed(address, str(e)) from e
        if not result:
            raise GeocodeFailed(address, "no match")
        try:
            location = result[0]
            return {
                'name': location['formatted_address'],
                'coordinate': Coordinate(
                    lat=location['geometry']['location']['lat'],
                    lng=location['geometry']['location']['lng'],
                ),
            }
        except _PAYLOAD_ERRORS as e:
            raise GeocodeFailed(address, f"malformed response: {e}") from e

    def search_places(self, center: Coordinate, radius_m: float, query: str, limit: int = 5) -> List[RawCandidate]:
        """
        Find places matching a keyword near a location (Places Nearby API).
        The first listed type is reported as the raw category.
        """
        try:
            places_result = self.client.places_nearby(
                location=(center.lat, center.lng),
                radius=int(round(radius_m)),
                keyword=query,
            )
        except _GOOGLE_ERRORS as e:
            raise SearchBackendUnavailable(query, str(e)) from e

        places: List[RawCandidate] = []
        for place in places_result.get('results', []):
            try:
                types = place.get('types') or []
                places.append(RawCandidate(
                    id=place['place_id'],
                    name=place.get('name') or 'Unknown Place',
                    category=types[0] if types else '',
                    coordinate=Coordinate(
                        lat=place['geometry']['location']['lat'],
                        lng=place['geometry']['location']['lng'],
                    ),
                    address=place.get('vicinity') or place.get('formatted_address'),
                ))
            except _PAYLOAD_ERRORS as e:
                logger.debug("Skipping malformed place in '%s' results: %s", query, e)
                continue
            if len(places) >= limit:
                break
        return places

    def route_duration(self, origin: Coordinate, destination: Coordinate, mode: TravelMode) -> int:
        """
        Travel time between two points using Google Maps Directions API
        Returns time in seconds
        """
        try:
            directions_result = self.client.directions(
                origin=_fmt(origin),
                destination=_fmt(destination),
                mode=mode.value,
                alternatives=False,
            )
        except _GOOGLE_ERRORS as e:
            raise DirectionsUnavailable(f"{mode.value} directions failed: {e}") from e

        if not directions_result:
            raise DirectionsUnavailable(f"No {mode.value} route from {_fmt(origin)} to {_fmt(destination)}")
        try:
            route = directions_result[0]
            return sum(leg['duration']['value'] for leg in route['legs'])
        except _PAYLOAD_ERRORS as e:
            raise DirectionsUnavailable(f"Malformed directions response: {e}") from e

    # Async wrapper methods for parallel execution
    async def geocode_address_async(self, address: str) -> Dict:
        """Async wrapper for geocode_address"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.geocode_address, address)

    async def search_places_async(self, center: Coordinate, radius_m: float, query: str, limit: int = 5) -> List[RawCandidate]:
        """Async wrapper for search_places"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.search_places, center, radius_m, query, limit)

    async def route_duration_async(self, origin: Coordinate, destination: Coordinate, mode: TravelMode) -> int:
        """Async wrapper for route_duration"""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.route_duration, origin, destination, mode)


def build_google_service(api_key: Optional[str], timeout: float = DEFAULT_TIMEOUT_S) -> Optional[GoogleMapsService]:
    """Create the Google backend, or None when no usable key is configured"""
    if not api_key:
        return None
    try:
        return GoogleMapsService(api_key, timeout=timeout)
    except ValueError as e:
        logger.error(f"Error initializing Google Maps service: {e}")
        return None
