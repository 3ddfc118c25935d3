"""
OpenStreetMap backend: Nominatim for geocoding and Overpass for place search.

Nominatim's usage policy allows roughly one request per second and requires an
identifying User-Agent, so every request made through this service is throttled
and sent with the configured headers.
"""

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import GeocodeFailed, SearchBackendUnavailable
from .models import Coordinate, RawCandidate

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
OVERPASS_URL = "https://overpass-api.de/api/interpreter"
OVERPASS_ELEMENT_CAP = 50

CATEGORY_TAGS: Dict[str, List[Tuple[str, str]]] = {
    'cafe': [('amenity', 'cafe'), ('amenity', 'coffee_shop')],
    'restaurant': [('amenity', 'restaurant'), ('amenity', 'fast_food'), ('amenity', 'food_court')],
    'bar': [('amenity', 'bar'), ('amenity', 'pub'), ('amenity', 'nightclub')],
    'park': [('leisure', 'park'), ('leisure', 'garden'), ('leisure', 'playground')],
}

# Tag keys checked, in order, for an element's raw category
_TYPE_KEYS = ('amenity', 'leisure', 'tourism', 'shop')


def _escape(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def build_overpass_query(center: Coordinate, radius_m: float, query: str) -> str:
    """Overpass QL for the given keyword: category tags when known, else a name match"""
    around = f"(around:{int(round(radius_m))},{center.lat},{center.lng})"
    tags = CATEGORY_TAGS.get(query.strip().lower())
    if tags:
        selectors = [f'["{key}"="{value}"]' for key, value in tags]
    else:
        selectors = [f'["name"~"{_escape(query.strip())}",i]']
    statements = []
    for selector in selectors:
        statements.append(f"node{selector}{around};")
        statements.append(f"way{selector}{around};")
    body = "\n  ".join(statements)
    return f"[out:json][timeout:25];\n(\n  {body}\n);\nout center {OVERPASS_ELEMENT_CAP};"


def _raw_type(tags: Dict[str, str]) -> str:
    for key in _TYPE_KEYS:
        if tags.get(key):
            return tags[key]
    return ''


def _default_name(tags: Dict[str, str]) -> str:
    raw = _raw_type(tags)
    if not raw:
        return 'Place of Interest'
    return raw.replace('_', ' ').title()


def _format_address(tags: Dict[str, str]) -> Optional[str]:
    parts = [tags.get(k) for k in ('addr:housenumber', 'addr:street', 'addr:city', 'addr:postcode')]
    text = ", ".join(p for p in parts if p)
    return text or None


def parse_overpass_element(element: Dict[str, Any]) -> Optional[RawCandidate]:
    """Convert one Overpass element into a candidate; None when it has no usable position"""
    tags = element.get('tags') or {}
    lat = element.get('lat')
    lon = element.get('lon')
    if (lat is None or lon is None) and element.get('center'):
        lat = element['center'].get('lat')
        lon = element['center'].get('lon')
    if lat is None or lon is None:
        return None
    return RawCandidate(
        id=f"osm:{element.get('type', 'node')}/{element['id']}",
        name=tags.get('name') or _default_name(tags),
        category=_raw_type(tags),
        coordinate=Coordinate(lat=float(lat), lng=float(lon)),
        address=_format_address(tags),
    )


class OpenStreetMapService:
    """Geocoding and place search over the public OSM APIs (no directions)"""

    def __init__(
        self,
        user_agent: str,
        min_interval: float = 1.1,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.headers = {'User-Agent': user_agent}
        self.min_interval = min_interval
        self.timeout = timeout
        self.session = session or requests.Session()
        self.executor = concurrent.futures.ThreadPoolExecutor(max_workers=2)
        self._lock = threading.Lock()
        self._last_request_ts = 0.0

    def cleanup(self):
        self.executor.shutdown(wait=True)
        self.session.close()

    def _throttle(self) -> None:
        with self._lock:
            now = time.time()
            delta = now - self._last_request_ts
            if delta < self.min_interval:
                time.sleep(self.min_interval - delta)
            self._last_request_ts = time.time()

    def geocode_address(self, address: str) -> Dict:
        self._throttle()
        try:
            resp = self.session.get(
                NOMINATIM_SEARCH_URL,
                params={'q': address, 'format': 'json', 'limit': 1},
                headers=self.headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Nominatim lookup failed for '%s': %s", address, e)
            raise GeocodeFailed(address, str(e)) from e
        if not data:
            raise GeocodeFailed(address, "no match")
        try:
            first = data[0]
            return {
                'name': first.get('display_name') or address,
                'coordinate': Coordinate(lat=float(first['lat']), lng=float(first['lon'])),
            }
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GeocodeFailed(address, f"malformed response: {e}") from e

    def search_places(self, center: Coordinate, radius_m: float, query: str, limit: int = 5) -> List[RawCandidate]:
        overpass_query = build_overpass_query(center, radius_m, query)
        self._throttle()
        try:
            resp = self.session.post(
                OVERPASS_URL,
                data={'data': overpass_query},
                headers=self.headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
            elements = resp.json().get('elements', [])
        except (requests.RequestException, ValueError, AttributeError) as e:
            raise SearchBackendUnavailable(query, str(e)) from e

        places: List[RawCandidate] = []
        for element in elements:
            try:
                candidate = parse_overpass_element(element)
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("Skipping malformed Overpass element: %s", e)
                continue
            if candidate is None:
                continue
            places.append(candidate)
            if len(places) >= limit:
                break
        logger.debug(
            "OpenStreetMapService.search_places: query=%s lat=%.6f lng=%.6f radius_m=%.1f got %d results",
            query, center.lat, center.lng, radius_m, len(places),
        )
        return places

    async def geocode_address_async(self, address: str) -> Dict:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.geocode_address, address)

    async def search_places_async(self, center: Coordinate, radius_m: float, query: str, limit: int = 5) -> List[RawCandidate]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.executor, self.search_places, center, radius_m, query, limit)
