import asyncio
from typing import Callable, Dict, List, Optional, Set, Union

import pytest

from halfway.errors import DirectionsUnavailable, GeocodeFailed, SearchBackendUnavailable
from halfway.models import Coordinate, Origin, RawCandidate, TravelMode


# Westminster and Covent Garden; their midpoint is roughly (51.5081, -0.1333)
WESTMINSTER = Coordinate(51.5007, -0.1246)
COVENT_GARDEN = Coordinate(51.5155, -0.1419)


def raw(place_id: str, lat: float, lng: float, category: str = 'cafe', name: Optional[str] = None) -> RawCandidate:
    return RawCandidate(
        id=place_id,
        name=name or place_id.title(),
        category=category,
        coordinate=Coordinate(lat, lng),
        address=f"{place_id} street",
    )


Responses = Union[Dict[str, List[RawCandidate]], Callable[[float, str], List[RawCandidate]]]


class FakeSearchBackend:
    """In-memory stand-in for a geocoding + place-search backend"""

    def __init__(self, responses: Optional[Responses] = None, failures: Optional[Set[str]] = None,
                 addresses: Optional[Dict[str, Coordinate]] = None, delay: float = 0.0):
        self.responses = responses or {}
        self.failures = failures or set()
        self.addresses = addresses or {}
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate: Optional[asyncio.Event] = None
        self.gated_radius: Optional[float] = None

    async def search_places_async(self, center, radius_m, query, limit=5):
        self.calls.append({'center': center, 'radius_m': radius_m, 'query': query, 'limit': limit})
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.gate is not None and radius_m == self.gated_radius:
                await self.gate.wait()
            if query in self.failures:
                raise SearchBackendUnavailable(query, 'backend exploded')
            if callable(self.responses):
                return list(self.responses(radius_m, query))
            return list(self.responses.get(query, []))
        finally:
            self.in_flight -= 1

    def geocode_address(self, address):
        if address not in self.addresses:
            raise GeocodeFailed(address, 'no match')
        return {'name': address, 'coordinate': self.addresses[address]}

    async def geocode_address_async(self, address):
        return self.geocode_address(address)


class FakeDirections:
    """Directions backend returning fixed durations in seconds"""

    def __init__(self, seconds: int = 600, fail_places: Optional[Set[Coordinate]] = None):
        self.seconds = seconds
        self.fail_places = fail_places or set()
        self.calls = []
        self.gate: Optional[asyncio.Event] = None

    async def route_duration_async(self, origin, destination, mode):
        self.calls.append((origin, destination, mode))
        if self.gate is not None:
            await self.gate.wait()
        if destination in self.fail_places:
            raise DirectionsUnavailable(f"no {mode.value} route")
        if mode is TravelMode.WALKING:
            return self.seconds * 3
        return self.seconds


@pytest.fixture
def origins():
    return [Origin(name='Westminster', coordinate=WESTMINSTER), Origin(name='Covent Garden', coordinate=COVENT_GARDEN)]


@pytest.fixture
def cafes():
    """Three cafes around the Westminster/Covent Garden midpoint, one beyond 1 km, plus a duplicate id"""
    return [
        raw('cafe-b', 51.5060, -0.1340),   # ~240 m
        raw('cafe-a', 51.5090, -0.1330),   # ~100 m
        raw('cafe-far', 51.5230, -0.1333),  # ~1.66 km
        raw('cafe-a', 51.5090, -0.1330),
    ]
