"""Error types shared by the backends, the search pipeline and the session."""

from typing import Optional


class HalfwayError(Exception):
    """Base class for all Halfway errors"""


class GeocodeFailed(HalfwayError):
    """An address did not resolve to a coordinate"""

    def __init__(self, address: str, reason: Optional[str] = None):
        self.address = address
        self.reason = reason
        message = f"Could not geocode address: {address}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class SearchBackendUnavailable(HalfwayError):
    """A single place-search query failed"""

    def __init__(self, query: str, reason: Optional[str] = None):
        self.query = query
        self.reason = reason
        super().__init__(f"Place search failed for '{query}': {reason or 'unknown error'}")


class NoResultsFound(HalfwayError):
    """No usable places even after widening the search radius"""

    def __init__(self, radius_m: float):
        self.radius_m = radius_m
        super().__init__(
            f"No places found within {radius_m / 1000:.1f} km of the midpoint. "
            "Try expanding the search radius or selecting a different category."
        )


class DirectionsUnavailable(HalfwayError):
    """A directions request failed or found no route"""


class StaleResult(HalfwayError):
    """A response that belongs to a superseded search generation"""

    def __init__(self, generation: int, current: int):
        self.generation = generation
        self.current = current
        super().__init__(f"Discarding result from generation {generation} (current {current})")
