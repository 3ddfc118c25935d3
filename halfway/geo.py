import math
from typing import Iterable, List

from geopy.distance import geodesic

from .models import Coordinate


EARTH_RADIUS_M = 6371000.0
MIN_SLIDER_RADIUS_M = 5000.0
MAX_SLIDER_RADIUS_M = 20000.0
SPREAD_RADIUS_FACTOR = 0.7


def midpoint(coords: Iterable[Coordinate]) -> Coordinate:
    """
    Centroid of the given coordinates (arithmetic mean of lat/lng).
    Not geodesically exact, but stable at city scale.
    """
    points = list(coords)
    if not points:
        raise ValueError("midpoint requires at least one coordinate")
    lat = sum(p.lat for p in points) / len(points)
    lng = sum(p.lng for p in points) / len(points)
    return Coordinate(lat=lat, lng=lng)


def distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine great-circle distance in meters"""
    lat1, lon1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lon2 = math.radians(b.lat), math.radians(b.lng)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def max_pairwise_distance(coords: Iterable[Coordinate]) -> float:
    """Largest geodesic (WGS-84) distance in meters between any two coordinates"""
    points: List[Coordinate] = list(coords)
    longest = 0.0
    for i in range(len(points)):
        for j in range(i + 1, len(points)):
            a = (points[i].lat, points[i].lng)
            b = (points[j].lat, points[j].lng)
            longest = max(longest, geodesic(a, b).meters)
    return longest


def max_search_radius(coords: Iterable[Coordinate]) -> float:
    """Largest radius worth offering for these origins: 70% of their spread, kept within 5-20 km"""
    spread = max_pairwise_distance(coords) * SPREAD_RADIUS_FACTOR
    return min(max(spread, MIN_SLIDER_RADIUS_M), MAX_SLIDER_RADIUS_M)
