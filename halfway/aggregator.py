from typing import Iterable, List, Optional, Set, Tuple

from . import geo
from .models import CandidatePlace, Category, Coordinate, RawCandidate


# Checked in order; the first rule with a matching substring wins
CATEGORY_RULES: Tuple[Tuple[Tuple[str, ...], Category], ...] = (
    (('restaurant', 'food'), Category.RESTAURANT),
    (('cafe', 'coffee'), Category.CAFE),
    (('bar', 'pub', 'nightlife'), Category.BAR),
    (('park', 'garden'), Category.PARK),
)


def categorize(raw_category: Optional[str]) -> Category:
    text = (raw_category or '').lower()
    for keywords, category in CATEGORY_RULES:
        if any(k in text for k in keywords):
            return category
    return Category.OTHER


def aggregate(raw_lists: Iterable[Iterable[RawCandidate]], midpoint: Coordinate, radius_m: float) -> List[CandidatePlace]:
    """
    Merge raw search results into the candidate list shown to the user.

    Duplicates (same backend id) collapse to their first occurrence, distance
    from the midpoint is recomputed here rather than taken from the backend,
    anything beyond ``radius_m`` is dropped (the search region is larger than
    the requested radius) and the rest is sorted nearest first.
    """
    seen: Set[str] = set()
    places: List[CandidatePlace] = []
    for raw_list in raw_lists:
        for raw in raw_list:
            if raw.id in seen:
                continue
            seen.add(raw.id)
            d = geo.distance(midpoint, raw.coordinate)
            if d > radius_m:
                continue
            places.append(CandidatePlace(
                id=raw.id,
                name=raw.name,
                category=categorize(raw.category),
                raw_category=raw.category,
                coordinate=raw.coordinate,
                distance_m=d,
                source=raw,
                address=raw.address,
            ))
    places.sort(key=lambda p: p.distance_m)
    return places


def filter_places(places: Iterable[CandidatePlace], category: Optional[Category] = None, text: Optional[str] = None) -> List[CandidatePlace]:
    """Narrow a result list by category and by a case-insensitive text match"""
    needle = (text or '').strip().lower()
    out = []
    for place in places:
        if category is not None and place.category != category:
            continue
        if needle:
            haystack = (place.name, place.category.value, place.address or '')
            if not any(needle in h.lower() for h in haystack):
                continue
        out.append(place)
    return out
