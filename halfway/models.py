from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Set, Tuple
import uuid


DEFAULT_RADIUS_M = 1000


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def to_dict(self) -> Dict:
        return {'lat': self.lat, 'lng': self.lng}

    @classmethod
    def from_dict(cls, data: Dict) -> 'Coordinate':
        return cls(lat=float(data['lat']), lng=float(data['lng']))


class Category(Enum):
    RESTAURANT = 'Restaurant'
    CAFE = 'Cafe'
    BAR = 'Bar'
    PARK = 'Park'
    OTHER = 'Other'

    @property
    def query(self) -> str:
        """Keyword sent to the place-search backend for this category"""
        return self.value.lower()

    @property
    def synonyms(self) -> List[str]:
        """Alternative keywords tried when a search for this category alone comes back empty"""
        return list(CATEGORY_SYNONYMS.get(self, ()))

    @classmethod
    def searchable(cls) -> List['Category']:
        return [cls.RESTAURANT, cls.CAFE, cls.BAR, cls.PARK]

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional['Category']:
        """Parse a category name; None, '' and 'all' mean no filter"""
        if value is None:
            return None
        text = str(value).strip().lower()
        if text in ('', 'all'):
            return None
        for category in cls:
            if category.value.lower() == text:
                return category
        raise ValueError(f"Unknown category: {value}")


CATEGORY_SYNONYMS: Dict[Category, Tuple[str, ...]] = {
    Category.RESTAURANT: ('bistro', 'eatery', 'steakhouse', 'brasserie'),
    Category.CAFE: ('coffee shop', 'espresso bar', 'patisserie'),
    Category.BAR: ('pub', 'nightclub', 'lounge', 'wine bar', 'brewery'),
    Category.PARK: ('green space', 'playground', 'recreation area'),
}


class TravelMode(Enum):
    DRIVING = 'driving'
    WALKING = 'walking'


class TravelTimeKey(NamedTuple):
    origin_index: int
    mode: TravelMode


class SessionState(Enum):
    NO_ORIGINS = 'no_origins'
    PARTIAL_ORIGINS = 'partial_origins'
    ORIGINS_SET = 'origins_set'
    SEARCHING = 'searching'
    RESULTS = 'results'
    EMPTY = 'empty'


@dataclass(frozen=True)
class Origin:
    """A user-supplied location taking part in the midpoint"""
    name: str
    coordinate: Coordinate
    is_current_location: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def current_location(cls, coordinate: Coordinate) -> 'Origin':
        return cls(name='Current Location', coordinate=coordinate, is_current_location=True)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'name': self.name,
            'is_current_location': self.is_current_location,
            **self.coordinate.to_dict(),
        }


@dataclass(frozen=True)
class RawCandidate:
    """A place exactly as a search backend reported it"""
    id: str
    name: str
    category: str
    coordinate: Coordinate
    address: Optional[str] = None


@dataclass
class CandidatePlace:
    id: str
    name: str
    category: Category
    raw_category: str
    coordinate: Coordinate
    distance_m: float
    source: RawCandidate
    address: Optional[str] = None
    travel_times: Dict[TravelTimeKey, int] = field(default_factory=dict)

    def set_travel_time(self, origin_index: int, mode: TravelMode, minutes: int) -> None:
        self.travel_times[TravelTimeKey(origin_index, mode)] = minutes

    def travel_time(self, origin_index: int, mode: TravelMode) -> Optional[int]:
        """Minutes from the given origin, or None while unknown"""
        return self.travel_times.get(TravelTimeKey(origin_index, mode))

    def fastest_travel_time(self, mode: TravelMode) -> Optional[int]:
        times = [minutes for key, minutes in self.travel_times.items() if key.mode == mode]
        return min(times) if times else None

    def average_travel_time(self, mode: TravelMode) -> Optional[int]:
        times = [minutes for key, minutes in self.travel_times.items() if key.mode == mode]
        return sum(times) // len(times) if times else None

    def to_dict(self, origin_count: int = 0) -> Dict:
        travel = []
        for index in range(origin_count):
            travel.append({
                'origin_index': index,
                'driving_minutes': self.travel_time(index, TravelMode.DRIVING),
                'walking_minutes': self.travel_time(index, TravelMode.WALKING),
            })
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category.value,
            'raw_category': self.raw_category,
            'address': self.address,
            'distance_m': round(self.distance_m, 1),
            'travel_times': travel,
            'fastest': {
                'driving_minutes': self.fastest_travel_time(TravelMode.DRIVING),
                'walking_minutes': self.fastest_travel_time(TravelMode.WALKING),
            },
            **self.coordinate.to_dict(),
        }


@dataclass
class SearchParameters:
    radius_m: float = DEFAULT_RADIUS_M
    category: Optional[Category] = None  # None -> all searchable categories
    query: Optional[str] = None

    @property
    def free_text(self) -> Optional[str]:
        if self.query is None:
            return None
        text = self.query.strip()
        return text or None

    def categories(self) -> Set[Category]:
        if self.category is not None:
            return {self.category}
        return set(Category.searchable())

    def to_dict(self) -> Dict:
        return {
            'radius_m': self.radius_m,
            'category': self.category.value if self.category else 'all',
            'query': self.free_text,
        }
