"""
Distance and filter engine for church and event listings.

Everything here is a pure transformation of lists that have already been
loaded from the database; nothing in this module touches the ORM.
"""

import math
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from django.utils import timezone

from .exceptions import FilterValidationError

EARTH_RADIUS_MILES = 3958.8

DISTANCE_CHOICES = (5, 10, 25, 50)
DEFAULT_MAX_DISTANCE = 25

DATE_RANGE_UPCOMING = 'upcoming'
DATE_RANGE_THIS_WEEK = 'thisWeek'
DATE_RANGE_THIS_MONTH = 'thisMonth'
DATE_RANGES = {
    DATE_RANGE_UPCOMING: None,
    DATE_RANGE_THIS_WEEK: timedelta(days=7),
    DATE_RANGE_THIS_MONTH: timedelta(days=30),
}

Location = Tuple[float, float]


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth
    using the Haversine formula.

    Args:
        lat1, lng1: Latitude and longitude of first point, in degrees
        lat2, lng2: Latitude and longitude of second point, in degrees

    Returns:
        Distance in miles
    """
    lat1, lng1, lat2, lng2 = map(math.radians, [
        float(lat1), float(lng1), float(lat2), float(lng2)
    ])

    dlat = lat2 - lat1
    dlng = lng2 - lng1
    a = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2)
    # Rounding can push a a hair past 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return c * EARTH_RADIUS_MILES


def _active_keys(flags: Optional[Dict[str, bool]]) -> List[str]:
    return [key for key, checked in (flags or {}).items() if checked]


def _split_param(query_params, name: str) -> List[str]:
    """Accept both ?x=a&x=b and ?x=a,b."""
    values = []
    for raw in query_params.getlist(name):
        values.extend(part.strip() for part in raw.split(',') if part.strip())
    return values


def parse_user_location(query_params) -> Optional[Location]:
    """
    Read an optional lat/lng pair from request parameters.
    Returns None when either half is missing.
    """
    lat = query_params.get('lat')
    lng = query_params.get('lng')
    if lat in (None, '') or lng in (None, ''):
        return None

    try:
        lat = float(lat)
        lng = float(lng)
    except (ValueError, TypeError):
        raise FilterValidationError('Coordinates must be valid numbers.')

    if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
        raise FilterValidationError('Coordinates are out of range.')
    return (lat, lng)


class ChurchFilters:
    """Search box text plus the sidebar filters for the church list."""

    def __init__(self, query='', location='', max_distance=DEFAULT_MAX_DISTANCE, services=None):
        if max_distance not in DISTANCE_CHOICES:
            raise FilterValidationError(
                f"Distance must be one of {', '.join(str(d) for d in DISTANCE_CHOICES)} miles."
            )
        self.query = query or ''
        self.location = location or ''
        self.max_distance = max_distance
        self.services = dict(services or {})

    @classmethod
    def from_query_params(cls, query_params):
        distance = query_params.get('distance') or DEFAULT_MAX_DISTANCE
        try:
            distance = int(distance)
        except (ValueError, TypeError):
            raise FilterValidationError('Distance must be a whole number of miles.')

        return cls(
            query=query_params.get('q', '').strip(),
            location=query_params.get('location', '').strip(),
            max_distance=distance,
            services={name: True for name in _split_param(query_params, 'services')},
        )

    @property
    def active_services(self) -> List[str]:
        return _active_keys(self.services)


class EventFilters:
    """Sidebar filters for the events calendar."""

    def __init__(self, location='', types=None, date_range=DATE_RANGE_UPCOMING):
        if date_range not in DATE_RANGES:
            raise FilterValidationError(
                f"Date range must be one of {', '.join(DATE_RANGES)}."
            )
        self.location = location or ''
        self.types = dict(types or {})
        self.date_range = date_range

    @classmethod
    def from_query_params(cls, query_params):
        return cls(
            location=query_params.get('location', '').strip(),
            types={name: True for name in _split_param(query_params, 'types')},
            date_range=query_params.get('date_range') or DATE_RANGE_UPCOMING,
        )

    @property
    def active_types(self) -> List[str]:
        return _active_keys(self.types)


def rank_churches(churches: Iterable, user_location: Optional[Location] = None) -> List:
    """
    Attach a `distance` to every church and order the list by it.

    Without a user location every church gets distance None and the input
    order is kept. Churches lacking a distance never move relative to each
    other or to their neighbours.
    """
    churches = list(churches)
    for church in churches:
        church.distance = (
            church.distance_to_point(*user_location) if user_location is not None else None
        )

    # Insertion sort: a comparison is only made when both sides have a
    # distance, otherwise the pair is treated as equal. sorted() needs a
    # total order which this relation is not.
    ranked = []
    for church in churches:
        position = len(ranked)
        while position > 0:
            previous = ranked[position - 1]
            if (church.distance is not None and previous.distance is not None
                    and previous.distance > church.distance):
                position -= 1
            else:
                break
        ranked.insert(position, church)
    return ranked


def church_matches(church, filters: ChurchFilters, user_location: Optional[Location] = None) -> bool:
    query = filters.query.lower()
    matches_query = (
        query == '' or
        query in church.name.lower() or
        query in church.city.lower() or
        query in (church.zip_code or '').lower()
    )

    location = filters.location.lower()
    matches_location = (
        location == '' or
        location in church.city.lower() or
        location in (church.zip_code or '').lower()
    )

    distance = getattr(church, 'distance', None)
    matches_distance = (
        user_location is None or
        distance is None or
        distance <= filters.max_distance
    )

    active_services = filters.active_services
    matches_services = (
        not active_services or
        any(service in (church.services or []) for service in active_services)
    )

    return matches_query and matches_location and matches_distance and matches_services


def filter_churches(churches: Iterable, filters: ChurchFilters,
                    user_location: Optional[Location] = None) -> List:
    return [church for church in churches if church_matches(church, filters, user_location)]


def search_churches(churches: Iterable, filters: ChurchFilters,
                    user_location: Optional[Location] = None) -> List:
    """Rank by distance, then apply the filters."""
    return filter_churches(rank_churches(churches, user_location), filters, user_location)


def event_matches(event, filters: EventFilters, now) -> bool:
    location = filters.location.lower()
    matches_location = location == '' or location in (event.location or '').lower()

    active_types = filters.active_types
    matches_type = not active_types or event.type in active_types

    window = DATE_RANGES[filters.date_range]
    matches_date = True
    if window is not None:
        matches_date = now <= event.date <= now + window

    return matches_location and matches_type and matches_date


def filter_events(events: Iterable, filters: EventFilters, now=None) -> List:
    # One clock reading per pass so every event sees the same window
    now = now or timezone.now()
    return [event for event in events if event_matches(event, filters, now)]
