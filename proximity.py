"""
Nearby restaurant search.

With valid caller coordinates restaurants are ranked by great-circle
distance inside a radius; without them the top-rated restaurants are
returned instead, each tagged ``distance: None``.
"""

import math
from typing import Any, List, Optional, Tuple

from database import Database
from errors import InvalidRadius

EARTH_RADIUS_KM = 6371
DEFAULT_RADIUS_KM = 10
FALLBACK_LIMIT = 20
NEARBY_LIMIT = 50


def great_circle_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Spherical law of cosines distance between two points, in km."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta = math.radians(lng2 - lng1)
    cos_angle = math.cos(phi1) * math.cos(phi2) * math.cos(delta) + math.sin(phi1) * math.sin(phi2)
    # rounding can push identical points just past 1
    return EARTH_RADIUS_KM * math.acos(max(-1.0, min(1.0, cos_angle)))


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def parse_coordinates(lat: Any, lng: Any) -> Optional[Tuple[float, float]]:
    lat, lng = _as_number(lat), _as_number(lng)
    if lat is None or lng is None:
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return lat, lng


def parse_radius(radius_km: Any) -> float:
    if radius_km is None:
        return DEFAULT_RADIUS_KM
    radius = _as_number(radius_km)
    if radius is None or radius <= 0:
        raise InvalidRadius()
    return radius


def top_rated(db: Database, limit: int = FALLBACK_LIMIT) -> List[dict]:
    restaurants = db.get_documents("restaurant", limit=limit, sort=[("rating", -1), ("_id", 1)])
    for restaurant in restaurants:
        restaurant["distance"] = None
    return restaurants


def within_radius(db: Database, lat: float, lng: float, radius_km: float,
                  limit: int = NEARBY_LIMIT) -> List[dict]:
    candidates = db.get_documents("restaurant", {"latitude": {"$ne": None}, "longitude": {"$ne": None}})
    ranked = []
    for restaurant in candidates:
        if restaurant.get("latitude") is None or restaurant.get("longitude") is None:
            continue
        distance = great_circle_km(lat, lng, restaurant["latitude"], restaurant["longitude"])
        if distance <= radius_km:
            restaurant["distance"] = distance
            ranked.append(restaurant)
    ranked.sort(key=lambda r: r["distance"])
    return ranked[:limit]


def nearby_restaurants(db: Database, user_lat: Any = None, user_lng: Any = None,
                       radius_km: Any = None) -> List[dict]:
    coordinates = parse_coordinates(user_lat, user_lng)
    if coordinates is None:
        return top_rated(db)
    return within_radius(db, coordinates[0], coordinates[1], parse_radius(radius_km))
