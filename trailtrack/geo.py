"""Geographic utility functions and distance accumulation."""

import math

from .config import CONFIG
from .models import Coords


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate distance between two points in km using Haversine formula"""
    R = CONFIG["earth_radius_km"]

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    a = min(a, 1.0)  # rounding can push near-antipodal inputs just above 1
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def distance_between(a: Coords, b: Coords) -> float:
    """Great-circle distance in km between two coordinate pairs"""
    return haversine_distance(a.lat, a.lng, b.lat, b.lng)


def format_distance(km: float) -> str:
    """Format a distance for display: meters below 1 km, otherwise km"""
    if km < 1:
        return f"{km * 1000:.0f} m"
    return f"{km:.2f} km"


class DistanceAccumulator:
    """Running total of great-circle distance between accepted points.

    The total only grows; ``reset()`` is the single way to lower it.
    """

    def __init__(self, total_km: float = 0.0):
        self.total_km = total_km

    def add_segment(self, prev: Coords, curr: Coords) -> float:
        """Add the prev->curr segment to the total and return its length in km"""
        distance = distance_between(prev, curr)
        self.total_km += distance
        return distance

    def reset(self, total_km: float = 0.0):
        self.total_km = total_km
