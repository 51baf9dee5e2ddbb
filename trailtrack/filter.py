"""Admission gates for raw position fixes."""

import math
from dataclasses import dataclass
from typing import Optional

from .config import CONFIG
from .geo import distance_between
from .models import Coords, Fix

ACCEPTED = "accepted"
NOT_FINITE = "not_finite"
LOW_ACCURACY = "low_accuracy"
TOO_CLOSE = "too_close"


@dataclass(frozen=True)
class FilterResult:
    reason: str
    distance_km: Optional[float] = None  # distance to the last accepted point, if one exists

    @property
    def accepted(self) -> bool:
        return self.reason == ACCEPTED


class PositionFilter:
    """Decides whether a fix may affect route state.

    Holds no state between calls: the last accepted coordinates are passed
    in by the caller, so one instance can be shared or tested in isolation.
    """

    def __init__(self, max_accuracy_m: Optional[float] = None,
                 min_movement_km: Optional[float] = None):
        self.max_accuracy_m = max_accuracy_m
        self.min_movement_km = min_movement_km

    def evaluate(self, fix: Fix, last_accepted: Optional[Coords]) -> FilterResult:
        max_accuracy = self.max_accuracy_m if self.max_accuracy_m is not None else CONFIG["max_fix_accuracy"]
        min_movement = self.min_movement_km if self.min_movement_km is not None else CONFIG["min_movement_km"]

        # an unknown (infinite) accuracy is left to the accuracy gate
        if not (math.isfinite(fix.lat) and math.isfinite(fix.lng)) or math.isnan(fix.accuracy):
            return FilterResult(NOT_FINITE)

        if fix.accuracy > max_accuracy:
            return FilterResult(LOW_ACCURACY)

        if last_accepted is None:
            return FilterResult(ACCEPTED)

        distance = distance_between(last_accepted, fix.coords)
        if distance < min_movement:
            return FilterResult(TOO_CLOSE, distance)
        return FilterResult(ACCEPTED, distance)

    def accepts(self, fix: Fix, last_accepted: Optional[Coords]) -> bool:
        return self.evaluate(fix, last_accepted).accepted
