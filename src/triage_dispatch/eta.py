from __future__ import annotations

import math
from dataclasses import dataclass

from triage_dispatch.config import ETA_MAX_MINUTES, ETA_MIN_MINUTES
from triage_dispatch.models import Coordinates

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class EtaEstimate:
    distance_km: float
    eta_minutes: int
    raw_eta_minutes: int


def haversine_km(origin: Coordinates, target: Coordinates) -> float:
    lat1, lon1 = math.radians(origin.latitude), math.radians(origin.longitude)
    lat2, lon2 = math.radians(target.latitude), math.radians(target.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # Rounding can push a slightly above 1 for antipodal points.
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


class EtaEstimator:
    """Straight-line distance and a clamped travel-time estimate."""

    def __init__(self, min_minutes: int = ETA_MIN_MINUTES, max_minutes: int = ETA_MAX_MINUTES) -> None:
        if min_minutes > max_minutes:
            raise ValueError("min_minutes must not exceed max_minutes")
        self.min_minutes = min_minutes
        self.max_minutes = max_minutes

    def estimate(self, origin: Coordinates, target: Coordinates, avg_speed_kmh: float) -> EtaEstimate:
        if avg_speed_kmh <= 0:
            raise ValueError("avg_speed_kmh must be positive")
        distance = haversine_km(origin, target)
        raw = round(distance / avg_speed_kmh * 60)
        eta = min(self.max_minutes, max(self.min_minutes, raw))
        return EtaEstimate(distance_km=round(distance, 3), eta_minutes=eta, raw_eta_minutes=raw)


def estimate(origin: Coordinates, target: Coordinates, avg_speed_kmh: float) -> EtaEstimate:
    return EtaEstimator().estimate(origin, target, avg_speed_kmh)
