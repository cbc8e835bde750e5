from __future__ import annotations

import logging
import random
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from triage_dispatch.classifier import Classifier, SeverityClassifier, fallback_triage
from triage_dispatch.config import (
    AVERAGE_SPEED_KMH,
    CLASSIFIER_TIMEOUT_SECONDS,
    DEFAULT_ETA_HIGH_MINUTES,
    DEFAULT_ETA_LOW_MINUTES,
    DEFAULT_UNIT_SEED,
    MAX_FACILITY_RADIUS_KM,
    POOL_TIMEOUT_SECONDS,
    STANDBY_UNIT_CAPACITY,
)
from triage_dispatch.errors import ClassifierUnavailable, PoolUnavailable
from triage_dispatch.eta import EtaEstimator, haversine_km
from triage_dispatch.models import (
    ADVANCED,
    Assignment,
    CandidateUnit,
    Coordinates,
    Facility,
    SymptomInput,
    TriageResult,
)
from triage_dispatch.selector import SUPERSET_CLASSES, select_unit_class, unit_class_spec

logger = logging.getLogger(__name__)


class UnitPool(Protocol):
    def acquire_nearest(self, unit_classes: Sequence[str], location: Coordinates) -> Optional[CandidateUnit]:
        """Reserve and return the nearest available unit of the first class that has one."""

    def release(self, unit_id: str) -> None:
        ...


class StaticUnitPool:
    """In-process fleet view; units stay reserved until released."""

    def __init__(self, units: Iterable[CandidateUnit]) -> None:
        self.units: Dict[str, CandidateUnit] = {unit.unit_id: unit for unit in units}
        self._reserved: set = set()
        self._lock = threading.Lock()

    def acquire_nearest(self, unit_classes: Sequence[str], location: Coordinates) -> Optional[CandidateUnit]:
        with self._lock:
            for unit_class in unit_classes:
                available = [
                    unit
                    for unit in self.units.values()
                    if unit.unit_class == unit_class and unit.unit_id not in self._reserved
                ]
                if available:
                    nearest = min(available, key=lambda unit: haversine_km(location, unit.location))
                    self._reserved.add(nearest.unit_id)
                    return nearest
        return None

    def release(self, unit_id: str) -> None:
        with self._lock:
            self._reserved.discard(unit_id)

    def available_count(self, unit_class: Optional[str] = None) -> int:
        with self._lock:
            return sum(
                1
                for unit in self.units.values()
                if unit.unit_id not in self._reserved and (unit_class is None or unit.unit_class == unit_class)
            )


class FacilityDirectory:
    def __init__(self, facilities: Iterable[Facility] = (), max_radius_km: float = MAX_FACILITY_RADIUS_KM) -> None:
        self.facilities = list(facilities)
        self.max_radius_km = max_radius_km

    def nearest(self, location: Coordinates) -> Optional[Facility]:
        best = None
        best_distance = float("inf")
        for facility in self.facilities:
            distance = haversine_km(location, facility.location)
            if distance < best_distance and distance <= self.max_radius_km:
                best, best_distance = facility, distance
        return best


class DefaultUnitProvider:
    """Deterministic standby units used for degraded dispatch.

    Identities and ETAs come from a seeded ``random.Random`` so a given seed
    always yields the same sequence. ``capacity`` bounds how many standby units
    can be out at once; while that many are unreleased the provider returns ``None``.
    """

    def __init__(
        self,
        seed: int = DEFAULT_UNIT_SEED,
        eta_range: Tuple[int, int] = (DEFAULT_ETA_LOW_MINUTES, DEFAULT_ETA_HIGH_MINUTES),
        capacity: int = STANDBY_UNIT_CAPACITY,
    ) -> None:
        low, high = eta_range
        if low > high:
            raise ValueError("eta_range lower bound exceeds upper bound")
        self.eta_range = (low, high)
        self.capacity = capacity
        self._issued = 0
        self._outstanding: set = set()
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def provide(self, location: Coordinates) -> Optional[Tuple[CandidateUnit, int]]:
        with self._lock:
            if len(self._outstanding) >= self.capacity:
                return None
            self._issued += 1
            unit_id = f"STANDBY-{self._issued:03d}"
            self._outstanding.add(unit_id)
            serial = self._rng.randint(0, 999)
            eta = self._rng.randint(*self.eta_range)
            offset_lat = (self._rng.random() - 0.5) * 0.01
            offset_lng = (self._rng.random() - 0.5) * 0.01

        unit = CandidateUnit(
            unit_id=unit_id,
            unit_class=ADVANCED,
            location=Coordinates(location.latitude + offset_lat, location.longitude + offset_lng),
            vehicle_number=f"EMG-{serial:03d}",
        )
        return unit, eta

    def release(self, unit_id: str) -> None:
        with self._lock:
            self._outstanding.discard(unit_id)

    def outstanding(self) -> int:
        with self._lock:
            return len(self._outstanding)


class Dispatcher:
    """Turns a triage result into a unit assignment, degrading instead of failing."""

    def __init__(
        self,
        pool: Optional[UnitPool] = None,
        classifier: Optional[Classifier] = None,
        estimator: Optional[EtaEstimator] = None,
        facilities: Optional[FacilityDirectory] = None,
        defaults: Optional[DefaultUnitProvider] = None,
        avg_speed_kmh: float = AVERAGE_SPEED_KMH,
        classifier_timeout: float = CLASSIFIER_TIMEOUT_SECONDS,
        pool_timeout: float = POOL_TIMEOUT_SECONDS,
        max_workers: int = 8,
    ) -> None:
        self.pool = pool
        self.classifier = classifier or SeverityClassifier()
        self.estimator = estimator or EtaEstimator()
        self.facilities = facilities or FacilityDirectory()
        self.defaults = defaults or DefaultUnitProvider()
        self.avg_speed_kmh = avg_speed_kmh
        self.classifier_timeout = classifier_timeout
        self.pool_timeout = pool_timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dispatch")

    def classify(self, symptom_input: SymptomInput) -> Optional[TriageResult]:
        """Classify within the configured timeout; ``None`` when the backend is unavailable."""
        future = self._executor.submit(self.classifier.classify, symptom_input)
        try:
            return future.result(timeout=self.classifier_timeout)
        except FuturesTimeout:
            logger.warning("Classification timed out after %.1fs", self.classifier_timeout)
        except ClassifierUnavailable as exc:
            logger.warning("Classifier unavailable: %s", exc)
        return None

    def triage_and_dispatch(
        self,
        symptom_input: SymptomInput,
        requester_location: Coordinates,
    ) -> Tuple[TriageResult, Assignment]:
        triage = self.classify(symptom_input)
        if triage is None:
            return fallback_triage(symptom_input), self._degraded(requester_location, "classifier unavailable")
        return triage, self.dispatch(triage, requester_location)

    def dispatch(
        self,
        triage: Optional[TriageResult],
        requester_location: Coordinates,
        pool: Optional[UnitPool] = None,
    ) -> Assignment:
        if triage is None:
            return self._degraded(requester_location, "no triage result")

        pool = pool or self.pool
        if pool is None:
            return self._degraded(requester_location, "no unit pool configured")

        unit_class = select_unit_class(triage.severity, triage.category)
        candidates = [unit_class, *SUPERSET_CLASSES[unit_class]]
        try:
            unit = self._acquire(pool, candidates, requester_location)
        except FuturesTimeout:
            logger.warning("Unit pool lookup timed out after %.1fs", self.pool_timeout)
            return self._degraded(requester_location, "unit pool timed out")
        except PoolUnavailable as exc:
            logger.warning("Unit pool unavailable: %s", exc)
            return self._degraded(requester_location, "unit pool unavailable")

        if unit is None:
            return self._degraded(requester_location, f"no {unit_class} unit or superset available")

        if unit.unit_class != unit_class:
            logger.info("No %s unit free, assigning %s unit %s", unit_class, unit.unit_class, unit.unit_id)

        spec = unit_class_spec(unit.unit_class)
        estimate = self.estimator.estimate(unit.location, requester_location, self.avg_speed_kmh)
        assignment = Assignment(
            unit_id=unit.unit_id,
            unit_class=unit.unit_class,
            crew=spec.crew,
            equipment=spec.equipment,
            unit_location=unit.location,
            facility=self.facilities.nearest(requester_location),
            distance_km=estimate.distance_km,
            eta_minutes=estimate.eta_minutes,
            degraded=False,
            vehicle_number=unit.vehicle_number,
        )
        logger.info(
            "Dispatched %s (%s) for %s/%s, ETA %s min",
            assignment.unit_id,
            assignment.unit_class,
            triage.severity,
            triage.category,
            assignment.eta_minutes,
        )
        return assignment

    def release(self, assignment: Optional[Assignment]) -> None:
        if assignment is None:
            return
        if assignment.degraded:
            self.defaults.release(assignment.unit_id)
        elif self.pool is not None:
            self.pool.release(assignment.unit_id)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _acquire(self, pool: UnitPool, unit_classes: List[str], location: Coordinates) -> Optional[CandidateUnit]:
        future = self._executor.submit(pool.acquire_nearest, unit_classes, location)
        try:
            return future.result(timeout=self.pool_timeout)
        except FuturesTimeout:
            # The pool may still reserve a unit after the timeout; hand it back when it does.
            future.add_done_callback(lambda done: self._release_late(pool, done))
            raise

    @staticmethod
    def _release_late(pool: UnitPool, future: Future) -> None:
        if future.exception() is None and future.result() is not None:
            pool.release(future.result().unit_id)

    def _degraded(self, requester_location: Coordinates, reason: str) -> Assignment:
        provided = self.defaults.provide(requester_location)
        if provided is None:
            logger.error("Degraded dispatch impossible (%s): standby units exhausted", reason)
            raise PoolUnavailable(f"No response unit available ({reason})")

        unit, eta = provided
        spec = unit_class_spec(ADVANCED)
        logger.warning("Degraded dispatch of %s (%s)", unit.unit_id, reason)
        return Assignment(
            unit_id=unit.unit_id,
            unit_class=ADVANCED,
            crew=spec.crew,
            equipment=spec.equipment,
            unit_location=unit.location,
            facility=self.facilities.nearest(requester_location),
            distance_km=round(haversine_km(unit.location, requester_location), 3),
            eta_minutes=eta,
            degraded=True,
            vehicle_number=unit.vehicle_number,
        )
