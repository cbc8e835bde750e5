from __future__ import annotations

from datetime import timedelta
from typing import Iterable, List, Optional, Tuple

from triage_dispatch.classifier import (
    RECOMMENDATIONS,
    Classifier,
    RemoteClassifier,
    SeverityClassifier,
    fallback_triage,
)
from triage_dispatch.config import AVERAGE_SPEED_KMH, PENDING_TIMEOUT_MINUTES, TRIAGE_SERVICE_URL
from triage_dispatch.dispatcher import DefaultUnitProvider, Dispatcher, FacilityDirectory, StaticUnitPool
from triage_dispatch.eta import EtaEstimator
from triage_dispatch.lifecycle import CaseLifecycleManager, CaseStore
from triage_dispatch.models import (
    ADVANCED,
    BASIC,
    CRITICAL,
    CRITICAL_CARE,
    SPECIALIZED,
    Assignment,
    CandidateUnit,
    Case,
    Coordinates,
    Facility,
    LocationUpdate,
    SymptomInput,
    TriageResult,
    utcnow,
)
from triage_dispatch.tracking import TrackingFeed


class EmergencyResponseSystem:
    """Wires classification, dispatch, case lifecycle and tracking together."""

    def __init__(
        self,
        units: Iterable[CandidateUnit],
        facilities: Iterable[Facility] = (),
        classifier: Optional[Classifier] = None,
        store: Optional[CaseStore] = None,
        defaults: Optional[DefaultUnitProvider] = None,
        estimator: Optional[EtaEstimator] = None,
        avg_speed_kmh: float = AVERAGE_SPEED_KMH,
        **dispatcher_options,
    ) -> None:
        self.estimator = estimator or EtaEstimator()
        self.pool = StaticUnitPool(units)
        self.dispatcher = Dispatcher(
            pool=self.pool,
            classifier=classifier or SeverityClassifier(),
            estimator=self.estimator,
            facilities=FacilityDirectory(facilities),
            defaults=defaults,
            avg_speed_kmh=avg_speed_kmh,
            **dispatcher_options,
        )
        self.lifecycle = CaseLifecycleManager(store=store, estimator=self.estimator, avg_speed_kmh=avg_speed_kmh)
        self.lifecycle.add_terminal_listener(lambda case: self.dispatcher.release(case.assignment))
        self.tracking = TrackingFeed(self.lifecycle)

    def analyze(self, symptom_input: SymptomInput) -> TriageResult:
        return self.dispatcher.classify(symptom_input) or fallback_triage(symptom_input)

    def open_emergency(self, requester_id: str, symptom_input: SymptomInput, location: Coordinates) -> Case:
        return self.lifecycle.open_case(
            requester_id,
            location,
            lambda: self.dispatcher.triage_and_dispatch(symptom_input, location),
        )

    def emergency_button(self, requester_id: str, location: Coordinates, notes: Optional[str] = None) -> Case:
        triage = TriageResult(
            severity=CRITICAL,
            confidence=100,
            detected_symptoms=(),
            category="general",
            priority=5,
            recommendations=RECOMMENDATIONS[CRITICAL],
            source="emergency_button",
        )
        return self.lifecycle.open_case(
            requester_id,
            location,
            lambda: (triage, self.dispatcher.dispatch(triage, location)),
            note=notes or "Emergency button activated",
        )

    def dispatch_intelligent(self, requester_id: str, triage: TriageResult, location: Coordinates) -> Case:
        return self.lifecycle.open_case(
            requester_id,
            location,
            lambda: (triage, self.dispatcher.dispatch(triage, location)),
        )

    def get_case(self, case_id: str) -> Case:
        return self.lifecycle.get(case_id)

    def accept(self, case_id: str) -> Case:
        return self.lifecycle.accept(case_id)

    def pickup(self, case_id: str) -> Case:
        return self.lifecycle.pickup(case_id)

    def arrive(self, case_id: str) -> Case:
        return self.lifecycle.arrive(case_id)

    def cancel(self, case_id: str, reason: str) -> Case:
        return self.lifecycle.cancel(case_id, reason)

    def add_note(self, case_id: str, note: str, author: Optional[str] = None) -> Case:
        return self.lifecycle.add_note(case_id, note, author)

    def list_cases(
        self,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Case], int]:
        return self.lifecycle.list_cases(status=status, severity=severity, page=page, limit=limit)

    def update_location(self, case_id: str, location: Coordinates, recorded_at=None) -> Case:
        update = LocationUpdate(case_id=case_id, location=location, recorded_at=recorded_at or utcnow())
        return self.tracking.publish(update)

    def assignment_for(self, case_id: str) -> Optional[Assignment]:
        return self.lifecycle.get(case_id).assignment

    def expire_stale(self, max_age_minutes: int = PENDING_TIMEOUT_MINUTES) -> List[Case]:
        return self.lifecycle.expire_stale(timedelta(minutes=max_age_minutes))

    def close(self) -> None:
        self.dispatcher.shutdown()
        close_classifier = getattr(self.dispatcher.classifier, "close", None)
        if close_classifier is not None:
            close_classifier()


def default_units() -> List[CandidateUnit]:
    return [
        CandidateUnit("BLS-12", BASIC, Coordinates(37.7849, -122.4294), "SF-112"),
        CandidateUnit("BLS-14", BASIC, Coordinates(37.7599, -122.4148), "SF-114"),
        CandidateUnit("ALS-7", ADVANCED, Coordinates(37.7793, -122.4193), "SF-207"),
        CandidateUnit("ALS-9", ADVANCED, Coordinates(37.7952, -122.4028), "SF-209"),
        CandidateUnit("MICU-3", CRITICAL_CARE, Coordinates(37.7631, -122.4576), "SF-303"),
        CandidateUnit("SPEC-1", SPECIALIZED, Coordinates(37.7694, -122.4862), "SF-401"),
    ]


def default_facilities() -> List[Facility]:
    return [
        Facility("HOSP-001", "Central Emergency Hospital", Coordinates(37.7627, -122.4581)),
        Facility("HOSP-002", "Bayview General Hospital", Coordinates(37.7557, -122.4048)),
        Facility("HOSP-003", "Harbor Medical Center", Coordinates(37.7886, -122.4324)),
    ]


def build_default_system(store: Optional[CaseStore] = None) -> EmergencyResponseSystem:
    classifier = RemoteClassifier(TRIAGE_SERVICE_URL) if TRIAGE_SERVICE_URL else SeverityClassifier()
    return EmergencyResponseSystem(
        units=default_units(),
        facilities=default_facilities(),
        classifier=classifier,
        store=store,
    )
