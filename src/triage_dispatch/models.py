from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

CRITICAL = "critical"
HIGH = "high"
MEDIUM = "medium"
LOW = "low"

# Ordered from least to most severe.
SEVERITY_TIERS = (LOW, MEDIUM, HIGH, CRITICAL)

CATEGORIES = (
    "cardiac",
    "respiratory",
    "neurological",
    "bleeding",
    "poisoning",
    "allergic",
    "burn",
    "fracture",
    "trauma",
    "general",
)

URGENCY_LEVELS = ("immediate", "urgent", "moderate")

BASIC = "Basic"
ADVANCED = "Advanced"
CRITICAL_CARE = "CriticalCare"
SPECIALIZED = "Specialized"

UNIT_CLASS_NAMES = (BASIC, ADVANCED, CRITICAL_CARE, SPECIALIZED)

PENDING = "pending"
ACCEPTED = "accepted"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

ACTIVE_STATUSES = frozenset({PENDING, ACCEPTED, IN_PROGRESS})
TERMINAL_STATUSES = frozenset({COMPLETED, CANCELLED})
CASE_STATUSES = (PENDING, ACCEPTED, IN_PROGRESS, COMPLETED, CANCELLED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class PatientContext:
    age: Optional[int] = None
    known_conditions: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SymptomInput:
    description: str
    quick_symptoms: Tuple[str, ...] = ()
    urgency: Optional[str] = None
    patient: Optional[PatientContext] = None


@dataclass(frozen=True)
class DetectedSymptom:
    keyword: str
    severity: str
    category: str


@dataclass(frozen=True)
class LinguisticInsights:
    symptom_entities: Tuple[str, ...] = ()
    body_parts: Tuple[str, ...] = ()
    negated_terms: Tuple[str, ...] = ()
    onset: Optional[str] = None
    duration: Optional[str] = None
    frequency: Optional[str] = None
    severity_multiplier: float = 1.0
    distress_level: str = "low"


@dataclass(frozen=True)
class TriageResult:
    severity: str
    confidence: int
    detected_symptoms: Tuple[DetectedSymptom, ...]
    category: str
    insights: Optional[LinguisticInsights] = None
    priority: int = 3
    recommendations: Tuple[str, ...] = ()
    source: str = "keyword"


@dataclass(frozen=True)
class CrewComposition:
    emts: int = 0
    paramedics: int = 0
    nurses: int = 0
    physicians: int = 0

    def describe(self) -> Tuple[str, ...]:
        labels = (
            (self.emts, "Emergency Medical Technician"),
            (self.paramedics, "Paramedic"),
            (self.nurses, "Nurse"),
            (self.physicians, "Physician"),
        )
        return tuple(f"{count} {label}{'s' if count > 1 else ''}" for count, label in labels if count)


@dataclass(frozen=True)
class UnitClassSpec:
    name: str
    description: str
    equipment: Tuple[str, ...]
    crew: CrewComposition


@dataclass(frozen=True)
class CandidateUnit:
    unit_id: str
    unit_class: str
    location: Coordinates
    vehicle_number: str = ""


@dataclass(frozen=True)
class Facility:
    facility_id: str
    name: str
    location: Coordinates


@dataclass(frozen=True)
class Assignment:
    unit_id: str
    unit_class: str
    crew: CrewComposition
    equipment: Tuple[str, ...]
    unit_location: Coordinates
    facility: Optional[Facility]
    distance_km: float
    eta_minutes: int
    degraded: bool = False
    vehicle_number: str = ""
    assigned_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TimelineEntry:
    status: str
    at: datetime
    note: Optional[str] = None


@dataclass(frozen=True)
class Case:
    case_id: str
    requester_id: str
    triage: TriageResult
    location: Coordinates
    status: str
    timeline: Tuple[TimelineEntry, ...]
    created_at: datetime
    assignment: Optional[Assignment] = None
    terminal_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    last_location_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class LocationUpdate:
    case_id: str
    location: Coordinates
    recorded_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class TrackingEvent:
    case_id: str
    status: str
    unit_location: Coordinates
    distance_km: float
    eta_minutes: int
