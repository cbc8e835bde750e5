"""Conversion between the core dataclasses and JSON-friendly dicts."""
from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import Any, Optional

from triage_dispatch.models import (
    Assignment,
    Case,
    Coordinates,
    CrewComposition,
    DetectedSymptom,
    Facility,
    LinguisticInsights,
    PatientContext,
    SymptomInput,
    TimelineEntry,
    TrackingEvent,
    TriageResult,
    utcnow,
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def to_dict(obj: Any) -> dict:
    return _jsonable(asdict(obj))


def coordinates_from_dict(data: dict) -> Coordinates:
    return Coordinates(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


def symptom_input_to_dict(symptom_input: SymptomInput) -> dict:
    return to_dict(symptom_input)


def symptom_input_from_dict(data: dict) -> SymptomInput:
    patient = data.get("patient")
    return SymptomInput(
        description=data.get("description", ""),
        quick_symptoms=tuple(data.get("quick_symptoms") or ()),
        urgency=data.get("urgency"),
        patient=PatientContext(
            age=patient.get("age"),
            known_conditions=tuple(patient.get("known_conditions") or ()),
        )
        if patient
        else None,
    )


def triage_to_dict(triage: TriageResult) -> dict:
    return to_dict(triage)


def triage_from_dict(data: dict) -> TriageResult:
    insights = data.get("insights")
    return TriageResult(
        severity=data["severity"],
        confidence=int(data["confidence"]),
        detected_symptoms=tuple(DetectedSymptom(**item) for item in data.get("detected_symptoms") or ()),
        category=data["category"],
        insights=LinguisticInsights(
            symptom_entities=tuple(insights.get("symptom_entities") or ()),
            body_parts=tuple(insights.get("body_parts") or ()),
            negated_terms=tuple(insights.get("negated_terms") or ()),
            onset=insights.get("onset"),
            duration=insights.get("duration"),
            frequency=insights.get("frequency"),
            severity_multiplier=float(insights.get("severity_multiplier", 1.0)),
            distress_level=insights.get("distress_level", "low"),
        )
        if insights
        else None,
        priority=int(data.get("priority", 3)),
        recommendations=tuple(data.get("recommendations") or ()),
        source=data.get("source", "keyword"),
    )


def assignment_from_dict(data: dict) -> Assignment:
    facility = data.get("facility")
    return Assignment(
        unit_id=data["unit_id"],
        unit_class=data["unit_class"],
        crew=CrewComposition(**data["crew"]),
        equipment=tuple(data["equipment"]),
        unit_location=coordinates_from_dict(data["unit_location"]),
        facility=Facility(
            facility_id=facility["facility_id"],
            name=facility["name"],
            location=coordinates_from_dict(facility["location"]),
        )
        if facility
        else None,
        distance_km=float(data["distance_km"]),
        eta_minutes=int(data["eta_minutes"]),
        degraded=bool(data.get("degraded", False)),
        vehicle_number=data.get("vehicle_number", ""),
        assigned_at=_parse_time(data.get("assigned_at")) or utcnow(),
    )


def assignment_to_dict(assignment: Assignment) -> dict:
    data = to_dict(assignment)
    data["crew_roles"] = list(assignment.crew.describe())
    return data


def case_to_dict(case: Case) -> dict:
    data = to_dict(case)
    if case.assignment is not None:
        data["assignment"] = assignment_to_dict(case.assignment)
    data["eta_minutes"] = case.assignment.eta_minutes if case.assignment else None
    data["is_terminal"] = case.is_terminal
    return data


def case_from_dict(data: dict) -> Case:
    return Case(
        case_id=data["case_id"],
        requester_id=data["requester_id"],
        triage=triage_from_dict(data["triage"]),
        location=coordinates_from_dict(data["location"]),
        status=data["status"],
        timeline=tuple(
            TimelineEntry(status=entry["status"], at=_parse_time(entry["at"]), note=entry.get("note"))
            for entry in data["timeline"]
        ),
        created_at=_parse_time(data["created_at"]),
        assignment=assignment_from_dict(data["assignment"]) if data.get("assignment") else None,
        terminal_at=_parse_time(data.get("terminal_at")),
        cancellation_reason=data.get("cancellation_reason"),
        last_location_at=_parse_time(data.get("last_location_at")),
    )


def tracking_event_to_dict(event: TrackingEvent) -> dict:
    return to_dict(event)
