"""Request bodies for the emergency service."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from triage_dispatch.models import (
    Coordinates,
    DetectedSymptom,
    PatientContext,
    SymptomInput,
    TriageResult,
)


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    def to_coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)


class PatientBody(BaseModel):
    age: Optional[int] = Field(None, ge=0, le=130)
    known_conditions: List[str] = Field(default_factory=list)


class SymptomInputBody(BaseModel):
    description: str = Field("", max_length=2000, description="Free-text symptom description")
    quick_symptoms: List[str] = Field(default_factory=list, description="Tags picked from the quick symptom list")
    urgency: Optional[str] = Field(None, pattern="^(immediate|urgent|moderate)$")
    patient: Optional[PatientBody] = None

    def to_input(self) -> SymptomInput:
        patient = None
        if self.patient is not None:
            patient = PatientContext(age=self.patient.age, known_conditions=tuple(self.patient.known_conditions))
        return SymptomInput(
            description=self.description,
            quick_symptoms=tuple(self.quick_symptoms),
            urgency=self.urgency,
            patient=patient,
        )


class EmergencyBody(BaseModel):
    symptoms: SymptomInputBody
    location: Location


class ButtonBody(BaseModel):
    location: Location
    notes: Optional[str] = Field(None, max_length=500)


class DetectedSymptomBody(BaseModel):
    keyword: str
    severity: str
    category: str


class TriageBody(BaseModel):
    severity: str = Field(..., pattern="^(critical|high|medium|low)$")
    category: str
    confidence: int = Field(50, ge=0, le=100)
    detected_symptoms: List[DetectedSymptomBody] = Field(default_factory=list)
    priority: int = Field(3, ge=1, le=5)
    recommendations: List[str] = Field(default_factory=list)

    def to_triage(self) -> TriageResult:
        return TriageResult(
            severity=self.severity,
            confidence=self.confidence,
            detected_symptoms=tuple(
                DetectedSymptom(item.keyword, item.severity, item.category) for item in self.detected_symptoms
            ),
            category=self.category,
            priority=self.priority,
            recommendations=tuple(self.recommendations),
            source="client",
        )


class DispatchBody(BaseModel):
    triage: TriageBody
    location: Location


class CancelBody(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class LocationUpdateBody(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    recorded_at: Optional[datetime] = None


class NoteBody(BaseModel):
    note: str = Field(..., min_length=1, max_length=1000)
