from __future__ import annotations

from triage_dispatch.models import Coordinates, PatientContext, SymptomInput
from triage_dispatch.system import EmergencyResponseSystem, default_facilities, default_units


def main() -> None:
    system = EmergencyResponseSystem(units=default_units(), facilities=default_facilities())

    symptoms = SymptomInput(
        description="Sudden crushing chest pain spreading to my left arm, difficulty breathing and sweating.",
        quick_symptoms=("Chest pain",),
        urgency="immediate",
        patient=PatientContext(age=67, known_conditions=("hypertension",)),
    )
    location = Coordinates(37.7749, -122.4194)

    try:
        case = system.open_emergency("demo-caller", symptoms, location)
        triage, assignment = case.triage, case.assignment

        print("=== Emergency Triage & Dispatch ===")
        print(f"Case: {case.case_id} ({case.status})")
        print(f"Severity: {triage.severity} | Category: {triage.category} | Priority: {triage.priority}/5")
        print(f"Confidence: {triage.confidence}%")
        print(f"Detected: {', '.join(s.keyword for s in triage.detected_symptoms) or 'None'}")
        print(f"\nUnit: {assignment.unit_id} ({assignment.unit_class}){' [degraded]' if assignment.degraded else ''}")
        print(f"Crew: {', '.join(assignment.crew.describe())}")
        print(f"Distance: {assignment.distance_km} km, ETA {assignment.eta_minutes} min")
        if assignment.facility is not None:
            print(f"Destination: {assignment.facility.name}")

        print("\nRecommendations:")
        for item in triage.recommendations:
            print(f" - {item}")

        case = system.cancel(case.case_id, "false alarm")
        print(f"\nCase {case.status}: {case.cancellation_reason}")
    finally:
        system.close()


if __name__ == "__main__":
    main()
