from __future__ import annotations

from types import MappingProxyType

from triage_dispatch.models import (
    ADVANCED,
    BASIC,
    CATEGORIES,
    CRITICAL,
    CRITICAL_CARE,
    HIGH,
    LOW,
    MEDIUM,
    SEVERITY_TIERS,
    SPECIALIZED,
    CrewComposition,
    UnitClassSpec,
)

UNIT_CLASSES = MappingProxyType(
    {
        BASIC: UnitClassSpec(
            name="Basic Life Support",
            description="For non-life-threatening emergencies",
            equipment=(
                "Basic first aid kit",
                "Oxygen",
                "Automated External Defibrillator (AED)",
                "Splints and bandages",
                "Blood pressure monitor",
            ),
            crew=CrewComposition(emts=2),
        ),
        ADVANCED: UnitClassSpec(
            name="Advanced Life Support",
            description="For serious medical emergencies",
            equipment=(
                "Advanced cardiac monitor",
                "Defibrillator",
                "Ventilator",
                "IV medications",
                "Intubation equipment",
                "ECG machine",
            ),
            crew=CrewComposition(paramedics=2, nurses=1),
        ),
        CRITICAL_CARE: UnitClassSpec(
            name="Mobile Intensive Care Unit",
            description="For critical life-threatening conditions",
            equipment=(
                "Full ICU monitoring system",
                "Advanced ventilator",
                "Blood gas analyzer",
                "Ultrasound machine",
                "Advanced medications",
                "Surgical instruments",
            ),
            crew=CrewComposition(paramedics=2, nurses=1, physicians=1),
        ),
        SPECIALIZED: UnitClassSpec(
            name="Specialized Emergency Unit",
            description="For burns, toxicology, and specialized care",
            equipment=(
                "Burn care supplies",
                "Antidotes and medications",
                "Advanced airway management",
                "Specialized monitoring",
                "Decontamination equipment",
            ),
            crew=CrewComposition(paramedics=2, nurses=1, physicians=1),
        ),
    }
)

# (severity, categories or None for "any", unit class); first match wins.
DECISION_TABLE = (
    (CRITICAL, frozenset({"cardiac", "neurological"}), CRITICAL_CARE),
    (CRITICAL, None, ADVANCED),
    (HIGH, frozenset({"burn", "poisoning", "allergic"}), SPECIALIZED),
    (HIGH, None, ADVANCED),
    (MEDIUM, frozenset({"cardiac", "respiratory"}), ADVANCED),
    (MEDIUM, frozenset({"burn", "poisoning"}), SPECIALIZED),
    (MEDIUM, None, BASIC),
    (LOW, None, BASIC),
)

# Classes that can stand in for a class when none of it is available, nearest first.
SUPERSET_CLASSES = MappingProxyType(
    {
        BASIC: (ADVANCED, CRITICAL_CARE),
        ADVANCED: (CRITICAL_CARE,),
        SPECIALIZED: (CRITICAL_CARE,),
        CRITICAL_CARE: (),
    }
)


def select_unit_class(severity: str, category: str) -> str:
    if severity not in SEVERITY_TIERS:
        raise ValueError(f"Unknown severity: {severity}")
    if category not in CATEGORIES:
        raise ValueError(f"Unknown category: {category}")

    for row_severity, categories, unit_class in DECISION_TABLE:
        if row_severity == severity and (categories is None or category in categories):
            return unit_class
    raise ValueError(f"No unit class for {severity}/{category}")  # pragma: no cover


def unit_class_spec(unit_class: str) -> UnitClassSpec:
    try:
        return UNIT_CLASSES[unit_class]
    except KeyError:
        raise ValueError(f"Unknown unit class: {unit_class}") from None
