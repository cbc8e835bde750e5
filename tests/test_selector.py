import itertools

import pytest

from triage_dispatch.models import CATEGORIES, SEVERITY_TIERS, UNIT_CLASS_NAMES
from triage_dispatch.selector import SUPERSET_CLASSES, UNIT_CLASSES, select_unit_class, unit_class_spec


def _expected_class(severity: str, category: str) -> str:
    if severity == "critical":
        return "CriticalCare" if category in {"cardiac", "neurological"} else "Advanced"
    if severity == "high":
        return "Specialized" if category in {"burn", "poisoning", "allergic"} else "Advanced"
    if severity == "medium":
        if category in {"cardiac", "respiratory"}:
            return "Advanced"
        if category in {"burn", "poisoning"}:
            return "Specialized"
        return "Basic"
    return "Basic"


@pytest.mark.parametrize("severity,category", list(itertools.product(SEVERITY_TIERS, CATEGORIES)))
def test_every_severity_category_pair_selects_one_class(severity: str, category: str) -> None:
    unit_class = select_unit_class(severity, category)

    assert unit_class in UNIT_CLASS_NAMES
    assert unit_class == _expected_class(severity, category)


def test_unknown_inputs_are_rejected() -> None:
    with pytest.raises(ValueError):
        select_unit_class("catastrophic", "cardiac")
    with pytest.raises(ValueError):
        select_unit_class("high", "dental")
    with pytest.raises(ValueError):
        unit_class_spec("Helicopter")


def test_unit_class_specs_describe_crew() -> None:
    assert unit_class_spec("Basic").crew.describe() == ("2 Emergency Medical Technicians",)
    assert unit_class_spec("CriticalCare").crew.physicians == 1
    assert "Defibrillator" in unit_class_spec("Advanced").equipment
    assert set(UNIT_CLASSES) == set(UNIT_CLASS_NAMES)


def test_superset_classes_never_step_down() -> None:
    assert SUPERSET_CLASSES["Basic"] == ("Advanced", "CriticalCare")
    assert SUPERSET_CLASSES["CriticalCare"] == ()
    assert "Basic" not in itertools.chain.from_iterable(SUPERSET_CLASSES.values())
