import gc
import itertools
import threading
from datetime import datetime, timedelta, timezone

import pytest

from triage_dispatch.errors import ActiveCaseExists, CaseNotFound, InvalidTransition
from triage_dispatch.lifecycle import AUTO_CANCEL_REASON, EVENTS, TRANSITIONS, CaseLifecycleManager, KeyedLocks
from triage_dispatch.models import (
    CASE_STATUSES,
    Assignment,
    Coordinates,
    CrewComposition,
    Facility,
    LocationUpdate,
    TriageResult,
)

REQUESTER = Coordinates(37.7749, -122.4194)
HOSPITAL = Facility("HOSP-1", "Central", Coordinates(37.7627, -122.4581))

# Events that drive a fresh case into each status.
PATHS = {
    "pending": (),
    "accepted": ("accept",),
    "in_progress": ("accept", "pickup"),
    "completed": ("accept", "pickup", "arrive"),
    "cancelled": ("cancel",),
}


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _triage() -> TriageResult:
    return TriageResult(severity="high", confidence=70, detected_symptoms=(), category="trauma")


def _assignment(degraded: bool = False) -> Assignment:
    return Assignment(
        unit_id="ALS-1",
        unit_class="Advanced",
        crew=CrewComposition(paramedics=2, nurses=1),
        equipment=("Defibrillator",),
        unit_location=Coordinates(37.7849, -122.4294),
        facility=HOSPITAL,
        distance_km=1.418,
        eta_minutes=5,
        degraded=degraded,
    )


def _manager(clock=None) -> CaseLifecycleManager:
    counter = itertools.count(1)
    return CaseLifecycleManager(clock=clock or _Clock(), id_factory=lambda: f"case-{next(counter)}")


def _open(manager: CaseLifecycleManager, requester: str = "req-1", degraded: bool = False):
    return manager.open_case(requester, REQUESTER, lambda: (_triage(), _assignment(degraded)))


def _drive(manager: CaseLifecycleManager, status: str):
    case = _open(manager)
    for event in PATHS[status]:
        note = "driven" if event == "cancel" else None
        case = manager.transition(case.case_id, event, note)
    assert case.status == status
    return case


def test_open_case_starts_pending_with_one_timeline_entry() -> None:
    case = _open(_manager())

    assert case.status == "pending"
    assert [entry.status for entry in case.timeline] == ["pending"]
    assert case.assignment.unit_id == "ALS-1"


def test_degraded_dispatch_is_noted_in_timeline() -> None:
    case = _open(_manager(), degraded=True)

    assert case.timeline[0].note == "degraded dispatch"


@pytest.mark.parametrize("status,event", list(itertools.product(CASE_STATUSES, EVENTS)))
def test_transition_matrix(status: str, event: str) -> None:
    manager = _manager()
    case = _drive(manager, status)
    target = TRANSITIONS.get((status, event))
    note = "reason" if event == "cancel" else None

    if target is None:
        with pytest.raises(InvalidTransition) as excinfo:
            manager.transition(case.case_id, event, note)
        assert excinfo.value.status == status
        assert excinfo.value.event == event
        assert manager.get(case.case_id) == case
    else:
        updated = manager.transition(case.case_id, event, note)
        assert updated.status == target
        assert len(updated.timeline) == len(case.timeline) + 1
        assert updated.timeline[-1].status == target


def test_cancel_records_reason_once_and_is_terminal() -> None:
    manager = _manager()
    case = _open(manager)

    cancelled = manager.cancel(case.case_id, "false alarm")

    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "false alarm"
    assert len(cancelled.timeline) == 2
    assert cancelled.timeline[-1].note == "false alarm"
    assert cancelled.terminal_at is not None
    with pytest.raises(InvalidTransition):
        manager.cancel(case.case_id, "again")


def test_cancel_requires_reason_and_unknown_event_is_rejected() -> None:
    manager = _manager()
    case = _open(manager)

    with pytest.raises(ValueError):
        manager.cancel(case.case_id, "   ")
    with pytest.raises(ValueError):
        manager.transition(case.case_id, "teleport")


def test_unknown_case_raises_not_found() -> None:
    with pytest.raises(CaseNotFound):
        _manager().accept("missing")


def test_one_active_case_per_requester() -> None:
    manager = _manager()
    first = _open(manager)
    calls = []

    with pytest.raises(ActiveCaseExists) as excinfo:
        manager.open_case("req-1", REQUESTER, lambda: calls.append(1) or (_triage(), _assignment()))
    assert excinfo.value.active_case_id == first.case_id
    assert calls == []

    manager.cancel(first.case_id, "resolved by phone")
    second = _open(manager)
    assert second.case_id != first.case_id
    assert manager.active_case_for("req-1") == second


def test_concurrent_open_case_creates_exactly_one() -> None:
    manager = _manager()
    results, errors = [], []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        try:
            results.append(_open(manager))
        except ActiveCaseExists as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 1
    assert len(errors) == 7


def test_concurrent_transitions_apply_once() -> None:
    manager = _manager()
    case = _open(manager)
    outcomes = []
    barrier = threading.Barrier(6)

    def worker() -> None:
        barrier.wait()
        try:
            manager.accept(case.case_id)
            outcomes.append("ok")
        except InvalidTransition:
            outcomes.append("rejected")

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 1
    assert len(manager.get(case.case_id).timeline) == 2


def test_location_update_refreshes_eta_without_touching_status() -> None:
    clock = _Clock()
    manager = _manager(clock)
    case = _open(manager)
    update = LocationUpdate(case.case_id, Coordinates(37.90, -122.30), recorded_at=clock.now)

    updated = manager.apply_location_update(update)

    assert updated.status == "pending"
    assert updated.timeline == case.timeline
    assert updated.assignment.unit_location == Coordinates(37.90, -122.30)
    assert updated.assignment.distance_km > case.assignment.distance_km
    assert updated.assignment.eta_minutes > 5


def test_location_update_is_idempotent() -> None:
    clock = _Clock()
    manager = _manager(clock)
    case = _open(manager)
    update = LocationUpdate(case.case_id, Coordinates(37.80, -122.41), recorded_at=clock.now)

    once = manager.apply_location_update(update)
    twice = manager.apply_location_update(update)

    assert once == twice


def test_stale_location_update_is_ignored() -> None:
    clock = _Clock()
    manager = _manager(clock)
    case = _open(manager)
    newer = LocationUpdate(case.case_id, Coordinates(37.80, -122.41), recorded_at=clock.now)
    older = LocationUpdate(case.case_id, Coordinates(37.90, -122.30), recorded_at=clock.now - timedelta(seconds=30))

    manager.apply_location_update(newer)
    result = manager.apply_location_update(older)

    assert result.assignment.unit_location == Coordinates(37.80, -122.41)


def test_in_progress_eta_targets_facility() -> None:
    clock = _Clock()
    manager = _manager(clock)
    case = _drive(manager, "in_progress")

    updated = manager.apply_location_update(LocationUpdate(case.case_id, HOSPITAL.location, recorded_at=clock.now))

    assert updated.assignment.distance_km == 0
    assert updated.status == "in_progress"


def test_terminal_case_ignores_location_updates() -> None:
    manager = _manager()
    case = _drive(manager, "completed")

    result = manager.apply_location_update(LocationUpdate(case.case_id, Coordinates(0, 0)))

    assert result == case


def test_expire_stale_cancels_only_old_pending_cases() -> None:
    clock = _Clock()
    manager = _manager(clock)
    old = _open(manager, "req-old")
    accepted = _open(manager, "req-accepted")
    manager.accept(accepted.case_id)
    clock.advance(minutes=61)
    fresh = _open(manager, "req-fresh")

    expired = manager.expire_stale(timedelta(minutes=60))

    assert [case.case_id for case in expired] == [old.case_id]
    assert manager.get(old.case_id).cancellation_reason == AUTO_CANCEL_REASON
    assert manager.get(accepted.case_id).status == "accepted"
    assert manager.get(fresh.case_id).status == "pending"


def test_terminal_listener_runs_once_per_terminal_transition() -> None:
    manager = _manager()
    seen = []
    manager.add_terminal_listener(lambda case: seen.append(case.status))
    case = _drive(manager, "in_progress")

    manager.arrive(case.case_id)

    assert seen == ["completed"]


def test_naive_timestamps_are_read_as_utc() -> None:
    clock = _Clock()
    manager = _manager(clock)
    case = _open(manager)
    aware = LocationUpdate(case.case_id, Coordinates(37.80, -122.41), recorded_at=clock.now)
    naive_older = LocationUpdate(
        case.case_id, Coordinates(37.90, -122.30), recorded_at=(clock.now - timedelta(seconds=30)).replace(tzinfo=None)
    )
    naive_newer = LocationUpdate(
        case.case_id, Coordinates(37.78, -122.42), recorded_at=(clock.now + timedelta(seconds=30)).replace(tzinfo=None)
    )

    manager.apply_location_update(aware)
    stale = manager.apply_location_update(naive_older)
    fresh = manager.apply_location_update(naive_newer)

    assert stale.assignment.unit_location == Coordinates(37.80, -122.41)
    assert fresh.assignment.unit_location == Coordinates(37.78, -122.42)
    assert fresh.last_location_at == clock.now + timedelta(seconds=30)
    assert fresh.last_location_at.tzinfo is not None


def test_add_note_appends_entry_without_changing_status() -> None:
    clock = _Clock()
    manager = _manager(clock)
    case = _drive(manager, "accepted")
    clock.advance(minutes=2)

    noted = manager.add_note(case.case_id, "  gate code 4412 ", author="dispatcher-7")

    assert noted.status == "accepted"
    assert len(noted.timeline) == len(case.timeline) + 1
    assert noted.timeline[-1].status == "accepted"
    assert noted.timeline[-1].note == "dispatcher-7: gate code 4412"
    assert noted.timeline[-1].at == clock.now
    assert manager.get(case.case_id) == noted


def test_add_note_is_allowed_on_terminal_cases_and_rejects_empty_text() -> None:
    manager = _manager()
    case = _drive(manager, "completed")

    noted = manager.add_note(case.case_id, "handover signed")

    assert noted.status == "completed"
    assert noted.timeline[-1].note == "handover signed"
    with pytest.raises(ValueError):
        manager.add_note(case.case_id, "   ")
    with pytest.raises(CaseNotFound):
        manager.add_note("missing", "hello")


def test_list_cases_filters_newest_first_and_paginates() -> None:
    clock = _Clock()
    manager = _manager(clock)
    opened = []
    for requester in ("req-a", "req-b", "req-c"):
        opened.append(_open(manager, requester))
        clock.advance(minutes=1)
    manager.cancel(opened[1].case_id, "duplicate call")

    pending, total = manager.list_cases(status="pending")
    assert total == 2
    assert [case.case_id for case in pending] == [opened[2].case_id, opened[0].case_id]

    page_two, total = manager.list_cases(severity="high", page=2, limit=2)
    assert total == 3
    assert [case.case_id for case in page_two] == [opened[0].case_id]

    assert manager.list_cases(severity="critical") == ([], 0)
    with pytest.raises(ValueError):
        manager.list_cases(page=0)


def test_keyed_locks_share_held_lock_and_drop_idle_entries() -> None:
    locks = KeyedLocks()

    held = locks("case-1")
    assert locks("case-1") is held
    assert len(locks) == 1

    del held
    gc.collect()
    assert len(locks) == 0
