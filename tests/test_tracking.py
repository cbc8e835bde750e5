import pytest

from triage_dispatch.errors import CaseNotFound
from triage_dispatch.lifecycle import CaseLifecycleManager
from triage_dispatch.models import (
    Assignment,
    Coordinates,
    CrewComposition,
    LocationUpdate,
    TrackingEvent,
    TriageResult,
)
from triage_dispatch.tracking import Subscription, TrackingFeed

REQUESTER = Coordinates(37.7749, -122.4194)


def _feed_with_case():
    lifecycle = CaseLifecycleManager()
    triage = TriageResult(severity="medium", confidence=60, detected_symptoms=(), category="general")
    assignment = Assignment(
        unit_id="BLS-1",
        unit_class="Basic",
        crew=CrewComposition(emts=2),
        equipment=(),
        unit_location=Coordinates(37.80, -122.45),
        facility=None,
        distance_km=3.9,
        eta_minutes=6,
    )
    case = lifecycle.open_case("req-1", REQUESTER, lambda: (triage, assignment))
    return TrackingFeed(lifecycle), lifecycle, case


def test_subscribers_receive_location_events() -> None:
    feed, _, case = _feed_with_case()
    subscription = feed.subscribe(case.case_id)

    feed.publish(LocationUpdate(case.case_id, Coordinates(37.7760, -122.4200)))
    event = subscription.get(timeout=1)

    assert event.case_id == case.case_id
    assert event.status == "pending"
    assert event.unit_location == Coordinates(37.7760, -122.4200)
    assert event.eta_minutes == 5


def test_events_are_scoped_to_their_case() -> None:
    feed, lifecycle, case = _feed_with_case()
    other = lifecycle.open_case("req-2", REQUESTER, lambda: (case.triage, case.assignment))
    subscription = feed.subscribe(other.case_id)

    feed.publish(LocationUpdate(case.case_id, Coordinates(37.78, -122.42)))

    assert subscription.get(timeout=0.05) is None


def test_unsubscribe_stops_delivery() -> None:
    feed, _, case = _feed_with_case()
    subscription = feed.subscribe(case.case_id)
    feed.unsubscribe(subscription)

    feed.publish(LocationUpdate(case.case_id, Coordinates(37.78, -122.42)))

    assert subscription.closed
    assert subscription.pending() == 0
    assert feed.subscriber_count(case.case_id) == 0


def test_terminal_case_publishes_nothing() -> None:
    feed, lifecycle, case = _feed_with_case()
    subscription = feed.subscribe(case.case_id)
    lifecycle.cancel(case.case_id, "false alarm")

    result = feed.publish(LocationUpdate(case.case_id, Coordinates(37.78, -122.42)))

    assert result.status == "cancelled"
    assert subscription.pending() == 0


def test_subscribe_to_unknown_case_fails() -> None:
    feed, _, _ = _feed_with_case()

    with pytest.raises(CaseNotFound):
        feed.subscribe("missing")


def test_full_subscription_drops_oldest_event() -> None:
    subscription = Subscription("case-1", maxsize=2)
    events = [TrackingEvent("case-1", "pending", Coordinates(0, i), float(i), 5) for i in range(3)]

    for event in events:
        subscription.push(event)

    assert subscription.get(timeout=0) == events[1]
    assert subscription.get(timeout=0) == events[2]
