from __future__ import annotations

import logging
import queue
import threading
from typing import Dict, List, Optional

from triage_dispatch.lifecycle import CaseLifecycleManager
from triage_dispatch.models import Case, LocationUpdate, TrackingEvent

logger = logging.getLogger(__name__)


class Subscription:
    """A per-case queue of tracking events; the oldest event is dropped when full."""

    def __init__(self, case_id: str, maxsize: int = 100) -> None:
        self.case_id = case_id
        self._queue: "queue.Queue[TrackingEvent]" = queue.Queue(maxsize=maxsize)
        self.closed = False

    def push(self, event: TrackingEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[TrackingEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()


class TrackingFeed:
    """Folds unit location updates into cases and fans them out to subscribers."""

    def __init__(self, lifecycle: CaseLifecycleManager) -> None:
        self.lifecycle = lifecycle
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, case_id: str) -> Subscription:
        self.lifecycle.get(case_id)
        subscription = Subscription(case_id)
        with self._lock:
            self._subscriptions.setdefault(case_id, []).append(subscription)
        logger.debug("Subscribed to case %s", case_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.case_id, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.case_id, None)
        subscription.closed = True

    def subscriber_count(self, case_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(case_id, ()))

    def publish(self, update: LocationUpdate) -> Case:
        case = self.lifecycle.apply_location_update(update)
        if case.assignment is None or case.is_terminal:
            return case

        event = TrackingEvent(
            case_id=case.case_id,
            status=case.status,
            unit_location=case.assignment.unit_location,
            distance_km=case.assignment.distance_km,
            eta_minutes=case.assignment.eta_minutes,
        )
        with self._lock:
            subscribers = list(self._subscriptions.get(case.case_id, ()))
        for subscription in subscribers:
            subscription.push(event)
        return case
