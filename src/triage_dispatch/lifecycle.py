from __future__ import annotations

import logging
import threading
import weakref
from dataclasses import replace
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from triage_dispatch.config import AVERAGE_SPEED_KMH
from triage_dispatch.errors import ActiveCaseExists, CaseNotFound, InvalidTransition
from triage_dispatch.eta import EtaEstimator
from triage_dispatch.models import (
    ACCEPTED,
    CANCELLED,
    COMPLETED,
    IN_PROGRESS,
    PENDING,
    Assignment,
    Case,
    Coordinates,
    LocationUpdate,
    TimelineEntry,
    TriageResult,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

ACCEPT = "accept"
PICKUP = "pickup"
ARRIVE = "arrive"
CANCEL = "cancel"

EVENTS = (ACCEPT, PICKUP, ARRIVE, CANCEL)

TRANSITIONS = MappingProxyType(
    {
        (PENDING, ACCEPT): ACCEPTED,
        (ACCEPTED, PICKUP): IN_PROGRESS,
        (IN_PROGRESS, ARRIVE): COMPLETED,
        (PENDING, CANCEL): CANCELLED,
        (ACCEPTED, CANCEL): CANCELLED,
        (IN_PROGRESS, CANCEL): CANCELLED,
    }
)

AUTO_CANCEL_REASON = "Auto-cancelled: No response after 1 hour"

Resolver = Callable[[], Tuple[TriageResult, Optional[Assignment]]]


class CaseStore(Protocol):
    def get(self, case_id: str) -> Optional[Case]:
        ...

    def save(self, case: Case) -> None:
        ...

    def active_for(self, requester_id: str) -> Optional[Case]:
        ...

    def all(self) -> List[Case]:
        ...


class InMemoryCaseStore:
    def __init__(self) -> None:
        self._cases: Dict[str, Case] = {}
        self._by_requester: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def get(self, case_id: str) -> Optional[Case]:
        return self._cases.get(case_id)

    def save(self, case: Case) -> None:
        with self._lock:
            if case.case_id not in self._cases:
                self._by_requester.setdefault(case.requester_id, []).append(case.case_id)
            self._cases[case.case_id] = case

    def active_for(self, requester_id: str) -> Optional[Case]:
        with self._lock:
            case_ids = list(self._by_requester.get(requester_id, ()))
        for case_id in reversed(case_ids):
            case = self._cases[case_id]
            if not case.is_terminal:
                return case
        return None

    def all(self) -> List[Case]:
        with self._lock:
            return list(self._cases.values())


class KeyedLocks:
    """One lock per key, created on first use.

    Entries are weak: a key's lock lives only while some caller holds it, so
    the registry does not grow with every case ever opened.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def __call__(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


class CaseLifecycleManager:
    """Owns case records: creation, status transitions and location folding.

    Mutations of one case are serialized by a per-case lock, and the
    one-active-case rule by a per-requester lock. Stored snapshots are
    immutable, so reads never block on writers.
    """

    def __init__(
        self,
        store: Optional[CaseStore] = None,
        estimator: Optional[EtaEstimator] = None,
        avg_speed_kmh: float = AVERAGE_SPEED_KMH,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self.store = store if store is not None else InMemoryCaseStore()
        self.estimator = estimator or EtaEstimator()
        self.avg_speed_kmh = avg_speed_kmh
        self.clock = clock
        self.id_factory = id_factory or (lambda: uuid4().hex)
        self._case_locks = KeyedLocks()
        self._requester_locks = KeyedLocks()
        self._terminal_listeners: List[Callable[[Case], None]] = []

    def add_terminal_listener(self, listener: Callable[[Case], None]) -> None:
        self._terminal_listeners.append(listener)

    def get(self, case_id: str) -> Case:
        case = self.store.get(case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    def active_case_for(self, requester_id: str) -> Optional[Case]:
        return self.store.active_for(requester_id)

    def open_case(
        self,
        requester_id: str,
        location: Coordinates,
        resolve: Resolver,
        note: Optional[str] = None,
    ) -> Case:
        """Create a pending case; ``resolve`` runs only once the requester is known to be free."""
        with self._requester_locks(requester_id):
            active = self.store.active_for(requester_id)
            if active is not None:
                raise ActiveCaseExists(requester_id, active.case_id)

            triage, assignment = resolve()
            now = self.clock()
            if assignment is not None and assignment.degraded:
                note = f"{note}; degraded dispatch" if note else "degraded dispatch"
            case = Case(
                case_id=self.id_factory(),
                requester_id=requester_id,
                triage=triage,
                location=location,
                status=PENDING,
                timeline=(TimelineEntry(PENDING, now, note),),
                created_at=now,
                assignment=assignment,
            )
            self.store.save(case)

        logger.info("Opened case %s for %s (%s/%s)", case.case_id, requester_id, triage.severity, triage.category)
        return case

    def transition(self, case_id: str, event: str, note: Optional[str] = None) -> Case:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        with self._case_locks(case_id):
            case = self._transition_locked(self.get(case_id), event, note)
        self._notify_if_terminal(case)
        return case

    def accept(self, case_id: str) -> Case:
        return self.transition(case_id, ACCEPT)

    def pickup(self, case_id: str) -> Case:
        return self.transition(case_id, PICKUP)

    def arrive(self, case_id: str) -> Case:
        return self.transition(case_id, ARRIVE)

    def cancel(self, case_id: str, reason: str) -> Case:
        reason = (reason or "").strip()
        if not reason:
            raise ValueError("A cancellation reason is required")
        return self.transition(case_id, CANCEL, reason)

    def add_note(self, case_id: str, note: str, author: Optional[str] = None) -> Case:
        """Append a timeline entry under the current status; the status itself is unchanged."""
        note = (note or "").strip()
        if not note:
            raise ValueError("A note cannot be empty")
        if author:
            note = f"{author}: {note}"
        with self._case_locks(case_id):
            case = self.get(case_id)
            updated = replace(case, timeline=case.timeline + (TimelineEntry(case.status, self.clock(), note),))
            self.store.save(updated)
        logger.info("Note added to case %s", case_id)
        return updated

    def list_cases(
        self,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Case], int]:
        """Newest first, filtered by status and severity; returns one page and the total match count."""
        if page < 1 or limit < 1:
            raise ValueError("page and limit must be positive")
        matches = [
            case
            for case in self.store.all()
            if (status is None or case.status == status) and (severity is None or case.triage.severity == severity)
        ]
        matches.sort(key=lambda case: case.created_at, reverse=True)
        start = (page - 1) * limit
        return matches[start : start + limit], len(matches)

    def apply_location_update(self, update: LocationUpdate) -> Case:
        """Fold a unit position into the case; status and timeline are untouched."""
        with self._case_locks(update.case_id):
            case = self.get(update.case_id)
            if case.is_terminal or case.assignment is None:
                logger.debug("Ignoring location update for case %s (%s)", case.case_id, case.status)
                return case
            recorded_at = as_utc(update.recorded_at)
            if case.last_location_at is not None and recorded_at < as_utc(case.last_location_at):
                logger.debug("Ignoring stale location update for case %s", case.case_id)
                return case

            target = case.location
            if case.status == IN_PROGRESS and case.assignment.facility is not None:
                target = case.assignment.facility.location
            estimate = self.estimator.estimate(update.location, target, self.avg_speed_kmh)

            updated = replace(
                case,
                assignment=replace(
                    case.assignment,
                    unit_location=update.location,
                    distance_km=estimate.distance_km,
                    eta_minutes=estimate.eta_minutes,
                ),
                last_location_at=recorded_at,
            )
            self.store.save(updated)
        return updated

    def expire_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> List[Case]:
        """Cancel pending cases that nobody accepted within ``max_age``."""
        now = now or self.clock()
        cutoff = now - max_age
        expired = []
        for candidate in self.store.all():
            if candidate.status != PENDING or candidate.created_at > cutoff:
                continue
            with self._case_locks(candidate.case_id):
                case = self.get(candidate.case_id)
                if case.status != PENDING:
                    continue
                case = self._transition_locked(case, CANCEL, AUTO_CANCEL_REASON)
            expired.append(case)
            self._notify_if_terminal(case)

        if expired:
            logger.info("Auto-cancelled %d stale pending case(s)", len(expired))
        return expired

    def _transition_locked(self, case: Case, event: str, note: Optional[str]) -> Case:
        target = TRANSITIONS.get((case.status, event))
        if target is None:
            raise InvalidTransition(case.case_id, case.status, event)

        now = self.clock()
        changes = {
            "status": target,
            "timeline": case.timeline + (TimelineEntry(target, now, note),),
        }
        if target in (COMPLETED, CANCELLED):
            changes["terminal_at"] = now
        if target == CANCELLED:
            changes["cancellation_reason"] = note

        updated = replace(case, **changes)
        self.store.save(updated)
        logger.info("Case %s: %s -> %s", case.case_id, case.status, target)
        return updated

    def _notify_if_terminal(self, case: Case) -> None:
        if not case.is_terminal:
            return
        for listener in self._terminal_listeners:
            listener(case)
