from __future__ import annotations


class TriageDispatchError(Exception):
    """Base class for every error raised by the triage/dispatch core."""


class ClassifierUnavailable(TriageDispatchError):
    """The classification backend could not be reached or timed out."""


class PoolUnavailable(TriageDispatchError):
    """No response unit can be produced, not even a standby one."""


class CaseNotFound(TriageDispatchError):
    def __init__(self, case_id: str) -> None:
        super().__init__(f"Case {case_id} not found")
        self.case_id = case_id


class InvalidTransition(TriageDispatchError):
    def __init__(self, case_id: str, status: str, event: str) -> None:
        super().__init__(f"Case {case_id} cannot '{event}' while {status}")
        self.case_id = case_id
        self.status = status
        self.event = event


class ActiveCaseExists(TriageDispatchError):
    def __init__(self, requester_id: str, active_case_id: str) -> None:
        super().__init__(f"Requester {requester_id} already has active case {active_case_id}")
        self.requester_id = requester_id
        self.active_case_id = active_case_id
