from __future__ import annotations

import asyncio
import io
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from triage_dispatch.config import CASE_DB_PATH, LOG_LEVEL
from triage_dispatch.errors import (
    ActiveCaseExists,
    CaseNotFound,
    InvalidTransition,
    PoolUnavailable,
    TriageDispatchError,
)
from triage_dispatch.models import Coordinates
from triage_dispatch.selector import DECISION_TABLE, UNIT_CLASSES
from triage_dispatch.serialization import (
    assignment_to_dict,
    case_to_dict,
    to_dict,
    tracking_event_to_dict,
    triage_to_dict,
)
from triage_dispatch.system import EmergencyResponseSystem, build_default_system

from .db import SqliteCaseStore
from .reports import build_case_report
from .schemas import (
    ButtonBody,
    CancelBody,
    DispatchBody,
    EmergencyBody,
    LocationUpdateBody,
    NoteBody,
    SymptomInputBody,
)

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Triage & Dispatch Service")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_system: EmergencyResponseSystem | None = None


def get_system() -> EmergencyResponseSystem:
    global _system
    if _system is None:
        store = SqliteCaseStore(CASE_DB_PATH) if CASE_DB_PATH else None
        _system = build_default_system(store=store)
        logger.info("Emergency system ready (store=%s)", CASE_DB_PATH or "memory")
    return _system


@app.on_event("shutdown")
def shutdown() -> None:
    if _system is not None:
        _system.close()


def get_requester_id(x_requester_id: str = Header(default="")) -> str:
    if not x_requester_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Requester-Id header")
    return x_requester_id.strip()


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__, **extra},
    )


@app.exception_handler(ActiveCaseExists)
def active_case_exists_handler(request: Request, exc: ActiveCaseExists) -> JSONResponse:
    return _error(409, exc, active_case_id=exc.active_case_id)


@app.exception_handler(InvalidTransition)
def invalid_transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
    return _error(409, exc, case_id=exc.case_id, status=exc.status, event=exc.event)


@app.exception_handler(CaseNotFound)
def case_not_found_handler(request: Request, exc: CaseNotFound) -> JSONResponse:
    return _error(404, exc, case_id=exc.case_id)


@app.exception_handler(PoolUnavailable)
def pool_unavailable_handler(request: Request, exc: PoolUnavailable) -> JSONResponse:
    logger.error("Dispatch failed: %s", exc)
    return _error(503, exc)


@app.exception_handler(TriageDispatchError)
def triage_dispatch_error_handler(request: Request, exc: TriageDispatchError) -> JSONResponse:
    return _error(500, exc)


@app.exception_handler(ValueError)
def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return _error(422, exc)


@app.post("/triage/analyze")
def analyze(body: SymptomInputBody, system: EmergencyResponseSystem = Depends(get_system)):
    return triage_to_dict(system.analyze(body.to_input()))


@app.post("/emergencies")
def create_emergency(
    body: EmergencyBody,
    requester_id: str = Depends(get_requester_id),
    system: EmergencyResponseSystem = Depends(get_system),
):
    case = system.open_emergency(requester_id, body.symptoms.to_input(), body.location.to_coordinates())
    return case_to_dict(case)


@app.post("/emergencies/emergency-button")
def emergency_button(
    body: ButtonBody,
    requester_id: str = Depends(get_requester_id),
    system: EmergencyResponseSystem = Depends(get_system),
):
    case = system.emergency_button(requester_id, body.location.to_coordinates(), body.notes)
    return case_to_dict(case)


@app.post("/emergencies/dispatch-intelligent")
def dispatch_intelligent(
    body: DispatchBody,
    requester_id: str = Depends(get_requester_id),
    system: EmergencyResponseSystem = Depends(get_system),
):
    case = system.dispatch_intelligent(requester_id, body.triage.to_triage(), body.location.to_coordinates())
    return {**assignment_to_dict(case.assignment), "case_id": case.case_id}


@app.get("/emergencies")
def list_emergencies(
    status: Optional[str] = Query(None, pattern="^(pending|accepted|in_progress|completed|cancelled)$"),
    severity: Optional[str] = Query(None, pattern="^(critical|high|medium|low)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    system: EmergencyResponseSystem = Depends(get_system),
):
    cases, total = system.list_cases(status=status, severity=severity, page=page, limit=limit)
    total_pages = (total + limit - 1) // limit
    return {
        "emergencies": [case_to_dict(case) for case in cases],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_items": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


@app.get("/emergencies/{case_id}")
def get_emergency(case_id: str, system: EmergencyResponseSystem = Depends(get_system)):
    return case_to_dict(system.get_case(case_id))


@app.post("/emergencies/{case_id}/cancel")
def cancel_emergency(case_id: str, body: CancelBody, system: EmergencyResponseSystem = Depends(get_system)):
    return case_to_dict(system.cancel(case_id, body.reason))


@app.post("/emergencies/{case_id}/notes")
def add_note(
    case_id: str,
    body: NoteBody,
    x_requester_id: str = Header(default=""),
    system: EmergencyResponseSystem = Depends(get_system),
):
    return case_to_dict(system.add_note(case_id, body.note, x_requester_id.strip() or None))


@app.post("/emergencies/{case_id}/accept")
def accept_emergency(case_id: str, system: EmergencyResponseSystem = Depends(get_system)):
    return case_to_dict(system.accept(case_id))


@app.post("/emergencies/{case_id}/pickup")
def pickup_patient(case_id: str, system: EmergencyResponseSystem = Depends(get_system)):
    return case_to_dict(system.pickup(case_id))


@app.post("/emergencies/{case_id}/hospital-arrival")
def hospital_arrival(case_id: str, system: EmergencyResponseSystem = Depends(get_system)):
    return case_to_dict(system.arrive(case_id))


@app.post("/emergencies/{case_id}/location")
def push_location(case_id: str, body: LocationUpdateBody, system: EmergencyResponseSystem = Depends(get_system)):
    case = system.update_location(case_id, Coordinates(body.latitude, body.longitude), body.recorded_at)
    return case_to_dict(case)


@app.websocket("/emergencies/{case_id}/track")
async def track_emergency(websocket: WebSocket, case_id: str, system: EmergencyResponseSystem = Depends(get_system)):
    try:
        subscription = system.tracking.subscribe(case_id)
    except CaseNotFound:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    await websocket.send_json({"type": "snapshot", "case": case_to_dict(system.get_case(case_id))})

    async def pump() -> None:
        while True:
            event = await run_in_threadpool(subscription.get, 0.5)
            if event is not None:
                await websocket.send_json({"type": "location", **tracking_event_to_dict(event)})

    pump_task = asyncio.create_task(pump())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Tracking client for case %s disconnected", case_id)
    finally:
        pump_task.cancel()
        system.tracking.unsubscribe(subscription)


@app.get("/emergencies/{case_id}/report.pdf")
def export_case_pdf(case_id: str, system: EmergencyResponseSystem = Depends(get_system)):
    content = build_case_report(system.get_case(case_id))
    return StreamingResponse(
        io.BytesIO(content),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=case_{case_id}.pdf"},
    )


@app.get("/unit-classes")
def unit_classes():
    return {
        "classes": {name: to_dict(spec) for name, spec in UNIT_CLASSES.items()},
        "decision_table": [
            {"severity": severity, "categories": sorted(categories) if categories else None, "unit_class": unit_class}
            for severity, categories, unit_class in DECISION_TABLE
        ],
    }


@app.get("/health")
def health():
    return {"status": "ok"}


def run() -> None:
    import uvicorn

    uvicorn.run("triage_dispatch.service.main:app", host="0.0.0.0", port=8000)
