"""
API routes — thin HTTP layer that delegates to the CopilotService.

Routes:
  GET  /health                                → API health check
  POST /api/jd                                → Set the job description
  POST /api/sessions/{session_id}/fragments   → Ingest one transcript fragment
  GET  /api/sessions/{session_id}/state       → Requirement + group state
  GET  /api/sessions/{session_id}/report      → JSON report
  GET  /api/sessions/{session_id}/report.txt  → Plain-text report
  POST /api/sessions/{session_id}/flush       → Forced flush (export / teardown)
  WS   /api/sessions/ws/{session_id}          → Live events
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from jd_coach.models.schemas import CamelModel, TranscriptFragment, utc_now_iso
from jd_coach.orchestration.copilot import CopilotService, JobDescriptionTooLong
from jd_coach.utils.identifiers import InvalidSessionId, sanitize_session_id

logger = logging.getLogger(__name__)

# ── Routers ──────────────────────────────────────────────
health_router = APIRouter()
jd_router = APIRouter()
session_router = APIRouter()


# ── Request / response schemas ───────────────────────────
class JobDescriptionRequest(BaseModel):
    text: str


class FragmentRequest(CamelModel):
    text: str
    source: str = "microphone"
    chunk_id: str = ""
    timestamp: Optional[str] = None
    latency_ms: Optional[float] = None


class FragmentResponse(CamelModel):
    session_id: str
    touched_requirement_ids: list[str]


def _copilot(request: Request) -> CopilotService:
    return request.app.state.copilot


def _session_id(raw: str) -> str:
    try:
        return sanitize_session_id(raw)
    except InvalidSessionId as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# ── Health ───────────────────────────────────────────────

@health_router.get("/health")
async def health_check(request: Request):
    copilot = _copilot(request)
    return {
        "status": "ok",
        "requirements": len(copilot.requirements),
        "planActive": copilot.plan is not None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Job description ──────────────────────────────────────

@jd_router.post("/jd")
async def set_job_description(body: JobDescriptionRequest, request: Request) -> dict[str, Any]:
    try:
        result = await _copilot(request).set_job_description(body.text)
    except JobDescriptionTooLong as exc:
        raise HTTPException(status_code=413, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    plan = result["plan"]
    return {
        "origin": result["origin"],
        "requirements": result["requirements"],
        "plan": plan,
        "groupCount": len(plan["groups"]) if plan else 0,
    }


# ── Sessions ─────────────────────────────────────────────

@session_router.post("/{session_id}/fragments")
async def ingest_fragment(session_id: str, body: FragmentRequest, request: Request) -> dict[str, Any]:
    sid = _session_id(session_id)
    fragment = TranscriptFragment(
        chunk_id=body.chunk_id,
        session_id=sid,
        source=body.source,
        text=body.text,
        timestamp=body.timestamp or utc_now_iso(),
        latency_ms=body.latency_ms,
    )
    touched = await _copilot(request).ingest(fragment)
    return FragmentResponse(session_id=sid, touched_requirement_ids=touched).to_payload()


@session_router.get("/{session_id}/state")
async def get_state(session_id: str, request: Request) -> dict[str, Any]:
    return await _copilot(request).get_state(_session_id(session_id))


@session_router.get("/{session_id}/report")
async def get_report(session_id: str, request: Request) -> dict[str, Any]:
    report = await _copilot(request).report(_session_id(session_id))
    return report.to_payload()


@session_router.get("/{session_id}/report.txt", response_class=PlainTextResponse)
async def get_report_text(session_id: str, request: Request):
    text = await _copilot(request).render_report(_session_id(session_id))
    return PlainTextResponse(text)


@session_router.post("/{session_id}/flush")
async def flush_session(session_id: str, request: Request) -> dict[str, Any]:
    sid = _session_id(session_id)
    copilot = _copilot(request)
    await copilot.flush(sid)
    report = await copilot.report(sid)
    return {"sessionId": sid, "flushed": True, "overallFit": report.overall_fit}


@session_router.websocket("/ws/{session_id}")
async def session_events(websocket: WebSocket, session_id: str):
    try:
        sid = sanitize_session_id(session_id)
    except InvalidSessionId:
        await websocket.close(code=1008)
        return

    broadcaster = websocket.app.state.broadcaster
    await broadcaster.connect(sid, websocket)
    try:
        while True:
            # Client messages are ignored; the socket is server → client only
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(sid, websocket)
