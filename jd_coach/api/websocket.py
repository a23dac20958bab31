"""
WebSocket fan-out of copilot events.

Every connected client for a session receives JSON messages like:
    { "event": "update",   "payload": { sessionId, revision, overallFit, groups } }
    { "event": "guidance", "payload": { requirementId, question, ... } }
    { "event": "conflict", "payload": { groupId, summary, ... } }
    { "event": "jd-updated", "payload": { requirements, plan, planVersion } }

Late joiners get a replay: the latest state snapshots plus the most recent
guidance prompts and conflicts of their session. A session's replay is
forgotten when its last client disconnects.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from jd_coach.models.enums import EventName

logger = logging.getLogger(__name__)

GUIDANCE_REPLAY = 20
CONFLICT_REPLAY = 30
# Sessions without a connected client beyond this count lose their replay
MAX_REPLAY_SESSIONS = 256


class SessionBroadcaster:
    def __init__(self) -> None:
        self._clients: dict[str, list[WebSocket]] = {}
        self._latest: dict[str, dict[str, dict[str, Any]]] = {}
        self._guidance: dict[str, deque] = {}
        self._conflicts: dict[str, deque] = {}
        self._recent: OrderedDict[str, None] = OrderedDict()
        self._jd: dict[str, Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def set_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    # ── Client management ────────────────────────────────

    async def connect(self, session_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._clients.setdefault(session_id, []).append(ws)
        for msg in self.history(session_id):
            try:
                await ws.send_json(msg)
            except Exception:
                break

    def disconnect(self, session_id: str, ws: WebSocket) -> None:
        clients = self._clients.get(session_id, [])
        if ws in clients:
            clients.remove(ws)
        if not clients:
            self._clients.pop(session_id, None)
            self.clear(session_id)

    def history(self, session_id: str) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self._jd is not None:
            messages.append(self._jd)
        messages.extend(self._latest.get(session_id, {}).values())
        messages.extend(self._guidance.get(session_id, ()))
        messages.extend(self._conflicts.get(session_id, ()))
        return messages

    # ── Event bus handler ────────────────────────────────

    def __call__(self, name: EventName, payload: dict[str, Any]) -> None:
        message = {
            "event": name.value,
            "payload": payload,
            "ts": datetime.now(timezone.utc).isoformat(),
        }
        session_id = payload.get("sessionId")

        if name == EventName.JD_UPDATED:
            self._jd = message
            targets = list(self._clients)
        elif not session_id:
            return
        else:
            targets = [session_id]
            self._remember(session_id)
            if name in (EventName.UPDATE, EventName.STATE_CHANGED):
                self._latest.setdefault(session_id, {})[name.value] = message
            elif name == EventName.GUIDANCE:
                self._guidance.setdefault(session_id, deque(maxlen=GUIDANCE_REPLAY)).append(message)
            elif name == EventName.CONFLICT:
                self._conflicts.setdefault(session_id, deque(maxlen=CONFLICT_REPLAY)).append(message)

        loop = self._loop
        if loop is None or loop.is_closed():
            return
        for target in targets:
            if self._clients.get(target):
                asyncio.run_coroutine_threadsafe(self._broadcast(target, message), loop)

    async def _broadcast(self, session_id: str, message: dict[str, Any]) -> None:
        dead: list[WebSocket] = []
        for ws in self._clients.get(session_id, []):
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(session_id, ws)
        if dead:
            logger.debug(f"[ws] {session_id}: dropped {len(dead)} dead client(s)")

    def _remember(self, session_id: str) -> None:
        self._recent[session_id] = None
        self._recent.move_to_end(session_id)
        overflow = len(self._recent) - MAX_REPLAY_SESSIONS
        for stale in list(self._recent)[:max(0, overflow)]:
            if not self._clients.get(stale):
                self.clear(stale)

    def clear(self, session_id: str) -> None:
        """Forget the replay history of *session_id*."""
        self._recent.pop(session_id, None)
        self._latest.pop(session_id, None)
        self._guidance.pop(session_id, None)
        self._conflicts.pop(session_id, None)
