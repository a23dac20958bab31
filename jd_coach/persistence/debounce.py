"""
Debounced writer — best-effort durability with a forced-flush escape hatch.

schedule() coalesces saves per (session_id, kind): the snapshot callable is
evaluated when the timer fires, so the latest state is what gets written.
flush() cancels pending timers and awaits every outstanding write; it is
the only durability guarantee callers should rely on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from jd_coach.persistence.state_repository import StateRepository

logger = logging.getLogger(__name__)

Snapshot = Callable[[], dict[str, Any]]
_Key = tuple[str, str]


class DebouncedWriter:
    def __init__(self, repository: StateRepository, delay_seconds: float = 1.0):
        self.repository = repository
        self.delay_seconds = delay_seconds
        self._pending: dict[_Key, Snapshot] = {}
        self._timers: dict[_Key, asyncio.TimerHandle] = {}
        self._inflight: dict[_Key, asyncio.Task] = {}

    def schedule(self, session_id: str, kind: str, snapshot: Snapshot) -> None:
        key = (session_id, kind)
        self._pending[key] = snapshot
        if key in self._timers:
            return
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self.delay_seconds, self._fire, key)

    def pending(self) -> list[_Key]:
        return list(self._pending)

    async def flush(self, session_id: str | None = None) -> None:
        keys = {
            key
            for key in [*self._pending, *self._timers, *self._inflight]
            if session_id is None or key[0] == session_id
        }
        for key in keys:
            timer = self._timers.pop(key, None)
            if timer is not None:
                timer.cancel()
        for key in keys:
            await self._write(key)

    # ── Internals ────────────────────────────────────────

    def _fire(self, key: _Key) -> None:
        self._timers.pop(key, None)
        task = asyncio.get_running_loop().create_task(self._write(key))
        self._inflight[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))

    def _forget(self, key: _Key, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _write(self, key: _Key) -> None:
        previous = self._inflight.get(key)
        current = asyncio.current_task()
        if previous is not None and previous is not current and not previous.done():
            await asyncio.shield(previous)

        snapshot = self._pending.pop(key, None)
        if snapshot is None:
            return
        session_id, kind = key
        try:
            await self.repository.save(session_id, kind, snapshot())
            logger.debug(f"[store] {session_id}: persisted {kind}")
        except Exception as exc:
            # In-memory state stays authoritative; the next schedule() rewrites it
            logger.error(f"[store] {session_id}: failed to persist {kind}: {exc}")
