"""
Evaluation session — the single owner of one interview's batch-path state.

Phase machine:  IDLE → QUEUEING (timer armed) → FLUSHING (evaluation in
flight) → IDLE. Only the orchestrator mutates a session, and only from the
event loop thread.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field

from jd_coach.models.enums import BatchPhase
from jd_coach.models.schemas import TranscriptFragment
from jd_coach.models.state import SessionState


@dataclass
class EvaluationSession:
    session_id: str
    state: SessionState
    context_size: int = 20
    queue: list[TranscriptFragment] = field(default_factory=list)
    context: deque = field(init=False)
    phase: BatchPhase = BatchPhase.IDLE
    timer: asyncio.TimerHandle | None = None
    flush_task: asyncio.Task | None = None
    # group id → last follow-up question already surfaced for it
    guidance_history: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.context = deque(maxlen=self.context_size)

    def take_batch(self) -> list[TranscriptFragment]:
        """Swap the queue out so fragments arriving mid-flush start a new batch."""
        batch, self.queue = self.queue, []
        return batch

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def recent_context(self) -> list[dict]:
        return [
            {"chunkId": c.chunk_id, "source": c.source.value, "text": c.text, "timestamp": c.timestamp}
            for c in self.context
        ]
