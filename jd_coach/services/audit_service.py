"""
Audit Service — append-only records of applied evaluations, conflicts and
guidance prompts. Records are written once and never mutated.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from jd_coach.models.enums import LogStream
from jd_coach.models.schemas import ConflictRecord, GuidancePrompt, TranscriptFragment
from jd_coach.persistence.state_repository import StateRepository

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, repository: StateRepository):
        self.repository = repository

    async def record_evaluation(
        self,
        session_id: str,
        source: str,
        groups: list[dict[str, Any]],
        batch: list[TranscriptFragment],
    ) -> dict[str, Any]:
        entry = {
            "at": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "groups": groups,
            "batch": [chunk.to_payload() for chunk in batch],
        }
        await self._append(session_id, LogStream.EVENTS, entry)
        return entry

    async def record_conflict(self, record: ConflictRecord) -> None:
        await self._append(record.session_id, LogStream.CONFLICTS, record.to_payload())

    async def record_guidance(self, prompt: GuidancePrompt) -> None:
        await self._append(prompt.session_id, LogStream.GUIDANCE, prompt.to_payload())

    async def get_trail(self, session_id: str, stream: LogStream) -> list[dict[str, Any]]:
        return await self.repository.read_log(session_id, stream.value)

    async def _append(self, session_id: str, stream: LogStream, entry: dict[str, Any]) -> None:
        try:
            await self.repository.append(session_id, stream.value, entry)
            logger.debug(f"[AUDIT] {session_id} → {stream.value}")
        except Exception as exc:
            logger.error(f"[AUDIT] {session_id}: failed to append {stream.value}: {exc}")
