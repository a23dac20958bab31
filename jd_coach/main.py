"""
JD Fit Copilot — Main Entry Point

Replay a transcript offline against a job description (CLI):
    python -m jd_coach path/to/jd.txt path/to/transcript.txt [session-id]

Transcript lines look like ``[mic] text`` or ``[speaker] text``; untagged
lines count as microphone speech.

Run as an API server (for the desktop UI):
    python -m jd_coach --serve
    # or: uvicorn jd_coach.api:create_app --factory --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path

from jd_coach.config import get_settings
from jd_coach.models.enums import EventName
from jd_coach.models.schemas import TranscriptFragment
from jd_coach.orchestration.copilot import build_copilot
from jd_coach.services.event_bus import EventRecorder
from jd_coach.utils.logger import setup_logging

_TAGGED_LINE = re.compile(r"^\s*\[(?P<source>[A-Za-z_-]+)\]\s*(?P<text>.*)$")


def parse_transcript(text: str, session_id: str) -> list[TranscriptFragment]:
    fragments: list[TranscriptFragment] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        match = _TAGGED_LINE.match(line)
        source, body = (match.group("source"), match.group("text")) if match else ("microphone", line)
        if body.strip():
            fragments.append(TranscriptFragment(session_id=session_id, source=source, text=body.strip()))
    return fragments


def run(jd_path: str, transcript_path: str, session_id: str = "replay") -> str:
    """Replay a transcript through the copilot and return the text report."""
    settings = get_settings()
    setup_logging(settings.log_level)
    return asyncio.run(_replay(jd_path, transcript_path, session_id))


async def _replay(jd_path: str, transcript_path: str, session_id: str) -> str:
    logger = logging.getLogger(__name__)
    copilot = build_copilot(get_settings())
    recorder = EventRecorder(copilot.bus)

    logger.info("=" * 60)
    logger.info("  JD FIT COPILOT — TRANSCRIPT REPLAY")
    logger.info(f"  Session: {session_id} | Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    jd = await copilot.set_job_description(Path(jd_path).read_text(encoding="utf-8"))
    logger.info(
        f"  Requirements: {len(jd['requirements'])} ({jd['origin']}) | "
        f"Plan groups: {len(jd['plan']['groups']) if jd['plan'] else 0}"
    )

    fragments = parse_transcript(Path(transcript_path).read_text(encoding="utf-8"), session_id)
    for fragment in fragments:
        await copilot.ingest(fragment)
    await copilot.flush(session_id)

    report = await copilot.render_report(session_id)
    logger.info("-" * 60)
    logger.info(
        f"  Fragments: {len(fragments)} | Guidance prompts: {len(recorder.of(EventName.GUIDANCE))} | "
        f"Conflicts: {len(recorder.of(EventName.CONFLICT))}"
    )
    logger.info("-" * 60)
    return report


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the FastAPI server."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run("jd_coach.api:create_app", factory=True, host=host, port=port, reload=settings.debug)


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if "--serve" in args:
        serve()
        return 0
    if len(args) < 2:
        print(__doc__)
        return 2
    print(run(args[0], args[1], args[2] if len(args) > 2 else "replay"))
    return 0


if __name__ == "__main__":
    sys.exit(main())
