"""
Logging setup for the copilot. Call setup_logging() once at startup.

Records are two lines, tagged by component and session:

    10:42:07 │ INFO     │ jd_coach.orchestration.batch_orchestrator │ _apply_result:312
      [batch] s1: applied claude batch of 3 fragment(s) → rev 4, overallFit=71
"""

from __future__ import annotations

import io
import logging
import sys
from typing import TextIO

RECORD_FORMAT = (
    "\n%(asctime)s │ %(levelname)-8s │ %(name)s │ %(funcName)s:%(lineno)d\n"
    "  %(message)s"
)
TIME_FORMAT = "%H:%M:%S"

# Third-party loggers are held at these levels whatever the app level is
THIRD_PARTY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "anthropic": logging.WARNING,
    "groq": logging.WARNING,
    "langchain_core": logging.INFO,
    "langchain_anthropic": logging.INFO,
    "langchain_groq": logging.INFO,
    "pymongo": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
}


class _CopilotHandler(logging.StreamHandler):
    """Marker type so repeated setup calls do not stack handlers."""


def _utf8_stdout() -> TextIO:
    # Windows consoles cannot encode the │ separators
    buffer = getattr(sys.stdout, "buffer", None)
    if buffer is None:
        return sys.stdout
    return io.TextIOWrapper(buffer, encoding="utf-8", errors="replace", line_buffering=True)


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    root = logging.getLogger()
    numeric_level = logging.getLevelName(str(level).upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    root.setLevel(numeric_level)

    if any(isinstance(h, _CopilotHandler) for h in root.handlers):
        return

    handler = _CopilotHandler(stream or _utf8_stdout())
    handler.setFormatter(logging.Formatter(fmt=RECORD_FORMAT, datefmt=TIME_FORMAT))
    root.addHandler(handler)

    for name, third_party_level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(third_party_level)
