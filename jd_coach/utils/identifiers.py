"""
Session identifier sanitization.

Session ids arrive from the transcription layer and end up as storage keys
(directory names, Mongo keys), so they are reduced to a safe alphabet first.
"""

from __future__ import annotations

import re

from jd_coach.utils.hashing import sha256_hash

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")
_MAX_LENGTH = 64


class InvalidSessionId(ValueError):
    """Raised when a session id cannot be turned into a storage key."""


def sanitize_session_id(raw: object) -> str:
    """
    Return a storage-safe version of *raw*.

    Characters outside ``[A-Za-z0-9_-]`` are replaced by ``_``. When the
    result differs from the input an 8-char digest suffix is appended so
    that ``"a/b"`` and ``"a_b"`` do not collide.
    """
    if raw is None:
        raise InvalidSessionId("Session id is missing")
    text = str(raw).strip()
    if not text:
        raise InvalidSessionId("Session id is empty")

    safe = _UNSAFE.sub("_", text).strip("_")
    if not safe:
        raise InvalidSessionId(f"Session id {text!r} has no usable characters")

    if safe != text or len(safe) > _MAX_LENGTH:
        suffix = sha256_hash(text)[:8]
        safe = f"{safe[:_MAX_LENGTH - 9]}-{suffix}"
    return safe
