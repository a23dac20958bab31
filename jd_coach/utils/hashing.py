"""
Hashing utilities for stable identifiers.
"""

from __future__ import annotations

import hashlib


def sha256_hash(content: str | bytes) -> str:
    """Return the SHA-256 hex digest of the given content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def fragment_id(session_id: str, text: str, timestamp: str = "") -> str:
    """Derive a chunk id for fragments delivered without one."""
    return "chunk-" + sha256_hash(f"{session_id}|{timestamp}|{text}")[:12]
