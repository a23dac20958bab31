from .logger import setup_logging
from .hashing import sha256_hash, fragment_id
from .identifiers import InvalidSessionId, sanitize_session_id

__all__ = [
    "setup_logging",
    "sha256_hash",
    "fragment_id",
    "InvalidSessionId",
    "sanitize_session_id",
]
