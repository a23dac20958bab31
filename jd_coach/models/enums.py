from enum import Enum


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Importance(str, Enum):
    MUST_HAVE = "must-have"
    NICE_TO_HAVE = "nice-to-have"


class AudioSource(str, Enum):
    MICROPHONE = "microphone"
    SPEAKER = "speaker"


class EvidenceStatus(str, Enum):
    UNKNOWN = "unknown"
    POSSIBLE = "possible"
    LIKELY = "likely"
    CONFIRMED = "confirmed"


class Verdict(str, Enum):
    """Verdicts produced by the local reasoning paths."""
    UNKNOWN = "unknown"
    NEEDS_MORE = "needs_more"
    LIKELY = "likely"
    SATISFIED = "satisfied"
    RISK = "risk"


class VerdictSource(str, Enum):
    HEURISTIC = "heuristic"
    CLAUDE = "claude"  # the authoritative external evaluator


class BatchPhase(str, Enum):
    IDLE = "IDLE"
    QUEUEING = "QUEUEING"
    FLUSHING = "FLUSHING"


class EventName(str, Enum):
    STATE_CHANGED = "state-changed"
    UPDATE = "update"
    GUIDANCE = "guidance"
    CONFLICT = "conflict"
    JD_UPDATED = "jd-updated"


class StateKind(str, Enum):
    REASONING = "reasoning"
    EVIDENCE = "evidence"


class LogStream(str, Enum):
    EVENTS = "events"
    CONFLICTS = "conflicts"
    GUIDANCE = "guidance"
