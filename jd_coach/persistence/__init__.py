"""Persistence — StateRepository substrates, MongoClient, DebouncedWriter."""

from jd_coach.persistence.state_repository import (
    StateRepository,
    FileStateRepository,
    MongoStateRepository,
    build_state_repository,
)
from jd_coach.persistence.debounce import DebouncedWriter

__all__ = [
    "StateRepository",
    "FileStateRepository",
    "MongoStateRepository",
    "build_state_repository",
    "DebouncedWriter",
]
