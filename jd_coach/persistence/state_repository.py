"""
State Repository — durable storage addressed by (session_id, kind).

Two substrates:
  - FileStateRepository: <root>/<session_id>/<kind>.json, written via a
    temp file + os.replace; append-only logs as <stream>.ndjson.
  - MongoStateRepository: one ``states`` document per (session_id, kind),
    one collection per log stream.

Both are last-writer-wins. Blocking I/O runs in a worker thread so the
event loop never stalls on disk or network.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from jd_coach.utils.identifiers import sanitize_session_id

logger = logging.getLogger(__name__)


class StateRepository(ABC):
    """Read-if-exists-else-default key/value store plus append-only logs."""

    @abstractmethod
    def _load(self, session_id: str, kind: str) -> dict[str, Any] | None: ...

    @abstractmethod
    def _save(self, session_id: str, kind: str, data: dict[str, Any]) -> None: ...

    @abstractmethod
    def _append(self, session_id: str, stream: str, record: dict[str, Any]) -> None: ...

    @abstractmethod
    def _read_log(self, session_id: str, stream: str) -> list[dict[str, Any]]: ...

    async def load(self, session_id: str, kind: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._load, sanitize_session_id(session_id), kind)

    async def save(self, session_id: str, kind: str, data: dict[str, Any]) -> None:
        await asyncio.to_thread(self._save, sanitize_session_id(session_id), kind, data)

    async def append(self, session_id: str, stream: str, record: dict[str, Any]) -> None:
        await asyncio.to_thread(self._append, sanitize_session_id(session_id), stream, record)

    async def read_log(self, session_id: str, stream: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._read_log, sanitize_session_id(session_id), stream)


class FileStateRepository(StateRepository):
    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _session_dir(self, session_id: str) -> Path:
        path = self.root / session_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _load(self, session_id: str, kind: str) -> dict[str, Any] | None:
        path = self.root / session_id / f"{kind}.json"
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _save(self, session_id: str, kind: str, data: dict[str, Any]) -> None:
        directory = self._session_dir(session_id)
        target = directory / f"{kind}.json"
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{kind}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, default=str)
                fh.write("\n")
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.debug(f"[store] Wrote {target}")

    def _append(self, session_id: str, stream: str, record: dict[str, Any]) -> None:
        path = self._session_dir(session_id) / f"{stream}.ndjson"
        with path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, default=str) + "\n")

    def _read_log(self, session_id: str, stream: str) -> list[dict[str, Any]]:
        path = self.root / session_id / f"{stream}.ndjson"
        if not path.exists():
            return []
        records: list[dict[str, Any]] = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                records.append(json.loads(line))
        return records


class MongoStateRepository(StateRepository):
    """Same contract backed by a pymongo database handle."""

    STATES = "states"

    def __init__(self, database: Any):
        self.db = database

    def _load(self, session_id: str, kind: str) -> dict[str, Any] | None:
        doc = self.db[self.STATES].find_one({"session_id": session_id, "kind": kind})
        if not doc:
            return None
        return doc.get("data")

    def _save(self, session_id: str, kind: str, data: dict[str, Any]) -> None:
        self.db[self.STATES].replace_one(
            {"session_id": session_id, "kind": kind},
            {"session_id": session_id, "kind": kind, "data": data},
            upsert=True,
        )

    def _append(self, session_id: str, stream: str, record: dict[str, Any]) -> None:
        # insert_one adds _id to the dict it is given
        self.db[stream].insert_one({"session_id": session_id, "record": dict(record)})

    def _read_log(self, session_id: str, stream: str) -> list[dict[str, Any]]:
        return [doc["record"] for doc in self.db[stream].find({"session_id": session_id})]


def build_state_repository(settings: Any) -> StateRepository:
    """Pick the substrate named by ``settings.persistence_backend``."""
    if settings.persistence_backend == "mongo":
        from jd_coach.persistence.mongo_client import MongoClient

        client = MongoClient(settings)
        client.connect()
        return MongoStateRepository(client.get_database())
    return FileStateRepository(settings.data_root)
