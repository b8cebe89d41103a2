"""Checkpoint persistence: the store protocol and a JSON-file implementation."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol, runtime_checkable

from agentruntime.models.checkpoint import RunCheckpoint

logger = logging.getLogger(__name__)


@runtime_checkable
class CheckpointStore(Protocol):
    """Where run checkpoints are saved and loaded, keyed by session id."""

    async def save(self, checkpoint: RunCheckpoint) -> None:
        ...

    async def load(self, session_id: str) -> RunCheckpoint | None:
        ...

    async def list_recent(self, limit: int = 20) -> list[RunCheckpoint]:
        ...


class JsonFileStore:
    """One JSON document per session under ``directory``."""

    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory).expanduser()

    def path_for(self, session_id: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in session_id)
        return self._dir / f"{safe}.json"

    async def save(self, checkpoint: RunCheckpoint) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(checkpoint.session_id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(checkpoint.to_doc(), indent=2))
        os.replace(tmp, path)
        logger.debug("Checkpoint saved to %s", path)

    async def load(self, session_id: str) -> RunCheckpoint | None:
        path = self.path_for(session_id)
        if not path.exists():
            return None
        try:
            doc = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable checkpoint %s: %s", path, e)
            return None
        return RunCheckpoint.from_doc(doc)

    async def list_recent(self, limit: int = 20) -> list[RunCheckpoint]:
        if not self._dir.is_dir():
            return []
        paths = sorted(self._dir.glob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
        checkpoints = []
        for path in paths[:limit]:
            try:
                checkpoints.append(RunCheckpoint.from_doc(json.loads(path.read_text())))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Skipping unreadable checkpoint %s: %s", path, e)
        return checkpoints
