"""Run checkpoint repository - MongoDB persistence."""

from __future__ import annotations

import logging

from agentruntime.models.checkpoint import RunCheckpoint

logger = logging.getLogger(__name__)


class CheckpointRepo:
    """Latest checkpoint per session, stored in MongoDB."""

    COLLECTION = "run_checkpoints"

    def __init__(self, db) -> None:
        self._col = db[self.COLLECTION]

    async def save(self, checkpoint: RunCheckpoint) -> None:
        """Upsert the session's checkpoint."""
        doc = checkpoint.to_doc()
        doc.pop("_id", None)
        await self._col.replace_one(
            {"session_id": checkpoint.session_id}, doc, upsert=True,
        )

    async def load(self, session_id: str) -> RunCheckpoint | None:
        doc = await self._col.find_one({"session_id": session_id})
        return RunCheckpoint.from_doc(doc) if doc else None

    async def list_recent(self, limit: int = 20) -> list[RunCheckpoint]:
        cursor = self._col.find().sort("created_at", -1).limit(limit)
        return [RunCheckpoint.from_doc(doc) async for doc in cursor]

    async def delete(self, session_id: str) -> bool:
        result = await self._col.delete_one({"session_id": session_id})
        return result.deleted_count > 0
