"""Per-file lock coordinator shared by every agent session in the process.

A session that wants to mutate a file asks for the lock. If the file is
free (or already held by the same session) the lock is granted. If another
session holds it, the coordinator first tries to merge the two operations;
a merged operation is executed here on the caller's behalf. Otherwise the
request joins a FIFO queue and either returns its position right away or
waits for the lock to be handed over.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from agentruntime.infra.file_ops import (
    FileOperation,
    OperationKind,
    OperationResult,
    WriteMode,
    execute_operation,
    normalize_path,
)

logger = logging.getLogger(__name__)


class LockStatus(str, Enum):
    ACQUIRED = "acquired"
    MERGED = "merged"
    QUEUED = "queued"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class LockResult:
    status: LockStatus
    position: int = 0
    result: OperationResult | None = None

    @classmethod
    def acquired(cls) -> LockResult:
        return cls(LockStatus.ACQUIRED)

    @classmethod
    def merged(cls, result: OperationResult) -> LockResult:
        return cls(LockStatus.MERGED, result=result)

    @classmethod
    def queued(cls, position: int) -> LockResult:
        return cls(LockStatus.QUEUED, position=position)

    @classmethod
    def timeout(cls) -> LockResult:
        return cls(LockStatus.TIMEOUT)


@dataclass(frozen=True)
class LockInfo:
    holder: str
    held_seconds: float
    queue_length: int


@dataclass
class _Waiter:
    session_id: str
    operation: FileOperation
    future: asyncio.Future
    queued_at: float = field(default_factory=time.monotonic)


@dataclass
class _FileLock:
    holder: str
    operation: FileOperation
    acquired_at: float = field(default_factory=time.monotonic)
    queue: list[_Waiter] = field(default_factory=list)


@dataclass(frozen=True)
class MergeAnalysis:
    can_merge: bool
    adjusted: FileOperation | None = None
    reason: str = ""


def _text_span(content: str, text: str) -> tuple[int, int] | None:
    start = content.find(text)
    if start == -1 or not text:
        return None
    return start, start + len(text)


def analyze_merge(existing: FileOperation, incoming: FileOperation) -> MergeAnalysis:
    """Decide whether ``incoming`` can run alongside the in-flight ``existing``.

    Only same-kind operations on provably disjoint regions merge. Line
    numbers of the incoming operation are shifted to account for the
    existing one having been applied first.
    """
    if existing.requires_exclusive_lock or incoming.requires_exclusive_lock:
        return MergeAnalysis(False, reason="overwrite requires exclusive access")

    if existing.kind == OperationKind.EDIT and incoming.kind == OperationKind.EDIT:
        try:
            with open(incoming.path, encoding="utf-8") as f:
                content = f.read()
        except OSError:
            return MergeAnalysis(False, reason="file unreadable")
        first = _text_span(content, existing.old_text)
        second = _text_span(content, incoming.old_text)
        if first is None or second is None:
            return MergeAnalysis(False, reason="edit target not found")
        if first[1] <= second[0] or second[1] <= first[0]:
            return MergeAnalysis(True, incoming, "non-overlapping edits")
        return MergeAnalysis(False, reason="overlapping edits")

    if existing.kind == OperationKind.INSERT_LINES and incoming.kind == OperationKind.INSERT_LINES:
        if abs(existing.line_number - incoming.line_number) <= 1:
            return MergeAnalysis(False, reason="inserts too close")
        line = incoming.line_number
        if existing.line_number < incoming.line_number:
            line += 1
        return MergeAnalysis(
            True,
            FileOperation.insert_lines(incoming.path, line, incoming.content),
            "non-adjacent inserts",
        )

    if existing.kind == OperationKind.DELETE_LINES and incoming.kind == OperationKind.DELETE_LINES:
        if existing.end_line < incoming.start_line:
            shift = existing.end_line - existing.start_line + 1
            return MergeAnalysis(
                True,
                FileOperation.delete_lines(
                    incoming.path, incoming.start_line - shift, incoming.end_line - shift
                ),
                "disjoint deletes",
            )
        if incoming.end_line < existing.start_line:
            return MergeAnalysis(True, incoming, "disjoint deletes")
        return MergeAnalysis(False, reason="overlapping deletes")

    if existing.kind == OperationKind.WRITE and incoming.kind == OperationKind.WRITE:
        if existing.mode == WriteMode.APPEND and incoming.mode == WriteMode.APPEND:
            return MergeAnalysis(True, incoming, "sequential appends")

    return MergeAnalysis(False, reason="incompatible operations")


class FileLockCoordinator:
    """Arbitrates file mutations across concurrent sessions.

    All changes to the ownership table happen under one ``asyncio.Lock`` so
    acquire, release and merge decisions are linearizable.
    """

    def __init__(self, default_timeout: float = 30.0, enable_merging: bool = True) -> None:
        self._default_timeout = default_timeout
        self._enable_merging = enable_merging
        self._locks: dict[str, _FileLock] = {}
        self._mutex = asyncio.Lock()

    async def acquire_lock(
        self,
        operation: FileOperation,
        session_id: str,
        timeout: float | None = None,
    ) -> LockResult:
        path = normalize_path(operation.path)
        operation = operation.with_path(path)
        timeout = self._default_timeout if timeout is None else timeout

        async with self._mutex:
            lock = self._locks.get(path)
            if lock is None:
                self._locks[path] = _FileLock(holder=session_id, operation=operation)
                logger.debug("Session %s acquired lock on %s", session_id, path)
                return LockResult.acquired()

            if lock.holder == session_id:
                lock.operation = operation
                return LockResult.acquired()

            if self._enable_merging:
                analysis = analyze_merge(lock.operation, operation)
                if analysis.can_merge and analysis.adjusted is not None:
                    logger.debug(
                        "Merging %s from session %s into %s (%s)",
                        operation.kind.value, session_id, path, analysis.reason,
                    )
                    return LockResult.merged(execute_operation(analysis.adjusted))

            for position, waiter in enumerate(lock.queue, start=1):
                if waiter.session_id == session_id:
                    waiter.operation = operation
                    break
            else:
                waiter = _Waiter(
                    session_id=session_id,
                    operation=operation,
                    future=asyncio.get_running_loop().create_future(),
                )
                lock.queue.append(waiter)
                position = len(lock.queue)
            logger.debug(
                "Session %s queued for %s behind %s (position %d)",
                session_id, path, lock.holder, position,
            )

            if timeout <= 0:
                return LockResult.queued(position)

        try:
            await asyncio.wait_for(asyncio.shield(waiter.future), timeout)
        except TimeoutError:
            if waiter.future.done() and not waiter.future.cancelled():
                return LockResult.acquired()
            self._drop_waiter(path, waiter)
            logger.warning("Timed out waiting %.1fs for lock on %s", timeout, path)
            return LockResult.timeout()
        except asyncio.CancelledError:
            self._drop_waiter(path, waiter)
            raise
        if waiter.future.cancelled():
            return LockResult.timeout()
        return LockResult.acquired()

    async def release_lock(self, path: str, session_id: str) -> bool:
        """Release ``path`` if ``session_id`` holds it and hand it to the next in line."""
        path = normalize_path(path)
        async with self._mutex:
            lock = self._locks.get(path)
            if lock is None or lock.holder != session_id:
                return False
            self._transfer(path, lock)
            return True

    async def release_all_locks(self, session_id: str) -> list[str]:
        """Release every lock held by ``session_id`` and drop its queue entries."""
        released = []
        async with self._mutex:
            for path, lock in list(self._locks.items()):
                for waiter in [w for w in lock.queue if w.session_id == session_id]:
                    lock.queue.remove(waiter)
                    if not waiter.future.done():
                        waiter.future.cancel()
                if lock.holder == session_id:
                    self._transfer(path, lock)
                    released.append(path)
        if released:
            logger.debug("Released %d lock(s) for session %s", len(released), session_id)
        return released

    def _transfer(self, path: str, lock: _FileLock) -> None:
        if not lock.queue:
            del self._locks[path]
            return
        waiter = lock.queue.pop(0)
        lock.holder = waiter.session_id
        lock.operation = waiter.operation
        lock.acquired_at = time.monotonic()
        if not waiter.future.done():
            waiter.future.set_result(True)
        logger.debug("Lock on %s transferred to session %s", path, waiter.session_id)

    def _drop_waiter(self, path: str, waiter: _Waiter) -> None:
        lock = self._locks.get(path)
        if lock is not None and waiter in lock.queue:
            lock.queue.remove(waiter)

    def lock_holder(self, path: str) -> str | None:
        lock = self._locks.get(normalize_path(path))
        return lock.holder if lock else None

    def queue_position(self, session_id: str, path: str) -> int | None:
        lock = self._locks.get(normalize_path(path))
        if lock is None:
            return None
        for position, waiter in enumerate(lock.queue, start=1):
            if waiter.session_id == session_id:
                return position
        return None

    def lock_info(self, path: str) -> LockInfo | None:
        lock = self._locks.get(normalize_path(path))
        if lock is None:
            return None
        return LockInfo(
            holder=lock.holder,
            held_seconds=time.monotonic() - lock.acquired_at,
            queue_length=len(lock.queue),
        )

    def waiting_file(self, session_id: str) -> str | None:
        """Path the session is currently queued on, if any."""
        for path, lock in self._locks.items():
            if any(w.session_id == session_id for w in lock.queue):
                return path
        return None

    def held_paths(self, session_id: str) -> list[str]:
        return [path for path, lock in self._locks.items() if lock.holder == session_id]
