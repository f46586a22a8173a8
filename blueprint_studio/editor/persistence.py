from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

from blueprint_studio.errors import PersistenceError
from blueprint_studio.schemas.blueprint import Blueprint
from blueprint_studio.schemas.editor import SaveState, SaveStatus, utcnow

logger = logging.getLogger(__name__)


class PersistenceBackend(Protocol):
    async def create(self, document: Blueprint, meta: dict[str, Any]) -> str: ...

    async def update(self, remote_id: str, document: Blueprint, meta: dict[str, Any]) -> str: ...


@dataclass(frozen=True)
class SaveReport:
    ok: bool
    remote_id: Optional[str] = None
    error: Optional[PersistenceError] = None
    announce: bool = False
    skipped: bool = False


class PersistencePipeline:
    """
    Debounced, serialized saves of the live document.

    `schedule()` collapses bursts into one save that reads the document at flush time, never at
    schedule time. Without a remote id, debounced saves are skipped: the record is created by the
    first explicit `flush()`, and every later save updates it. One save runs at a time.
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        *,
        read_document: Callable[[], Optional[Blueprint]],
        debounce_seconds: float = 1.5,
        remote_id: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
        on_report: Optional[Callable[[SaveReport], None]] = None,
    ) -> None:
        self._backend = backend
        self._read_document = read_document
        self.debounce_seconds = debounce_seconds
        self._remote_id = remote_id
        self._meta = dict(meta or {})
        self._on_report = on_report
        self._status = SaveStatus()
        self._lock = asyncio.Lock()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task[Optional[SaveReport]]] = set()
        self._pending_revision = 0
        self._announce = False

    @property
    def remote_id(self) -> Optional[str]:
        return self._remote_id

    @property
    def status(self) -> SaveStatus:
        return self._status.model_copy()

    @property
    def has_pending(self) -> bool:
        return self._handle is not None

    def schedule(self, *, announce: bool = False) -> None:
        self._pending_revision += 1
        self._announce = self._announce or announce
        if self._status.state != SaveState.idle:
            self._status = SaveStatus(state=SaveState.idle, lastSavedAt=self._status.lastSavedAt)
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.debounce_seconds, self._fire)

    async def flush(self) -> SaveReport:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        return await self._save(explicit=True)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("persistence.pending_cancelled", extra={"remote_id": self._remote_id})

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._save(explicit=False))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Optional[SaveReport]]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("persistence.save_crashed", exc_info=exc)

    async def _save(self, *, explicit: bool) -> SaveReport:
        async with self._lock:
            if self._remote_id is None and not explicit:
                logger.debug("persistence.autosave_skipped", extra={"reason": "no_remote_id"})
                return SaveReport(ok=True, skipped=True)
            document = self._read_document()
            if document is None:
                return SaveReport(ok=True, remote_id=self._remote_id, skipped=True)

            revision = self._pending_revision
            announce, self._announce = self._announce, False
            self._status = SaveStatus(state=SaveState.saving, lastSavedAt=self._status.lastSavedAt)
            try:
                if self._remote_id is None:
                    remote_id = await self._backend.create(document, self._meta)
                else:
                    remote_id = await self._backend.update(self._remote_id, document, self._meta)
            except PersistenceError as exc:
                logger.warning(
                    "persistence.save_failed",
                    extra={"remote_id": self._remote_id, "error_type": type(exc).__name__, "error": str(exc)},
                )
                self._status = SaveStatus(state=SaveState.error, lastSavedAt=self._status.lastSavedAt, error=str(exc))
                return self._report(SaveReport(ok=False, remote_id=self._remote_id, error=exc, announce=announce))

            created = self._remote_id is None
            self._remote_id = remote_id
            saved_at = utcnow()
            # Newer edits arrived while saving: the next scheduled save will cover them.
            state = SaveState.saved if revision == self._pending_revision else SaveState.idle
            self._status = SaveStatus(state=state, lastSavedAt=saved_at)
            logger.info(
                "persistence.saved",
                extra={"remote_id": remote_id, "created": created, "state": state.value},
            )
            return self._report(SaveReport(ok=True, remote_id=remote_id, announce=announce))

    def _report(self, report: SaveReport) -> SaveReport:
        if self._on_report is not None:
            self._on_report(report)
        return report
