from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from pydantic import ValidationError

from blueprint_studio.editor import operations as ops
from blueprint_studio.editor.assets import AssetLifecycleManager
from blueprint_studio.editor.history import SnapshotHistory
from blueprint_studio.editor.persistence import PersistenceBackend, PersistencePipeline, SaveReport
from blueprint_studio.editor.pipeline import ResolutionPipeline
from blueprint_studio.errors import (
    EditorBusyError,
    EditorClosedError,
    InvalidEditError,
    PageNotFoundError,
    PersistenceUnauthorizedError,
    SectionNotFoundError,
)
from blueprint_studio.schemas.blueprint import SECTION_TYPES, Blueprint, Primitive, Section, Theme, same_content
from blueprint_studio.schemas.editor import Failed, Resolved, ResolutionOutcome, SaveState, SaveStatus, utcnow
from blueprint_studio.services.notifications import Notification, NotificationLevel, Notifier
from blueprint_studio.services.preview import InMemoryPreviewChannel

logger = logging.getLogger(__name__)


class EditingSession:
    """
    One user's editing session over one blueprint.

    Every mutation path works on a copy of the current document, commits it to the history,
    broadcasts it to the preview, collects orphaned assets and schedules a save. Instructions go through
    the resolution pipeline; while a remote call is outstanding further instructions are refused,
    and a result that comes back after the document moved (or after `close()`) is dropped.
    """

    def __init__(
        self,
        document: Blueprint,
        *,
        pipeline: ResolutionPipeline,
        persistence: PersistenceBackend,
        assets: AssetLifecycleManager,
        preview: InMemoryPreviewChannel,
        notifier: Notifier,
        history_limit: int = 20,
        debounce_seconds: float = 1.5,
        remote_id: Optional[str] = None,
        meta: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.pipeline = pipeline
        self.assets = assets
        self.preview = preview
        self.notifier = notifier
        self.history = SnapshotHistory(limit=history_limit)
        self.history.commit_silent(document)
        self.persistence = PersistencePipeline(
            persistence,
            read_document=self.history.snapshot,
            debounce_seconds=debounce_seconds,
            remote_id=remote_id,
            meta=meta,
            on_report=self._on_save_report,
        )
        self._generating = False
        self._closed = False

    @property
    def document(self) -> Blueprint:
        return self.history.snapshot()

    @property
    def is_generating(self) -> bool:
        return self._generating

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def save_status(self) -> SaveStatus:
        return self.persistence.status

    @property
    def remote_id(self) -> Optional[str]:
        return self.persistence.remote_id

    async def submit_instruction(self, text: str) -> ResolutionOutcome:
        self._ensure_open()
        if self._generating:
            raise EditorBusyError("An instruction is still being processed")
        text = (text or "").strip()
        if not text:
            raise InvalidEditError("Instruction text is required")

        self.preview.publish_command(text)
        working = self.history.snapshot()
        revision = self.history.revision
        self._generating = True
        try:
            result = await self.pipeline.run(working, text)
        finally:
            self._generating = False

        outcome = result.outcome
        if self._closed or self.history.revision != revision:
            logger.info(
                "session.result_discarded",
                extra={"session_id": self.id, "tier": outcome.tier, "closed": self._closed},
            )
            return ResolutionOutcome(
                status="discarded",
                instruction=text,
                tier=outcome.tier,
                message="The document changed while this instruction was running.",
                declined=result.declined,
            )

        if isinstance(outcome, Resolved):
            before = self.history.current
            if same_content(outcome.document, before):
                return ResolutionOutcome(
                    status="applied",
                    instruction=text,
                    tier=outcome.tier,
                    message="No changes needed.",
                    declined=result.declined,
                )
            current = self._commit(outcome.document, announce=True)
            self.pipeline.observe(before, text, current)
            return ResolutionOutcome(
                status="applied",
                instruction=text,
                tier=outcome.tier,
                message=outcome.message,
                ops_applied=outcome.ops_applied,
                declined=result.declined,
            )

        if isinstance(outcome, Failed):
            message = "We couldn't apply that change right now. Your site was left as it was."
            kind = "refinement_failed"
        else:
            message = "I couldn't work out how to apply that instruction."
            kind = "instruction_unresolved"
        self.notifier.notify(Notification(level=NotificationLevel.error, message=message, kind=kind))
        return ResolutionOutcome(
            status="failed",
            instruction=text,
            tier=outcome.tier,
            message=str(outcome.error) if isinstance(outcome, Failed) else (outcome.detail or message),
            declined=result.declined,
        )

    def edit_section(
        self,
        section_id: str,
        *,
        content: Optional[dict[str, Primitive]] = None,
        styles: Optional[dict[str, Primitive]] = None,
    ) -> bool:
        self._ensure_open()
        working = self.history.snapshot()
        section = self._section(working, section_id)
        section.content.update(content or {})
        section.styles.update(styles or {})
        return self._commit_if_changed(working)

    def edit_field(self, section_id: str, field: str, value: Primitive) -> bool:
        return self.edit_section(section_id, content={field: value})

    def edit_theme(self, changes: dict[str, Any]) -> bool:
        self._ensure_open()
        working = self.history.snapshot()
        # Re-validate so an unknown mode or field type surfaces as a ValidationError.
        working.theme = Theme.model_validate({**working.theme.model_dump(), **changes})
        return self._commit_if_changed(working)

    def move_section(self, section_id: str, new_index: int) -> bool:
        self._ensure_open()
        working = self.history.snapshot()
        self._section(working, section_id)
        if not ops.move_section(working, section_id, new_index):
            return False
        self._commit(working)
        return True

    def add_section(
        self,
        section_type: str,
        *,
        title: Optional[str] = None,
        page_slug: Optional[str] = None,
        index: Optional[int] = None,
    ) -> Section:
        self._ensure_open()
        if section_type not in SECTION_TYPES:
            raise InvalidEditError(f"Unknown section type '{section_type}'")
        working = self.history.snapshot()
        if page_slug is not None and page_slug not in working.pages:
            raise PageNotFoundError(page_slug)
        section = ops.add_section(working, section_type, title=title, page_slug=page_slug, index=index)
        self._commit(working)
        return section.model_copy(deep=True)

    def remove_section(self, section_id: str) -> bool:
        self._ensure_open()
        working = self.history.snapshot()
        self._section(working, section_id)
        ops.remove_section(working, section_id)
        self._commit(working)
        return True

    def replace_asset(self, section_id: str, field: str, new_url: str) -> bool:
        self._ensure_open()
        working = self.history.snapshot()
        section = self._section(working, section_id)
        # Assets live in content unless the field is only known as a style (e.g. backgroundImage).
        target = section.styles if field in section.styles and field not in section.content else section.content
        target[field] = new_url
        return self._commit_if_changed(working)

    def undo(self) -> bool:
        self._ensure_open()
        if not self.history.undo():
            return False
        self._after_history_move()
        return True

    def redo(self) -> bool:
        self._ensure_open()
        if not self.history.redo():
            return False
        self._after_history_move()
        return True

    async def save(self) -> SaveReport:
        self._ensure_open()
        return await self.persistence.flush()

    async def close(self) -> Optional[SaveReport]:
        """
        Stop the session. A save still waiting out its debounce window is flushed rather than
        dropped; only outstanding remote results are ignored. Assets that exist only in the undo
        history are collected once the final state is safely stored.
        """

        if self._closed:
            return None
        self._closed = True
        report = None
        if self.persistence.has_pending:
            report = await self.persistence.flush()
        await self.persistence.wait_idle()
        if self.save_status.state != SaveState.error and self.history.current is not None:
            self.assets.sweep([self.history.current])
            await self.assets.wait_idle()
        logger.info("session.closed", extra={"session_id": self.id, "remote_id": self.remote_id})
        return report

    def _commit_if_changed(self, working: Blueprint) -> bool:
        if same_content(working, self.history.current):
            return False
        try:
            validated = Blueprint.model_validate(working.model_dump())
        except ValidationError:
            logger.info("session.edit_rejected", extra={"session_id": self.id})
            raise
        self._commit(validated)
        return True

    def _commit(self, document: Blueprint, *, announce: bool = False) -> Blueprint:
        document.updatedAt = utcnow()
        self.history.commit(document)
        current = self.history.current
        self.assets.sweep(self.history.snapshots())
        self.preview.publish_document(current)
        self.persistence.schedule(announce=announce)
        logger.debug(
            "session.committed",
            extra={"session_id": self.id, "revision": self.history.revision, "announce": announce},
        )
        return current

    def _after_history_move(self) -> None:
        self.preview.publish_document(self.history.current)
        self.persistence.schedule()

    def _on_save_report(self, report: SaveReport) -> None:
        if report.skipped:
            return
        if not report.ok:
            if isinstance(report.error, PersistenceUnauthorizedError):
                notification = Notification(
                    level=NotificationLevel.error,
                    message="Sign in to save your changes.",
                    kind="sign_in_required",
                )
            else:
                notification = Notification(
                    level=NotificationLevel.error,
                    message="We couldn't save your changes. We'll try again on your next edit.",
                    kind="save_failed",
                )
            self.notifier.notify(notification)
        elif report.announce:
            self.notifier.notify(Notification(level=NotificationLevel.success, message="Changes saved.", kind="saved"))

    def _section(self, document: Blueprint, section_id: str) -> Section:
        located = document.find_section(section_id)
        if located is None:
            raise SectionNotFoundError(section_id)
        return located[2]

    def _ensure_open(self) -> None:
        if self._closed:
            raise EditorClosedError(f"Session {self.id} is closed")

    def __repr__(self) -> str:
        return f"EditingSession(id={self.id!r}, remote_id={self.remote_id!r}, revision={self.history.revision})"
