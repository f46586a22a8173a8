from __future__ import annotations

import logging
from collections import deque
from typing import Iterator, Optional

from blueprint_studio.schemas.blueprint import Blueprint, clone_blueprint

logger = logging.getLogger(__name__)


class SnapshotHistory:
    """
    Owns the live blueprint plus bounded undo/redo stacks.

    Every document that enters the store is deep-copied, and every transition installs a distinct
    value, so no caller can mutate a past or future snapshot through a reference it kept around.
    `past` is ordered oldest -> newest; `future` is ordered next-redo first.
    """

    def __init__(self, *, limit: int = 20, initial: Optional[Blueprint] = None) -> None:
        if limit < 1:
            raise ValueError("History limit must be at least 1")
        self.limit = limit
        self._past: deque[Blueprint] = deque(maxlen=limit)
        self._future: deque[Blueprint] = deque(maxlen=limit)
        self._current: Optional[Blueprint] = clone_blueprint(initial) if initial is not None else None
        self._revision = 0

    @property
    def current(self) -> Optional[Blueprint]:
        """The installed document. Treat as read-only; use `snapshot()` to get an editable copy."""
        return self._current

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    @property
    def past_size(self) -> int:
        return len(self._past)

    @property
    def future_size(self) -> int:
        return len(self._future)

    def snapshots(self) -> Iterator[Blueprint]:
        """Every document the history can still restore: past, current and future. Read-only."""
        yield from self._past
        if self._current is not None:
            yield self._current
        yield from self._future

    def snapshot(self) -> Optional[Blueprint]:
        if self._current is None:
            return None
        return clone_blueprint(self._current)

    def commit(self, new_document: Blueprint) -> None:
        if self._current is not None:
            # deque(maxlen) drops the oldest entry on overflow.
            self._past.append(self._current)
        self._future.clear()
        self._install(new_document)

    def commit_silent(self, new_document: Blueprint) -> None:
        self._install(new_document)

    def undo(self) -> bool:
        if not self._past:
            return False
        previous = self._past.pop()
        if self._current is not None:
            self._future.appendleft(self._current)
        self._current = clone_blueprint(previous)
        self._revision += 1
        return True

    def redo(self) -> bool:
        if not self._future:
            return False
        following = self._future.popleft()
        if self._current is not None:
            self._past.append(self._current)
        self._current = clone_blueprint(following)
        self._revision += 1
        return True

    def clear(self) -> None:
        self._past.clear()
        self._future.clear()

    def _install(self, document: Blueprint) -> None:
        self._current = clone_blueprint(document)
        self._revision += 1
        logger.debug(
            "history.installed",
            extra={"revision": self._revision, "past": len(self._past), "future": len(self._future)},
        )
