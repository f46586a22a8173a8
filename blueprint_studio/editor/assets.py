from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Iterable, Optional, Protocol
from urllib.parse import unquote, urlsplit

from blueprint_studio.errors import AssetDeleteFailedError
from blueprint_studio.schemas.blueprint import Blueprint

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s\"'()<>]+", re.IGNORECASE)


class AssetStorage(Protocol):
    async def delete(self, url: str) -> None: ...


def _iter_strings(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_strings(item)


def collect_asset_urls(document: Optional[Blueprint]) -> set[str]:
    """Every http(s) URL embedded in section content/styles, the navigation logo or metadata."""

    if document is None:
        return set()
    sources: list[Any] = [document.navigation.logo, document.metadata]
    for _, section in document.iter_sections():
        sources.append(section.content)
        sources.append(section.styles)
    urls: set[str] = set()
    for text in _iter_strings(sources):
        urls.update(match.rstrip(".,;") for match in _URL_RE.findall(text))
    return urls


class AssetLifecycleManager:
    """
    Best-effort cleanup of uploaded assets that a document stopped referencing.

    Only URLs inside the document's storage namespace (`/<bucket>/<namespace>/...`) are owned;
    anything else is external and never touched. A URL still referenced by any retained document is
    kept. Deletions run as tracked background tasks and failures are logged, never raised to the
    editor.
    """

    def __init__(
        self,
        storage: Optional[AssetStorage],
        *,
        bucket: str = "site-assets",
        namespace: Optional[str] = None,
    ) -> None:
        self.storage = storage
        self.bucket = bucket.strip("/")
        self.namespace = (namespace or "").strip("/")
        self._pending: set[str] = set()
        self._deleted: set[str] = set()
        self._tracked: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def deleted(self) -> set[str]:
        return set(self._deleted)

    def is_owned(self, url: Optional[str]) -> bool:
        if not url:
            return False
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            return False
        path = unquote(parts.path)
        prefix = f"/{self.bucket}/" + (f"{self.namespace}/" if self.namespace else "")
        if prefix not in path:
            return False
        return bool(path.split(prefix, 1)[1].strip("/"))

    def on_asset_replaced(
        self,
        old_url: Optional[str],
        new_url: Optional[str],
        *,
        retained: Iterable[Blueprint] = (),
    ) -> bool:
        """Delete `old_url` unless it is external, unchanged, or still referenced by a retained document."""

        if not old_url or old_url == new_url or not self.is_owned(old_url):
            return False
        if any(old_url in collect_asset_urls(document) for document in retained):
            return False
        return self._schedule_delete(old_url)

    def sweep(self, documents: Iterable[Blueprint]) -> list[str]:
        """
        Delete owned URLs seen by an earlier sweep that none of `documents` references any more.

        Callers pass every document that can still come back (the whole undo/redo history), so an
        asset is only collected once it has dropped out of history, never while undo could restore it.
        """

        referenced: set[str] = set()
        for document in documents:
            referenced.update(collect_asset_urls(document))
        owned = {url for url in referenced if self.is_owned(url)}
        orphaned = sorted(self._tracked - owned)
        self._tracked = owned
        return [url for url in orphaned if self._schedule_delete(url)]

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule_delete(self, url: str) -> bool:
        if url in self._pending or url in self._deleted:
            return False
        if self.storage is None:
            logger.info("asset_lifecycle.storage_unconfigured", extra={"url": url})
            return False
        self._pending.add(url)
        task = asyncio.get_running_loop().create_task(self._delete(url))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return True

    async def _delete(self, url: str) -> None:
        try:
            await self.storage.delete(url)
        except AssetDeleteFailedError as exc:
            logger.warning("asset_lifecycle.delete_failed", extra={"url": url, "reason": exc.reason})
            return
        finally:
            self._pending.discard(url)
        self._deleted.add(url)
        logger.info("asset_lifecycle.deleted", extra={"url": url})

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("asset_lifecycle.delete_crashed", exc_info=exc)
