from __future__ import annotations

import logging
from typing import Callable, Optional

from blueprint_studio.config import Settings, settings as default_settings
from blueprint_studio.editor.assets import AssetLifecycleManager, AssetStorage
from blueprint_studio.editor.persistence import PersistenceBackend
from blueprint_studio.editor.pipeline import PatcherTier, RefinementTier, ResolutionPipeline, ResolutionTier
from blueprint_studio.editor.refinement import RefinementEngine
from blueprint_studio.editor.remote import GenerationBackend, RemoteGenerationTier
from blueprint_studio.editor.session import EditingSession
from blueprint_studio.errors import SessionNotFoundError
from blueprint_studio.schemas.blueprint import Blueprint
from blueprint_studio.schemas.editor import BusinessContext
from blueprint_studio.services.generation_client import GenerationClient
from blueprint_studio.services.media_storage import MediaStorage
from blueprint_studio.services.notifications import CollectingNotifier
from blueprint_studio.services.persistence_client import PersistenceClient
from blueprint_studio.services.preview import InMemoryPreviewChannel

logger = logging.getLogger(__name__)


def _default_persistence() -> PersistenceBackend:
    return PersistenceClient()


def _default_generation() -> Optional[GenerationBackend]:
    if not default_settings.GENERATION_BASE_URL:
        logger.info("session_registry.remote_tier_disabled", extra={"reason": "GENERATION_BASE_URL unset"})
        return None
    return GenerationClient()


def _default_storage() -> Optional[AssetStorage]:
    if not default_settings.MEDIA_STORAGE_BUCKET:
        return None
    return MediaStorage()


class SessionRegistry:
    """
    Owns the live editing sessions of this process and wires their collaborators.

    Backends are created lazily through the factories, so a registry built with test doubles never
    touches the network or storage configuration.
    """

    def __init__(
        self,
        *,
        config: Optional[Settings] = None,
        persistence_factory: Callable[[], PersistenceBackend] = _default_persistence,
        generation_factory: Callable[[], Optional[GenerationBackend]] = _default_generation,
        storage_factory: Callable[[], Optional[AssetStorage]] = _default_storage,
    ) -> None:
        self.config = config or default_settings
        self._persistence_factory = persistence_factory
        self._generation_factory = generation_factory
        self._storage_factory = storage_factory
        self._persistence: Optional[PersistenceBackend] = None
        self._generation: Optional[GenerationBackend] = None
        self._storage: Optional[AssetStorage] = None
        self._backends_ready = False
        self._sessions: dict[str, EditingSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _ensure_backends(self) -> None:
        if self._backends_ready:
            return
        self._persistence = self._persistence_factory()
        self._generation = self._generation_factory()
        self._storage = self._storage_factory()
        self._backends_ready = True

    def create(
        self,
        document: Blueprint,
        *,
        context: Optional[BusinessContext] = None,
        remote_id: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> EditingSession:
        self._ensure_backends()
        context = context or BusinessContext(name=document.name)
        tiers: list[ResolutionTier] = [
            PatcherTier(),
            RefinementTier(RefinementEngine(memory_size=self.config.REFINEMENT_MEMORY_SIZE)),
        ]
        if self._generation is not None:
            tiers.append(RemoteGenerationTier(self._generation, context=context))

        namespace = "/".join(part for part in (owner, document.id or remote_id) if part) or None
        session = EditingSession(
            document,
            pipeline=ResolutionPipeline(tiers),
            persistence=self._persistence,
            assets=AssetLifecycleManager(self._storage, bucket=self.config.ASSET_PUBLIC_BUCKET, namespace=namespace),
            preview=InMemoryPreviewChannel(queue_size=self.config.PREVIEW_QUEUE_SIZE),
            notifier=CollectingNotifier(),
            history_limit=self.config.HISTORY_LIMIT,
            debounce_seconds=self.config.SAVE_DEBOUNCE_SECONDS,
            remote_id=remote_id,
            meta={"name": context.name, "niche": context.niche, "locale": context.locale},
        )
        self._sessions[session.id] = session
        logger.info(
            "session_registry.created",
            extra={"session_id": session.id, "remote_id": session.remote_id, "tiers": session.pipeline.tier_names},
        )
        return session

    def get(self, session_id: str) -> EditingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        await session.close()

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
