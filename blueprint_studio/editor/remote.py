from __future__ import annotations

import logging
from typing import Protocol

from blueprint_studio.errors import RemoteGenerationError
from blueprint_studio.schemas.blueprint import Blueprint
from blueprint_studio.schemas.editor import BusinessContext, Failed, Resolved, TierOutcome

logger = logging.getLogger(__name__)


class GenerationBackend(Protocol):
    async def refine(self, document: Blueprint, instruction: str, context: BusinessContext) -> Blueprint: ...


class RemoteGenerationTier:
    """
    Last-resort tier: hands the whole document to the generation service.

    Success replaces the whole document; the local `id` always wins over whatever the service
    returns. Failure is reported as `Failed` and leaves the caller's document untouched.
    """

    name = "remote"

    def __init__(self, backend: GenerationBackend, *, context: BusinessContext) -> None:
        self.backend = backend
        self.context = context
        self.calls = 0

    async def resolve(self, document: Blueprint, instruction: str) -> TierOutcome:
        self.calls += 1
        try:
            refined = await self.backend.refine(document, instruction, self.context)
        except RemoteGenerationError as exc:
            logger.warning(
                "resolution.remote_failed",
                extra={"error_type": type(exc).__name__, "error": str(exc), "status_code": exc.status_code},
            )
            return Failed(tier=self.name, error=exc)
        refined.id = document.id
        return Resolved(tier=self.name, document=refined, message="Updated your site.")
