from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from blueprint_studio.editor.command_patcher import CommandPatcher
from blueprint_studio.editor.refinement import RefinementEngine
from blueprint_studio.schemas.blueprint import Blueprint
from blueprint_studio.schemas.editor import Declined, DeclineReason, Failed, Resolved, TierOutcome

logger = logging.getLogger(__name__)


class ResolutionTier(Protocol):
    name: str

    async def resolve(self, document: Blueprint, instruction: str) -> TierOutcome: ...


class PatcherTier:
    name = "patcher"

    def __init__(self, patcher: Optional[CommandPatcher] = None) -> None:
        self.patcher = patcher or CommandPatcher()

    async def resolve(self, document: Blueprint, instruction: str) -> TierOutcome:
        result = self.patcher.apply(document, instruction)
        if not result.handled or result.document is None:
            return Declined(tier=self.name, reason=DeclineReason.patch_not_applicable)
        ops = result.ops_applied
        return Resolved(
            tier=self.name,
            document=result.document,
            message=f"Applied {ops} change{'s' if ops != 1 else ''}.",
            ops_applied=ops,
        )


class RefinementTier:
    name = "refinement"

    def __init__(self, engine: RefinementEngine) -> None:
        self.engine = engine

    async def resolve(self, document: Blueprint, instruction: str) -> TierOutcome:
        return self.engine.resolve(document, instruction)

    def observe(self, before: Blueprint, instruction: str, after: Blueprint) -> None:
        self.engine.observe(before, instruction, after)


@dataclass(frozen=True)
class PipelineResult:
    outcome: TierOutcome
    declined: tuple[Declined, ...] = ()


class ResolutionPipeline:
    """
    Runs an instruction through an ordered list of tiers and stops at the first non-decline.

    Tiers never raise for control flow: each returns `Resolved`, `Declined` or `Failed`. A
    `Failed` tier stops the chain. When every tier declines, the last decline is the outcome.
    """

    def __init__(self, tiers: Sequence[ResolutionTier]) -> None:
        if not tiers:
            raise ValueError("At least one resolution tier is required")
        self.tiers = list(tiers)

    @property
    def tier_names(self) -> list[str]:
        return [tier.name for tier in self.tiers]

    async def run(self, document: Blueprint, instruction: str) -> PipelineResult:
        declined: list[Declined] = []
        for tier in self.tiers:
            outcome = await tier.resolve(document, instruction)
            if isinstance(outcome, Declined):
                logger.info(
                    "resolution.tier_declined",
                    extra={"tier": tier.name, "reason": outcome.reason.value, "detail": outcome.detail},
                )
                declined.append(outcome)
                continue
            if isinstance(outcome, Failed):
                logger.warning("resolution.tier_failed", extra={"tier": tier.name, "error": str(outcome.error)})
            elif isinstance(outcome, Resolved):
                logger.info("resolution.tier_resolved", extra={"tier": tier.name, "ops_applied": outcome.ops_applied})
            return PipelineResult(outcome=outcome, declined=tuple(declined))
        return PipelineResult(outcome=declined[-1], declined=tuple(declined))

    def observe(self, before: Blueprint, instruction: str, after: Blueprint) -> None:
        for tier in self.tiers:
            observe = getattr(tier, "observe", None)
            if observe is not None:
                observe(before, instruction, after)
