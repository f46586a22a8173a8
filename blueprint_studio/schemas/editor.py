from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from blueprint_studio.errors import RemoteGenerationError
from blueprint_studio.schemas.blueprint import Blueprint


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BusinessContext(BaseModel):
    name: str = ""
    niche: Optional[str] = None
    locale: str = "en"


class SaveState(str, Enum):
    idle = "idle"
    saving = "saving"
    saved = "saved"
    error = "error"


class SaveStatus(BaseModel):
    state: SaveState = SaveState.idle
    lastSavedAt: Optional[datetime] = None
    error: Optional[str] = None


class BlueprintUpdateMessage(BaseModel):
    type: Literal["blueprint-update"] = "blueprint-update"
    document: dict[str, Any]


class CommandMessage(BaseModel):
    type: Literal["command"] = "command"
    instruction: str


PreviewMessage = Annotated[Union[BlueprintUpdateMessage, CommandMessage], Field(discriminator="type")]


class DeclineReason(str, Enum):
    patch_not_applicable = "PatchNotApplicable"
    refinement_ambiguous = "RefinementAmbiguous"


@dataclass(frozen=True)
class Resolved:
    tier: str
    document: Blueprint
    message: str
    ops_applied: int = 1


@dataclass(frozen=True)
class Declined:
    tier: str
    reason: DeclineReason
    detail: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    tier: str
    error: RemoteGenerationError


TierOutcome = Union[Resolved, Declined, Failed]


@dataclass(frozen=True)
class ResolutionOutcome:
    """Final result of running one instruction through the tier chain."""

    status: Literal["applied", "failed", "discarded"]
    instruction: str
    tier: Optional[str] = None
    message: str = ""
    ops_applied: int = 0
    declined: tuple[Declined, ...] = field(default_factory=tuple)

    @property
    def applied(self) -> bool:
        return self.status == "applied"
