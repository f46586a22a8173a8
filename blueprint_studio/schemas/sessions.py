from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from blueprint_studio.schemas.blueprint import Blueprint, Primitive, SectionType
from blueprint_studio.schemas.editor import BusinessContext, SaveStatus
from blueprint_studio.services.notifications import Notification


class SessionCreateRequest(BaseModel):
    blueprint: Blueprint
    context: Optional[BusinessContext] = None
    remoteId: Optional[str] = None
    owner: Optional[str] = None


class InstructionRequest(BaseModel):
    text: str = Field(min_length=1, max_length=2000)


class SectionUpdateRequest(BaseModel):
    content: dict[str, Primitive] = Field(default_factory=dict)
    styles: dict[str, Primitive] = Field(default_factory=dict)


class SectionMoveRequest(BaseModel):
    index: int = Field(ge=0)


class SectionCreateRequest(BaseModel):
    type: SectionType
    title: Optional[str] = None
    pageSlug: Optional[str] = None
    index: Optional[int] = Field(default=None, ge=0)


class AssetReplaceRequest(BaseModel):
    field: str = Field(min_length=1)
    url: str = Field(min_length=1)


class ThemeUpdateRequest(BaseModel):
    changes: dict[str, Any]


class SessionResponse(BaseModel):
    id: str
    remoteId: Optional[str] = None
    document: dict[str, Any]
    saveStatus: SaveStatus
    canUndo: bool
    canRedo: bool
    isGenerating: bool
    notifications: list[Notification] = Field(default_factory=list)


class InstructionOutcomeResponse(BaseModel):
    status: Literal["applied", "failed", "discarded"]
    tier: Optional[str] = None
    message: str = ""
    opsApplied: int = 0
    declinedBy: list[str] = Field(default_factory=list)


class InstructionResponse(BaseModel):
    outcome: InstructionOutcomeResponse
    session: SessionResponse


class MutationResponse(BaseModel):
    changed: bool
    session: SessionResponse


class SaveResponse(BaseModel):
    ok: bool
    skipped: bool = False
    error: Optional[str] = None
    session: SessionResponse
