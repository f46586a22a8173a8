from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from blueprint_studio.editor.registry import SessionRegistry
from blueprint_studio.editor.session import EditingSession
from blueprint_studio.schemas.blueprint import blueprint_payload
from blueprint_studio.schemas.editor import ResolutionOutcome
from blueprint_studio.schemas.sessions import (
    AssetReplaceRequest,
    InstructionOutcomeResponse,
    InstructionRequest,
    InstructionResponse,
    MutationResponse,
    SaveResponse,
    SectionCreateRequest,
    SectionMoveRequest,
    SectionUpdateRequest,
    SessionCreateRequest,
    SessionResponse,
    ThemeUpdateRequest,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def _session_view(session: EditingSession) -> SessionResponse:
    drain = getattr(session.notifier, "drain", None)
    return SessionResponse(
        id=session.id,
        remoteId=session.remote_id,
        document=blueprint_payload(session.document),
        saveStatus=session.save_status,
        canUndo=session.history.can_undo,
        canRedo=session.history.can_redo,
        isGenerating=session.is_generating,
        notifications=drain() if drain is not None else [],
    )


def _outcome_view(outcome: ResolutionOutcome) -> InstructionOutcomeResponse:
    return InstructionOutcomeResponse(
        status=outcome.status,
        tier=outcome.tier,
        message=outcome.message,
        opsApplied=outcome.ops_applied,
        declinedBy=[declined.tier for declined in outcome.declined],
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionCreateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    session = registry.create(
        payload.blueprint,
        context=payload.context,
        remote_id=payload.remoteId,
        owner=payload.owner,
    )
    return _session_view(session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionResponse:
    return _session_view(registry.get(session_id))


@router.post("/{session_id}/instructions", response_model=InstructionResponse)
async def submit_instruction(
    session_id: str,
    payload: InstructionRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> InstructionResponse:
    session = registry.get(session_id)
    outcome = await session.submit_instruction(payload.text)
    return InstructionResponse(outcome=_outcome_view(outcome), session=_session_view(session))


@router.patch("/{session_id}/theme", response_model=MutationResponse)
async def update_theme(
    session_id: str,
    payload: ThemeUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> MutationResponse:
    session = registry.get(session_id)
    changed = session.edit_theme(payload.changes)
    return MutationResponse(changed=changed, session=_session_view(session))


@router.post("/{session_id}/sections", response_model=MutationResponse, status_code=status.HTTP_201_CREATED)
async def add_section(
    session_id: str,
    payload: SectionCreateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> MutationResponse:
    session = registry.get(session_id)
    session.add_section(payload.type, title=payload.title, page_slug=payload.pageSlug, index=payload.index)
    return MutationResponse(changed=True, session=_session_view(session))


@router.patch("/{session_id}/sections/{section_id}", response_model=MutationResponse)
async def update_section(
    session_id: str,
    section_id: str,
    payload: SectionUpdateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> MutationResponse:
    session = registry.get(session_id)
    changed = session.edit_section(section_id, content=payload.content, styles=payload.styles)
    return MutationResponse(changed=changed, session=_session_view(session))


@router.delete("/{session_id}/sections/{section_id}", response_model=MutationResponse)
async def remove_section(
    session_id: str,
    section_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> MutationResponse:
    session = registry.get(session_id)
    changed = session.remove_section(section_id)
    return MutationResponse(changed=changed, session=_session_view(session))


@router.post("/{session_id}/sections/{section_id}/move", response_model=MutationResponse)
async def move_section(
    session_id: str,
    section_id: str,
    payload: SectionMoveRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> MutationResponse:
    session = registry.get(session_id)
    changed = session.move_section(section_id, payload.index)
    return MutationResponse(changed=changed, session=_session_view(session))


@router.put("/{session_id}/sections/{section_id}/assets", response_model=MutationResponse)
async def replace_asset(
    session_id: str,
    section_id: str,
    payload: AssetReplaceRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> MutationResponse:
    session = registry.get(session_id)
    changed = session.replace_asset(section_id, payload.field, payload.url)
    return MutationResponse(changed=changed, session=_session_view(session))


@router.post("/{session_id}/undo", response_model=MutationResponse)
async def undo(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> MutationResponse:
    session = registry.get(session_id)
    changed = session.undo()
    return MutationResponse(changed=changed, session=_session_view(session))


@router.post("/{session_id}/redo", response_model=MutationResponse)
async def redo(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> MutationResponse:
    session = registry.get(session_id)
    changed = session.redo()
    return MutationResponse(changed=changed, session=_session_view(session))


@router.post("/{session_id}/save", response_model=SaveResponse)
async def save(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SaveResponse:
    session = registry.get(session_id)
    report = await session.save()
    return SaveResponse(
        ok=report.ok,
        skipped=report.skipped,
        error=str(report.error) if report.error is not None else None,
        session=_session_view(session),
    )


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> None:
    await registry.close(session_id)
