import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError

from blueprint_studio.config import settings
from blueprint_studio.editor.registry import SessionRegistry
from blueprint_studio.errors import (
    EditorBusyError,
    EditorClosedError,
    InvalidEditError,
    PageNotFoundError,
    SectionNotFoundError,
    ServiceConfigError,
    SessionNotFoundError,
)
from blueprint_studio.routers import sessions

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "registry", None) is None:
        app.state.registry = SessionRegistry()
    try:
        yield
    finally:
        await app.state.registry.close_all()


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    app = FastAPI(
        title="Blueprint Studio API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )
    app.state.registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(_request: Request, exc: SessionNotFoundError) -> ORJSONResponse:
        return ORJSONResponse(status_code=404, content={"detail": f"Session not found: {exc}"})

    @app.exception_handler(SectionNotFoundError)
    async def section_not_found_handler(_request: Request, exc: SectionNotFoundError) -> ORJSONResponse:
        return ORJSONResponse(status_code=404, content={"detail": f"Section not found: {exc}"})

    @app.exception_handler(PageNotFoundError)
    async def page_not_found_handler(_request: Request, exc: PageNotFoundError) -> ORJSONResponse:
        return ORJSONResponse(status_code=404, content={"detail": f"Page not found: {exc}"})

    @app.exception_handler(EditorBusyError)
    async def editor_busy_handler(_request: Request, exc: EditorBusyError) -> ORJSONResponse:
        return ORJSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(EditorClosedError)
    async def editor_closed_handler(_request: Request, exc: EditorClosedError) -> ORJSONResponse:
        return ORJSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidEditError)
    async def invalid_edit_handler(_request: Request, exc: InvalidEditError) -> ORJSONResponse:
        return ORJSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def rejected_document_handler(_request: Request, exc: ValidationError) -> ORJSONResponse:
        # Edits are re-validated against the document schema before they are committed.
        return ORJSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(ServiceConfigError)
    async def service_config_error_handler(_request: Request, exc: ServiceConfigError) -> ORJSONResponse:
        logger.error("service.misconfigured", extra={"error": str(exc)})
        return ORJSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    app.include_router(sessions.router)
    return app


app = create_app()
