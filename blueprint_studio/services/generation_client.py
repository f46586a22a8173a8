from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from blueprint_studio.config import settings
from blueprint_studio.errors import RemoteRejectedError, RemoteUnavailableError, ServiceConfigError
from blueprint_studio.schemas.blueprint import Blueprint, blueprint_payload
from blueprint_studio.schemas.editor import BusinessContext

logger = logging.getLogger(__name__)

_QUOTA_STATUSES = {402, 429}
_AUTH_STATUSES = {401, 403}


class GenerationClient:
    """
    Async client for the blueprint refinement service.

    Errors are split into two families: `RemoteUnavailableError` for anything transport-shaped
    (timeouts, connection failures, 5xx) and `RemoteRejectedError` when the service answered but
    refused or returned something unusable (quota, auth, malformed payload).
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_base = (base_url or settings.GENERATION_BASE_URL or "").strip()
        resolved_token = (api_token or settings.GENERATION_API_TOKEN or "").strip()
        if not resolved_base:
            raise ServiceConfigError("GENERATION_BASE_URL is required")
        if not resolved_token:
            raise ServiceConfigError("GENERATION_API_TOKEN is required")
        self.base_url = resolved_base.rstrip("/")
        self.api_token = resolved_token
        self.timeout_seconds = float(timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS or 90.0)
        self._transport = transport

    async def refine(self, document: Blueprint, instruction: str, context: BusinessContext) -> Blueprint:
        body = await self._request_json(
            "POST",
            "/v1/blueprints/refine",
            json_payload={
                "blueprint": blueprint_payload(document),
                "instruction": instruction,
                "context": context.model_dump(mode="json"),
            },
        )
        raw = body.get("blueprint", body)
        try:
            return Blueprint.model_validate(raw)
        except ValidationError as exc:
            raise RemoteRejectedError(
                f"Generation service returned an invalid blueprint: {exc.error_count()} validation errors",
                kind="malformed",
            ) from exc

    async def _request_json(self, method: str, path: str, *, json_payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.request(method=method, url=path, json=json_payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            raise RemoteUnavailableError(f"Generation service timed out for {method} {path}") from exc
        except httpx.RequestError as exc:
            raise RemoteUnavailableError(f"Generation service unreachable for {method} {path}: {exc}") from exc

        if resp.status_code >= 400:
            self._raise_request_error(resp)

        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteRejectedError(
                f"Generation service returned non-JSON payload for {method} {path}",
                status_code=resp.status_code,
                kind="malformed",
            ) from exc
        if not isinstance(data, dict):
            raise RemoteRejectedError(
                f"Generation service returned non-object JSON payload for {method} {path}",
                status_code=resp.status_code,
                kind="malformed",
            )
        return data

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _raise_request_error(self, resp: httpx.Response) -> None:
        message = response_error_message(resp, default=f"Generation service request failed ({resp.status_code})")
        logger.warning(
            "generation.request_failed",
            extra={"status_code": resp.status_code, "error_message": message},
        )
        if resp.status_code >= 500:
            raise RemoteUnavailableError(message, status_code=resp.status_code)
        if resp.status_code in _QUOTA_STATUSES:
            raise RemoteRejectedError(message, status_code=resp.status_code, kind="quota")
        if resp.status_code in _AUTH_STATUSES:
            raise RemoteRejectedError(message, status_code=resp.status_code, kind="auth")
        raise RemoteRejectedError(message, status_code=resp.status_code, kind="rejected")


def response_error_message(resp: httpx.Response, *, default: str) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return default
    if not isinstance(payload, dict):
        return default
    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str) and error:
        return error
    detail = payload.get("detail")
    if isinstance(detail, str) and detail:
        return detail
    return default
