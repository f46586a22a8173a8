from __future__ import annotations

import logging
from typing import Any

import httpx

from blueprint_studio.config import settings
from blueprint_studio.errors import PersistenceFailedError, PersistenceUnauthorizedError, ServiceConfigError
from blueprint_studio.schemas.blueprint import Blueprint, blueprint_payload
from blueprint_studio.services.generation_client import response_error_message

logger = logging.getLogger(__name__)


class PersistenceClient:
    """Create-then-update store for blueprints. Every call returns the record id."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_base = (base_url or settings.PERSISTENCE_BASE_URL or "").strip()
        if not resolved_base:
            raise ServiceConfigError("PERSISTENCE_BASE_URL is required")
        self.base_url = resolved_base.rstrip("/")
        self.api_token = (api_token or settings.PERSISTENCE_API_TOKEN or "").strip() or None
        self.timeout_seconds = float(timeout_seconds or settings.PERSISTENCE_TIMEOUT_SECONDS or 20.0)
        self._transport = transport

    async def create(self, document: Blueprint, meta: dict[str, Any]) -> str:
        body = await self._request_json(
            "POST", "/v1/blueprints", json_payload={"blueprint": blueprint_payload(document), "meta": meta}
        )
        return self._record_id(body, context="create")

    async def update(self, remote_id: str, document: Blueprint, meta: dict[str, Any]) -> str:
        body = await self._request_json(
            "PUT",
            f"/v1/blueprints/{remote_id}",
            json_payload={"blueprint": blueprint_payload(document), "meta": meta},
        )
        return self._record_id(body, context="update", fallback=remote_id)

    async def _request_json(self, method: str, path: str, *, json_payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.request(method=method, url=path, json=json_payload, headers=self._headers())
        except httpx.RequestError as exc:
            raise PersistenceFailedError(f"Persistence service unreachable for {method} {path}: {exc}") from exc

        if resp.status_code >= 400:
            logger.warning("persistence.request_failed", extra={"method": method, "status_code": resp.status_code})
        if resp.status_code in (401, 403):
            raise PersistenceUnauthorizedError(
                response_error_message(resp, default="Not authorized to save this blueprint"),
                status_code=resp.status_code,
            )
        if resp.status_code >= 400:
            raise PersistenceFailedError(
                response_error_message(resp, default=f"Persistence request failed ({resp.status_code})"),
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise PersistenceFailedError(
                f"Persistence service returned non-JSON payload for {method} {path}",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise PersistenceFailedError(
                f"Persistence service returned non-object JSON payload for {method} {path}",
                status_code=resp.status_code,
            )
        return data

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _record_id(self, body: dict[str, Any], *, context: str, fallback: str | None = None) -> str:
        record_id = body.get("id") or fallback
        if not isinstance(record_id, str) or not record_id:
            raise PersistenceFailedError(f"Persistence {context} response is missing the record id")
        return record_id
