"""Async client for the BoQ approval service."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx

from boqsync import __version__
from boqsync.error_handling import RemoteServiceError
from boqsync.models import EntityKind, SubmissionPayload, SubmittableEntity

if TYPE_CHECKING:
    from boqsync.config import BoqSyncConfig

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


class ApprovalApiClient:
    """Minimal async client for shop and material approval endpoints.

    Every failure (transport error, timeout, non-2xx status, malformed body)
    surfaces as :class:`RemoteServiceError`; callers decide whether to absorb
    or propagate it.
    """

    def __init__(
        self,
        config: BoqSyncConfig,
        *,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.base_url = config.api_base_url
        self._token_provider = token_provider
        self._transport = transport

    async def create(
        self,
        kind: EntityKind,
        payload: SubmissionPayload,
    ) -> SubmittableEntity:
        """Submit a new shop or material; returns the server-confirmed entity."""
        endpoint = f"/{kind.collection}"
        data = await self._request("POST", endpoint, json=payload)
        record = data.get(kind.value) if isinstance(data, dict) else None
        if not isinstance(record, dict):
            msg = f"Server did not return the created {kind.value}"
            raise RemoteServiceError(msg, endpoint=endpoint)

        try:
            return SubmittableEntity.from_api(kind, record)
        except ValueError as e:
            msg = f"Server returned a {kind.value} without an id"
            raise RemoteServiceError(msg, endpoint=endpoint, original_error=e) from e

    async def list_confirmed(self, kind: EntityKind) -> list[SubmittableEntity]:
        """Fetch the approved, publicly listed records of a kind."""
        return await self._list(kind, f"/{kind.collection}")

    async def list_pending(self, kind: EntityKind) -> list[SubmittableEntity]:
        """Fetch the records of a kind still awaiting an admin decision."""
        return await self._list(kind, f"/{kind.collection}-pending-approval")

    async def approve(self, kind: EntityKind, entity_id: str) -> dict[str, Any] | None:
        data = await self._request(
            "POST",
            f"/{kind.collection}/{entity_id}/approve",
            json={},
        )
        return data.get(kind.value) if isinstance(data, dict) else None

    async def reject(
        self,
        kind: EntityKind,
        entity_id: str,
        reason: str | None = None,
    ) -> dict[str, Any] | None:
        data = await self._request(
            "POST",
            f"/{kind.collection}/{entity_id}/reject",
            json={"reason": reason},
        )
        return data.get(kind.value) if isinstance(data, dict) else None

    async def delete(self, kind: EntityKind, entity_id: str) -> None:
        await self._request("DELETE", f"/{kind.collection}/{entity_id}")

    async def _list(self, kind: EntityKind, endpoint: str) -> list[SubmittableEntity]:
        data = await self._request("GET", endpoint)
        records = data.get(kind.collection) if isinstance(data, dict) else None
        if not isinstance(records, list):
            msg = f"Response from {endpoint} has no '{kind.collection}' list"
            raise RemoteServiceError(msg, endpoint=endpoint)

        entities: list[SubmittableEntity] = []
        for record in records:
            try:
                entities.append(SubmittableEntity.from_api(kind, record))
            except (ValueError, AttributeError) as e:
                logger.warning("Skipping malformed %s record from %s: %s", kind.value, endpoint, e)
        return entities

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": f"boqsync/{__version__}"}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        json: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=self.config.request_timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    headers=self._headers(),
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            msg = f"{method} {endpoint} returned {exc.response.status_code}"
            raise RemoteServiceError(
                msg,
                status_code=exc.response.status_code,
                endpoint=endpoint,
                details=exc.response.text[:500] or None,
                original_error=exc,
            ) from exc
        except httpx.HTTPError as exc:
            msg = f"{method} {endpoint} failed: {exc}"
            raise RemoteServiceError(
                msg,
                endpoint=endpoint,
                original_error=exc,
            ) from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            msg = f"{method} {endpoint} returned a non-JSON body"
            raise RemoteServiceError(
                msg,
                status_code=response.status_code,
                endpoint=endpoint,
                original_error=exc,
            ) from exc


__all__ = ["ApprovalApiClient", "TokenProvider"]
