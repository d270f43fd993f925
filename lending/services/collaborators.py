# lending/services/collaborators.py
"""HTTP clients for the services the lending core does not own.

Each call is a single synchronous request/response with the configured timeout.
There is no retry: a transport failure, a timeout or an unexpected status is
surfaced once as ``CollaboratorUnavailableError``.
"""

import logging
from typing import Optional, Dict, Any

import httpx

from lending.core.config import settings
from lending.core.exceptions import CollaboratorUnavailableError, NotFoundError
from lending.core.logging import request_id_ctx_var
from lending.schemas.collaborators import ItemRecord, MemberRecord


logger = logging.getLogger(__name__)


class ServiceClient:
    service_name = "collaborator"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        request_id = request_id_ctx_var.get()
        return {"X-Correlation-ID": request_id} if request_id else {}

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning(
                "%s call failed", self.service_name, extra={"path": path, "error": str(exc)}
            )
            raise CollaboratorUnavailableError(f"{self.service_name} service unreachable: {exc}") from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_error:
            raise CollaboratorUnavailableError(
                f"{self.service_name} service returned {response.status_code}"
            )


class CatalogClient(ServiceClient):
    service_name = "catalog"

    async def get_item(self, item_id: int) -> ItemRecord:
        response = await self._request("GET", f"/api/books/{item_id}")
        if response.status_code == 404:
            raise NotFoundError(f"Item not found with ID: {item_id}")
        self._raise_for_status(response)
        try:
            return ItemRecord.model_validate(response.json())
        except ValueError as exc:
            raise CollaboratorUnavailableError(f"catalog service sent a malformed item: {exc}") from exc

    async def adjust_availability(self, item_id: int, delta: int) -> None:
        """Atomically shift the item's available-copy count by ``delta``."""
        response = await self._request("PUT", f"/api/books/{item_id}/availability", json={"change": delta})
        if response.status_code == 404:
            raise NotFoundError(f"Item not found with ID: {item_id}")
        self._raise_for_status(response)


class MemberClient(ServiceClient):
    service_name = "member"

    async def get_member(self, member_id: int) -> MemberRecord:
        response = await self._request("GET", f"/api/members/{member_id}")
        if response.status_code == 404:
            raise NotFoundError(f"Member not found with ID: {member_id}")
        self._raise_for_status(response)
        try:
            return MemberRecord.model_validate(response.json())
        except ValueError as exc:
            raise CollaboratorUnavailableError(f"member service sent a malformed member: {exc}") from exc


def get_catalog_client() -> CatalogClient:
    return CatalogClient(settings.CATALOG_SERVICE_URL, timeout=settings.COLLABORATOR_TIMEOUT_SECONDS)


def get_member_client() -> MemberClient:
    return MemberClient(settings.MEMBER_SERVICE_URL, timeout=settings.COLLABORATOR_TIMEOUT_SECONDS)
