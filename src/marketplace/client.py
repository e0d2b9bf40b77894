from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Protocol, runtime_checkable

import httpx

from lifecycle.data_models import (
    EntityType,
    ListingStatus,
    Record,
    Role,
    UserContext,
    coerce_entity_type,
    normalize_collection,
    record_from_payload,
)
from lifecycle.errors import NotFoundError, TransportError, UnknownStatusError
from lifecycle.filters import FilterSpec
from marketplace.logging_config import get_correlation_id

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    401: "AUTH_ERROR",
    403: "FORBIDDEN",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMIT",
}

_COLLECTION_KEYS = {
    EntityType.INQUIRY: "inquiries",
    EntityType.REQUEST: "requests",
    EntityType.LISTING: "cars",
}

_ITEM_PATHS = {
    EntityType.INQUIRY: "/api/inquiries/{id}",
    EntityType.REQUEST: "/api/car-requests/{id}",
    EntityType.LISTING: "/api/cars/{id}",
}

_QUERY_NAMES = {
    "date_range": "dateRange",
    "sort_by": "sortBy",
    "sort_order": "sortOrder",
}


@runtime_checkable
class RecordGateway(Protocol):
    """Fetch / persist / delete contract the workspace depends on."""

    async def fetch_collection(
        self, entity_type: Any, owner_ref: int, spec: FilterSpec | None = None,
    ) -> list[Record]: ...
    async def persist_transition(self, entity_type: Any, record_id: int, target: Any) -> Record | None: ...
    async def delete(self, entity_type: Any, record_id: int) -> None: ...


def spec_to_params(spec: FilterSpec | Mapping[str, Any] | None) -> dict[str, Any]:
    spec = FilterSpec.from_options(spec)
    params = spec.model_dump(exclude_none=True)
    return {_QUERY_NAMES.get(k, k): v for k, v in params.items() if v != "all"}


class MarketplaceClient:
    """Async client for the marketplace REST API.

    Responses use the ``{success, data, message}`` envelope. No retries: a
    failed call surfaces as TransportError (or NotFoundError on 404).
    """

    def __init__(
        self,
        base_url: str,
        user: UserContext,
        *,
        token: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user = user
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url, headers=headers, timeout=timeout, transport=transport,
        )

    async def __aenter__(self) -> MarketplaceClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    # ── Transport ───────────────────────────────────────────────────

    async def _request(self, method: str, path: str, *, record_id: int | None = None, **kwargs: Any) -> Any:
        headers = {"X-Correlation-ID": get_correlation_id()}
        try:
            resp = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {path} timed out", code="NETWORK_ERROR") from exc
        except httpx.TransportError as exc:
            raise TransportError(f"{method} {path} failed: {exc}", code="NETWORK_ERROR") from exc

        logger.debug("%s %s -> %s", method, path, resp.status_code)
        if resp.status_code == 404 and record_id is not None:
            raise NotFoundError(record_id)
        if resp.status_code >= 400:
            code = _STATUS_CODES.get(resp.status_code)
            if code is None:
                code = "SERVER_ERROR" if resp.status_code >= 500 else "HTTP_ERROR"
            raise TransportError(
                f"{method} {path} returned {resp.status_code}",
                status_code=resp.status_code,
                code=code,
            )
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON", status_code=resp.status_code) from exc
        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                raise TransportError(
                    body.get("message") or "request rejected",
                    status_code=resp.status_code,
                    code="API_ERROR",
                )
            return body.get("data")
        return body

    # ── Gateway operations ──────────────────────────────────────────

    def _collection_path(self, entity_type: EntityType, owner_ref: int) -> str:
        dealer = self.user.role is Role.DEALER
        if entity_type is EntityType.INQUIRY:
            return "/api/inquiries/received" if dealer else "/api/inquiries/sent"
        if entity_type is EntityType.REQUEST:
            return "/api/car-requests" if dealer else "/api/car-requests/my-requests"
        if owner_ref == self.user.id:
            return "/api/cars/my/cars"
        return f"/api/cars/dealer/{owner_ref}"

    async def fetch_collection(
        self, entity_type: Any, owner_ref: int, spec: FilterSpec | None = None,
    ) -> list[Record]:
        et = coerce_entity_type(entity_type)
        data = await self._request("GET", self._collection_path(et, owner_ref), params=spec_to_params(spec))
        if isinstance(data, dict):
            items = data.get(_COLLECTION_KEYS[et]) or []
        else:
            items = data or []
        records = normalize_collection(et, items)
        logger.info("Fetched %d %s records", len(records), et.value)
        return records

    def _transition_body(self, entity_type: EntityType, target: Any) -> dict[str, Any]:
        status = target.value if isinstance(target, Enum) else str(target)
        if entity_type is EntityType.LISTING:
            if status == ListingStatus.HIDDEN.value:
                return {"is_available": False}
            if status == ListingStatus.ACTIVE.value:
                return {"status": "active", "is_available": True}
        return {"status": status}

    async def persist_transition(self, entity_type: Any, record_id: int, target: Any) -> Record | None:
        et = coerce_entity_type(entity_type)
        if et is EntityType.INQUIRY:
            path = f"/api/inquiries/{record_id}/status"
        else:
            path = _ITEM_PATHS[et].format(id=record_id)
        data = await self._request("PUT", path, record_id=record_id, json=self._transition_body(et, target))
        if not isinstance(data, dict) or "id" not in data:
            return None
        try:
            return record_from_payload(et, data)
        except (KeyError, TypeError, ValueError, UnknownStatusError):
            logger.warning("Partial %s payload for %s, keeping local copy", et.value, record_id)
            return None

    async def delete(self, entity_type: Any, record_id: int) -> None:
        et = coerce_entity_type(entity_type)
        await self._request("DELETE", _ITEM_PATHS[et].format(id=record_id), record_id=record_id)
        logger.info("Deleted %s %s", et.value, record_id)
