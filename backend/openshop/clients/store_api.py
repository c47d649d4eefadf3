"""HTTP client for the remote store API.

Every call the wizard makes to the outside world goes through here:
category flows, store creation, addresses, open hours, uploads,
submission, partner search and partnership create/terminate.

Contract:
  - Responses wrapped as {success, data, message} are unwrapped to `data`.
  - Transport failures and 5xx      → TransientNetworkError
  - 401 / 403                       → AuthError
  - 409 or an "already exists" body → ConflictError
  - any other rejection             → RemoteApiError
  - a 2xx body that does not parse  → RemoteApiError
No call is retried here; retry is a user action.
"""

import json
import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from openshop.config import settings
from openshop.middleware.exceptions import (
    AuthError,
    ConflictError,
    RemoteApiError,
    TransientNetworkError,
)
from openshop.schemas.catalog import CategoryFlowConfig
from openshop.schemas.partnership import Partnership, PotentialPartner
from openshop.schemas.store import (
    RemoteStore,
    StoreImage,
    StoreSetupResponse,
    SubmissionReceipt,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_UPLOAD_PATHS = {
    "logo": ("upload-logo", "File"),
    "banner": ("upload-banner", "File"),
    "gallery": ("upload-gallery", "File"),
    "video": ("video/upload", "VideoFile"),
}

PARTNERSHIP_CREATED_NOTE = "Partnership created during store setup"
PARTNERSHIP_TERMINATED_REASON = "Partnership deselected during store setup"


def is_already_exists(message: str | None) -> bool:
    return bool(message) and "already exists" in message.lower()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for field in ("message", "error", "detail", "title"):
            value = body.get(field)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return str(value["message"])
    return response.text or response.reason_phrase


def _parse(model: type[ModelT], data: Any, what: str) -> ModelT:
    """Validate a response payload; a malformed body is a remote error."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Store API sent a malformed {what} payload: {e.error_count()} errors")
        raise RemoteApiError(f"Unexpected {what} response from the store API") from e


class StoreApiClient:
    """Async client bound to one user's bearer token."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.store_api_base_url).rstrip("/"),
            timeout=timeout or settings.store_api_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    def set_token(self, token: str) -> None:
        """Swap the bearer token, e.g. after the caller refreshed it."""
        self._client.headers["Authorization"] = f"Bearer {token}"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "StoreApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and return the unwrapped payload."""
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"Store API {method} {path} failed: {e}")
            raise TransientNetworkError() from e

        if response.status_code >= 500:
            logger.warning(
                f"Store API {method} {path} returned {response.status_code}"
            )
            raise TransientNetworkError()

        if response.status_code in (401, 403):
            raise AuthError()

        if response.status_code >= 400:
            message = _error_message(response)
            if response.status_code == 409 or is_already_exists(message):
                raise ConflictError(message)
            raise RemoteApiError(message, remote_status=response.status_code)

        if response.status_code == 204 or not response.content:
            return None

        try:
            body = response.json()
        except ValueError:
            return response.text

        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                message = body.get("message") or body.get("error") or "Request failed"
                if is_already_exists(message):
                    raise ConflictError(message)
                raise RemoteApiError(message, remote_status=response.status_code)
            return body.get("data")
        return body

    # ── Catalog ─────────────────────────────────────────────────

    async def get_category_flows(self) -> dict[str, CategoryFlowConfig]:
        """GET /api/stores/setup-flow/category-flows"""
        data = await self._request("GET", "/api/stores/setup-flow/category-flows")
        # Some deployments nest the mapping one level deeper
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        return {
            name: _parse(CategoryFlowConfig, flow, "category flows")
            for name, flow in (data or {}).items()
        }

    # ── Stores ──────────────────────────────────────────────────

    async def create_store_with_setup_flow(self, payload: dict) -> StoreSetupResponse:
        """POST /api/stores/setup-flow"""
        data = await self._request("POST", "/api/stores/setup-flow", json=payload)
        return _parse(StoreSetupResponse, data, "store setup")

    async def update_store(self, store_id: int, payload: dict) -> None:
        """PUT /api/stores/{id}"""
        await self._request("PUT", f"/api/stores/{store_id}", json=payload)

    async def get_store(self, store_id: int) -> RemoteStore:
        """GET /api/stores/{id}"""
        data = await self._request("GET", f"/api/stores/{store_id}")
        return _parse(RemoteStore, data, "store")

    async def create_address(self, store_id: int, payload: dict) -> dict:
        """POST /api/stores/{id}/address"""
        body = {"storeId": store_id, **payload}
        return await self._request("POST", f"/api/stores/{store_id}/address", json=body)

    async def set_delivery_radius(self, store_id: int, radius_mi: int) -> None:
        """PUT /api/stores/{id}/deliverydistance/{radius}"""
        await self._request(
            "PUT", f"/api/stores/{store_id}/deliverydistance/{radius_mi}"
        )

    async def set_open_hours(self, store_id: int, open_hours: list[dict]) -> None:
        """POST /api/stores/{id}/openhours"""
        await self._request(
            "POST",
            f"/api/stores/{store_id}/openhours",
            json={"storeId": store_id, "openHours": open_hours},
        )

    async def upload_asset(
        self,
        store_id: int,
        asset: str,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> StoreImage:
        """Upload a logo, banner, gallery image or video."""
        if asset not in _UPLOAD_PATHS:
            raise ValueError(f"Unsupported asset type: {asset}")
        suffix, field = _UPLOAD_PATHS[asset]
        data = await self._request(
            "POST",
            f"/api/stores/{store_id}/{suffix}",
            data={"storeId": str(store_id)},
            files={field: (filename, content, content_type)},
        )
        # Gallery uploads answer with a list; keep the first image
        if isinstance(data, list):
            data = data[0] if data else {}
        return _parse(StoreImage, data or {}, "upload")

    async def submit_store(self, payload: dict) -> SubmissionReceipt:
        """POST /api/store-submissions/{id}/submit-for-review"""
        data = await self._request(
            "POST",
            f"/api/store-submissions/{payload['storeId']}/submit-for-review",
            json=payload,
        )
        return _parse(SubmissionReceipt, data, "submission")

    # ── Partnerships ────────────────────────────────────────────

    async def search_potential_partners(
        self, store_id: int, partner_type: str, radius_miles: int
    ) -> list[PotentialPartner]:
        """GET /api/partnerships/store/{id}/potential-partners"""
        data = await self._request(
            "GET",
            f"/api/partnerships/store/{store_id}/potential-partners",
            params={"radiusMiles": radius_miles, "partnerType": partner_type},
        )
        return [_parse(PotentialPartner, p, "partner search") for p in data or []]

    async def list_partnerships(
        self,
        store_id: int,
        status: str | None = None,
        partner_type: str | None = None,
    ) -> list[Partnership]:
        """GET /api/partnerships/store/{id}"""
        params = {}
        if status:
            params["status"] = status
        if partner_type:
            params["partnerType"] = partner_type
        data = await self._request(
            "GET", f"/api/partnerships/store/{store_id}", params=params
        )
        if isinstance(data, dict):
            data = data.get("partnerships") or []
        return [_parse(Partnership, p, "partnership list") for p in data or []]

    async def create_partnership(
        self,
        producer_store_id: int,
        processor_store_id: int,
        initiated_by_store_id: int,
    ) -> Partnership:
        """POST /api/partnerships"""
        payload = {
            "producerStoreId": producer_store_id,
            "processorStoreId": processor_store_id,
            "initiatedByStoreId": initiated_by_store_id,
            "partnershipTerms": json.dumps(
                {"services": ["collaboration"], "notes": PARTNERSHIP_CREATED_NOTE}
            ),
            "deliveryArrangements": None,
        }
        data = await self._request("POST", "/api/partnerships", json=payload)
        return _parse(Partnership, data, "partnership")

    async def terminate_partnership(
        self, partnership_id: int, reason: str = PARTNERSHIP_TERMINATED_REASON
    ) -> None:
        """POST /api/partnerships/{id}/terminate"""
        await self._request(
            "POST",
            f"/api/partnerships/{partnership_id}/terminate",
            json={"reason": reason},
        )

    async def ping(self) -> bool:
        """Reachability check used by the readiness endpoint."""
        try:
            await self._client.get("/health")
        except httpx.TransportError:
            return False
        return True
