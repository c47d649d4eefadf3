"""Tests for the store API client's envelope handling and error mapping."""

import httpx
import pytest

from openshop.clients.store_api import StoreApiClient, is_already_exists
from openshop.middleware.exceptions import (
    AuthError,
    ConflictError,
    RemoteApiError,
    TransientNetworkError,
)


def _client(handler) -> StoreApiClient:
    return StoreApiClient(
        base_url="http://store-api.test", token="tok", transport=httpx.MockTransport(handler)
    )


def _respond(status_code: int, **kwargs):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, **kwargs)
    return handler


@pytest.mark.unit
class TestAlreadyExists:
    def test_matches_case_insensitively(self):
        assert is_already_exists("Partnership ALREADY EXISTS")
        assert not is_already_exists("Not found")
        assert not is_already_exists(None)


@pytest.mark.unit
@pytest.mark.asyncio
class TestErrorMapping:
    async def test_transport_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransientNetworkError):
                await client.get_store(1)

    async def test_server_error_is_transient(self):
        async with _client(_respond(503, text="down")) as client:
            with pytest.raises(TransientNetworkError):
                await client.get_store(1)

    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_unauthorized(self, status_code):
        async with _client(_respond(status_code, json={"message": "nope"})) as client:
            with pytest.raises(AuthError):
                await client.get_store(1)

    async def test_conflict_status(self):
        async with _client(_respond(409, json={"message": "duplicate"})) as client:
            with pytest.raises(ConflictError):
                await client.create_partnership(1, 2, 1)

    async def test_already_exists_message_on_400(self):
        body = {"success": False, "message": "Partnership already exists"}
        async with _client(_respond(400, json=body)) as client:
            with pytest.raises(ConflictError):
                await client.create_partnership(1, 2, 1)

    async def test_already_exists_in_unsuccessful_envelope(self):
        body = {"success": False, "message": "Address already exists"}
        async with _client(_respond(200, json=body)) as client:
            with pytest.raises(ConflictError):
                await client.create_address(1, {"addressType": "business"})

    async def test_other_rejection(self):
        async with _client(_respond(404, json={"error": {"message": "Store not found"}})) as client:
            with pytest.raises(RemoteApiError) as exc_info:
                await client.get_store(9)
        assert exc_info.value.message == "Store not found"
        assert exc_info.value.remote_status == 404

    async def test_malformed_success_body(self):
        body = {"success": True, "data": None}
        async with _client(_respond(201, json=body)) as client:
            with pytest.raises(RemoteApiError) as exc_info:
                await client.create_partnership(1, 2, 1)
        assert "partnership" in exc_info.value.message


@pytest.mark.unit
@pytest.mark.asyncio
class TestPayloads:
    async def test_unwraps_envelope(self):
        body = {"success": True, "data": {"storeId": 4, "storeName": "Ranch", "storeType": "producer"}}
        async with _client(_respond(200, json=body)) as client:
            store = await client.get_store(4)
        assert store.store_id == 4
        assert store.store_type == "producer"

    async def test_nested_category_flows(self):
        flows = {"Meat": {"question": "How?", "options": [{"key": "butcher", "canProcess": True}]}}
        body = {"success": True, "data": {"data": flows}}
        async with _client(_respond(200, json=body)) as client:
            result = await client.get_category_flows()
        assert result["Meat"].option("butcher").can_process is True

    async def test_no_content(self):
        async with _client(_respond(204)) as client:
            assert await client.set_delivery_radius(1, 10) is None

    async def test_partnerships_wrapped_in_object(self):
        body = {"success": True, "data": {"partnerships": [
            {"partnershipId": 1, "producerStoreId": 2, "processorStoreId": 3, "status": "active"},
        ]}}
        async with _client(_respond(200, json=body)) as client:
            (partnership,) = await client.list_partnerships(3)
        assert partnership.partner_of(3) == 2

    async def test_partnership_status_filter(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"success": True, "data": []})

        async with _client(handler) as client:
            assert await client.list_partnerships(3, status="active", partner_type="processor") == []
        assert seen["params"] == {"status": "active", "partnerType": "processor"}

    async def test_sends_bearer_token_and_search_params(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"success": True, "data": []})

        async with _client(handler) as client:
            client.set_token("fresh")
            assert await client.search_potential_partners(5, "processor", 25) == []
        assert seen["auth"] == "Bearer fresh"
        assert seen["params"] == {"radiusMiles": "25", "partnerType": "processor"}

    async def test_gallery_upload_takes_first_image(self):
        def handler(request):
            assert request.url.path == "/api/stores/5/upload-gallery"
            return httpx.Response(200, json={"success": True, "data": [
                {"imageId": 1, "filePath": "https://cdn.test/a.png"},
                {"imageId": 2, "filePath": "https://cdn.test/b.png"},
            ]})

        async with _client(handler) as client:
            image = await client.upload_asset(5, "gallery", "a.png", b"\x89PNG", "image/png")
        assert image.url == "https://cdn.test/a.png"

    async def test_unknown_asset_rejected(self):
        async with _client(_respond(200)) as client:
            with pytest.raises(ValueError):
                await client.upload_asset(5, "poster", "a.png", b"")

    async def test_ping(self):
        async with _client(_respond(200, json={"status": "ok"})) as client:
            assert await client.ping() is True

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            assert await client.ping() is False
