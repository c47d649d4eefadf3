"""Pytest configuration and fixtures for the wizard service tests.

The remote store API is replaced by FakeStoreApi behind httpx.MockTransport;
drafts live in memory unless a test asks for the SQL or Redis backend.
"""

import json
import re
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from openshop.auth.jwt import create_access_token
from openshop.clients.store_api import StoreApiClient
from openshop.config import settings
from openshop.database import create_tables
from openshop.main import app
from openshop.services.catalog import CategoryFlowCatalog
from openshop.services.controller import WizardController
from openshop.services.drafts import DraftStore, InMemoryDraftBackend
from openshop.services.sessions import SessionRegistry
from openshop.utils.cache import close_redis

CATEGORY_FLOWS = {
    "Live Animals": {
        "question": "What do you do with your animals?",
        "options": [
            {
                "key": "raise",
                "label": "I raise livestock",
                "storeType": "producer",
                "canProduce": True,
                "needsPartnerships": True,
                "partnerType": "processor",
            },
            {
                "key": "sell_live",
                "label": "I sell live animals directly",
                "storeType": "independent",
                "canRetail": True,
            },
        ],
    },
    "Meat": {
        "question": "How do you handle meat?",
        "options": [
            {
                "key": "butcher",
                "label": "I process animals from producers",
                "storeType": "processor",
                "canProcess": True,
                "needsPartnerships": True,
                "partnerType": "producer",
            },
            {
                "key": "wholesale",
                "label": "Wholesale only",
                "canRetail": False,
            },
        ],
    },
}


def _ok(data, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json={"success": True, "data": data})


def _fail(status_code: int, message: str) -> httpx.Response:
    return httpx.Response(status_code, json={"success": False, "message": message})


class FakeStoreApi:
    """In-memory stand-in for the remote store API."""

    def __init__(self):
        self.flows = CATEGORY_FLOWS
        self.stores: dict[int, dict] = {}
        self.addresses: list[dict] = []
        self.open_hours: dict[int, list[dict]] = {}
        self.delivery_radius: dict[int, int] = {}
        self.partnerships: dict[int, dict] = {}
        self.potential_partners: list[dict] = []
        self.submissions: list[dict] = []
        self.calls: list[tuple[str, str]] = []
        self.setup_overrides: dict = {}
        self.fail_partner_ids: set[int] = set()
        self.malformed_partner_ids: set[int] = set()
        self.unauthorized = False
        self.offline = False
        self._next_store_id = 100
        self._next_partnership_id = 1

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def client(self, token: str = "test-token") -> StoreApiClient:
        return StoreApiClient(base_url="http://store-api.test", token=token, transport=self.transport())

    def calls_to(self, method: str, pattern: str) -> list[str]:
        return [path for m, path in self.calls if m == method and re.fullmatch(pattern, path)]

    def add_store(self, **fields) -> int:
        store_id = self._next_store_id
        self._next_store_id += 1
        self.stores[store_id] = {"storeId": store_id, **fields}
        return store_id

    def add_partnership(self, producer: int, processor: int, status: str = "active") -> int:
        pid = self._next_partnership_id
        self._next_partnership_id += 1
        self.partnerships[pid] = {
            "partnershipId": pid,
            "producerStoreId": producer,
            "processorStoreId": processor,
            "initiatedByStoreId": producer,
            "status": status,
        }
        return pid

    def live_partnerships(self) -> list[dict]:
        return [p for p in self.partnerships.values() if p["status"] != "terminated"]

    # ── request dispatch ─────────────────────────────────────

    def handle(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        if self.offline:
            raise httpx.ConnectError("store API unreachable", request=request)
        if self.unauthorized:
            return httpx.Response(401, json={"message": "Unauthorized"})
        body = json.loads(request.content) if request.headers.get("content-type") == "application/json" else {}

        if method == "GET" and path == "/api/stores/setup-flow/category-flows":
            return _ok(self.flows)
        if method == "POST" and path == "/api/stores/setup-flow":
            return self._create_store(body)

        m = re.fullmatch(r"/api/stores/(\d+)", path)
        if m:
            store_id = int(m.group(1))
            if store_id not in self.stores:
                return _fail(404, "Store not found")
            if method == "GET":
                return _ok(self.stores[store_id])
            self.stores[store_id].update(body)
            return _ok(self.stores[store_id])

        m = re.fullmatch(r"/api/stores/(\d+)/address", path)
        if m and method == "POST":
            self.addresses.append(body)
            return _ok({"addressId": len(self.addresses), **body}, 201)

        m = re.fullmatch(r"/api/stores/(\d+)/deliverydistance/(\d+)", path)
        if m and method == "PUT":
            self.delivery_radius[int(m.group(1))] = int(m.group(2))
            return httpx.Response(204)

        m = re.fullmatch(r"/api/stores/(\d+)/openhours", path)
        if m and method == "POST":
            self.open_hours[int(m.group(1))] = body["openHours"]
            return _ok(None)

        m = re.fullmatch(r"/api/stores/(\d+)/(upload-logo|upload-banner|upload-gallery|video/upload)", path)
        if m and method == "POST":
            kind = m.group(2).replace("upload-", "").replace("/upload", "")
            return _ok({"imageId": 1, "imageType": kind,
                        "filePath": f"https://cdn.test/{m.group(1)}/{kind}.png"})

        m = re.fullmatch(r"/api/store-submissions/(\d+)/submit-for-review", path)
        if m and method == "POST":
            self.submissions.append(body)
            return _ok({"submissionId": f"SUB-{m.group(1)}", "storeId": int(m.group(1)),
                        "status": "pending_review", "submittedAt": "2026-01-05T10:00:00Z"})

        m = re.fullmatch(r"/api/partnerships/store/(\d+)/potential-partners", path)
        if m and method == "GET":
            radius = float(request.url.params.get("radiusMiles", "50"))
            return _ok([p for p in self.potential_partners if p["distanceMiles"] <= radius])

        m = re.fullmatch(r"/api/partnerships/store/(\d+)", path)
        if m and method == "GET":
            store_id = int(m.group(1))
            status = request.url.params.get("status")
            mine = [
                p for p in self.partnerships.values()
                if store_id in (p["producerStoreId"], p["processorStoreId"])
                and (status is None or p["status"] == status)
            ]
            return _ok({"partnerships": mine})

        if method == "POST" and path == "/api/partnerships":
            return self._create_partnership(body)

        m = re.fullmatch(r"/api/partnerships/(\d+)/terminate", path)
        if m and method == "POST":
            pid = int(m.group(1))
            if pid not in self.partnerships:
                return _fail(404, "Partnership not found")
            self.partnerships[pid]["status"] = "terminated"
            return _ok(None)

        return httpx.Response(404, json={"message": f"No route for {method} {path}"})

    def _create_store(self, body: dict) -> httpx.Response:
        flow = body.get("setupFlow", {})
        store_id = self.add_store(
            storeName=body["storeName"],
            description=body.get("description"),
            categories=body.get("categories", []),
            storeType=flow.get("derivedStoreType", "independent"),
            canProduce=flow.get("derivedCanProduce", False),
            canProcess=flow.get("derivedCanProcess", False),
            needsPartnerships=flow.get("needsPartnerships", False),
            partnershipType=flow.get("partnershipType", ""),
            categoryResponses=flow.get("categoryResponses", {}),
        )
        self.stores[store_id].update(self.setup_overrides)
        store = self.stores[store_id]
        return _ok({
            "storeId": store_id,
            "message": "Store created",
            "storeType": store["storeType"],
            "needsPartnerships": store["needsPartnerships"],
            "partnershipType": store["partnershipType"],
        }, 201)

    def _create_partnership(self, body: dict) -> httpx.Response:
        producer, processor = body["producerStoreId"], body["processorStoreId"]
        partner = processor if body["initiatedByStoreId"] == producer else producer
        if partner in self.fail_partner_ids:
            return httpx.Response(500, json={"message": "Internal error"})
        if partner in self.malformed_partner_ids:
            return _ok(None, 201)
        for p in self.live_partnerships():
            if p["producerStoreId"] == producer and p["processorStoreId"] == processor:
                return _fail(409, "Partnership already exists between these stores")
        pid = self.add_partnership(producer, processor, status="pending")
        self.partnerships[pid]["initiatedByStoreId"] = body["initiatedByStoreId"]
        return _ok(self.partnerships[pid], 201)


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def store_api() -> FakeStoreApi:
    return FakeStoreApi()


@pytest.fixture
def catalog() -> CategoryFlowCatalog:
    return CategoryFlowCatalog.from_mapping(CATEGORY_FLOWS)


@pytest.fixture
def draft_backend() -> InMemoryDraftBackend:
    return InMemoryDraftBackend()


@pytest.fixture
def draft_store(draft_backend) -> DraftStore:
    return DraftStore(draft_backend, device_id="test-device")


@pytest_asyncio.fixture
async def controller(store_api, catalog, draft_store) -> AsyncGenerator[WizardController, None]:
    ctrl = WizardController(
        user_id="user-1",
        client=store_api.client(),
        catalog=catalog,
        drafts=draft_store,
        autosave_delay=0.01,
        search_delay=0.01,
    )
    yield ctrl
    await ctrl.close()


@pytest_asyncio.fixture
async def sql_sessions():
    """In-memory SQLite session factory with the draft table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


# ── App / auth fixtures ──────────────────────────────────────────

@pytest.fixture
def test_token() -> str:
    return create_access_token(user_id="user-1", email="merchant@example.com")


@pytest.fixture
def auth_headers(test_token: str) -> dict:
    return {"Authorization": f"Bearer {test_token}", "X-Device-Id": "laptop"}


@pytest_asyncio.fixture
async def client(store_api, draft_backend) -> AsyncGenerator[AsyncClient, None]:
    """App client whose sessions talk to FakeStoreApi."""

    async def factory(user_id: str, device_id: str, token: str) -> WizardController:
        api = store_api.client(token)
        return WizardController(
            user_id=user_id,
            client=api,
            catalog=CategoryFlowCatalog.from_mapping(CATEGORY_FLOWS),
            drafts=DraftStore(draft_backend, device_id=device_id),
            autosave_delay=0.01,
            search_delay=0.01,
        )

    app.state.sessions = SessionRegistry(factory)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await app.state.sessions.close_all()


# ── Redis Fixtures ───────────────────────────────────────────────

@pytest_asyncio.fixture
async def redis_client():
    """Redis client for cache-marked tests; skips when Redis is down."""
    import redis.asyncio as redis

    client = redis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except redis.RedisError:
        await client.aclose()
        pytest.skip("Redis is not reachable")

    yield client

    await client.flushdb()
    await client.aclose()
    # The shared pool is bound to this test's event loop
    await close_redis()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "cache: Tests that need a running Redis")
