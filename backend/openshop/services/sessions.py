"""In-process registry of live wizard sessions.

One WizardController per (user, device).  The device id scopes the draft
slot the same way a browser's local storage would.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from openshop.clients.store_api import StoreApiClient
from openshop.config import settings
from openshop.database import async_session
from openshop.services.catalog import CategoryFlowCatalog
from openshop.services.controller import WizardController
from openshop.services.drafts import (
    DraftBackend,
    DraftStore,
    InMemoryDraftBackend,
    RedisDraftBackend,
    SqlDraftBackend,
)
from openshop.utils.cache import get_redis

logger = logging.getLogger(__name__)

_memory_backend = InMemoryDraftBackend()

SessionKey = tuple[str, str]
ControllerFactory = Callable[[str, str, str], Awaitable[WizardController]]


async def build_draft_backend() -> DraftBackend:
    """Draft backend named by settings.draft_backend."""
    if settings.draft_backend == "sql":
        return SqlDraftBackend(async_session)
    if settings.draft_backend == "memory":
        return _memory_backend
    ttl = settings.draft_retention_days * 24 * 3600
    return RedisDraftBackend(await get_redis(), ttl_seconds=ttl)


async def default_factory(user_id: str, device_id: str, token: str) -> WizardController:
    client = StoreApiClient(token=token)
    return WizardController(
        user_id=user_id,
        client=client,
        catalog=CategoryFlowCatalog.for_client(client),
        drafts=DraftStore(await build_draft_backend(), device_id=device_id),
    )


class SessionRegistry:
    def __init__(self, factory: ControllerFactory = default_factory):
        self._factory = factory
        self._sessions: dict[SessionKey, WizardController] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, user_id: str, device_id: str) -> WizardController | None:
        controller = self._sessions.get((user_id, device_id))
        if controller is not None and controller.exited:
            return None
        return controller

    async def open(self, user_id: str, device_id: str, token: str) -> WizardController:
        """Start a fresh controller, replacing any previous one for this key."""
        async with self._lock:
            previous = self._sessions.pop((user_id, device_id), None)
            if previous is not None:
                await previous.close()
            controller = await self._factory(user_id, device_id, token)
            self._sessions[(user_id, device_id)] = controller
            logger.debug(f"Opened wizard session for user {user_id} on {device_id}")
            return controller

    async def close(self, user_id: str, device_id: str) -> None:
        async with self._lock:
            controller = self._sessions.pop((user_id, device_id), None)
        if controller is not None:
            await controller.close()

    async def close_all(self) -> None:
        async with self._lock:
            controllers = list(self._sessions.values())
            self._sessions.clear()
        for controller in controllers:
            await controller.close()
