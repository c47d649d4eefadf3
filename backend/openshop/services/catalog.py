"""Category flow catalog: per-category setup question and answer options.

Loaded once per session from the store API (through the Redis cache) and
read-only afterwards.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Mapping

from openshop.clients.store_api import StoreApiClient
from openshop.config import settings
from openshop.schemas.catalog import CategoryFlowConfig
from openshop.utils.cache import cached, invalidate_cache

logger = logging.getLogger(__name__)

FlowLoader = Callable[[], Awaitable[Mapping[str, CategoryFlowConfig | dict]]]

CATALOG_CACHE_KEY = "catalog:category_flows"


@cached(
    ttl=settings.category_flow_cache_ttl,
    prefix="catalog",
    key_builder=lambda client: CATALOG_CACHE_KEY,
)
async def fetch_category_flows(client: StoreApiClient) -> dict[str, CategoryFlowConfig]:
    return await client.get_category_flows()


async def load_category_flows(client: StoreApiClient) -> Mapping[str, CategoryFlowConfig | dict]:
    """Cached fetch; an empty catalog is not kept for the next session."""
    flows = await fetch_category_flows(client)
    if not flows:
        logger.warning("Store API returned no category flows")
        await invalidate_cache(CATALOG_CACHE_KEY)
    return flows


class CategoryFlowCatalog:
    def __init__(self, loader: FlowLoader | None = None):
        self._loader = loader
        self._flows: dict[str, CategoryFlowConfig] | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_mapping(cls, flows: Mapping[str, CategoryFlowConfig | dict]) -> "CategoryFlowCatalog":
        catalog = cls()
        catalog._flows = _coerce(flows)
        return catalog

    @classmethod
    def for_client(cls, client: StoreApiClient) -> "CategoryFlowCatalog":
        return cls(lambda: load_category_flows(client))

    @property
    def loaded(self) -> bool:
        return self._flows is not None

    async def load(self) -> "CategoryFlowCatalog":
        """Fetch the flows once; later calls are no-ops."""
        if self._flows is not None:
            return self
        async with self._lock:
            if self._flows is None:
                if self._loader is None:
                    self._flows = {}
                else:
                    self._flows = _coerce(await self._loader())
                    logger.info(f"Loaded {len(self._flows)} category flows")
        return self

    def flow_for(self, category: str) -> CategoryFlowConfig | None:
        return (self._flows or {}).get(category)

    def flows(self) -> dict[str, CategoryFlowConfig]:
        return dict(self._flows or {})


def _coerce(flows: Mapping[str, CategoryFlowConfig | dict]) -> dict[str, CategoryFlowConfig]:
    # Cache hits come back as plain dicts
    return {
        name: flow if isinstance(flow, CategoryFlowConfig)
        else CategoryFlowConfig.model_validate(flow)
        for name, flow in flows.items()
    }
