"""Partner search and the established-partnership lookup.

search() hits the store API immediately; schedule_search() debounces
radius changes so only the last one in a burst is sent.  Transport and
API failures land in `error` for the caller to show with a retry
button; only AuthError propagates.
"""

import asyncio
import logging
from typing import Awaitable, Callable

from openshop.clients.store_api import StoreApiClient
from openshop.config import settings
from openshop.middleware.exceptions import AuthError, OpenShopException
from openshop.schemas.partnership import PartnerRef, PotentialPartner
from openshop.utils.debounce import Debouncer

logger = logging.getLogger(__name__)

ESTABLISHED_STATUSES = ("pending", "active")

ResultsCallback = Callable[[list[PotentialPartner]], Awaitable[None]]
AuthErrorCallback = Callable[[AuthError], None]


class PartnerSearchService:
    def __init__(self, client: StoreApiClient, delay: float | None = None):
        self._client = client
        self.loading = False
        self.error: str | None = None
        self._params: tuple[int, str, int] | None = None
        self._on_results: ResultsCallback | None = None
        self._on_auth_error: AuthErrorCallback | None = None
        self._debouncer = Debouncer(
            settings.partner_search_debounce_seconds if delay is None else delay,
            self._run_scheduled,
            name="partner-search",
        )

    @property
    def pending(self) -> bool:
        return self._debouncer.pending

    async def search(
        self, store_id: int, partner_type: str, radius_miles: int
    ) -> list[PotentialPartner]:
        self.loading = True
        self.error = None
        try:
            partners = await self._client.search_potential_partners(
                store_id, partner_type, radius_miles
            )
        except AuthError:
            raise
        except OpenShopException as e:
            logger.warning(f"Partner search failed for store {store_id}: {e.message}")
            self.error = e.message
            return []
        finally:
            self.loading = False

        partners.sort(key=lambda p: p.distance_miles)
        logger.info(
            f"Found {len(partners)} {partner_type} partners within "
            f"{radius_miles}mi of store {store_id}"
        )
        return partners

    def schedule_search(
        self,
        store_id: int,
        partner_type: str,
        radius_miles: int,
        on_results: ResultsCallback | None = None,
        on_auth_error: AuthErrorCallback | None = None,
    ) -> None:
        """Debounced search.  `on_results` only sees successful searches."""
        self._params = (store_id, partner_type, radius_miles)
        self._on_results = on_results
        self._on_auth_error = on_auth_error
        self.loading = True
        self._debouncer.trigger()

    async def _run_scheduled(self) -> None:
        if self._params is None:
            return
        try:
            partners = await self.search(*self._params)
        except AuthError as e:
            self.error = e.message
            if self._on_auth_error is not None:
                self._on_auth_error(e)
            return
        if self.error is None and self._on_results is not None:
            await self._on_results(partners)

    async def flush(self) -> None:
        await self._debouncer.flush()

    def cancel(self) -> None:
        self._debouncer.cancel()
        self.loading = False

    async def established_partners(
        self, store_id: int, partner_type: str | None = None
    ) -> list[PartnerRef]:
        """Pending and active partnerships, as seen from `store_id`.

        One filtered list call per status; the status is re-checked here
        for servers that ignore the filter.
        """
        batches = await asyncio.gather(*(
            self._client.list_partnerships(store_id, status=status, partner_type=partner_type)
            for status in ESTABLISHED_STATUSES
        ))
        refs: dict[int, PartnerRef] = {}
        for records in batches:
            for p in records:
                if p.status.lower() in ESTABLISHED_STATUSES:
                    refs[p.partnership_id] = PartnerRef(
                        partner_id=p.partner_of(store_id), partnership_id=p.partnership_id
                    )
        return sorted(refs.values(), key=lambda ref: ref.partner_id)
