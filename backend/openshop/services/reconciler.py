"""Converge remote partnerships toward the partners the merchant selected.

    to_create    = desired − known
    to_terminate = known − desired

All creates and terminates go out as one concurrent batch and every
outcome is collected before returning.  "Already exists" on create
counts as success; the other side may have initiated the same
partnership at the same moment.  Per-item failures are reported, not
raised, so re-running reconcile() later only retries what is left.
AuthError aborts the batch.
"""

import asyncio
import logging
from typing import Iterable

from openshop.clients.store_api import StoreApiClient
from openshop.middleware.exceptions import AuthError, ConflictError, OpenShopException
from openshop.schemas.partnership import (
    PartnerRef,
    PartnerRole,
    ReconciliationItem,
    ReconciliationResult,
)

logger = logging.getLogger(__name__)


def plan(
    desired_partner_ids: Iterable[int], known: Iterable[PartnerRef]
) -> tuple[list[int], list[int]]:
    """Return (to_create, to_terminate), each sorted for stable output."""
    desired = set(desired_partner_ids)
    known_ids = {ref.partner_id for ref in known}
    return sorted(desired - known_ids), sorted(known_ids - desired)


class PartnershipReconciler:
    def __init__(self, client: StoreApiClient):
        self._client = client

    async def reconcile(
        self,
        store_id: int,
        store_role: PartnerRole,
        desired_partner_ids: Iterable[int],
        known: Iterable[PartnerRef],
    ) -> ReconciliationResult:
        known = list(known)
        to_create, to_terminate = plan(desired_partner_ids, known)
        if not to_create and not to_terminate:
            return ReconciliationResult()

        partnership_ids = {ref.partner_id: ref.partnership_id for ref in known}
        logger.info(
            f"Reconciling partnerships for store {store_id}: "
            f"create={to_create} terminate={to_terminate}"
        )

        targets = [("create", pid) for pid in to_create]
        targets += [("terminate", pid) for pid in to_terminate]
        ops = [self._create(store_id, store_role, pid) for pid in to_create]
        ops += [self._terminate(pid, partnership_ids.get(pid)) for pid in to_terminate]
        outcomes = await asyncio.gather(*ops, return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, AuthError):
                raise outcome

        items = []
        for (operation, partner_id), outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    f"Unexpected error during {operation} for partner {partner_id}: {outcome!r}"
                )
                outcome = ReconciliationItem(
                    partner_id=partner_id,
                    operation=operation,
                    action="failed",
                    partnership_id=partnership_ids.get(partner_id),
                    error="Unexpected error from the store API",
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            items.append(outcome)

        result = ReconciliationResult(items=items)
        logger.info(
            f"Reconciled store {store_id}: created={result.created} "
            f"already_existed={result.already_existed} "
            f"terminated={result.terminated} failed={result.failed}"
        )
        return result

    async def _create(
        self, store_id: int, store_role: PartnerRole, partner_id: int
    ) -> ReconciliationItem:
        if store_role == "producer":
            producer, processor = store_id, partner_id
        else:
            producer, processor = partner_id, store_id

        try:
            partnership = await self._client.create_partnership(
                producer_store_id=producer,
                processor_store_id=processor,
                initiated_by_store_id=store_id,
            )
        except ConflictError:
            return ReconciliationItem(
                partner_id=partner_id, operation="create", action="already_existed"
            )
        except AuthError:
            raise
        except OpenShopException as e:
            logger.warning(f"Create partnership {store_id}↔{partner_id} failed: {e.message}")
            return ReconciliationItem(
                partner_id=partner_id, operation="create", action="failed", error=e.message
            )

        return ReconciliationItem(
            partner_id=partner_id,
            operation="create",
            action="created",
            partnership_id=partnership.partnership_id,
        )

    async def _terminate(
        self, partner_id: int, partnership_id: int | None
    ) -> ReconciliationItem:
        if partnership_id is None:
            return ReconciliationItem(
                partner_id=partner_id,
                operation="terminate",
                action="failed",
                error="No partnership record found to terminate",
            )

        try:
            await self._client.terminate_partnership(partnership_id)
        except ConflictError:
            # Already terminated on the other side
            pass
        except AuthError:
            raise
        except OpenShopException as e:
            logger.warning(f"Terminate partnership {partnership_id} failed: {e.message}")
            return ReconciliationItem(
                partner_id=partner_id,
                operation="terminate",
                action="failed",
                partnership_id=partnership_id,
                error=e.message,
            )

        return ReconciliationItem(
            partner_id=partner_id,
            operation="terminate",
            action="terminated",
            partnership_id=partnership_id,
        )


def known_after(known: Iterable[PartnerRef], result: ReconciliationResult) -> list[PartnerRef]:
    """Locally-known partnerships once `result` has been applied."""
    refs = {ref.partner_id: ref for ref in known}
    for item in result.items:
        if item.action == "terminated":
            refs.pop(item.partner_id, None)
        elif item.action in ("created", "already_existed"):
            refs[item.partner_id] = PartnerRef(
                partner_id=item.partner_id, partnership_id=item.partnership_id
            )
    return sorted(refs.values(), key=lambda ref: ref.partner_id)
