"""Partner candidates, partnership records, and reconciliation results.

PotentialPartner and Partnership parse remote API payloads (camelCase on
the wire).  ReconciliationResult is what PartnershipReconciler reports
back: one item per attempted create/terminate plus aggregate counts.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, computed_field
from pydantic.alias_generators import to_camel

PartnerRole = Literal["producer", "processor"]


class _RemoteModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartnerAddress(_RemoteModel):
    address_line1: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    formatted_address: str | None = None


class PotentialPartner(_RemoteModel):
    store_id: int
    store_name: str
    store_type: str = ""
    address: PartnerAddress | None = None
    distance_miles: float = 0.0
    can_partner_with: bool = True
    existing_partnership_id: int | None = None
    existing_partnership_status: str | None = None


class Partnership(_RemoteModel):
    partnership_id: int
    producer_store_id: int
    processor_store_id: int
    initiated_by_store_id: int | None = None
    status: str = "pending"  # pending | active | terminated
    partnership_terms: str | None = None

    def partner_of(self, store_id: int) -> int:
        """Return the store on the other side of this partnership."""
        if self.producer_store_id == store_id:
            return self.processor_store_id
        return self.producer_store_id


class PartnerRef(BaseModel):
    """An established relationship as the local store knows it."""
    partner_id: int
    partnership_id: int | None = None


# ── Reconciliation ───────────────────────────────────────────

ReconciliationAction = Literal["created", "already_existed", "terminated", "failed"]


class ReconciliationItem(BaseModel):
    partner_id: int
    operation: Literal["create", "terminate"]
    action: ReconciliationAction
    partnership_id: int | None = None
    error: str | None = None


class ReconciliationResult(BaseModel):
    items: list[ReconciliationItem] = []

    def _count(self, action: str) -> int:
        return sum(1 for item in self.items if item.action == action)

    @computed_field
    @property
    def created(self) -> int:
        return self._count("created")

    @computed_field
    @property
    def terminated(self) -> int:
        return self._count("terminated")

    @computed_field
    @property
    def already_existed(self) -> int:
        return self._count("already_existed")

    @computed_field
    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def failures(self) -> list[ReconciliationItem]:
        return [item for item in self.items if item.action == "failed"]

    def warnings(self) -> list[str]:
        out = []
        for item in self.failures:
            verb = "add" if item.operation == "create" else "remove"
            out.append(
                f"Could not {verb} partnership with store {item.partner_id}: "
                f"{item.error or 'unknown error'}"
            )
        return out
