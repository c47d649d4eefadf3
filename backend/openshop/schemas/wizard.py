"""Pydantic schemas for the store-onboarding wizard.

WizardState is the single mutable aggregate for one onboarding session.
It is also the payload persisted inside a Draft, so every section must
round-trip through JSON.

The `*Update` bodies use Optional fields so PATCH (partial update) works:
only fields the client actually sent are applied.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from openshop.schemas.catalog import DerivedStoreConfig
from openshop.schemas.partnership import PotentialPartner, ReconciliationResult

# Index doubles as dayOfWeek on the wire (0 = Sunday).
WEEKDAYS = (
    "sunday",
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
)

Weekday = Literal[
    "sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"
]
SellingMethod = Literal["pickup", "local-delivery"]
AutosaveStatus = Literal["idle", "saving", "saved", "error"]
BrandingAsset = Literal["logo", "banner", "gallery", "video"]


def _unique(values: list) -> list:
    """Drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(values))


# ── Store basics ─────────────────────────────────────────────

class SetupFlow(BaseModel):
    """Category answers plus the store configuration derived from them.

    `derived` is the client-proposed config until the store API confirms
    it; `authoritative` flips to True once a server response has been
    merged in.
    """
    category_responses: dict[str, str] = {}
    derived: DerivedStoreConfig = DerivedStoreConfig()
    authoritative: bool = False


class StoreBasics(BaseModel):
    store_name: str = ""
    description: str = ""
    categories: list[str] = []
    setup_flow: SetupFlow = Field(default_factory=SetupFlow)

    @field_validator("categories")
    @classmethod
    def _dedupe_categories(cls, v: list[str]) -> list[str]:
        return _unique(v)


# ── Location & logistics ─────────────────────────────────────

class Address(BaseModel):
    location_name: str = ""
    contact_phone: str = ""
    contact_email: str = ""
    street_address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = "US"
    pickup_instructions: str = ""


class LocationLogistics(BaseModel):
    business_address: Address = Field(default_factory=Address)
    billing_same_as_business: bool = True
    billing_address: Address | None = None
    selling_methods: list[SellingMethod] = []
    delivery_radius_mi: int = 5
    pickup_same_as_business: bool = True
    pickup_address: Address | None = None

    @field_validator("selling_methods")
    @classmethod
    def _dedupe_methods(cls, v: list) -> list:
        return _unique(v)


# ── Store hours ──────────────────────────────────────────────

class DayHours(BaseModel):
    is_open: bool = False
    open_time: str | None = None   # "HH:MM"
    close_time: str | None = None
    is_all_day: bool = False


def _weekday_hours() -> DayHours:
    return DayHours(is_open=True, open_time="09:00", close_time="17:00")


class StoreHours(BaseModel):
    sunday: DayHours = Field(default_factory=DayHours)
    monday: DayHours = Field(default_factory=_weekday_hours)
    tuesday: DayHours = Field(default_factory=_weekday_hours)
    wednesday: DayHours = Field(default_factory=_weekday_hours)
    thursday: DayHours = Field(default_factory=_weekday_hours)
    friday: DayHours = Field(default_factory=_weekday_hours)
    saturday: DayHours = Field(default_factory=_weekday_hours)

    def days(self) -> list[tuple[str, DayHours]]:
        return [(day, getattr(self, day)) for day in WEEKDAYS]


# ── Branding ─────────────────────────────────────────────────

class Branding(BaseModel):
    logo_url: str | None = None
    banner_url: str | None = None
    gallery_urls: list[str] = []
    video_url: str | None = None


# ── Partnerships ─────────────────────────────────────────────

class PartnershipSelection(BaseModel):
    partnership_radius_mi: int = 50
    selected_partner_ids: list[int] = []
    partnership_type: str = ""
    potential_partners: list[PotentialPartner] = []

    @field_validator("selected_partner_ids")
    @classmethod
    def _dedupe_ids(cls, v: list[int]) -> list[int]:
        return _unique(v)


# ── Aggregate ────────────────────────────────────────────────

class WizardState(BaseModel):
    store_id: int | None = None
    current_step_index: int = Field(default=0, ge=0)
    store_basics: StoreBasics = Field(default_factory=StoreBasics)
    location_logistics: LocationLogistics = Field(default_factory=LocationLogistics)
    store_hours: StoreHours = Field(default_factory=StoreHours)
    branding: Branding = Field(default_factory=Branding)
    partnerships: PartnershipSelection = Field(default_factory=PartnershipSelection)
    agreed_to_terms: bool = False
    submission_id: str | None = None
    submission_status: str | None = None
    submitted_at: datetime | None = None


class Draft(BaseModel):
    """A persisted WizardState snapshot owned by one user."""
    state: WizardState
    owner_user_id: str
    saved_at: datetime


class DraftSummary(BaseModel):
    owner_user_id: str
    saved_at: datetime
    store_id: int | None
    store_name: str
    current_step_index: int

    @classmethod
    def from_draft(cls, draft: Draft) -> "DraftSummary":
        return cls(
            owner_user_id=draft.owner_user_id,
            saved_at=draft.saved_at,
            store_id=draft.state.store_id,
            store_name=draft.state.store_basics.store_name,
            current_step_index=draft.state.current_step_index,
        )


# ── Request bodies ───────────────────────────────────────────

class BasicsUpdate(BaseModel):
    store_name: str | None = None
    description: str | None = None
    categories: list[str] | None = None
    # Merged into existing answers; a None value removes that answer
    category_responses: dict[str, str | None] | None = None


class LocationUpdate(BaseModel):
    business_address: Address | None = None
    billing_same_as_business: bool | None = None
    billing_address: Address | None = None
    selling_methods: list[SellingMethod] | None = None
    delivery_radius_mi: int | None = None
    pickup_same_as_business: bool | None = None
    pickup_address: Address | None = None


class HoursUpdate(BaseModel):
    """Per-day overrides keyed by weekday name."""
    days: dict[Weekday, DayHours]


class BrandingUpdate(BaseModel):
    asset: BrandingAsset
    url: str


class PartnershipsUpdate(BaseModel):
    partnership_radius_mi: int | None = Field(default=None, ge=1, le=500)
    selected_partner_ids: list[int] | None = None


class TermsUpdate(BaseModel):
    agreed_to_terms: bool


class SubmitRequest(BaseModel):
    submission_notes: str = ""


class PartnerSearchRequest(BaseModel):
    radius_miles: int | None = Field(default=None, ge=1, le=500)


class ExitRequest(BaseModel):
    save_draft: bool = True


# ── Responses ────────────────────────────────────────────────

class StepInfo(BaseModel):
    index: int
    key: str
    title: str


class WizardProgress(BaseModel):
    state: WizardState
    steps: list[StepInfo]
    current_step: StepInfo
    step_label: str
    percent_complete: int
    derived_config: DerivedStoreConfig
    edit_mode: bool
    is_submitted: bool
    has_unsaved_changes: bool
    autosave_status: AutosaveStatus
    partners_loading: bool = False
    partner_search_error: str | None = None
    warnings: list[str] = []
    last_reconciliation: ReconciliationResult | None = None


class SessionStart(BaseModel):
    progress: WizardProgress
    draft: DraftSummary | None = None
