"""Store-onboarding wizard orchestration.

WizardController owns one session's WizardState and composes the
catalog, deriver, sequencer, draft store, partner search and
reconciler.  Every user edit goes through _commit():

  1. apply the mutation
  2. re-derive the store config if categories/answers changed
  3. recompute the step list and clamp the index
  4. schedule a debounced auto-save

"Continue" validates the current step and runs its side effect against
the store API before moving on:

  basics      → create (or update) the store; server config wins
  location    → business/billing/pickup addresses, delivery radius
  partnership → reconcile selected partners (failures become warnings)
  policies    → open hours

Submission is one-way.  AuthError from any remote call ends the session.
"""

import logging
from datetime import datetime, timezone
from typing import get_args

from pydantic import BaseModel

from openshop.clients.store_api import StoreApiClient
from openshop.config import settings
from openshop.middleware.exceptions import (
    AuthError,
    DraftNotFoundError,
    IllegalTransitionError,
    OpenShopException,
    PersistenceError,
)
from openshop.schemas.catalog import DerivedStoreConfig, StoreType
from openshop.schemas.partnership import PartnerRef, PotentialPartner, ReconciliationResult
from openshop.schemas.store import RemoteStore, StoreSetupResponse
from openshop.schemas.wizard import (
    Address,
    BasicsUpdate,
    BrandingAsset,
    DraftSummary,
    HoursUpdate,
    LocationLogistics,
    LocationUpdate,
    PartnershipSelection,
    PartnershipsUpdate,
    SetupFlow,
    StepInfo,
    StoreBasics,
    StoreHours,
    WizardProgress,
    WizardState,
)
from openshop.services.catalog import CategoryFlowCatalog
from openshop.services.deriver import derive, search_partner_type, store_role, store_type_for
from openshop.services.drafts import AutoSaver, DraftStore
from openshop.services.partners import ESTABLISHED_STATUSES, PartnerSearchService
from openshop.services.reconciler import PartnershipReconciler, known_after
from openshop.services.sequencer import StepContext, StepSequencer
from openshop.services.validation import ensure_valid

logger = logging.getLogger(__name__)

_STORE_TYPES = set(get_args(StoreType))


# ── Payload builders ────────────────────────────────────────

def setup_flow_payload(state: WizardState) -> dict:
    basics = state.store_basics
    derived = basics.setup_flow.derived
    return {
        "storeName": basics.store_name,
        "description": basics.description,
        "categories": basics.categories,
        "setupFlow": {
            "derivedStoreType": derived.store_type,
            "derivedCanProduce": derived.can_produce,
            "derivedCanProcess": derived.can_process,
            "derivedCanRetail": derived.can_retail,
            "partnershipRadiusMi": state.partnerships.partnership_radius_mi,
            "needsPartnerships": derived.needs_partnerships,
            "partnershipType": derived.partnership_type,
            "categoryResponses": basics.setup_flow.category_responses,
        },
    }


def address_payload(address: Address, address_type: str, is_primary: bool = False) -> dict:
    return {
        "addressType": address_type,
        "locationName": address.location_name,
        "contactPhone": address.contact_phone,
        "contactEmail": address.contact_email,
        "streetAddress": address.street_address,
        "city": address.city,
        "state": address.state,
        "zipCode": address.zip_code,
        "country": address.country or "US",
        "pickupInstructions": address.pickup_instructions,
        "isPrimary": is_primary,
        "isActive": True,
    }


def open_hours_payload(hours: StoreHours) -> list[dict]:
    """Seven rows, dayOfWeek 0 = Sunday."""
    rows = []
    for day_of_week, (_, day) in enumerate(hours.days()):
        if not day.is_open:
            rows.append({"dayOfWeek": day_of_week, "openTime": None,
                         "closeTime": None, "isClosed": True})
        elif day.is_all_day:
            rows.append({"dayOfWeek": day_of_week, "openTime": "00:00:00",
                         "closeTime": "23:59:00", "isClosed": False})
        else:
            rows.append({"dayOfWeek": day_of_week, "openTime": f"{day.open_time}:00",
                         "closeTime": f"{day.close_time}:00", "isClosed": False})
    return rows


def authoritative_config(
    proposed: DerivedStoreConfig, response: StoreSetupResponse
) -> DerivedStoreConfig:
    """Fold the server-confirmed fields over the client proposal."""
    store_type = response.store_type
    if store_type not in _STORE_TYPES:
        store_type = proposed.store_type
    return proposed.model_copy(update={
        "store_type": store_type,
        "needs_partnerships": response.needs_partnerships,
        "partnership_type": response.partnership_type or proposed.partnership_type,
    })


def _merge(model: BaseModel, update: BaseModel) -> BaseModel:
    """Apply the fields a PATCH body actually set, re-validating the result.

    An explicit null only clears fields that default to None.
    """
    fields = type(model).model_fields
    changes = {
        name: value
        for name, value in update.model_dump(exclude_unset=True).items()
        if name in fields and (value is not None or fields[name].default is None)
    }
    return type(model).model_validate({**model.model_dump(), **changes})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WizardController:
    def __init__(
        self,
        user_id: str,
        client: StoreApiClient,
        catalog: CategoryFlowCatalog,
        drafts: DraftStore,
        autosave_delay: float | None = None,
        search_delay: float | None = None,
    ):
        self.user_id = user_id
        self.client = client
        self.catalog = catalog
        self._drafts = drafts
        self.state = self._blank_state()
        self.edit_mode = False
        self.submitted = False
        self.exited = False
        self.has_unsaved_changes = False
        self.warnings: list[str] = []
        self.last_reconciliation: ReconciliationResult | None = None
        self.established: list[PartnerRef] = []
        self._sequencer = StepSequencer()
        self._reconciler = PartnershipReconciler(client)
        self._partners = PartnerSearchService(client, delay=search_delay)
        self._autosaver = AutoSaver(drafts, user_id, lambda: self.state, delay=autosave_delay)

    @staticmethod
    def _blank_state() -> WizardState:
        return WizardState(
            location_logistics=LocationLogistics(
                delivery_radius_mi=settings.default_delivery_radius_mi
            ),
            partnerships=PartnershipSelection(
                partnership_radius_mi=settings.default_partnership_radius_mi
            ),
        )

    # ── Read side ───────────────────────────────────────────

    @property
    def config(self) -> DerivedStoreConfig:
        return self.state.store_basics.setup_flow.derived

    @property
    def sequencer(self) -> StepSequencer:
        return self._sequencer

    @property
    def autosaver(self) -> AutoSaver:
        return self._autosaver

    @property
    def partner_search(self) -> PartnerSearchService:
        return self._partners

    def progress(self) -> WizardProgress:
        steps = [
            StepInfo(index=i, key=step.key, title=step.title)
            for i, step in enumerate(self._sequencer.steps)
        ]
        index = self._sequencer.index
        total = len(steps)
        percent = 100 if self.submitted else round((index + 1) / total * 100)
        return WizardProgress(
            state=self.state,
            steps=steps,
            current_step=steps[index],
            step_label=f"Step {index + 1} of {total}",
            percent_complete=percent,
            derived_config=self.config,
            edit_mode=self.edit_mode,
            is_submitted=self.submitted,
            has_unsaved_changes=self.has_unsaved_changes,
            autosave_status=self._autosaver.status,
            partners_loading=self._partners.loading,
            partner_search_error=self._partners.error,
            warnings=list(self.warnings),
            last_reconciliation=self.last_reconciliation,
        )

    # ── Session lifecycle ───────────────────────────────────

    async def start(self, store_id: int | None = None) -> WizardProgress:
        """Begin a session: fresh, or editing an existing store."""
        await self._guard(self.catalog.load())
        try:
            await self._drafts.clear_if_foreign(self.user_id)
        except PersistenceError as e:
            logger.warning(f"Could not check draft ownership: {e.message}")

        if store_id is not None:
            self.edit_mode = True
            store = await self._guard(self.client.get_store(store_id))
            self._load_store(store)
            await self._load_established()

        self._resequence()
        logger.info(
            f"Wizard started for user {self.user_id} "
            f"({'editing store ' + str(store_id) if self.edit_mode else 'new store'})"
        )
        return self.progress()

    def _load_store(self, store: RemoteStore) -> None:
        store_type = store.store_type
        if store_type not in _STORE_TYPES:
            store_type = store_type_for(store.can_produce, store.can_process)
        derived = DerivedStoreConfig(
            store_type=store_type,
            can_produce=store.can_produce,
            can_process=store.can_process,
            can_retail=store.can_retail,
            needs_partnerships=store.needs_partnerships,
            partnership_type=store.partnership_type or "",
        )
        self.state.store_id = store.store_id
        self.state.store_basics = StoreBasics(
            store_name=store.store_name,
            description=store.description or "",
            categories=store.categories,
            setup_flow=SetupFlow(
                category_responses=store.category_responses,
                derived=derived,
                authoritative=True,
            ),
        )
        self.state.partnerships.partnership_radius_mi = (
            store.partnership_radius_mi or settings.default_partnership_radius_mi
        )
        self.state.partnerships.partnership_type = search_partner_type(derived) or ""

    async def _load_established(self, seed_selection: bool = True) -> None:
        store_id = self.state.store_id
        if store_id is None or store_role(self.config) is None:
            self.established = []
            return
        self.established = await self._guard(
            self._partners.established_partners(store_id, search_partner_type(self.config))
        )
        if seed_selection:
            self.state.partnerships.selected_partner_ids = [
                ref.partner_id for ref in self.established
            ]

    async def pending_draft(self) -> DraftSummary | None:
        """A draft this user could resume, if any.  Never offered in edit mode."""
        if self.edit_mode:
            return None
        try:
            draft = await self._drafts.load(self.user_id)
        except PersistenceError as e:
            logger.warning(f"Could not read draft: {e.message}")
            return None
        if draft is None or draft.state.store_id is None:
            return None
        return DraftSummary.from_draft(draft)

    async def recover_draft(self) -> WizardProgress:
        if self.edit_mode:
            raise IllegalTransitionError("Drafts are not used when editing a store")
        try:
            draft = await self._drafts.load(self.user_id)
        except PersistenceError as e:
            logger.warning(f"Could not read draft: {e.message}")
            draft = None
        if draft is None or draft.state.store_id is None:
            raise DraftNotFoundError()

        self.state = draft.state.model_copy(deep=True)
        self._sequencer = StepSequencer(self._step_context(), self.state.current_step_index)
        try:
            # The draft's selection is the merchant's; only refresh what exists remotely
            await self._load_established(seed_selection=False)
        except AuthError:
            raise
        except OpenShopException as e:
            self.warnings.append(f"Could not load existing partnerships: {e.message}")
        self._resequence()
        self.has_unsaved_changes = False
        logger.info(f"Recovered draft for store {self.state.store_id}")
        return self.progress()

    async def discard_draft(self) -> bool:
        """Delete this device's draft.  Returns False if the backend failed."""
        self._autosaver.stop()
        try:
            await self._drafts.clear()
        except PersistenceError as e:
            logger.warning(f"Could not discard draft: {e.message}")
            self.warnings.append(e.message)
            return False
        return True

    async def exit(self, save_draft: bool = True) -> WizardProgress:
        """Leave the wizard.  In-flight remote calls are not cancelled."""
        if save_draft and self.has_unsaved_changes and not self.submitted:
            await self._autosaver.flush()
        self._shutdown()
        return self.progress()

    def _shutdown(self) -> None:
        self._autosaver.stop()
        self._partners.cancel()
        self.exited = True

    async def close(self) -> None:
        self._shutdown()
        await self.client.aclose()

    async def _guard(self, awaitable):
        """Await a remote call; an AuthError ends the session."""
        try:
            return await awaitable
        except AuthError as e:
            self._auth_lost(e)
            raise

    # ── Mutations ───────────────────────────────────────────

    def _step_context(self) -> StepContext:
        return StepContext(
            config=self.config,
            edit_mode=self.edit_mode,
            has_established_partnerships=bool(self.established),
        )

    def _resequence(self) -> None:
        self.state.current_step_index = self._sequencer.recompute(self._step_context())

    def _rederive(self) -> None:
        basics = self.state.store_basics
        answers = basics.setup_flow.category_responses
        derived = derive(basics.categories, answers, self.catalog)
        basics.setup_flow = SetupFlow(category_responses=answers, derived=derived)
        self.state.partnerships.partnership_type = search_partner_type(derived) or ""

    def _commit(self, rederive: bool = False) -> WizardProgress:
        if rederive:
            self._rederive()
        self._resequence()
        self.has_unsaved_changes = True
        self._autosaver.schedule()
        return self.progress()

    def _check_editable(self) -> None:
        if self.submitted:
            raise IllegalTransitionError("Store has already been submitted")

    def update_basics(self, body: BasicsUpdate) -> WizardProgress:
        self._check_editable()
        basics = self.state.store_basics
        answers = dict(basics.setup_flow.category_responses)
        for category, option_key in (body.category_responses or {}).items():
            if option_key is None:
                answers.pop(category, None)
            else:
                answers[category] = option_key

        merged = _merge(basics, body.model_copy(update={"category_responses": None}))
        merged.setup_flow = basics.setup_flow.model_copy(update={"category_responses": answers})
        self.state.store_basics = merged

        rederive = body.categories is not None or body.category_responses is not None
        return self._commit(rederive=rederive)

    def update_location(self, body: LocationUpdate) -> WizardProgress:
        self._check_editable()
        self.state.location_logistics = _merge(self.state.location_logistics, body)
        return self._commit()

    def update_hours(self, body: HoursUpdate) -> WizardProgress:
        self._check_editable()
        for day, hours in body.days.items():
            setattr(self.state.store_hours, day, hours)
        return self._commit()

    def set_branding_asset(self, asset: BrandingAsset, url: str) -> WizardProgress:
        self._check_editable()
        branding = self.state.branding
        if asset == "logo":
            branding.logo_url = url
        elif asset == "banner":
            branding.banner_url = url
        elif asset == "video":
            branding.video_url = url
        elif url not in branding.gallery_urls:
            branding.gallery_urls.append(url)
        return self._commit()

    async def upload_branding(
        self,
        asset: BrandingAsset,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> WizardProgress:
        self._check_editable()
        store_id = self._require_store()
        image = await self._guard(
            self.client.upload_asset(store_id, asset, filename, content, content_type)
        )
        if not image.url:
            raise IllegalTransitionError(f"Upload of {asset} returned no URL")
        return self.set_branding_asset(asset, image.url)

    def update_partnerships(self, body: PartnershipsUpdate) -> WizardProgress:
        self._check_editable()
        selection = self.state.partnerships
        radius_changed = (
            body.partnership_radius_mi is not None
            and body.partnership_radius_mi != selection.partnership_radius_mi
        )
        self.state.partnerships = _merge(selection, body)
        if radius_changed:
            self._schedule_search()
        return self._commit()

    def set_terms(self, agreed: bool) -> WizardProgress:
        self._check_editable()
        self.state.agreed_to_terms = agreed
        return self._commit()

    # ── Partner search ──────────────────────────────────────

    def _search_params(self) -> tuple[int, str, int] | None:
        partner_type = search_partner_type(self.config)
        if self.state.store_id is None or not partner_type:
            return None
        return self.state.store_id, partner_type, self.state.partnerships.partnership_radius_mi

    def _schedule_search(self) -> None:
        params = self._search_params()
        if params is not None:
            self._partners.schedule_search(
                *params, on_results=self._store_candidates, on_auth_error=self._auth_lost
            )

    def _auth_lost(self, error: AuthError) -> None:
        logger.warning(f"Session for user {self.user_id} is no longer valid; exiting wizard")
        self._shutdown()

    async def _store_candidates(self, partners: list[PotentialPartner]) -> None:
        self.state.partnerships.potential_partners = partners
        self._learn_existing(partners)

    def _learn_existing(self, partners: list[PotentialPartner]) -> None:
        """Treat candidates that already have a live partnership as known."""
        known = {ref.partner_id: ref for ref in self.established}
        selected = self.state.partnerships.selected_partner_ids
        for partner in partners:
            if partner.existing_partnership_id is None:
                continue
            if (partner.existing_partnership_status or "").lower() not in ESTABLISHED_STATUSES:
                continue
            ref = known.get(partner.store_id)
            if ref is None:
                known[partner.store_id] = PartnerRef(
                    partner_id=partner.store_id,
                    partnership_id=partner.existing_partnership_id,
                )
                if partner.store_id not in selected:
                    selected.append(partner.store_id)
            elif ref.partnership_id is None:
                known[partner.store_id] = ref.model_copy(
                    update={"partnership_id": partner.existing_partnership_id}
                )
        self.established = sorted(known.values(), key=lambda ref: ref.partner_id)

    async def search_partners(self, radius_miles: int | None = None) -> WizardProgress:
        """Search now, optionally with a new radius."""
        self._check_editable()
        if radius_miles is not None:
            self.state.partnerships.partnership_radius_mi = radius_miles
            self._commit()
        params = self._search_params()
        if params is None:
            raise IllegalTransitionError(
                "Partner search needs a created store that requires partnerships"
            )
        self._partners.cancel()
        partners = await self._guard(self._partners.search(*params))
        if self._partners.error is None:
            await self._store_candidates(partners)
        return self.progress()

    # ── Navigation ──────────────────────────────────────────

    async def advance(self) -> WizardProgress:
        """Validate and persist the current step, then move forward.

        On the review step this is the final submission.
        """
        self._check_editable()
        step = self._sequencer.current
        if step.key == "review":
            return await self.submit()
        if self._sequencer.is_last:
            raise IllegalTransitionError("Already on the last step")
        ensure_valid(step.key, self.state, self.catalog)
        self.warnings = []

        if step.key == "basics":
            await self._save_basics()
        elif step.key == "location":
            await self._save_location()
        elif step.key == "partnership":
            await self._save_partnerships()
        elif step.key == "policies":
            await self._save_hours()

        self._resequence()
        # A side effect can hide the step we were on; the clamp then
        # already points at the step that follows it.
        if self._sequencer.current.key == step.key:
            self._sequencer.advance()
        self.state.current_step_index = self._sequencer.index

        if self._sequencer.current.key == "partnership" and not self.state.partnerships.potential_partners:
            self._schedule_search()
        return self.progress()

    def retreat(self) -> WizardProgress:
        self.state.current_step_index = self._sequencer.retreat()
        return self.progress()

    def jump_to(self, index: int) -> WizardProgress:
        self.state.current_step_index = self._sequencer.jump_to(index)
        return self.progress()

    def _require_store(self) -> int:
        if self.state.store_id is None:
            raise IllegalTransitionError("Complete store basics first")
        return self.state.store_id

    async def _save_basics(self) -> None:
        payload = setup_flow_payload(self.state)
        flow = self.state.store_basics.setup_flow

        if self.state.store_id is None:
            response = await self._guard(self.client.create_store_with_setup_flow(payload))
            self.state.store_id = response.store_id
            derived = authoritative_config(flow.derived, response)
            logger.info(
                f"Created store {response.store_id} as {derived.store_type} "
                f"(needs_partnerships={derived.needs_partnerships})"
            )
        else:
            await self._guard(self.client.update_store(self.state.store_id, payload))
            derived = flow.derived

        self.state.store_basics.setup_flow = flow.model_copy(
            update={"derived": derived, "authoritative": True}
        )
        self.state.partnerships.partnership_type = search_partner_type(derived) or ""
        self.has_unsaved_changes = True
        self._autosaver.schedule()

    async def _save_location(self) -> None:
        store_id = self._require_store()
        loc = self.state.location_logistics
        business = loc.business_address

        await self._guard(self.client.create_address(
            store_id, address_payload(business, "business", is_primary=True)
        ))

        billing = business if loc.billing_same_as_business else loc.billing_address
        if billing is not None:
            await self._guard(self.client.create_address(
                store_id, address_payload(billing, "billing")
            ))

        if "pickup" in loc.selling_methods:
            pickup = business if loc.pickup_same_as_business else loc.pickup_address
            if pickup is not None:
                await self._guard(self.client.create_address(
                    store_id, address_payload(pickup, "pickup_location")
                ))

        if "local-delivery" in loc.selling_methods:
            await self._guard(self.client.set_delivery_radius(store_id, loc.delivery_radius_mi))

    async def _save_partnerships(self) -> None:
        store_id = self._require_store()
        role = store_role(self.config)
        if role is None:
            return

        result = await self._guard(self._reconciler.reconcile(
            store_id, role, self.state.partnerships.selected_partner_ids, self.established
        ))
        self.last_reconciliation = result
        self.warnings = result.warnings()

        try:
            self.established = await self._partners.established_partners(
                store_id, search_partner_type(self.config)
            )
        except AuthError:
            self._shutdown()
            raise
        except OpenShopException as e:
            logger.warning(f"Could not refresh partnerships for store {store_id}: {e.message}")
            self.established = known_after(self.established, result)

    async def _save_hours(self) -> None:
        store_id = self._require_store()
        await self._guard(
            self.client.set_open_hours(store_id, open_hours_payload(self.state.store_hours))
        )

    # ── Submission ──────────────────────────────────────────

    async def submit(self, notes: str = "") -> WizardProgress:
        self._check_editable()
        if self._sequencer.current.key != "review":
            raise IllegalTransitionError("Finish the remaining steps before submitting")
        ensure_valid("review", self.state, self.catalog)
        store_id = self._require_store()

        receipt = await self._guard(self.client.submit_store({
            "storeId": store_id,
            "agreedToTermsAt": _utcnow().isoformat(),
            "termsVersion": settings.terms_version,
            "submissionNotes": notes,
        }))

        self.state.submission_id = receipt.submission_id
        self.state.submission_status = receipt.status
        self.state.submitted_at = receipt.submitted_at or _utcnow()
        self._sequencer.mark_submitted()
        self.submitted = True
        self.has_unsaved_changes = False
        self._autosaver.stop()
        try:
            await self._drafts.clear()
        except PersistenceError as e:
            logger.warning(f"Submitted store {store_id} but could not clear draft: {e.message}")
        logger.info(f"Store {store_id} submitted for review ({receipt.submission_id})")
        return self.progress()
