"""Per-step validation run before the wizard may advance.

Each validator returns a field → message dict; an empty dict means the
step is complete.  ensure_valid() turns a non-empty result into a
StepValidationError.
"""

import re

from openshop.middleware.exceptions import StepValidationError
from openshop.schemas.wizard import Address, WizardState
from openshop.services.catalog import CategoryFlowCatalog

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

_ADDRESS_FIELDS = (
    ("street_address", "Street address"),
    ("city", "City"),
    ("state", "State"),
    ("zip_code", "ZIP code"),
)


def _address_errors(address: Address | None, prefix: str) -> dict[str, str]:
    errors = {}
    for field, label in _ADDRESS_FIELDS:
        value = getattr(address, field, "") if address else ""
        if not value or not value.strip():
            errors[f"{prefix}.{field}"] = f"{label} is required"
    return errors


def validate_basics(state: WizardState, catalog: CategoryFlowCatalog) -> dict[str, str]:
    basics = state.store_basics
    errors = {}
    if not basics.store_name.strip():
        errors["store_name"] = "Store name is required"
    if not basics.description.strip():
        errors["description"] = "Store description is required"
    if not basics.categories:
        errors["categories"] = "Select at least one category"

    answers = basics.setup_flow.category_responses
    for category in basics.categories:
        flow = catalog.flow_for(category)
        if flow is not None and not answers.get(category):
            errors[f"category_responses.{category}"] = (
                f"Please answer: {flow.question}"
            )
    return errors


def validate_location(state: WizardState) -> dict[str, str]:
    loc = state.location_logistics
    errors = _address_errors(loc.business_address, "business_address")

    if not loc.billing_same_as_business:
        errors.update(_address_errors(loc.billing_address, "billing_address"))

    if not loc.selling_methods:
        errors["selling_methods"] = "Select at least one selling method"
    if "local-delivery" in loc.selling_methods and loc.delivery_radius_mi <= 0:
        errors["delivery_radius_mi"] = "Delivery radius must be greater than zero"
    if "pickup" in loc.selling_methods and not loc.pickup_same_as_business:
        errors.update(_address_errors(loc.pickup_address, "pickup_address"))
    return errors


def validate_policies(state: WizardState) -> dict[str, str]:
    errors = {}
    open_days = [(day, hours) for day, hours in state.store_hours.days() if hours.is_open]
    if not open_days:
        errors["store_hours"] = "Store must be open at least one day"

    for day, hours in open_days:
        if hours.is_all_day:
            continue
        if not hours.open_time or not hours.close_time:
            errors[f"store_hours.{day}"] = f"{day.title()}: opening and closing times are required"
            continue
        if not _TIME_RE.match(hours.open_time) or not _TIME_RE.match(hours.close_time):
            errors[f"store_hours.{day}"] = f"{day.title()}: times must be HH:MM"
            continue
        if hours.close_time <= hours.open_time:
            errors[f"store_hours.{day}"] = f"{day.title()}: closing time must be after opening time"
    return errors


def validate_review(state: WizardState) -> dict[str, str]:
    if not state.agreed_to_terms:
        return {"agreed_to_terms": "You must agree to the terms and conditions"}
    return {}


def validate_step(
    step_key: str, state: WizardState, catalog: CategoryFlowCatalog
) -> dict[str, str]:
    if step_key == "basics":
        return validate_basics(state, catalog)
    if step_key == "location":
        return validate_location(state)
    if step_key == "policies":
        return validate_policies(state)
    if step_key == "review":
        return validate_review(state)
    # Partnership and branding are optional
    return {}


def ensure_valid(step_key: str, state: WizardState, catalog: CategoryFlowCatalog) -> None:
    errors = validate_step(step_key, state, catalog)
    if errors:
        raise StepValidationError(errors)
