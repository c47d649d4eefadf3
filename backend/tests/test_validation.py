"""Tests for per-step validation."""

import pytest

from openshop.middleware.exceptions import StepValidationError
from openshop.schemas.wizard import Address, DayHours, StoreHours, WizardState
from openshop.services.validation import (
    ensure_valid,
    validate_basics,
    validate_location,
    validate_policies,
    validate_review,
    validate_step,
)


def _address(**overrides) -> Address:
    fields = dict(street_address="1 Farm Rd", city="Ames", state="IA", zip_code="50010")
    fields.update(overrides)
    return Address(**fields)


def _state(**sections) -> WizardState:
    return WizardState.model_validate(sections)


@pytest.mark.unit
class TestBasics:
    def test_empty_basics(self, catalog):
        errors = validate_basics(WizardState(), catalog)
        assert set(errors) == {"store_name", "description", "categories"}

    def test_whitespace_name_is_missing(self, catalog):
        state = _state(store_basics={
            "store_name": "   ", "description": "Fresh eggs", "categories": ["Vegetables"],
        })
        assert set(validate_basics(state, catalog)) == {"store_name"}

    def test_category_with_flow_requires_answer(self, catalog):
        state = _state(store_basics={
            "store_name": "Hilltop", "description": "Beef", "categories": ["Live Animals"],
        })
        errors = validate_basics(state, catalog)
        assert list(errors) == ["category_responses.Live Animals"]
        assert "What do you do with your animals?" in errors["category_responses.Live Animals"]

    def test_category_without_flow_needs_no_answer(self, catalog):
        state = _state(store_basics={
            "store_name": "Hilltop", "description": "Greens", "categories": ["Vegetables"],
        })
        assert validate_basics(state, catalog) == {}

    def test_answered(self, catalog):
        state = _state(store_basics={
            "store_name": "Hilltop",
            "description": "Beef",
            "categories": ["Live Animals"],
            "setup_flow": {"category_responses": {"Live Animals": "raise"}},
        })
        assert validate_basics(state, catalog) == {}


@pytest.mark.unit
class TestLocation:
    def test_missing_business_address(self):
        errors = validate_location(WizardState())
        assert "business_address.street_address" in errors
        assert "business_address.zip_code" in errors
        assert "selling_methods" in errors

    def test_separate_billing_address_required(self):
        state = _state(location_logistics={
            "business_address": _address().model_dump(),
            "billing_same_as_business": False,
            "selling_methods": ["pickup"],
        })
        errors = validate_location(state)
        assert set(errors) == {
            "billing_address.street_address",
            "billing_address.city",
            "billing_address.state",
            "billing_address.zip_code",
        }

    def test_delivery_needs_positive_radius(self):
        state = _state(location_logistics={
            "business_address": _address().model_dump(),
            "selling_methods": ["local-delivery"],
            "delivery_radius_mi": 0,
        })
        assert set(validate_location(state)) == {"delivery_radius_mi"}

    def test_separate_pickup_address_required(self):
        state = _state(location_logistics={
            "business_address": _address().model_dump(),
            "selling_methods": ["pickup"],
            "pickup_same_as_business": False,
        })
        assert "pickup_address.city" in validate_location(state)

    def test_valid(self):
        state = _state(location_logistics={
            "business_address": _address().model_dump(),
            "selling_methods": ["pickup", "local-delivery"],
            "delivery_radius_mi": 10,
        })
        assert validate_location(state) == {}


@pytest.mark.unit
class TestPolicies:
    def test_default_hours_valid(self):
        assert validate_policies(WizardState()) == {}

    def test_closed_all_week(self):
        hours = StoreHours(**{day: DayHours() for day, _ in StoreHours().days()})
        state = WizardState(store_hours=hours)
        assert set(validate_policies(state)) == {"store_hours"}

    def test_close_before_open(self):
        state = WizardState(store_hours=StoreHours(
            monday=DayHours(is_open=True, open_time="17:00", close_time="09:00"),
        ))
        errors = validate_policies(state)
        assert set(errors) == {"store_hours.monday"}
        assert "after opening" in errors["store_hours.monday"]

    def test_bad_time_format(self):
        state = WizardState(store_hours=StoreHours(
            tuesday=DayHours(is_open=True, open_time="9am", close_time="17:00"),
        ))
        assert "HH:MM" in validate_policies(state)["store_hours.tuesday"]

    def test_all_day_needs_no_times(self):
        state = WizardState(store_hours=StoreHours(
            sunday=DayHours(is_open=True, is_all_day=True),
        ))
        assert validate_policies(state) == {}


@pytest.mark.unit
class TestReviewAndDispatch:
    def test_terms_required(self):
        assert validate_review(WizardState()) == {
            "agreed_to_terms": "You must agree to the terms and conditions"
        }
        assert validate_review(WizardState(agreed_to_terms=True)) == {}

    def test_optional_steps(self, catalog):
        assert validate_step("partnership", WizardState(), catalog) == {}
        assert validate_step("branding", WizardState(), catalog) == {}

    def test_ensure_valid_raises_with_field_errors(self, catalog):
        with pytest.raises(StepValidationError) as exc_info:
            ensure_valid("review", WizardState(), catalog)
        assert exc_info.value.status_code == 422
        assert "agreed_to_terms" in exc_info.value.errors
