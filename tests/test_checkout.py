import pytest

from milko.checkout import CheckoutStep, CheckoutStepGate, missing_address_fields
from milko.errors import NetworkError, Unauthorized, ValidationError
from milko.schemas import Address

HOME = Address(
    id=7, name="Asha Rao", street="12 MG Road", city="Bengaluru", state="Karnataka",
    postal_code="560001", country="India", phone="9876543210", is_default=True,
)

FORM = {
    "name": "Ravi Kumar",
    "street": "4 Park Street",
    "city": "Kolkata",
    "state": "West Bengal",
    "postal_code": "700016",
    "phone": "9123456780",
}


def test_unauthenticated_customer_cannot_advance_even_with_full_form():
    gate = CheckoutStepGate(is_authenticated=False)
    gate.update_form(**FORM)

    assert gate.needs_login
    assert not gate.can_advance()

    result = gate.advance()
    assert not result
    assert isinstance(result.error, Unauthorized)
    assert gate.step == CheckoutStep.ADDRESS


def test_login_unblocks_address_step():
    gate = CheckoutStepGate(is_authenticated=False, saved_addresses=[HOME])
    assert not gate.advance()

    gate.set_authenticated(True)
    assert not gate.needs_login
    assert gate.advance()
    assert gate.step == CheckoutStep.REVIEW


def test_default_address_is_preselected():
    gate = CheckoutStepGate(is_authenticated=True, saved_addresses=[HOME])

    assert gate.selected_address == HOME
    assert gate.form.city == "Bengaluru"
    assert not gate.creating_new


def test_missing_fields_are_reported():
    gate = CheckoutStepGate(is_authenticated=True)
    gate.update_form(name="Ravi", city="   ")

    result = gate.advance()
    assert isinstance(result.error, ValidationError)
    assert result.error.fields == ["street", "city", "state", "postal_code", "phone"]
    assert gate.step == CheckoutStep.ADDRESS


def test_missing_address_fields_helper():
    assert missing_address_fields(HOME) == []
    assert missing_address_fields(Address(name="A", phone="1")) == ["street", "city", "state", "postal_code"]


def test_unknown_form_field_rejected():
    gate = CheckoutStepGate(is_authenticated=True)
    with pytest.raises(ValueError):
        gate.update_form(landmark="Near the temple")


def test_complete_new_address_advances_without_saving():
    calls = []
    gate = CheckoutStepGate(is_authenticated=True, save_address=calls.append)
    gate.update_form(**FORM)

    result = gate.advance()
    assert result
    assert result.address.city == "Kolkata"
    assert calls == []


def test_failed_save_blocks_transition():
    def save(address):
        raise NetworkError()

    gate = CheckoutStepGate(is_authenticated=True, save_address=save)
    gate.update_form(**FORM)
    gate.request_save()

    result = gate.advance()
    assert not result
    assert isinstance(result.error, NetworkError)
    assert gate.step == CheckoutStep.ADDRESS
    assert not gate.saving
    assert gate.form.city == "Kolkata"


def test_successful_save_selects_saved_address():
    def save(address):
        return address.model_copy(update={"id": 42})

    gate = CheckoutStepGate(is_authenticated=True, save_address=save)
    gate.update_form(**FORM)
    gate.request_save()

    result = gate.advance()
    assert result
    assert gate.selected_address.id == 42
    assert gate.saved_addresses[-1].id == 42
    assert result.address.id == 42


def test_edit_keeps_entered_values():
    gate = CheckoutStepGate(is_authenticated=True)
    gate.update_form(**FORM)
    gate.advance()

    result = gate.edit()
    assert result
    assert gate.step == CheckoutStep.ADDRESS
    assert gate.form.street == "4 Park Street"


def test_advance_from_review_is_rejected():
    gate = CheckoutStepGate(is_authenticated=True, saved_addresses=[HOME])
    gate.advance()

    assert not gate.advance()
    assert gate.step == CheckoutStep.REVIEW


def test_place_order_only_from_review():
    gate = CheckoutStepGate(is_authenticated=True, saved_addresses=[HOME])

    result = gate.place_order()
    assert not result
    assert isinstance(result.error, ValidationError)


def test_place_order_once():
    gate = CheckoutStepGate(is_authenticated=True, saved_addresses=[HOME])
    gate.advance()

    first = gate.place_order()
    assert first
    assert first.address == HOME

    second = gate.place_order()
    assert not second
    assert "already" in second.error.message


def test_place_order_rechecks_authentication():
    gate = CheckoutStepGate(is_authenticated=True, saved_addresses=[HOME])
    gate.advance()
    gate.set_authenticated(False)

    result = gate.place_order()
    assert isinstance(result.error, Unauthorized)
    assert not gate.order_submitted


def test_place_order_revalidates_selected_address():
    incomplete = HOME.model_copy(update={"phone": ""})
    gate = CheckoutStepGate(is_authenticated=True, saved_addresses=[incomplete])
    assert gate.advance()

    result = gate.place_order()
    assert isinstance(result.error, ValidationError)
    assert result.error.fields == ["phone"]
