"""
Checkout step gate.

The checkout has two steps, ADDRESS and REVIEW. While the customer is not
logged in the ADDRESS step shows a login form instead (``needs_login``), but
that is not a step of its own. Every user action goes through the gate, which
says whether the move is allowed and why not.
"""

import enum
from typing import Callable, List, Optional

from milko.errors import MilkoError, Unauthorized, ValidationError
from milko.schemas import Address, CamelModel

REQUIRED_ADDRESS_FIELDS = ("name", "street", "city", "state", "postal_code", "country", "phone")


class CheckoutStep(str, enum.Enum):
    ADDRESS = "address"
    REVIEW = "review"


class StepResult:
    def __init__(self, ok: bool, step: CheckoutStep, error: Optional[MilkoError] = None,
                 address: Optional[Address] = None):
        self.ok = ok
        self.step = step
        self.error = error
        self.address = address

    def __bool__(self):
        return self.ok

    def __repr__(self):
        return f"StepResult(ok={self.ok}, step={self.step.value}, error={self.error!r})"


class AddressForm(CamelModel):
    name: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = "India"
    phone: str = ""

    def to_address(self) -> Address:
        return Address(**self.model_dump())


def missing_address_fields(address) -> List[str]:
    """Names of required fields that are empty or blank on ``address``."""
    return [
        field for field in REQUIRED_ADDRESS_FIELDS
        if not str(getattr(address, field, "") or "").strip()
    ]


class CheckoutStepGate:
    def __init__(
        self,
        is_authenticated: bool = False,
        saved_addresses: Optional[List[Address]] = None,
        save_address: Optional[Callable[[Address], Address]] = None,
    ):
        self.step = CheckoutStep.ADDRESS
        self.is_authenticated = is_authenticated
        self.saved_addresses = list(saved_addresses or [])
        self.form = AddressForm()
        self.selected_address: Optional[Address] = None
        self.creating_new = not self.saved_addresses
        self.save_requested = False
        self.saving = False
        self.order_submitted = False
        self._save_address = save_address

        defaults = [a for a in self.saved_addresses if a.is_default]
        if defaults:
            self.select_address(defaults[0])

    @property
    def needs_login(self) -> bool:
        return self.step == CheckoutStep.ADDRESS and not self.is_authenticated

    def set_authenticated(self, is_authenticated: bool):
        self.is_authenticated = is_authenticated

    # ---- address step inputs ----

    def select_address(self, address: Address):
        self.selected_address = address
        self.creating_new = False
        self.form = AddressForm(**{f: getattr(address, f) or "" for f in REQUIRED_ADDRESS_FIELDS})

    def start_new_address(self):
        self.selected_address = None
        self.creating_new = True
        self.form = AddressForm()

    def update_form(self, **fields):
        unknown = set(fields) - set(AddressForm.model_fields)
        if unknown:
            raise ValueError(f"Unknown address fields: {', '.join(sorted(unknown))}")
        self.form = self.form.model_copy(update=fields)

    def request_save(self, save: bool = True):
        self.save_requested = save

    # ---- guards ----

    def address_error(self) -> Optional[MilkoError]:
        if not self.is_authenticated:
            return Unauthorized("Please login to proceed with your order")
        if self.selected_address is not None and not self.creating_new:
            return None
        missing = missing_address_fields(self.form)
        if missing:
            return ValidationError("Please fill in all required fields", fields=missing)
        return None

    def can_advance(self) -> bool:
        return self.step == CheckoutStep.ADDRESS and not self.saving and self.address_error() is None

    # ---- transitions ----

    def advance(self) -> StepResult:
        """ADDRESS -> REVIEW. Saves a new address first when that was requested."""
        if self.step != CheckoutStep.ADDRESS:
            return StepResult(False, self.step, ValidationError("Already reviewing the order"))
        if self.saving:
            return StepResult(False, self.step, ValidationError("Address is still being saved"))

        error = self.address_error()
        if error is not None:
            return StepResult(False, self.step, error)

        if self.creating_new and self.save_requested and self._save_address is not None:
            self.saving = True
            try:
                saved = self._save_address(self.form.to_address())
            except MilkoError as e:
                return StepResult(False, self.step, e)
            finally:
                self.saving = False
            self.saved_addresses.append(saved)
            self.select_address(saved)
            self.save_requested = False

        self.step = CheckoutStep.REVIEW
        return StepResult(True, self.step, address=self.delivery_address())

    def edit(self) -> StepResult:
        """REVIEW -> ADDRESS. Entered values stay as they were."""
        self.step = CheckoutStep.ADDRESS
        return StepResult(True, self.step)

    def delivery_address(self) -> Address:
        if self.selected_address is not None and not self.creating_new:
            return self.selected_address
        return self.form.to_address()

    def place_order(self) -> StepResult:
        """Final submission from REVIEW. Succeeds once per checkout."""
        if self.step != CheckoutStep.REVIEW:
            return StepResult(False, self.step, ValidationError("Review your order before placing it"))
        if not self.is_authenticated:
            return StepResult(False, self.step, Unauthorized("Please login to proceed with your order"))
        if self.order_submitted:
            return StepResult(False, self.step, ValidationError("Order has already been placed"))

        address = self.delivery_address()
        missing = missing_address_fields(address)
        if missing:
            return StepResult(False, self.step, ValidationError("Please fill in all address fields", fields=missing))

        self.order_submitted = True
        return StepResult(True, self.step, address=address)
