"""
Milko error taxonomy.

Request-level failures are raised as MilkoError subclasses and rendered by the
API's exception handler. Coupon rejections are not exceptions: they come back
inside a CouponResult so the caller has to deal with them explicitly.
"""

import enum
from typing import Optional


class MilkoError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MilkoError):
    """A required field is missing or invalid. Blocks the transition it guards."""
    status_code = 422
    default_message = "Please fill in all required fields"

    def __init__(self, message: Optional[str] = None, fields: Optional[list] = None):
        super().__init__(message)
        self.fields = list(fields or [])


class Unauthorized(MilkoError):
    status_code = 401
    default_message = "Please login to continue"


class NotFound(MilkoError):
    status_code = 404
    default_message = "Not found"


class NetworkError(MilkoError):
    """Timeout or connection failure. Retryable by re-triggering the action."""
    status_code = 503
    default_message = "Network error, please try again"


class CouponError(str, enum.Enum):
    INACTIVE = "coupon_inactive"
    EXPIRED = "coupon_expired"
    MIN_NOT_MET = "coupon_min_not_met"
    LIMIT_REACHED = "coupon_limit_reached"

    @property
    def message(self) -> str:
        return _COUPON_MESSAGES[self]


_COUPON_MESSAGES = {
    CouponError.INACTIVE: "This coupon is no longer active",
    CouponError.EXPIRED: "This coupon has expired or is not valid yet",
    CouponError.MIN_NOT_MET: "Cart amount is below the minimum purchase for this coupon",
    CouponError.LIMIT_REACHED: "This coupon has reached its usage limit",
}


def error_for_status(status_code: Optional[int], message: Optional[str] = None) -> MilkoError:
    """Translate a transport-level failure into the taxonomy.

    ``status_code`` is None when no response arrived at all (timeout, refused
    connection).
    """
    if status_code is None or status_code in (502, 503, 504):
        return NetworkError(message)
    if status_code == 401:
        return Unauthorized(message)
    if status_code == 404:
        return NotFound(message)
    if status_code in (400, 422):
        return ValidationError(message)
    return MilkoError(message)
