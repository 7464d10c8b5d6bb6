"""
Customer-facing view of an order's fulfillment state.

Orders move placed -> confirmed -> package_prepared -> out_for_delivery ->
delivered. Cancelled and refunded are terminal exits an admin can take from
any state before delivery. Nothing here changes an order; it only describes it.
"""

from datetime import datetime
from typing import List, Optional

from milko.schemas import CamelModel, Order, OrderStatus, PaymentMethod, PaymentStatus

CANONICAL_ORDER = [
    OrderStatus.PLACED,
    OrderStatus.CONFIRMED,
    OrderStatus.PACKAGE_PREPARED,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

TERMINAL_EXITS = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


class TimelineStep(CamelModel):
    key: str
    title: str
    description: str
    date: str = ""
    completed: bool = False


class StatusBadge(CamelModel):
    label: str
    variant: str


# (key, status that completes the step, timestamp field, title, description)
TIMELINE_CHECKPOINTS = [
    ("order_confirmed", OrderStatus.PLACED, "created_at",
     "Order confirmed", "Order placed and confirmed"),
    ("package_prepared", OrderStatus.PACKAGE_PREPARED, "package_prepared_at",
     "Package prepared", "Packed and ready for dispatch"),
    ("out_for_delivery", OrderStatus.OUT_FOR_DELIVERY, "out_for_delivery_at",
     "Out for delivery", "Will be delivered today"),
    ("delivered", OrderStatus.DELIVERED, "delivered_at",
     "Delivered", "Package delivered successfully"),
]


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return f"{value:%b} {value.day}, {value:%Y}, {value:%I:%M %p}"


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return f"{value:%b} {value.day}, {value:%Y}"


def status_index(status: OrderStatus) -> int:
    """Position in the forward flow. Terminal exits count as placed."""
    if status in TERMINAL_EXITS:
        return 0
    return CANONICAL_ORDER.index(status)


def build_timeline(order: Order) -> List[TimelineStep]:
    current = status_index(order.status)
    steps = []
    for key, checkpoint, field, title, description in TIMELINE_CHECKPOINTS:
        steps.append(TimelineStep(
            key=key,
            title=title,
            description=description,
            date=format_timestamp(getattr(order, field)),
            completed=current >= CANONICAL_ORDER.index(checkpoint),
        ))
    return steps


def resolve_payment_label(order: Order) -> StatusBadge:
    if order.status == OrderStatus.CANCELLED:
        return StatusBadge(label="Cancelled", variant="cancelled")
    if order.status == OrderStatus.REFUNDED:
        return StatusBadge(label="Refunded", variant="refunded")
    if order.payment_status == PaymentStatus.PAID:
        return StatusBadge(label="Paid", variant="paid")
    return StatusBadge(label="Pending", variant="pending")


def resolve_cod_badge(order: Order) -> Optional[StatusBadge]:
    """Secondary badge for cash-on-delivery orders, driven by payment status only."""
    if order.payment_method != PaymentMethod.COD:
        return None
    if order.payment_status == PaymentStatus.PAID:
        return StatusBadge(label="COD / Paid", variant="paid")
    return StatusBadge(label="COD / Pending", variant="pending")


def resolve_delivery_display(order: Order) -> str:
    if order.status in TERMINAL_EXITS:
        return "—"
    if order.status != OrderStatus.DELIVERED:
        return "On its way"
    if order.delivery_date is not None:
        return format_date(order.delivery_date)
    return "Delivered"


# ==================== ADMIN TRANSITIONS ====================

STAGE_TIMESTAMPS = {
    OrderStatus.PACKAGE_PREPARED: "package_prepared_at",
    OrderStatus.OUT_FOR_DELIVERY: "out_for_delivery_at",
    OrderStatus.DELIVERED: "delivered_at",
}


def allowed_transitions(status: OrderStatus) -> List[OrderStatus]:
    if status in TERMINAL_EXITS or status == OrderStatus.DELIVERED:
        return []
    forward = CANONICAL_ORDER[CANONICAL_ORDER.index(status) + 1:]
    return forward + list(TERMINAL_EXITS)


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in allowed_transitions(current)


def timestamp_field(status: OrderStatus) -> Optional[str]:
    return STAGE_TIMESTAMPS.get(status)
