from localmart.errors import InvalidStateTransition
from localmart.models.delivery import DeliveryStatus
from localmart.models.order import OrderStatus
from localmart.models.order_event import OrderEventType

ORDER_STATE_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING_APPROVAL: {OrderStatus.APPROVED},
    OrderStatus.APPROVED: {OrderStatus.PAYMENT_PENDING},
    OrderStatus.PAYMENT_PENDING: {OrderStatus.PAID},
    OrderStatus.PAID: {OrderStatus.PREPARING},
    OrderStatus.PREPARING: {OrderStatus.READY},
    OrderStatus.READY: {OrderStatus.OUT_FOR_DELIVERY},
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# CANCELLED is reached only through cancel_order, which records a reason.
CANCELLABLE_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.APPROVED, OrderStatus.PAYMENT_PENDING}
)

TERMINAL_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
)

FULFILLMENT_READY_ORDER_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PAID, OrderStatus.PREPARING, OrderStatus.READY}
)

DELIVERY_STATE_TRANSITIONS: dict[DeliveryStatus, DeliveryStatus | None] = {
    DeliveryStatus.UNASSIGNED: DeliveryStatus.ASSIGNED,
    DeliveryStatus.ASSIGNED: DeliveryStatus.PICKED_UP,
    DeliveryStatus.PICKED_UP: DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.IN_TRANSIT: DeliveryStatus.DELIVERED,
    DeliveryStatus.DELIVERED: None,
}


def ensure_valid_order_transition(current: OrderStatus, next_status: OrderStatus) -> None:
    allowed = ORDER_STATE_TRANSITIONS.get(current, set())
    if next_status not in allowed:
        raise InvalidStateTransition(current.value, next_status.value)


def ensure_cancellable(current: OrderStatus) -> None:
    if current not in CANCELLABLE_ORDER_STATUSES:
        raise InvalidStateTransition(
            current.value,
            OrderStatus.CANCELLED.value,
            message=(
                f"Cannot cancel order with status: {current.value}. "
                "Only APPROVED or PAYMENT_PENDING orders can be cancelled."
            ),
        )


def ensure_valid_delivery_transition(current: DeliveryStatus, next_status: DeliveryStatus) -> None:
    if DELIVERY_STATE_TRANSITIONS.get(current) != next_status:
        raise InvalidStateTransition(current.value, next_status.value)


def event_type_for_order_status(status_value: OrderStatus) -> OrderEventType:
    return OrderEventType[status_value.value]


def event_type_for_delivery_status(status_value: DeliveryStatus) -> OrderEventType:
    return OrderEventType[f"DELIVERY_{status_value.value}"]
