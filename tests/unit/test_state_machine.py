import pytest

from localmart.errors import InvalidStateTransition
from localmart.models.delivery import DeliveryStatus
from localmart.models.order import OrderStatus
from localmart.models.order_event import OrderEventType
from localmart.services.state_machine import (
    ORDER_STATE_TRANSITIONS,
    ensure_cancellable,
    ensure_valid_delivery_transition,
    ensure_valid_order_transition,
    event_type_for_delivery_status,
    event_type_for_order_status,
)


def test_every_order_status_has_a_transition_entry():
    assert set(ORDER_STATE_TRANSITIONS) == set(OrderStatus)


def test_no_status_transitions_into_cancelled():
    assert all(OrderStatus.CANCELLED not in targets for targets in ORDER_STATE_TRANSITIONS.values())


def test_order_transition_error_names_both_states():
    with pytest.raises(InvalidStateTransition) as exc:
        ensure_valid_order_transition(OrderStatus.PAID, OrderStatus.DELIVERED)

    assert exc.value.current_status == "PAID"
    assert exc.value.target_status == "DELIVERED"
    assert exc.value.message == "Invalid state transition: PAID -> DELIVERED"


@pytest.mark.parametrize("status", [OrderStatus.APPROVED, OrderStatus.PAYMENT_PENDING])
def test_cancellable_statuses(status):
    ensure_cancellable(status)


def test_paid_orders_cannot_be_cancelled():
    with pytest.raises(InvalidStateTransition, match="Only APPROVED or PAYMENT_PENDING"):
        ensure_cancellable(OrderStatus.PAID)


def test_delivery_transitions_are_strictly_linear():
    ensure_valid_delivery_transition(DeliveryStatus.ASSIGNED, DeliveryStatus.PICKED_UP)

    with pytest.raises(InvalidStateTransition):
        ensure_valid_delivery_transition(DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT)
    with pytest.raises(InvalidStateTransition):
        ensure_valid_delivery_transition(DeliveryStatus.DELIVERED, DeliveryStatus.ASSIGNED)


def test_event_types_follow_status_names():
    assert event_type_for_order_status(OrderStatus.PAID) == OrderEventType.PAID
    assert (
        event_type_for_delivery_status(DeliveryStatus.PICKED_UP)
        == OrderEventType.DELIVERY_PICKED_UP
    )
