import uuid
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from localmart.config import settings
from localmart.db.base import now_utc
from localmart.errors import (
    ConcurrentModification,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from localmart.models.order import ItemApprovalStatus, Order, OrderItem, OrderStatus
from localmart.models.order_event import OrderEvent, OrderEventType
from localmart.observability import log_event, metrics_store
from localmart.services.ledger_store import commit_versioned, load, retry_on_conflict, storage_retry
from localmart.services.state_machine import (
    TERMINAL_ORDER_STATUSES,
    ensure_cancellable,
    ensure_valid_order_transition,
    event_type_for_order_status,
)


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    quantity: int
    price: int
    product_name: str | None = None


def append_order_event(
    db: Session,
    order_id: uuid.UUID,
    event_type: OrderEventType,
    message: str,
    payload: dict | None = None,
    delivery_id: uuid.UUID | None = None,
) -> None:
    db.add(
        OrderEvent(
            order_id=order_id,
            delivery_id=delivery_id,
            type=event_type,
            message=message,
            payload=payload or {},
        )
    )


def _validate_lines(items: Sequence[OrderLine]) -> None:
    if not items:
        raise ValidationError("Order must contain at least one item")
    for index, item in enumerate(items):
        if not item.product_id or not str(item.product_id).strip():
            raise ValidationError(f"Item {index} is missing product_id")
        if item.quantity <= 0:
            raise ValidationError(f"Item {index} quantity must be greater than 0")
        if item.price < 0:
            raise ValidationError(f"Item {index} price must not be negative")


def _require_text(value: str | None, field_name: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise ValidationError(f"{field_name} is required")
    return normalized


@storage_retry
def place_order(
    db: Session,
    *,
    customer_id: str,
    shop_id: str,
    items: Sequence[OrderLine],
    delivery_address: str,
    notes: str | None = None,
) -> Order:
    customer_id = _require_text(customer_id, "customer_id")
    shop_id = _require_text(shop_id, "shop_id")
    delivery_address = _require_text(delivery_address, "delivery_address")
    _validate_lines(items)

    subtotal = sum(item.quantity * item.price for item in items)
    order = Order(
        customer_id=customer_id,
        shop_id=shop_id,
        status=OrderStatus.PENDING_APPROVAL,
        subtotal=subtotal,
        total_amount=subtotal + settings.order_delivery_fee,
        delivery_address=delivery_address,
        notes=notes,
        items=[
            OrderItem(
                position=position,
                product_id=item.product_id.strip(),
                product_name=item.product_name,
                quantity=item.quantity,
                price=item.price,
                approval_status=ItemApprovalStatus.PENDING,
            )
            for position, item in enumerate(items)
        ],
    )
    db.add(order)
    db.flush()

    append_order_event(
        db,
        order.id,
        OrderEventType.PLACED,
        "Order placed",
        {"item_count": len(items), "total_amount": order.total_amount},
    )
    db.commit()
    db.refresh(order)

    metrics_store.increment("orders_placed_total")
    log_event("order_placed", order_id=str(order.id), user_id=customer_id)
    return order


def get_order(db: Session, order_id: uuid.UUID) -> Order:
    return load(db, Order, order_id, label="Order")


def list_orders(
    db: Session,
    *,
    customer_id: str | None = None,
    shop_id: str | None = None,
    status_filter: OrderStatus | None = None,
) -> list[Order]:
    query = select(Order)
    if customer_id:
        query = query.where(Order.customer_id == customer_id)
    if shop_id:
        query = query.where(Order.shop_id == shop_id)
    if status_filter:
        query = query.where(Order.status == status_filter)
    return list(db.scalars(query.order_by(Order.created_at.desc())))


def list_order_events(db: Session, order_id: uuid.UUID) -> list[OrderEvent]:
    get_order(db, order_id)
    events = db.scalars(
        select(OrderEvent)
        .where(OrderEvent.order_id == order_id)
        .order_by(OrderEvent.created_at.asc())
    )
    return list(events)


@storage_retry
def advance_status(
    db: Session,
    order_id: uuid.UUID,
    target_status: OrderStatus,
    expected_version: int,
) -> Order:
    """Move an order one edge forward, guarded by the caller's view of its version.

    The version recorded at read time is checked again by the UPDATE itself, so
    a write that slipped in after the read still surfaces as a conflict.
    """
    order = get_order(db, order_id)
    if order.version != expected_version:
        metrics_store.increment("order_stale_version_total")
        raise ConcurrentModification(
            "Order",
            message=f"Order version is {order.version}, expected {expected_version}",
        )

    previous_status = order.status
    ensure_valid_order_transition(previous_status, target_status)

    order.status = target_status
    append_order_event(
        db,
        order.id,
        event_type_for_order_status(target_status),
        f"Order moved to {target_status.value}",
        {"from_status": previous_status.value, "to_status": target_status.value},
    )
    commit_versioned(db, label="Order")

    log_event(f"order_status_{target_status.value.lower()}", order_id=str(order_id))
    return order


@storage_retry
def cancel_order(
    db: Session,
    order_id: uuid.UUID,
    reason: str,
    cancelled_by: str | None = None,
) -> Order:
    def _cancel() -> Order:
        order = get_order(db, order_id)
        normalized_reason = _require_text(reason, "Cancellation reason")
        previous_status = order.status
        ensure_cancellable(previous_status)

        order.status = OrderStatus.CANCELLED
        order.cancellation_reason = normalized_reason
        order.cancelled_by = cancelled_by
        append_order_event(
            db,
            order.id,
            OrderEventType.CANCELLED,
            "Order cancelled",
            {
                "from_status": previous_status.value,
                "reason": normalized_reason,
                "cancelled_by": cancelled_by,
            },
        )
        commit_versioned(db, label="Order")
        return order

    order = retry_on_conflict(db, _cancel, label="Order")
    metrics_store.increment("orders_cancelled_total")
    log_event("order_cancelled", order_id=str(order_id), user_id=cancelled_by)
    return order


def _ensure_items_mutable(order: Order) -> None:
    if order.status in TERMINAL_ORDER_STATUSES:
        raise InvalidStateTransition(
            order.status.value,
            order.status.value,
            message=f"Items of a {order.status.value} order cannot change approval",
        )


def _apply_item_approval(
    item: OrderItem,
    approval_status: ItemApprovalStatus,
    rejection_reason: str | None,
) -> None:
    item.approval_status = approval_status
    if approval_status == ItemApprovalStatus.REJECTED:
        item.rejection_reason = (rejection_reason or "").strip() or None
    else:
        item.rejection_reason = None


@storage_retry
def set_item_approval(
    db: Session,
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    approval_status: ItemApprovalStatus,
    rejection_reason: str | None = None,
) -> Order:
    def _apply() -> Order:
        order = get_order(db, order_id)
        _ensure_items_mutable(order)
        item = next((candidate for candidate in order.items if candidate.id == item_id), None)
        if item is None:
            raise NotFound("Order item not found")

        _apply_item_approval(item, approval_status, rejection_reason)
        # touching the order row routes the write through its version check
        order.updated_at = now_utc()
        append_order_event(
            db,
            order.id,
            OrderEventType.ITEM_APPROVAL_CHANGED,
            f"Item {item.product_id} marked {approval_status.value}",
            {"item_id": str(item.id), "approval_status": approval_status.value},
        )
        commit_versioned(db, label="Order")
        return order

    return retry_on_conflict(db, _apply, label="Order")


@storage_retry
def set_all_items_approval(
    db: Session,
    order_id: uuid.UUID,
    approval_status: ItemApprovalStatus,
    rejection_reason: str | None = None,
) -> Order:
    def _apply() -> Order:
        order = get_order(db, order_id)
        _ensure_items_mutable(order)
        for item in order.items:
            _apply_item_approval(item, approval_status, rejection_reason)
        order.updated_at = now_utc()
        append_order_event(
            db,
            order.id,
            OrderEventType.ITEM_APPROVAL_CHANGED,
            f"All items marked {approval_status.value}",
            {"approval_status": approval_status.value, "item_count": len(order.items)},
        )
        commit_versioned(db, label="Order")
        return order

    return retry_on_conflict(db, _apply, label="Order")
