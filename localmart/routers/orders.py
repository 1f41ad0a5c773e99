import uuid

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from localmart.db.session import get_db
from localmart.models.order import OrderStatus
from localmart.observability import observe_timing
from localmart.schemas.delivery import DeliveryCreate, DeliveryEnvelope, TrackingEnvelope
from localmart.schemas.order import (
    ItemApprovalRequest,
    OrderCancelRequest,
    OrderCreate,
    OrderEnvelope,
    OrderEventsEnvelope,
    OrderListEnvelope,
    OrderStatusUpdate,
)
from localmart.services import delivery_service, orders_service
from localmart.services.delivery_service import Location
from localmart.services.idempotency_service import (
    build_scope,
    claim_idempotency_key,
    release_idempotency_key,
    save_idempotency_result,
    validate_idempotency_key,
)
from localmart.services.orders_service import OrderLine

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


def _order_envelope(order) -> OrderEnvelope:
    return OrderEnvelope(order=order)


@router.post("", response_model=OrderEnvelope, summary="Place order", status_code=201)
def place_order_endpoint(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> OrderEnvelope:
    idempotency_key = validate_idempotency_key(idempotency_key)
    request_payload = payload.model_dump(mode="json")
    route_scope = build_scope("POST:/api/v1/orders", owner_id=payload.customer_id)

    if idempotency_key:
        idem = claim_idempotency_key(
            db=db,
            owner_id=payload.customer_id,
            scope=route_scope,
            idempotency_key=idempotency_key,
            request_payload=request_payload,
        )
        if idem.replay:
            return OrderEnvelope.model_validate(idem.response_payload)

    try:
        with observe_timing("order_placement_seconds"):
            order = orders_service.place_order(
                db,
                customer_id=payload.customer_id,
                shop_id=payload.shop_id,
                items=[
                    OrderLine(
                        product_id=item.product_id,
                        quantity=item.quantity,
                        price=item.price,
                        product_name=item.product_name,
                    )
                    for item in payload.items
                ],
                delivery_address=payload.delivery_address,
                notes=payload.notes,
            )
    except Exception:
        if idempotency_key:
            release_idempotency_key(
                db=db,
                owner_id=payload.customer_id,
                scope=route_scope,
                idempotency_key=idempotency_key,
            )
        raise
    response_payload = _order_envelope(order).model_dump(mode="json")

    if idempotency_key:
        save_idempotency_result(
            db=db,
            owner_id=payload.customer_id,
            scope=route_scope,
            idempotency_key=idempotency_key,
            request_payload=request_payload,
            response_payload=response_payload,
        )

    return OrderEnvelope.model_validate(response_payload)


@router.get("", response_model=OrderListEnvelope, summary="List orders")
def list_orders_endpoint(
    db: Session = Depends(get_db),
    customer_id: str | None = Query(default=None),
    shop_id: str | None = Query(default=None),
    status: OrderStatus | None = Query(default=None),
) -> OrderListEnvelope:
    orders = orders_service.list_orders(
        db, customer_id=customer_id, shop_id=shop_id, status_filter=status
    )
    return OrderListEnvelope(orders=orders)


@router.get("/{order_id}", response_model=OrderEnvelope, summary="Get order")
def get_order_endpoint(order_id: uuid.UUID, db: Session = Depends(get_db)) -> OrderEnvelope:
    return _order_envelope(orders_service.get_order(db, order_id))


@router.post("/{order_id}/status", response_model=OrderEnvelope, summary="Advance order status")
def advance_status_endpoint(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
) -> OrderEnvelope:
    order = orders_service.advance_status(db, order_id, payload.status, payload.expected_version)
    return _order_envelope(order)


@router.post("/{order_id}/cancel", response_model=OrderEnvelope, summary="Cancel order")
def cancel_order_endpoint(
    order_id: uuid.UUID,
    payload: OrderCancelRequest,
    db: Session = Depends(get_db),
) -> OrderEnvelope:
    order = orders_service.cancel_order(db, order_id, payload.reason, payload.cancelled_by)
    return _order_envelope(order)


@router.post(
    "/{order_id}/items/{item_id}/approval",
    response_model=OrderEnvelope,
    summary="Approve or reject one item",
)
def item_approval_endpoint(
    order_id: uuid.UUID,
    item_id: uuid.UUID,
    payload: ItemApprovalRequest,
    db: Session = Depends(get_db),
) -> OrderEnvelope:
    order = orders_service.set_item_approval(
        db, order_id, item_id, payload.approval_status, payload.rejection_reason
    )
    return _order_envelope(order)


@router.post(
    "/{order_id}/items/approval",
    response_model=OrderEnvelope,
    summary="Approve or reject every item",
)
def all_items_approval_endpoint(
    order_id: uuid.UUID,
    payload: ItemApprovalRequest,
    db: Session = Depends(get_db),
) -> OrderEnvelope:
    order = orders_service.set_all_items_approval(
        db, order_id, payload.approval_status, payload.rejection_reason
    )
    return _order_envelope(order)


@router.get("/{order_id}/events", response_model=OrderEventsEnvelope, summary="Order timeline")
def order_events_endpoint(
    order_id: uuid.UUID, db: Session = Depends(get_db)
) -> OrderEventsEnvelope:
    return OrderEventsEnvelope(events=orders_service.list_order_events(db, order_id))


def _to_location(payload) -> Location | None:
    if payload is None:
        return None
    return Location(address=payload.address, latitude=payload.latitude, longitude=payload.longitude)


@router.post(
    "/{order_id}/delivery",
    response_model=DeliveryEnvelope,
    summary="Open the delivery for a paid order",
    status_code=201,
)
def create_delivery_endpoint(
    order_id: uuid.UUID,
    payload: DeliveryCreate | None = None,
    db: Session = Depends(get_db),
) -> DeliveryEnvelope:
    payload = payload or DeliveryCreate()
    delivery = delivery_service.create_delivery(
        db, order_id, _to_location(payload.pickup), _to_location(payload.destination)
    )
    return DeliveryEnvelope(delivery=delivery)


@router.get("/{order_id}/tracking", response_model=TrackingEnvelope, summary="Track order")
def tracking_endpoint(order_id: uuid.UUID, db: Session = Depends(get_db)) -> TrackingEnvelope:
    tracking = delivery_service.get_tracking_info(db, order_id)
    return TrackingEnvelope.model_validate({"tracking": tracking}, from_attributes=True)
