"""Delivery assignment, progression and live location.

Delivery rows are hot: several agents may race to claim the same one while the
assigned agent streams location updates. Every write here is therefore a
single conditional UPDATE (see ``ledger_store.compare_and_set``) rather than a
read followed by a separate write.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from localmart.config import settings
from localmart.db.base import now_utc
from localmart.errors import (
    AlreadyAssigned,
    ConcurrentModification,
    InvalidStateTransition,
    NotFound,
    ValidationError,
)
from localmart.models.delivery import ACTIVE_DELIVERY_STATUSES, Delivery, DeliveryStatus
from localmart.models.delivery_agent import AgentApprovalStatus, DeliveryAgent
from localmart.models.order_event import OrderEventType
from localmart.observability import log_event, metrics_store
from localmart.services.agents_service import get_agent
from localmart.services.ledger_store import compare_and_set, load, load_by, storage_retry
from localmart.services.orders_service import append_order_event, get_order
from localmart.services.state_machine import (
    FULFILLMENT_READY_ORDER_STATUSES,
    ensure_valid_delivery_transition,
    event_type_for_delivery_status,
)


@dataclass(frozen=True)
class Location:
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None


@dataclass(frozen=True)
class AgentLocation:
    latitude: float
    longitude: float
    updated_at: datetime | None


@dataclass(frozen=True)
class LocationUpdateResult:
    agent_id: uuid.UUID
    updated_delivery_count: int


@dataclass(frozen=True)
class TrackedAgent:
    id: uuid.UUID
    name: str
    phone: str | None
    vehicle_type: str | None


@dataclass(frozen=True)
class TrackingInfo:
    order_id: uuid.UUID
    delivery_id: uuid.UUID
    status: DeliveryStatus
    agent_location: AgentLocation | None
    delivery_agent: TrackedAgent | None
    pickup: Location
    destination: Location


def validate_coordinates(latitude: float | None, longitude: float | None) -> None:
    if latitude is None and longitude is None:
        return
    if latitude is None or longitude is None:
        raise ValidationError("latitude and longitude must be provided together")
    if not -90.0 <= latitude <= 90.0:
        raise ValidationError("latitude must be between -90 and 90")
    if not -180.0 <= longitude <= 180.0:
        raise ValidationError("longitude must be between -180 and 180")


def get_delivery(db: Session, delivery_id: uuid.UUID) -> Delivery:
    return load(db, Delivery, delivery_id, label="Delivery")


def get_delivery_for_order(db: Session, order_id: uuid.UUID) -> Delivery:
    delivery = load_by(db, Delivery, Delivery.order_id == order_id)
    if delivery is None:
        raise NotFound("Delivery not found for order")
    return delivery


def list_deliveries(
    db: Session,
    *,
    agent_id: uuid.UUID | None = None,
    status_filter: DeliveryStatus | None = None,
    unassigned_only: bool = False,
) -> list[Delivery]:
    query = select(Delivery)
    if agent_id:
        query = query.where(Delivery.delivery_agent_id == agent_id)
    if status_filter:
        query = query.where(Delivery.status == status_filter)
    if unassigned_only:
        query = query.where(Delivery.delivery_agent_id.is_(None))
    return list(db.scalars(query.order_by(Delivery.created_at.desc())))


@storage_retry
def create_delivery(
    db: Session,
    order_id: uuid.UUID,
    pickup: Location | None = None,
    destination: Location | None = None,
) -> Delivery:
    """Open the delivery for a paid order. Repeated calls return the same row."""
    existing = load_by(db, Delivery, Delivery.order_id == order_id)
    if existing is not None:
        return existing

    order = get_order(db, order_id)
    if order.status not in FULFILLMENT_READY_ORDER_STATUSES:
        raise InvalidStateTransition(
            order.status.value,
            DeliveryStatus.UNASSIGNED.value,
            message=f"Cannot create delivery for order with status: {order.status.value}",
        )

    pickup = pickup or Location()
    destination = destination or Location(address=order.delivery_address)
    validate_coordinates(pickup.latitude, pickup.longitude)
    validate_coordinates(destination.latitude, destination.longitude)

    delivery = Delivery(
        order_id=order.id,
        status=DeliveryStatus.UNASSIGNED,
        pickup_address=pickup.address,
        pickup_latitude=pickup.latitude,
        pickup_longitude=pickup.longitude,
        delivery_address=destination.address or order.delivery_address,
        delivery_latitude=destination.latitude,
        delivery_longitude=destination.longitude,
    )
    db.add(delivery)
    try:
        db.flush()
        append_order_event(
            db,
            order.id,
            OrderEventType.DELIVERY_CREATED,
            "Delivery created",
            delivery_id=delivery.id,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = load_by(db, Delivery, Delivery.order_id == order_id)
        if winner is None:
            raise
        metrics_store.increment("ledger_insert_race_total")
        return winner

    db.refresh(delivery)
    metrics_store.increment("deliveries_created_total")
    log_event("delivery_created", order_id=str(order_id), delivery_id=str(delivery.id))
    return delivery


@storage_retry
def assign_delivery(db: Session, delivery_id: uuid.UUID, agent_id: uuid.UUID) -> Delivery:
    """Claim an unassigned delivery for ``agent_id``.

    The claim is one conditional UPDATE keyed on ``delivery_agent_id IS NULL``.
    When it matches nothing the row is re-read: the same agent already holding
    it is a successful no-op, anyone else gets ``AlreadyAssigned``.
    """
    agent = get_agent(db, agent_id)
    if agent.approval_status != AgentApprovalStatus.APPROVED:
        raise ValidationError("Delivery agent is not approved")

    delivery = get_delivery(db, delivery_id)
    if delivery.delivery_agent_id is None:
        assigned_at = now_utc()
        claimed = compare_and_set(
            db,
            Delivery,
            delivery_id,
            expected={"delivery_agent_id": None, "status": DeliveryStatus.UNASSIGNED},
            values={
                "delivery_agent_id": agent_id,
                "status": DeliveryStatus.ASSIGNED,
                "assigned_at": assigned_at,
            },
        )
        if claimed:
            append_order_event(
                db,
                delivery.order_id,
                OrderEventType.DELIVERY_ASSIGNED,
                "Delivery assigned",
                {"agent_id": str(agent_id)},
                delivery_id=delivery_id,
            )
            db.commit()
            metrics_store.increment("deliveries_assigned_total")
            log_event(
                "delivery_assigned",
                order_id=str(delivery.order_id),
                delivery_id=str(delivery_id),
                agent_id=str(agent_id),
            )
            return get_delivery(db, delivery_id)
        db.rollback()
        delivery = get_delivery(db, delivery_id)

    if delivery.delivery_agent_id == agent_id:
        metrics_store.increment("deliveries_assign_replay_total")
        return delivery

    metrics_store.increment("deliveries_assign_conflict_total")
    log_event(
        "delivery_assign_conflict",
        delivery_id=str(delivery_id),
        agent_id=str(agent_id),
    )
    raise AlreadyAssigned(str(delivery.delivery_agent_id))


def _status_timestamps(target_status: DeliveryStatus) -> dict[str, datetime]:
    if target_status == DeliveryStatus.PICKED_UP:
        return {"picked_up_at": now_utc()}
    if target_status == DeliveryStatus.DELIVERED:
        return {"delivered_at": now_utc()}
    return {}


@storage_retry
def advance_delivery_status(
    db: Session,
    delivery_id: uuid.UUID,
    target_status: DeliveryStatus,
    proof_photo_url: str | None = None,
) -> Delivery:
    for _ in range(max(1, settings.cas_max_attempts)):
        delivery = get_delivery(db, delivery_id)
        ensure_valid_delivery_transition(delivery.status, target_status)
        if delivery.delivery_agent_id is None:
            raise ValidationError("Delivery has no assigned agent")

        values: dict = {"status": target_status, **_status_timestamps(target_status)}
        if target_status == DeliveryStatus.DELIVERED:
            proof = (proof_photo_url or "").strip() or delivery.proof_photo_url
            if settings.require_delivery_proof and not proof:
                raise ValidationError("Proof of delivery photo is required")
            values["proof_photo_url"] = proof

        previous_status = delivery.status
        if compare_and_set(
            db,
            Delivery,
            delivery_id,
            expected={"status": previous_status, "version": delivery.version},
            values=values,
        ):
            append_order_event(
                db,
                delivery.order_id,
                event_type_for_delivery_status(target_status),
                f"Delivery moved to {target_status.value}",
                {"from_status": previous_status.value, "to_status": target_status.value},
                delivery_id=delivery_id,
            )
            db.commit()
            log_event(
                f"delivery_status_{target_status.value.lower()}",
                order_id=str(delivery.order_id),
                delivery_id=str(delivery_id),
                agent_id=str(delivery.delivery_agent_id),
            )
            return get_delivery(db, delivery_id)
        db.rollback()

    raise ConcurrentModification("Delivery")


@storage_retry
def update_agent_location(
    db: Session, agent_id: uuid.UUID, latitude: float, longitude: float
) -> LocationUpdateResult:
    """Record the agent's position and copy it onto their active deliveries.

    The two writes commit separately. A failure after the first leaves the
    agent's own location current and the deliveries one tick behind; the
    next update repairs that.
    """
    validate_coordinates(latitude, longitude)
    agent = get_agent(db, agent_id)
    updated_at = now_utc()

    agent.latitude = latitude
    agent.longitude = longitude
    agent.last_location_update = updated_at
    db.commit()

    result = db.execute(
        update(Delivery)
        .where(
            Delivery.delivery_agent_id == agent_id,
            Delivery.status.in_(ACTIVE_DELIVERY_STATUSES),
        )
        .values(
            agent_latitude=latitude,
            agent_longitude=longitude,
            location_updated_at=updated_at,
            version=Delivery.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()

    updated_count = int(result.rowcount or 0)
    metrics_store.increment("agent_location_updates_total")
    return LocationUpdateResult(agent_id=agent_id, updated_delivery_count=updated_count)


def _tracked_agent(agent: DeliveryAgent | None) -> TrackedAgent | None:
    # Coordinates reach customers only through agent_location.
    if agent is None:
        return None
    return TrackedAgent(
        id=agent.id, name=agent.name, phone=agent.phone, vehicle_type=agent.vehicle_type
    )


def _visible_agent_location(delivery: Delivery) -> AgentLocation | None:
    if delivery.status not in ACTIVE_DELIVERY_STATUSES:
        return None
    if delivery.agent_latitude is not None and delivery.agent_longitude is not None:
        return AgentLocation(
            latitude=delivery.agent_latitude,
            longitude=delivery.agent_longitude,
            updated_at=delivery.location_updated_at,
        )
    agent = delivery.delivery_agent
    if agent is not None and agent.latitude is not None and agent.longitude is not None:
        return AgentLocation(
            latitude=agent.latitude,
            longitude=agent.longitude,
            updated_at=agent.last_location_update,
        )
    return None


def get_tracking_info(db: Session, order_id: uuid.UUID) -> TrackingInfo:
    get_order(db, order_id)
    delivery = get_delivery_for_order(db, order_id)
    return TrackingInfo(
        order_id=order_id,
        delivery_id=delivery.id,
        status=delivery.status,
        agent_location=_visible_agent_location(delivery),
        delivery_agent=_tracked_agent(delivery.delivery_agent),
        pickup=Location(
            address=delivery.pickup_address,
            latitude=delivery.pickup_latitude,
            longitude=delivery.pickup_longitude,
        ),
        destination=Location(
            address=delivery.delivery_address,
            latitude=delivery.delivery_latitude,
            longitude=delivery.delivery_longitude,
        ),
    )
