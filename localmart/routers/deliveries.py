import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from localmart.db.session import get_db
from localmart.models.delivery import DeliveryStatus
from localmart.observability import observe_timing
from localmart.schemas.delivery import (
    DeliveryAssignRequest,
    DeliveryEnvelope,
    DeliveryListEnvelope,
    DeliveryStatusUpdate,
)
from localmart.services import delivery_service

router = APIRouter(prefix="/api/v1/deliveries", tags=["deliveries"])


@router.get("", response_model=DeliveryListEnvelope, summary="List deliveries")
def list_deliveries_endpoint(
    db: Session = Depends(get_db),
    agent_id: uuid.UUID | None = Query(default=None),
    status: DeliveryStatus | None = Query(default=None),
    unassigned_only: bool = Query(default=False),
) -> DeliveryListEnvelope:
    deliveries = delivery_service.list_deliveries(
        db, agent_id=agent_id, status_filter=status, unassigned_only=unassigned_only
    )
    return DeliveryListEnvelope(deliveries=deliveries)


@router.get("/{delivery_id}", response_model=DeliveryEnvelope, summary="Get delivery")
def get_delivery_endpoint(
    delivery_id: uuid.UUID, db: Session = Depends(get_db)
) -> DeliveryEnvelope:
    return DeliveryEnvelope(delivery=delivery_service.get_delivery(db, delivery_id))


@router.post("/{delivery_id}/assign", response_model=DeliveryEnvelope, summary="Claim delivery")
def assign_delivery_endpoint(
    delivery_id: uuid.UUID,
    payload: DeliveryAssignRequest,
    db: Session = Depends(get_db),
) -> DeliveryEnvelope:
    with observe_timing("delivery_assignment_seconds"):
        delivery = delivery_service.assign_delivery(db, delivery_id, payload.agent_id)
    return DeliveryEnvelope(delivery=delivery)


@router.post(
    "/{delivery_id}/status", response_model=DeliveryEnvelope, summary="Advance delivery status"
)
def advance_delivery_status_endpoint(
    delivery_id: uuid.UUID,
    payload: DeliveryStatusUpdate,
    db: Session = Depends(get_db),
) -> DeliveryEnvelope:
    delivery = delivery_service.advance_delivery_status(
        db, delivery_id, payload.status, payload.proof_photo_url
    )
    return DeliveryEnvelope(delivery=delivery)
