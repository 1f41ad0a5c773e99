import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from localmart.db.session import get_db
from localmart.schemas.agent import (
    AgentApprovalRequest,
    AgentAvailabilityRequest,
    AgentCreate,
    AgentEnvelope,
    AgentLocationEnvelope,
    AgentLocationRequest,
)
from localmart.services import agents_service, delivery_service

router = APIRouter(prefix="/api/v1/agents", tags=["agents"])


@router.post("", response_model=AgentEnvelope, summary="Register agent", status_code=201)
def register_agent_endpoint(payload: AgentCreate, db: Session = Depends(get_db)) -> AgentEnvelope:
    agent = agents_service.register_agent(
        db, name=payload.name, phone=payload.phone, vehicle_type=payload.vehicle_type
    )
    return AgentEnvelope(agent=agent)


@router.get("/{agent_id}", response_model=AgentEnvelope, summary="Get agent")
def get_agent_endpoint(agent_id: uuid.UUID, db: Session = Depends(get_db)) -> AgentEnvelope:
    return AgentEnvelope(agent=agents_service.get_agent(db, agent_id))


@router.post("/{agent_id}/approval", response_model=AgentEnvelope, summary="Approve or reject")
def agent_approval_endpoint(
    agent_id: uuid.UUID,
    payload: AgentApprovalRequest,
    db: Session = Depends(get_db),
) -> AgentEnvelope:
    agent = agents_service.set_agent_approval(db, agent_id, payload.approval_status)
    return AgentEnvelope(agent=agent)


@router.put("/{agent_id}/availability", response_model=AgentEnvelope, summary="Go on/offline")
def agent_availability_endpoint(
    agent_id: uuid.UUID,
    payload: AgentAvailabilityRequest,
    db: Session = Depends(get_db),
) -> AgentEnvelope:
    agent = agents_service.set_agent_availability(db, agent_id, payload.is_available)
    return AgentEnvelope(agent=agent)


@router.post(
    "/{agent_id}/location",
    response_model=AgentLocationEnvelope,
    summary="Report live location",
)
def agent_location_endpoint(
    agent_id: uuid.UUID,
    payload: AgentLocationRequest,
    db: Session = Depends(get_db),
) -> AgentLocationEnvelope:
    result = delivery_service.update_agent_location(
        db, agent_id, payload.latitude, payload.longitude
    )
    return AgentLocationEnvelope(
        agent_id=result.agent_id, updated_delivery_count=result.updated_delivery_count
    )
