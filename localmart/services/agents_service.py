import uuid

from sqlalchemy.orm import Session

from localmart.errors import ValidationError
from localmart.models.delivery_agent import AgentApprovalStatus, DeliveryAgent
from localmart.observability import log_event, metrics_store
from localmart.services.ledger_store import load, storage_retry


def get_agent(db: Session, agent_id: uuid.UUID) -> DeliveryAgent:
    return load(db, DeliveryAgent, agent_id, label="Delivery agent")


@storage_retry
def register_agent(
    db: Session,
    *,
    name: str,
    phone: str | None = None,
    vehicle_type: str | None = None,
) -> DeliveryAgent:
    normalized_name = (name or "").strip()
    if not normalized_name:
        raise ValidationError("Agent name is required")

    agent = DeliveryAgent(
        name=normalized_name,
        phone=phone,
        vehicle_type=vehicle_type,
        approval_status=AgentApprovalStatus.PENDING,
        is_available=False,
    )
    db.add(agent)
    db.commit()
    db.refresh(agent)

    metrics_store.increment("agents_registered_total")
    log_event("agent_registered", agent_id=str(agent.id))
    return agent


@storage_retry
def set_agent_approval(
    db: Session, agent_id: uuid.UUID, approval_status: AgentApprovalStatus
) -> DeliveryAgent:
    agent = get_agent(db, agent_id)
    agent.approval_status = approval_status
    if approval_status != AgentApprovalStatus.APPROVED:
        agent.is_available = False
    db.commit()
    db.refresh(agent)

    log_event(f"agent_{approval_status.value.lower()}", agent_id=str(agent_id))
    return agent


@storage_retry
def set_agent_availability(db: Session, agent_id: uuid.UUID, is_available: bool) -> DeliveryAgent:
    agent = get_agent(db, agent_id)
    if is_available and agent.approval_status != AgentApprovalStatus.APPROVED:
        raise ValidationError("Only approved agents can go online")

    agent.is_available = is_available
    db.commit()
    db.refresh(agent)
    return agent
