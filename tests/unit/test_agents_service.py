import uuid

import pytest

from localmart.errors import NotFound, ValidationError
from localmart.models.delivery_agent import AgentApprovalStatus
from localmart.services import agents_service


def test_register_agent_starts_pending_and_offline(db_session):
    agent = agents_service.register_agent(
        db_session, name="  Ravi  ", phone="+919800000000", vehicle_type="scooter"
    )

    assert agent.name == "Ravi"
    assert agent.approval_status == AgentApprovalStatus.PENDING
    assert agent.is_available is False


def test_register_agent_requires_name(db_session):
    with pytest.raises(ValidationError):
        agents_service.register_agent(db_session, name=" ")


def test_only_approved_agents_go_online(db_session):
    agent = agents_service.register_agent(db_session, name="Ravi")

    with pytest.raises(ValidationError):
        agents_service.set_agent_availability(db_session, agent.id, True)

    agents_service.set_agent_approval(db_session, agent.id, AgentApprovalStatus.APPROVED)
    online = agents_service.set_agent_availability(db_session, agent.id, True)
    assert online.is_available is True


def test_rejecting_agent_takes_them_offline(db_session, approved_agent):
    agent = approved_agent()
    agents_service.set_agent_availability(db_session, agent.id, True)

    rejected = agents_service.set_agent_approval(
        db_session, agent.id, AgentApprovalStatus.REJECTED
    )

    assert rejected.approval_status == AgentApprovalStatus.REJECTED
    assert rejected.is_available is False


def test_get_unknown_agent(db_session):
    with pytest.raises(NotFound, match="Delivery agent not found"):
        agents_service.get_agent(db_session, uuid.uuid4())
