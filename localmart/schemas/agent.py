import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from localmart.models.delivery_agent import AgentApprovalStatus
from localmart.schemas.common import SuccessResponse


class AgentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=50)
    vehicle_type: str | None = Field(default=None, max_length=50)


class AgentApprovalRequest(BaseModel):
    approval_status: AgentApprovalStatus


class AgentAvailabilityRequest(BaseModel):
    is_available: bool


class AgentLocationRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class AgentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    phone: str | None
    vehicle_type: str | None
    approval_status: AgentApprovalStatus
    is_available: bool
    latitude: float | None
    longitude: float | None
    last_location_update: datetime | None


class AgentEnvelope(SuccessResponse):
    agent: AgentResponse


class AgentLocationEnvelope(SuccessResponse):
    agent_id: uuid.UUID
    updated_delivery_count: int
