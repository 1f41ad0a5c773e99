import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from localmart.models.delivery import DeliveryStatus
from localmart.schemas.common import SuccessResponse


class LocationPayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    address: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class DeliveryCreate(BaseModel):
    pickup: LocationPayload | None = None
    destination: LocationPayload | None = None


class DeliveryAssignRequest(BaseModel):
    agent_id: uuid.UUID


class DeliveryStatusUpdate(BaseModel):
    status: DeliveryStatus
    proof_photo_url: str | None = Field(default=None, max_length=1024)


class DeliveryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    delivery_agent_id: uuid.UUID | None
    status: DeliveryStatus
    pickup_address: str | None
    pickup_latitude: float | None
    pickup_longitude: float | None
    delivery_address: str | None
    delivery_latitude: float | None
    delivery_longitude: float | None
    proof_photo_url: str | None
    assigned_at: datetime | None
    picked_up_at: datetime | None
    delivered_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime


class AgentLocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    latitude: float
    longitude: float
    updated_at: datetime | None


class TrackingAgentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    phone: str | None
    vehicle_type: str | None


class TrackingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: uuid.UUID
    delivery_id: uuid.UUID
    status: DeliveryStatus
    agent_location: AgentLocationResponse | None
    delivery_agent: TrackingAgentResponse | None
    pickup: LocationPayload
    destination: LocationPayload


class DeliveryEnvelope(SuccessResponse):
    delivery: DeliveryResponse


class DeliveryListEnvelope(SuccessResponse):
    deliveries: list[DeliveryResponse]


class TrackingEnvelope(SuccessResponse):
    tracking: TrackingResponse
