import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from localmart.schemas.common import SuccessResponse


class AddressPayload(BaseModel):
    label: str | None = Field(default=None, max_length=50)
    line1: str = Field(min_length=1, max_length=255)
    line2: str | None = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    pincode: str = Field(min_length=1, max_length=20)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    is_default: bool | None = None


class AddressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: str
    is_default: bool
    label: str | None
    line1: str
    line2: str | None
    city: str
    state: str | None
    pincode: str
    latitude: float | None
    longitude: float | None
    created_at: datetime
    updated_at: datetime


class AddressEnvelope(SuccessResponse):
    address: AddressResponse


class AddressListEnvelope(SuccessResponse):
    addresses: list[AddressResponse]
