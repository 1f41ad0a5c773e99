import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from localmart.models.order import ItemApprovalStatus, OrderStatus
from localmart.models.order_event import OrderEventType
from localmart.schemas.common import SuccessResponse


class OrderItemCreate(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    product_name: str | None = Field(default=None, max_length=255)
    quantity: int = Field(gt=0)
    price: int = Field(ge=0)


class OrderCreate(BaseModel):
    customer_id: str = Field(min_length=1, max_length=64)
    shop_id: str = Field(min_length=1, max_length=64)
    items: list[OrderItemCreate] = Field(min_length=1)
    delivery_address: str = Field(min_length=1)
    notes: str | None = None

    @field_validator("customer_id", "shop_id", "delivery_address")
    @classmethod
    def strip_strings(cls, value: str) -> str:
        return value.strip()


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    expected_version: int = Field(ge=0)


class OrderCancelRequest(BaseModel):
    reason: str = ""
    cancelled_by: str | None = Field(default=None, max_length=64)


class ItemApprovalRequest(BaseModel):
    approval_status: ItemApprovalStatus
    rejection_reason: str | None = None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    product_id: str
    product_name: str | None
    quantity: int
    price: int
    approval_status: ItemApprovalStatus
    rejection_reason: str | None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: str
    shop_id: str
    status: OrderStatus
    subtotal: int
    total_amount: int
    delivery_address: str
    notes: str | None
    cancellation_reason: str | None
    cancelled_by: str | None
    version: int
    items: list[OrderItemResponse]
    created_at: datetime
    updated_at: datetime


class OrderEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    delivery_id: uuid.UUID | None
    type: OrderEventType
    message: str
    payload: dict[str, Any]
    created_at: datetime


class OrderEnvelope(SuccessResponse):
    order: OrderResponse


class OrderListEnvelope(SuccessResponse):
    orders: list[OrderResponse]


class OrderEventsEnvelope(SuccessResponse):
    events: list[OrderEventResponse]
