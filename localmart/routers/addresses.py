import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from localmart.db.session import get_db
from localmart.schemas.address import AddressEnvelope, AddressListEnvelope, AddressPayload
from localmart.schemas.common import SuccessResponse
from localmart.services import address_service
from localmart.services.address_service import AddressFields

router = APIRouter(prefix="/api/v1/customers/{customer_id}/addresses", tags=["addresses"])


def _fields(payload: AddressPayload) -> AddressFields:
    return AddressFields(
        line1=payload.line1,
        city=payload.city,
        pincode=payload.pincode,
        label=payload.label,
        line2=payload.line2,
        state=payload.state,
        latitude=payload.latitude,
        longitude=payload.longitude,
    )


@router.get("", response_model=AddressListEnvelope, summary="List addresses, default first")
def list_addresses_endpoint(
    customer_id: str, db: Session = Depends(get_db)
) -> AddressListEnvelope:
    return AddressListEnvelope(addresses=address_service.list_addresses(db, customer_id))


@router.post("", response_model=AddressEnvelope, summary="Add address", status_code=201)
def create_address_endpoint(
    customer_id: str,
    payload: AddressPayload,
    db: Session = Depends(get_db),
) -> AddressEnvelope:
    address = address_service.create_address(
        db, customer_id, _fields(payload), is_default=bool(payload.is_default)
    )
    return AddressEnvelope(address=address)


@router.put("/{address_id}", response_model=AddressEnvelope, summary="Update address")
def update_address_endpoint(
    customer_id: str,
    address_id: uuid.UUID,
    payload: AddressPayload,
    db: Session = Depends(get_db),
) -> AddressEnvelope:
    address = address_service.update_address(
        db, customer_id, address_id, _fields(payload), is_default=payload.is_default
    )
    return AddressEnvelope(address=address)


@router.delete("/{address_id}", response_model=SuccessResponse, summary="Delete address")
def delete_address_endpoint(
    customer_id: str,
    address_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> SuccessResponse:
    address_service.delete_address(db, customer_id, address_id)
    return SuccessResponse()


@router.put("/{address_id}/default", response_model=AddressEnvelope, summary="Make default")
def set_default_address_endpoint(
    customer_id: str,
    address_id: uuid.UUID,
    db: Session = Depends(get_db),
) -> AddressEnvelope:
    return AddressEnvelope(
        address=address_service.set_default_address(db, customer_id, address_id)
    )
