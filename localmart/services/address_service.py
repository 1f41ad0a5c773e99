import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from localmart.errors import ConcurrentModification, NotFound, ValidationError
from localmart.models.address import Address
from localmart.observability import log_event
from localmart.services.delivery_service import validate_coordinates
from localmart.services.exclusive_flag import (
    DEFAULT_ADDRESS,
    apply_exclusive_flag,
    set_exclusive_flag,
)
from localmart.services.ledger_store import load_by, storage_retry


@dataclass(frozen=True)
class AddressFields:
    line1: str
    city: str
    pincode: str
    label: str | None = None
    line2: str | None = None
    state: str | None = None
    latitude: float | None = None
    longitude: float | None = None


def _validate_fields(fields: AddressFields) -> None:
    for name in ("line1", "city", "pincode"):
        if not (getattr(fields, name) or "").strip():
            raise ValidationError(f"{name} is required")
    validate_coordinates(fields.latitude, fields.longitude)


def _copy_fields(address: Address, fields: AddressFields) -> None:
    address.label = fields.label
    address.line1 = fields.line1.strip()
    address.line2 = fields.line2
    address.city = fields.city.strip()
    address.state = fields.state
    address.pincode = fields.pincode.strip()
    address.latitude = fields.latitude
    address.longitude = fields.longitude


def list_addresses(db: Session, customer_id: str) -> list[Address]:
    rows = db.scalars(
        select(Address)
        .where(Address.customer_id == customer_id)
        .order_by(Address.is_default.desc(), Address.created_at.desc())
    )
    return list(rows)


def get_address(db: Session, customer_id: str, address_id: uuid.UUID) -> Address:
    address = load_by(db, Address, Address.id == address_id, Address.customer_id == customer_id)
    if address is None:
        raise NotFound("Address not found")
    return address


def _commit_with_default(db: Session, address: Address, make_default: bool) -> None:
    db.flush()
    if make_default:
        apply_exclusive_flag(db, DEFAULT_ADDRESS, address.customer_id, address.id)
    try:
        db.commit()
    except IntegrityError as err:
        db.rollback()
        raise ConcurrentModification("Address") from err
    db.refresh(address)


@storage_retry
def create_address(
    db: Session, customer_id: str, fields: AddressFields, is_default: bool = False
) -> Address:
    customer_id = (customer_id or "").strip()
    if not customer_id:
        raise ValidationError("customer_id is required")
    _validate_fields(fields)

    address = Address(customer_id=customer_id, is_default=False)
    _copy_fields(address, fields)
    db.add(address)
    _commit_with_default(db, address, is_default)

    log_event("address_created", user_id=customer_id)
    return address


@storage_retry
def update_address(
    db: Session,
    customer_id: str,
    address_id: uuid.UUID,
    fields: AddressFields,
    is_default: bool | None = None,
) -> Address:
    _validate_fields(fields)
    address = get_address(db, customer_id, address_id)
    _copy_fields(address, fields)
    if is_default is False:
        address.is_default = False
    _commit_with_default(db, address, bool(is_default))
    return address


@storage_retry
def delete_address(db: Session, customer_id: str, address_id: uuid.UUID) -> None:
    address = get_address(db, customer_id, address_id)
    db.delete(address)
    db.commit()
    log_event("address_deleted", user_id=customer_id)


def set_default_address(db: Session, customer_id: str, address_id: uuid.UUID) -> Address:
    set_exclusive_flag(db, DEFAULT_ADDRESS, customer_id, address_id)
    log_event("address_default_set", user_id=customer_id)
    return get_address(db, customer_id, address_id)
