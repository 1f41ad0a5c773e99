from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from localmart.db.session import get_db
from localmart.schemas.wallet import (
    WalletCreditRequest,
    WalletDebitRequest,
    WalletEnvelope,
    WalletMutationEnvelope,
    WalletTransactionsEnvelope,
)
from localmart.services import wallet_service
from localmart.services.idempotency_service import (
    build_scope,
    claim_idempotency_key,
    release_idempotency_key,
    save_idempotency_result,
    validate_idempotency_key,
)
from localmart.services.wallet_service import WalletMutation

router = APIRouter(prefix="/api/v1/wallets", tags=["wallet"])


def _mutation_envelope(mutation: WalletMutation) -> WalletMutationEnvelope:
    return WalletMutationEnvelope(
        new_balance=mutation.new_balance, transaction=mutation.transaction
    )


def _run_once(
    db: Session,
    user_id: str,
    route_scope: str,
    key: str | None,
    request_payload: Any,
    operation: Callable[[], WalletMutation],
) -> WalletMutationEnvelope:
    if not key:
        return _mutation_envelope(operation())

    idem = claim_idempotency_key(
        db=db,
        owner_id=user_id,
        scope=route_scope,
        idempotency_key=key,
        request_payload=request_payload,
    )
    if idem.replay:
        return WalletMutationEnvelope.model_validate(idem.response_payload)

    try:
        mutation = operation()
    except Exception:
        release_idempotency_key(db=db, owner_id=user_id, scope=route_scope, idempotency_key=key)
        raise

    response_payload = _mutation_envelope(mutation).model_dump(mode="json")
    save_idempotency_result(
        db=db,
        owner_id=user_id,
        scope=route_scope,
        idempotency_key=key,
        request_payload=request_payload,
        response_payload=response_payload,
    )
    return WalletMutationEnvelope.model_validate(response_payload)


@router.get("/{user_id}", response_model=WalletEnvelope, summary="Balance and recent activity")
def get_wallet_endpoint(user_id: str, db: Session = Depends(get_db)) -> WalletEnvelope:
    wallet = wallet_service.get_or_create_balance(db, user_id)
    transactions = wallet_service.list_recent_transactions(db, user_id)
    return WalletEnvelope(wallet=wallet, transactions=transactions)


@router.get(
    "/{user_id}/transactions",
    response_model=WalletTransactionsEnvelope,
    summary="Recent transactions, newest first",
)
def list_transactions_endpoint(
    user_id: str,
    db: Session = Depends(get_db),
    limit: int | None = Query(default=None, ge=1, le=100),
) -> WalletTransactionsEnvelope:
    return WalletTransactionsEnvelope(
        transactions=wallet_service.list_recent_transactions(db, user_id, limit)
    )


@router.post("/{user_id}/credit", response_model=WalletMutationEnvelope, summary="Add money")
def credit_endpoint(
    user_id: str,
    payload: WalletCreditRequest,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> WalletMutationEnvelope:
    idempotency_key = validate_idempotency_key(idempotency_key)
    route_scope = build_scope("POST:/api/v1/wallets/{user_id}/credit", owner_id=user_id)

    return _run_once(
        db,
        user_id,
        route_scope,
        idempotency_key,
        payload.model_dump(mode="json"),
        lambda: wallet_service.credit(
            db, user_id, payload.amount, payload.payment_method, payload.payment_reference
        ),
    )


@router.post("/{user_id}/debit", response_model=WalletMutationEnvelope, summary="Spend money")
def debit_endpoint(
    user_id: str,
    payload: WalletDebitRequest,
    db: Session = Depends(get_db),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> WalletMutationEnvelope:
    idempotency_key = validate_idempotency_key(idempotency_key)
    route_scope = build_scope("POST:/api/v1/wallets/{user_id}/debit", owner_id=user_id)

    return _run_once(
        db,
        user_id,
        route_scope,
        idempotency_key,
        payload.model_dump(mode="json"),
        lambda: wallet_service.debit(db, user_id, payload.amount, payload.reason, payload.reference),
    )
