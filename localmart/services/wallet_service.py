"""Wallet balances and their append-only transaction ledger.

A credit or debit is a compare-and-swap on ``WalletBalance.version``: the new
balance and the transaction row are flushed in one database transaction, and
the ORM's version check makes the UPDATE match nothing if another writer got
there first. The loser re-reads and tries again.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from localmart.config import settings
from localmart.errors import (
    ConcurrentModification,
    InsufficientBalance,
    LimitExceeded,
    ValidationError,
)
from localmart.models.wallet import (
    WalletBalance,
    WalletTransaction,
    WalletTransactionStatus,
    WalletTransactionType,
)
from localmart.observability import log_event, metrics_store, observe_timing
from localmart.services.ledger_store import commit_versioned, insert_or_get, storage_retry


@dataclass(frozen=True)
class WalletMutation:
    new_balance: int
    transaction: WalletTransaction


def _require_user(user_id: str) -> str:
    normalized = (user_id or "").strip()
    if not normalized:
        raise ValidationError("user_id is required")
    return normalized


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be a whole number of minor units")
    if amount <= 0:
        raise ValidationError("Amount must be greater than 0")


def _locate_balance(db: Session, user_id: str) -> WalletBalance | None:
    return db.scalar(
        select(WalletBalance)
        .where(WalletBalance.user_id == user_id)
        .execution_options(populate_existing=True)
    )


@storage_retry
def get_or_create_balance(db: Session, user_id: str) -> WalletBalance:
    user_id = _require_user(user_id)
    wallet = _locate_balance(db, user_id)
    if wallet is not None:
        return wallet
    return insert_or_get(
        db,
        WalletBalance(user_id=user_id, balance=0),
        WalletBalance.user_id == user_id,
    )


def _apply(
    db: Session,
    user_id: str,
    txn_type: WalletTransactionType,
    amount: int,
    *,
    description: str,
    payment_method: str | None,
    payment_reference: str | None,
) -> WalletMutation:
    for _ in range(max(1, settings.wallet_cas_max_attempts)):
        wallet = _locate_balance(db, user_id) or get_or_create_balance(db, user_id)
        balance_before = wallet.balance

        if txn_type == WalletTransactionType.DEBIT:
            if balance_before < amount:
                metrics_store.increment("wallet_debit_rejected_total")
                raise InsufficientBalance(balance=balance_before, requested=amount)
            balance_after = balance_before - amount
        else:
            balance_after = balance_before + amount

        txn = WalletTransaction(
            user_id=user_id,
            sequence=wallet.version + 1,
            type=txn_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            status=WalletTransactionStatus.COMPLETED,
            description=description,
            payment_method=payment_method,
            payment_reference=payment_reference,
        )
        wallet.balance = balance_after
        db.add(txn)

        try:
            commit_versioned(db, label="Wallet")
        except ConcurrentModification:
            metrics_store.increment("wallet_cas_retry_total")
            continue
        except IntegrityError:
            # a concurrent writer already took this sequence number
            db.rollback()
            metrics_store.increment("wallet_cas_retry_total")
            continue

        db.refresh(txn)
        log_event(f"wallet_{txn_type.value.lower()}", user_id=user_id)
        return WalletMutation(new_balance=balance_after, transaction=txn)

    metrics_store.increment("wallet_cas_exhausted_total")
    raise ConcurrentModification("Wallet")


@storage_retry
def credit(
    db: Session,
    user_id: str,
    amount: int,
    method: str,
    reference: str | None = None,
) -> WalletMutation:
    user_id = _require_user(user_id)
    _validate_amount(amount)
    if amount > settings.wallet_credit_ceiling:
        raise LimitExceeded(settings.wallet_credit_ceiling)
    normalized_method = (method or "").strip()
    if not normalized_method:
        raise ValidationError("Payment method is required")

    with observe_timing("wallet_credit_s"):
        mutation = _apply(
            db,
            user_id,
            WalletTransactionType.CREDIT,
            amount,
            description=f"Wallet top-up via {normalized_method}",
            payment_method=normalized_method,
            payment_reference=reference,
        )
    metrics_store.increment("wallet_credit_total")
    return mutation


@storage_retry
def debit(
    db: Session,
    user_id: str,
    amount: int,
    reason: str,
    reference: str | None = None,
) -> WalletMutation:
    user_id = _require_user(user_id)
    _validate_amount(amount)
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise ValidationError("Debit reason is required")

    with observe_timing("wallet_debit_s"):
        mutation = _apply(
            db,
            user_id,
            WalletTransactionType.DEBIT,
            amount,
            description=normalized_reason,
            payment_method=None,
            payment_reference=reference,
        )
    metrics_store.increment("wallet_debit_total")
    return mutation


def list_recent_transactions(
    db: Session, user_id: str, limit: int | None = None
) -> list[WalletTransaction]:
    user_id = _require_user(user_id)
    limit = settings.wallet_recent_transactions_limit if limit is None else limit
    if limit <= 0:
        raise ValidationError("limit must be greater than 0")
    rows = db.scalars(
        select(WalletTransaction)
        .where(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.sequence.desc())
        .limit(limit)
    )
    return list(rows)
