"""Replay of mutating requests that carry an ``Idempotency-Key`` header.

A request first claims (owner, scope, key) with a pending record holding a hash
of its body, and the successful response is stored on that record afterwards.
Reusing the key with the same body returns the stored response, reusing it with
a different body (or while the first request is still pending) is an
``IdempotencyConflict``.
Records expire after ``idempotency_ttl_s`` and are purged lazily on lookup.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from localmart.config import settings
from localmart.db.base import now_utc
from localmart.errors import IdempotencyConflict, ValidationError
from localmart.models.idempotency_record import IdempotencyRecord
from localmart.observability import log_event, metrics_store

IDEMPOTENCY_KEY_MAX_LENGTH = 255


@dataclass(frozen=True)
class IdempotencyResult:
    replay: bool
    response_payload: dict[str, Any] | None = None


def validate_idempotency_key(idempotency_key: str | None) -> str | None:
    if idempotency_key is None:
        return None

    key = idempotency_key.strip()
    if not key:
        metrics_store.increment("idempotency_invalid_key_total")
        raise ValidationError("Idempotency-Key must not be empty")
    if len(key) > IDEMPOTENCY_KEY_MAX_LENGTH:
        metrics_store.increment("idempotency_invalid_key_total")
        raise ValidationError(f"Idempotency-Key exceeds max length {IDEMPOTENCY_KEY_MAX_LENGTH}")
    return key


def build_scope(route: str, *, owner_id: str) -> str:
    return f"{route}:owner={owner_id}"


def request_fingerprint(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _conflict(owner_id: str) -> IdempotencyConflict:
    metrics_store.increment("idempotency_conflict_total")
    log_event("idempotency_key_reused_with_other_payload", user_id=owner_id)
    return IdempotencyConflict()


def _lookup(db: Session, owner_id: str, scope: str, key: str) -> IdempotencyRecord | None:
    return db.scalar(
        select(IdempotencyRecord).where(
            IdempotencyRecord.owner_id == owner_id,
            IdempotencyRecord.scope == scope,
            IdempotencyRecord.idempotency_key == key,
        )
    )


def purge_expired(db: Session) -> int:
    result = db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= now_utc()))
    purged = int(result.rowcount or 0)
    if purged:
        db.commit()
        metrics_store.increment("idempotency_purged_total", purged)
    return purged


def _settle(record: IdempotencyRecord, owner_id: str, fingerprint: str) -> IdempotencyResult:
    if record.request_hash != fingerprint:
        raise _conflict(owner_id)
    if record.response_payload is None:
        metrics_store.increment("idempotency_in_progress_total")
        raise IdempotencyConflict("A request with this Idempotency-Key is still in progress")

    metrics_store.increment("idempotency_replay_total")
    return IdempotencyResult(replay=True, response_payload=record.response_payload)


def claim_idempotency_key(
    *,
    db: Session,
    owner_id: str,
    scope: str,
    idempotency_key: str,
    request_payload: Any,
) -> IdempotencyResult:
    """Reserve the key for this request, or replay what an earlier one stored.

    A fresh claim is committed as a pending record before the caller mutates
    anything, so two concurrent requests with the same key cannot both run.
    The loser sees the pending record and gets ``IdempotencyConflict``.
    Pending claims expire after ``idempotency_claim_ttl_s``.
    """
    purge_expired(db)
    fingerprint = request_fingerprint(request_payload)

    record = _lookup(db, owner_id, scope, idempotency_key)
    if record is None:
        db.add(
            IdempotencyRecord(
                owner_id=owner_id,
                scope=scope,
                idempotency_key=idempotency_key,
                request_hash=fingerprint,
                response_payload=None,
                expires_at=now_utc() + timedelta(seconds=settings.idempotency_claim_ttl_s),
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            record = _lookup(db, owner_id, scope, idempotency_key)
            if record is None:
                raise
        else:
            metrics_store.increment("idempotency_claim_total")
            return IdempotencyResult(replay=False)

    return _settle(record, owner_id, fingerprint)


def release_idempotency_key(
    *, db: Session, owner_id: str, scope: str, idempotency_key: str
) -> None:
    """Drop a pending claim after the guarded operation failed."""
    db.rollback()
    db.execute(
        delete(IdempotencyRecord).where(
            IdempotencyRecord.owner_id == owner_id,
            IdempotencyRecord.scope == scope,
            IdempotencyRecord.idempotency_key == idempotency_key,
            IdempotencyRecord.response_payload.is_(None),
        )
    )
    db.commit()
    metrics_store.increment("idempotency_release_total")


def save_idempotency_result(
    *,
    db: Session,
    owner_id: str,
    scope: str,
    idempotency_key: str,
    request_payload: Any,
    response_payload: dict[str, Any],
) -> None:
    fingerprint = request_fingerprint(request_payload)
    expires_at = now_utc() + timedelta(seconds=settings.idempotency_ttl_s)

    record = _lookup(db, owner_id, scope, idempotency_key)
    if record is None:
        db.add(
            IdempotencyRecord(
                owner_id=owner_id,
                scope=scope,
                idempotency_key=idempotency_key,
                request_hash=fingerprint,
                response_payload=response_payload,
                expires_at=expires_at,
            )
        )
    elif record.request_hash != fingerprint:
        raise _conflict(owner_id)
    else:
        record.response_payload = response_payload
        record.expires_at = expires_at

    try:
        db.commit()
    except IntegrityError:
        # a concurrent request with the same key stored its response first
        db.rollback()
        winner = _lookup(db, owner_id, scope, idempotency_key)
        if winner is None:
            raise
        if winner.request_hash != fingerprint:
            raise _conflict(owner_id) from None
        return
    metrics_store.increment("idempotency_store_total")
