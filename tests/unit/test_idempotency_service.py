from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from localmart.errors import IdempotencyConflict, ValidationError
from localmart.models.idempotency_record import IdempotencyRecord
from localmart.observability import metrics_store
from localmart.services.idempotency_service import (
    IDEMPOTENCY_KEY_MAX_LENGTH,
    build_scope,
    claim_idempotency_key,
    release_idempotency_key,
    save_idempotency_result,
    validate_idempotency_key,
)

ROUTE = "POST:/api/v1/wallets/credit"


def _expire(db_session, owner_id: str) -> None:
    db_session.execute(
        update(IdempotencyRecord)
        .where(IdempotencyRecord.owner_id == owner_id)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
    )
    db_session.commit()


def test_build_scope_includes_owner():
    assert build_scope(ROUTE, owner_id="cust-1") == f"{ROUTE}:owner=cust-1"


def test_validate_idempotency_key_normalizes_and_rejects():
    assert validate_idempotency_key(None) is None
    assert validate_idempotency_key("  topup-1 ") == "topup-1"

    with pytest.raises(ValidationError):
        validate_idempotency_key("   ")
    with pytest.raises(ValidationError, match="max length"):
        validate_idempotency_key("k" * (IDEMPOTENCY_KEY_MAX_LENGTH + 1))


def test_idempotency_record_replays_until_expired(db_session):
    scope = build_scope(ROUTE, owner_id="cust-1")
    save_idempotency_result(
        db=db_session,
        owner_id="cust-1",
        scope=scope,
        idempotency_key="topup-1",
        request_payload={"amount": 100},
        response_payload={"new_balance": 100},
    )

    replay = claim_idempotency_key(
        db=db_session,
        owner_id="cust-1",
        scope=scope,
        idempotency_key="topup-1",
        request_payload={"amount": 100},
    )
    assert replay.replay is True
    assert replay.response_payload == {"new_balance": 100}

    _expire(db_session, "cust-1")

    expired = claim_idempotency_key(
        db=db_session,
        owner_id="cust-1",
        scope=scope,
        idempotency_key="topup-1",
        request_payload={"amount": 100},
    )
    assert expired.replay is False
    remaining = db_session.scalars(
        select(IdempotencyRecord).where(IdempotencyRecord.owner_id == "cust-1")
    ).all()
    assert [row.response_payload for row in remaining] == [None]
    assert metrics_store.snapshot().counters["idempotency_purged_total"] == 1


def test_idempotency_key_conflict_when_payload_differs(db_session):
    scope = build_scope(ROUTE, owner_id="cust-2")
    save_idempotency_result(
        db=db_session,
        owner_id="cust-2",
        scope=scope,
        idempotency_key="topup-2",
        request_payload={"amount": 100},
        response_payload={"new_balance": 100},
    )

    with pytest.raises(IdempotencyConflict) as exc_info:
        claim_idempotency_key(
            db=db_session,
            owner_id="cust-2",
            scope=scope,
            idempotency_key="topup-2",
            request_payload={"amount": 200},
        )

    assert exc_info.value.http_status == 409
    assert metrics_store.snapshot().counters["idempotency_conflict_total"] == 1


def test_same_key_in_another_scope_is_independent(db_session):
    save_idempotency_result(
        db=db_session,
        owner_id="cust-3",
        scope=build_scope(ROUTE, owner_id="cust-3"),
        idempotency_key="shared",
        request_payload={"amount": 100},
        response_payload={"new_balance": 100},
    )

    result = claim_idempotency_key(
        db=db_session,
        owner_id="cust-4",
        scope=build_scope(ROUTE, owner_id="cust-4"),
        idempotency_key="shared",
        request_payload={"amount": 100},
    )

    assert result.replay is False


def test_save_idempotency_result_refreshes_existing_record(db_session):
    scope = build_scope(ROUTE, owner_id="cust-5")
    for response in ({"new_balance": 100}, {"new_balance": 100, "replayed": True}):
        save_idempotency_result(
            db=db_session,
            owner_id="cust-5",
            scope=scope,
            idempotency_key="topup-5",
            request_payload={"amount": 100},
            response_payload=response,
        )

    rows = db_session.scalars(
        select(IdempotencyRecord).where(IdempotencyRecord.owner_id == "cust-5")
    ).all()
    assert len(rows) == 1
    assert rows[0].response_payload == {"new_balance": 100, "replayed": True}


def test_save_idempotency_result_rejects_payload_mismatch_for_existing_key(db_session):
    scope = build_scope(ROUTE, owner_id="cust-6")
    save_idempotency_result(
        db=db_session,
        owner_id="cust-6",
        scope=scope,
        idempotency_key="topup-6",
        request_payload={"amount": 100},
        response_payload={"new_balance": 100},
    )

    with pytest.raises(IdempotencyConflict):
        save_idempotency_result(
            db=db_session,
            owner_id="cust-6",
            scope=scope,
            idempotency_key="topup-6",
            request_payload={"amount": 300},
            response_payload={"new_balance": 300},
        )


def test_save_idempotency_result_keeps_first_writer_on_duplicate_insert(db_session, monkeypatch):
    scope = build_scope(ROUTE, owner_id="cust-race")
    save_idempotency_result(
        db=db_session,
        owner_id="cust-race",
        scope=scope,
        idempotency_key="topup-race",
        request_payload={"amount": 100},
        response_payload={"transaction_id": "txn-original"},
    )

    original_scalar = db_session.scalar
    scalar_calls = {"count": 0}

    def race_scalar(statement):
        scalar_calls["count"] += 1
        if scalar_calls["count"] == 1:
            return None
        return original_scalar(statement)

    monkeypatch.setattr(db_session, "scalar", race_scalar)

    save_idempotency_result(
        db=db_session,
        owner_id="cust-race",
        scope=scope,
        idempotency_key="topup-race",
        request_payload={"amount": 100},
        response_payload={"transaction_id": "txn-concurrent"},
    )

    record = original_scalar(
        select(IdempotencyRecord).where(IdempotencyRecord.owner_id == "cust-race")
    )
    assert record.response_payload == {"transaction_id": "txn-original"}


def _claim(db_session, owner_id: str, key: str, amount: int = 100):
    return claim_idempotency_key(
        db=db_session,
        owner_id=owner_id,
        scope=build_scope(ROUTE, owner_id=owner_id),
        idempotency_key=key,
        request_payload={"amount": amount},
    )


def test_second_claim_while_first_is_pending_conflicts(db_session):
    assert _claim(db_session, "cust-7", "topup-7").replay is False

    with pytest.raises(IdempotencyConflict, match="still in progress"):
        _claim(db_session, "cust-7", "topup-7")

    assert metrics_store.snapshot().counters["idempotency_in_progress_total"] == 1


def test_claim_with_other_payload_while_pending_conflicts(db_session):
    _claim(db_session, "cust-8", "topup-8")

    with pytest.raises(IdempotencyConflict, match="different payload"):
        _claim(db_session, "cust-8", "topup-8", amount=500)


def test_released_claim_can_be_taken_again(db_session):
    _claim(db_session, "cust-9", "topup-9")
    release_idempotency_key(
        db=db_session,
        owner_id="cust-9",
        scope=build_scope(ROUTE, owner_id="cust-9"),
        idempotency_key="topup-9",
    )

    assert _claim(db_session, "cust-9", "topup-9").replay is False


def test_release_keeps_completed_record(db_session):
    scope = build_scope(ROUTE, owner_id="cust-10")
    _claim(db_session, "cust-10", "topup-10")
    save_idempotency_result(
        db=db_session,
        owner_id="cust-10",
        scope=scope,
        idempotency_key="topup-10",
        request_payload={"amount": 100},
        response_payload={"new_balance": 100},
    )

    release_idempotency_key(
        db=db_session, owner_id="cust-10", scope=scope, idempotency_key="topup-10"
    )

    replay = _claim(db_session, "cust-10", "topup-10")
    assert replay.replay is True
    assert replay.response_payload == {"new_balance": 100}


def test_expired_pending_claim_is_purged(db_session):
    _claim(db_session, "cust-11", "topup-11")
    _expire(db_session, "cust-11")

    assert _claim(db_session, "cust-11", "topup-11").replay is False
