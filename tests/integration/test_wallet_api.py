def _credit(client, user_id: str, amount, headers=None, **extra):
    payload = {"amount": amount, "payment_method": "UPI", **extra}
    return client.post(f"/api/v1/wallets/{user_id}/credit", json=payload, headers=headers or {})


def _debit(client, user_id: str, amount, reason: str = "Order payment", headers=None):
    return client.post(
        f"/api/v1/wallets/{user_id}/debit",
        json={"amount": amount, "reason": reason},
        headers=headers or {},
    )


def test_new_wallet_starts_empty(client):
    response = client.get("/api/v1/wallets/cust-1")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["wallet"]["balance"] == 0
    assert body["transactions"] == []


def test_credit_then_debit_keeps_ledger_in_step(client):
    credited = _credit(client, "cust-1", 100, payment_reference="upi-ref-1")
    assert credited.status_code == 200
    assert credited.json()["new_balance"] == 100
    transaction = credited.json()["transaction"]
    assert transaction["type"] == "CREDIT"
    assert transaction["balance_before"] == 0
    assert transaction["balance_after"] == 100
    assert transaction["description"] == "Wallet top-up via UPI"

    refused = _debit(client, "cust-1", 150)
    assert refused.status_code == 402
    assert refused.json() == {
        "success": False,
        "error": {"code": "INSUFFICIENT_BALANCE", "message": "Insufficient wallet balance"},
    }

    drained = _debit(client, "cust-1", 100)
    assert drained.status_code == 200
    assert drained.json()["new_balance"] == 0

    wallet = client.get("/api/v1/wallets/cust-1").json()
    assert wallet["wallet"]["balance"] == 0
    assert [row["type"] for row in wallet["transactions"]] == ["DEBIT", "CREDIT"]


def test_credit_over_ceiling_is_rejected(client):
    response = _credit(client, "cust-1", 100_001)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "LIMIT_EXCEEDED"
    assert client.get("/api/v1/wallets/cust-1").json()["wallet"]["balance"] == 0


def test_fractional_and_negative_amounts_are_rejected(client):
    fractional = _credit(client, "cust-1", 10.5)
    negative = _credit(client, "cust-1", -5)

    assert fractional.status_code == 400
    assert fractional.json()["error"]["code"] == "VALIDATION_ERROR"
    assert negative.status_code == 400
    assert negative.json()["error"]["message"] == "Amount must be greater than 0"


def test_credit_replays_with_idempotency_key(client):
    headers = {"Idempotency-Key": "topup-1"}
    first = _credit(client, "cust-1", 250, headers=headers)
    second = _credit(client, "cust-1", 250, headers=headers)

    assert first.status_code == 200
    assert second.json() == first.json()
    assert client.get("/api/v1/wallets/cust-1").json()["wallet"]["balance"] == 250


def test_idempotency_key_reuse_with_other_amount_conflicts(client):
    headers = {"Idempotency-Key": "pay-1"}
    _credit(client, "cust-1", 500)
    _debit(client, "cust-1", 100, headers=headers)

    response = _debit(client, "cust-1", 200, headers=headers)

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "IDEMPOTENCY_CONFLICT"


def test_failed_request_frees_its_idempotency_key(client):
    headers = {"Idempotency-Key": "pay-2"}
    refused = _debit(client, "cust-2", 300, headers=headers)
    assert refused.status_code == 402

    _credit(client, "cust-2", 500)
    retried = _debit(client, "cust-2", 300, headers=headers)
    replayed = _debit(client, "cust-2", 300, headers=headers)

    assert retried.status_code == 200
    assert retried.json()["new_balance"] == 200
    assert replayed.json() == retried.json()
    assert client.get("/api/v1/wallets/cust-2").json()["wallet"]["balance"] == 200


def test_transactions_endpoint_honours_limit(client):
    for amount in (10, 20, 30):
        _credit(client, "cust-1", amount)

    response = client.get("/api/v1/wallets/cust-1/transactions", params={"limit": 2})

    assert response.status_code == 200
    rows = response.json()["transactions"]
    assert [row["amount"] for row in rows] == [30, 20]
    assert [row["sequence"] for row in rows] == [3, 2]


def test_transactions_limit_out_of_range(client):
    response = client.get("/api/v1/wallets/cust-1/transactions", params={"limit": 0})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
