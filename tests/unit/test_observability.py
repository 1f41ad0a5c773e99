import json
import logging

from localmart.observability import (
    JsonFormatter,
    get_request_id,
    log_event,
    metrics_store,
    observe_timing,
    set_request_id,
)


def test_metrics_store_reset_clears_counters_and_timings():
    metrics_store.increment("wallet_cas_retry_total")
    metrics_store.observe("wallet_credit_seconds", 0.25)

    metrics_store.reset()

    snapshot = metrics_store.snapshot()
    assert snapshot.counters == {}
    assert snapshot.timings == {}


def test_metrics_store_summarizes_timings():
    metrics_store.observe("order_placement_seconds", 0.1)
    metrics_store.observe("order_placement_seconds", 0.3)

    stats = metrics_store.snapshot().timings["order_placement_seconds"]

    assert stats["count"] == 2.0
    assert stats["max_s"] == 0.3
    assert abs(stats["avg_s"] - 0.2) < 1e-9


def test_observe_timing_records_even_when_block_raises():
    try:
        with observe_timing("wallet_debit_seconds"):
            raise ValueError("boom")
    except ValueError:
        pass

    assert metrics_store.snapshot().timings["wallet_debit_seconds"]["count"] == 1.0


def test_json_formatter_emits_context_fields():
    record = logging.LogRecord(
        name="localmart.core",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="delivery_assigned",
        args=(),
        exc_info=None,
    )
    record.request_id = "req-1"
    record.delivery_id = "dlv-1"
    record.agent_id = "agent-1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "delivery_assigned"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "req-1"
    assert payload["delivery_id"] == "dlv-1"
    assert payload["agent_id"] == "agent-1"
    assert payload["order_id"] is None


def test_log_event_carries_request_id(caplog):
    set_request_id("req-42")
    with caplog.at_level(logging.INFO, logger="localmart.core"):
        log_event("wallet_credited", user_id="cust-1")

    record = caplog.records[-1]
    assert get_request_id() == "req-42"
    assert record.request_id == "req-42"
    assert record.user_id == "cust-1"
