from sqlalchemy.exc import SQLAlchemyError

from localmart.config import settings
from localmart.observability import metrics_store
from localmart.services.readiness_service import (
    database_dependency_status,
    safe_dependency_status,
)


class BrokenSession:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def execute(self, *args, **kwargs):
        raise SQLAlchemyError("db down")


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "service": settings.app_name,
        "app_mode": settings.app_mode,
    }
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-abc"})

    assert response.headers["X-Request-ID"] == "req-abc"


def test_readiness_check(client):
    response = client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "dependencies": [{"name": "database", "status": "ok"}],
    }


def test_readiness_reports_degraded_database(client, monkeypatch):
    from localmart.routers import health

    monkeypatch.setattr(health, "SessionLocal", BrokenSession)

    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json() == {
        "status": "degraded",
        "dependencies": [{"name": "database", "status": "error"}],
    }


def test_database_dependency_status_handles_sqlalchemy_error():
    assert database_dependency_status(BrokenSession) == "error"


def test_safe_dependency_status_swallows_checker_crash():
    def _explode():
        raise OSError("no route")

    assert safe_dependency_status("database", _explode) == "error"
    counters = metrics_store.snapshot().counters
    assert counters["readiness_dependency_error_total"] == 1


def test_safe_dependency_status_rejects_unknown_status():
    assert safe_dependency_status("database", lambda: "maybe") == "error"


def test_metrics_endpoint_returns_typed_payload(client):
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == 200
    payload = response.json()
    assert payload["counters"]["http_requests_total"] >= 1
    assert "http_request_duration_seconds" in payload["timings"]


def test_metrics_endpoint_exposes_explicit_response_schema(client):
    payload = client.get("/openapi.json").json()
    metrics_get = payload["paths"]["/metrics"]["get"]

    assert metrics_get["responses"]["200"]["content"]["application/json"]["schema"]["$ref"] == (
        "#/components/schemas/MetricsResponse"
    )
