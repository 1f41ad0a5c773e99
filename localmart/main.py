import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from localmart.config import allowed_origins, ensure_secure_runtime_settings, settings
from localmart.db.migration_check import assert_db_is_up_to_date, maybe_create_schema
from localmart.db.session import engine
from localmart.errors import CoreError
from localmart.observability import configure_logging, log_event, metrics_store, set_request_id
from localmart.routers.addresses import router as addresses_router
from localmart.routers.agents import router as agents_router
from localmart.routers.deliveries import router as deliveries_router
from localmart.routers.health import router as health_router
from localmart.routers.metrics import router as metrics_router
from localmart.routers.orders import router as orders_router
from localmart.routers.wallet import router as wallet_router
from localmart.schemas.common import ErrorBody, ErrorResponse


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if not settings.testing:
        configure_logging()
    ensure_secure_runtime_settings()
    maybe_create_schema(engine)
    if settings.require_migrations:
        assert_db_is_up_to_date(engine)
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Orders, deliveries, wallets and addresses for the LocalMart marketplace",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorBody(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(CoreError)
async def core_error_handler(request: Request, exc: CoreError) -> JSONResponse:
    metrics_store.increment(f"errors_{exc.code.lower()}_total")
    log_event(
        f"request_failed:{exc.code}",
        order_id=request.path_params.get("order_id"),
        delivery_id=request.path_params.get("delivery_id"),
        agent_id=request.path_params.get("agent_id"),
    )
    return _error_response(exc.http_status, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    metrics_store.increment("errors_validation_error_total")
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    if location:
        message = f"{location}: {message}"
    return _error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", message)


@app.exception_handler(Exception)
async def unexpected_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    metrics_store.increment("errors_internal_error_total")
    log_event(f"request_failed:INTERNAL_ERROR:{type(exc).__name__}", level=logging.ERROR)
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR", "An unexpected error occurred"
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    set_request_id(request_id)

    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    response.headers["X-Request-ID"] = request_id
    metrics_store.increment("http_requests_total")
    metrics_store.observe("http_request_duration_seconds", elapsed)
    log_event("http_request", order_id=request.path_params.get("order_id"))
    return response


app.include_router(health_router)
app.include_router(orders_router)
app.include_router(deliveries_router)
app.include_router(agents_router)
app.include_router(wallet_router)
app.include_router(addresses_router)
app.include_router(metrics_router)
