from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ALLOWED_APP_MODES = {"demo", "pilot", "production"}


class Settings(BaseSettings):
    app_name: str = "LocalMart Core"

    database_url: str = Field(
        default="sqlite+pysqlite:///./localmart.db",
        validation_alias="LOCALMART_DATABASE_URL",
    )
    sqlite_busy_timeout_s: float = 30.0
    cors_allowed_origins: str = "http://localhost:3000,http://localhost:9002"

    testing: bool = Field(default=False, validation_alias="LOCALMART_TESTING")
    app_mode: str = Field(default="pilot", validation_alias="LOCALMART_APP_MODE")
    auto_create_schema: bool = False
    require_migrations: bool = False

    storage_retry_max_attempts: int = 3
    storage_retry_backoff_s: float = 0.05
    cas_max_attempts: int = 5

    wallet_credit_ceiling: int = 100_000
    wallet_cas_max_attempts: int = 10
    wallet_recent_transactions_limit: int = 10

    order_delivery_fee: int = 0
    require_delivery_proof: bool = False

    idempotency_ttl_s: int = 24 * 60 * 60
    idempotency_claim_ttl_s: int = 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("app_mode")
    @classmethod
    def validate_app_mode(cls, value: str) -> str:
        mode = value.lower().strip()
        if mode not in ALLOWED_APP_MODES:
            allowed = ", ".join(sorted(ALLOWED_APP_MODES))
            raise ValueError(f"LOCALMART_APP_MODE must be one of: {allowed}")
        return mode


settings = Settings()


def is_production_mode() -> bool:
    return settings.app_mode == "production"


def allowed_origins() -> list[str]:
    return [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]


def ensure_secure_runtime_settings() -> None:
    """Fail fast when production-like runtime uses unsafe defaults."""
    if not settings.testing and _is_sqlite_url(settings.database_url):
        raise RuntimeError(
            "LOCALMART_DATABASE_URL must use postgres when LOCALMART_TESTING is false"
        )
    if is_production_mode() and settings.auto_create_schema:
        raise RuntimeError("AUTO_CREATE_SCHEMA must be disabled in LOCALMART_APP_MODE=production")
    if settings.wallet_credit_ceiling <= 0:
        raise RuntimeError("WALLET_CREDIT_CEILING must be positive")


def _is_sqlite_url(database_url: str) -> bool:
    value = database_url.strip().lower()
    return value.startswith("sqlite")
