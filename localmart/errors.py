"""Error taxonomy shared by every service.

Services raise these; the HTTP layer renders them through a single exception
handler. Only ``StorageUnavailable`` is retryable inside the core.
"""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(eq=False)
class CoreError(Exception):
    message: str

    code: ClassVar[str] = "INTERNAL_ERROR"
    http_status: ClassVar[int] = 500
    retryable: ClassVar[bool] = False

    def __str__(self) -> str:
        return f"{self.code}:{self.message}"


class ValidationError(CoreError):
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(CoreError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidStateTransition(CoreError):
    code = "INVALID_STATE_TRANSITION"
    http_status = 400

    def __init__(self, current_status: str, target_status: str, message: str | None = None) -> None:
        super().__init__(
            message=message or f"Invalid state transition: {current_status} -> {target_status}"
        )
        self.current_status = current_status
        self.target_status = target_status


class ConcurrentModification(CoreError):
    code = "CONCURRENT_MODIFICATION"
    http_status = 409

    def __init__(self, entity: str, message: str | None = None) -> None:
        super().__init__(
            message=message or f"{entity} was modified concurrently; re-read and retry"
        )
        self.entity = entity


class AlreadyAssigned(CoreError):
    code = "ALREADY_ASSIGNED"
    http_status = 409

    def __init__(
        self, agent_id: str, message: str = "Delivery is already assigned to another agent"
    ) -> None:
        super().__init__(message=message)
        self.agent_id = agent_id


class InsufficientBalance(CoreError):
    code = "INSUFFICIENT_BALANCE"
    http_status = 402

    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(message="Insufficient wallet balance")
        self.balance = balance
        self.requested = requested


class LimitExceeded(CoreError):
    code = "LIMIT_EXCEEDED"
    http_status = 400

    def __init__(self, limit: int) -> None:
        super().__init__(message=f"Maximum amount per transaction is {limit}")
        self.limit = limit


class StorageUnavailable(CoreError):
    code = "STORAGE_UNAVAILABLE"
    http_status = 503
    retryable = True

    def __init__(self, message: str = "Storage temporarily unavailable") -> None:
        super().__init__(message=message)


class IdempotencyConflict(CoreError):
    code = "IDEMPOTENCY_CONFLICT"
    http_status = 409

    def __init__(self, message: str = "Idempotency key reused with different payload") -> None:
        super().__init__(message=message)
