"""
Domain errors raised by the service layer.
Routes never catch these: the handler registered in main.py maps them to HTTP responses.
"""
from typing import Any


class DomainError(Exception):
    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.extra}


class ValidationError(DomainError):
    """Missing or malformed input."""

    code = "validation_error"
    status_code = 422


class InsufficientFunds(DomainError):
    code = "insufficient_funds"
    status_code = 402

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient balance: need {required}, have {available}",
            required=required,
            available=available,
            shortfall=self.shortfall,
        )


class NotFoundOrForbidden(DomainError):
    """Id is absent or not owned by the caller. Both cases look the same to clients."""

    code = "not_found"
    status_code = 404


class Conflict(DomainError):
    code = "conflict"
    status_code = 409


class AlreadyPurchased(Conflict):
    code = "already_purchased"


class InvalidTransition(Conflict):
    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            f"{entity} cannot move from {current} to {target}",
            entity=entity,
            current=current,
            target=target,
        )


class TransactionFailure(DomainError):
    """A step of a multi-row atomic operation failed; the whole operation was discarded."""

    code = "transaction_failed"
    status_code = 409


class RemoteServiceError(DomainError):
    code = "remote_service_error"
    status_code = 503


class LimitExceeded(DomainError):
    code = "limit_exceeded"
    status_code = 429
