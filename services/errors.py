# services/errors.py
from __future__ import annotations

import logging

from fastapi import HTTPException

logger = logging.getLogger("creatorpay.errors")


class CreatorPayError(Exception):
    """
    Base for every domain error. `code` is stable and is what the HTTP layer
    and operators key on; `entity_id` / `operation` locate the failure.
    """

    code = "CREATORPAY_ERROR"

    def __init__(self, message: str = "", *, entity_id: str | None = None, operation: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.entity_id = entity_id
        self.operation = operation

    def context(self) -> dict[str, str | None]:
        return {
            "code": self.code,
            "entity_id": self.entity_id,
            "operation": self.operation,
            "message": self.message,
        }


# -----------------------------
# Precondition errors: returned to the caller, never retried
# -----------------------------

class PreconditionError(CreatorPayError):
    code = "PRECONDITION_FAILED"


class NotFound(PreconditionError):
    code = "NOT_FOUND"


class NoMatchingSubscription(PreconditionError):
    code = "NO_MATCHING_SUBSCRIPTION"


class InvalidTransition(PreconditionError):
    code = "INVALID_TRANSITION"


class InvalidPauseDate(PreconditionError):
    code = "INVALID_PAUSE_DATE"


class InvalidCommand(PreconditionError):
    code = "INVALID_COMMAND"


class PayoutsNotEnabled(PreconditionError):
    code = "PAYOUTS_NOT_ENABLED"


class RefundAmountExceeded(PreconditionError):
    code = "REFUND_AMOUNT_EXCEEDED"


class RefundAlreadyDecided(PreconditionError):
    code = "REFUND_ALREADY_DECIDED"


class AdminNotesRequired(PreconditionError):
    code = "ADMIN_NOTES_REQUIRED"


class ConcurrentUpdate(PreconditionError):
    code = "CONCURRENT_UPDATE"


# -----------------------------
# Transient errors: the caller (or the retry engine) may try again
# -----------------------------

class RetryableError(CreatorPayError):
    code = "RETRYABLE"


class ProcessorUnavailable(RetryableError):
    code = "PROCESSOR_UNAVAILABLE"


# -----------------------------
# Fatal / data-integrity errors: always surfaced to an operator
# -----------------------------

class FatalIntegrityError(CreatorPayError):
    code = "DATA_INTEGRITY"


class MissingExternalReference(FatalIntegrityError):
    code = "MISSING_EXTERNAL_REFERENCE"


class UnresolvableCharge(FatalIntegrityError):
    code = "UNRESOLVABLE_CHARGE"


# -----------------------------
# Processor adapter error
# -----------------------------

class ProcessorError(Exception):
    """
    Raised by processor adapters. `message` is the processor's own text and
    is persisted verbatim for audit.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        retryable: bool,
        code: str | None = None,
        http_status: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.retryable = retryable
        self.code = code
        self.http_status = http_status


def wrap_processor_error(exc: ProcessorError, *, entity_id: str | None) -> CreatorPayError:
    """
    Translate a processor failure for a user-initiated action. Retryable
    failures become ProcessorUnavailable; the rest are preconditions the
    caller has to fix (bad price id, closed account, ...).
    """
    msg = f"{exc.operation} failed: {exc.message}"
    if exc.retryable:
        return ProcessorUnavailable(msg, entity_id=entity_id, operation=exc.operation)
    err = PreconditionError(msg, entity_id=entity_id, operation=exc.operation)
    err.code = f"PROCESSOR_{(exc.code or 'REJECTED').upper()}"
    return err


ERROR_HTTP_MAP: dict[type[CreatorPayError], int] = {
    NotFound: 404,
    NoMatchingSubscription: 409,
    InvalidTransition: 409,
    ConcurrentUpdate: 409,
    RefundAlreadyDecided: 409,
    PayoutsNotEnabled: 409,
    InvalidPauseDate: 422,
    InvalidCommand: 422,
    RefundAmountExceeded: 422,
    AdminNotesRequired: 422,
    PreconditionError: 400,
    RetryableError: 503,
}


def http_status_for(exc: CreatorPayError) -> int:
    for klass in type(exc).__mro__:
        status = ERROR_HTTP_MAP.get(klass)  # type: ignore[arg-type]
        if status is not None:
            return status
    return 500


def raise_http_from_domain_error(exc: Exception) -> None:
    """
    Convert known domain errors into HTTP responses; otherwise fail closed.
    Fatal integrity errors never leak details to the caller.
    """
    if isinstance(exc, FatalIntegrityError):
        logger.error("fatal integrity error %s", exc.context())
        raise HTTPException(status_code=500, detail={"code": exc.code, "message": "Internal server error"})

    if isinstance(exc, CreatorPayError):
        status = http_status_for(exc)
        if status < 500 or status == 503:
            raise HTTPException(status_code=status, detail={"code": exc.code, "message": exc.message})

    raise HTTPException(status_code=500, detail="Internal server error")
