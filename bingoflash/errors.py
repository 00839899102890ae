"""Error codes and domain errors raised by the order/issuance core."""

from enum import Enum


class ErrorCode(Enum):
    INVALID_INPUT = "INVALID_INPUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    PIN_REQUIRED = "PIN_REQUIRED"
    PIN_INVALID = "PIN_INVALID"
    PIN_NOT_SET = "PIN_NOT_SET"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    ORDER_EXPIRED = "ORDER_EXPIRED"
    SALES_LOCKED = "SALES_LOCKED"
    ISSUANCE_FAILED = "ISSUANCE_FAILED"
    ISSUANCE_EXHAUSTED = "ISSUANCE_EXHAUSTED"
    # logged when the store self-heals, never raised
    STORE_CORRUPT = "STORE_CORRUPT"
    STORE_WRITE_FAILED = "STORE_WRITE_FAILED"


class DomainError(Exception):
    """Base error with a stable code, a user-safe message and an HTTP status."""

    status_code = 500

    def __init__(self, code: ErrorCode, message: str,
                 status_code: int | None = None):
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidInputError(DomainError):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_INPUT, message)


class UnauthorizedError(DomainError):
    status_code = 401

    def __init__(self, code: ErrorCode = ErrorCode.UNAUTHORIZED,
                 message: str = "Not authorized"):
        super().__init__(code, message)


class NotFoundError(DomainError):
    status_code = 404

    def __init__(self, message: str):
        super().__init__(ErrorCode.NOT_FOUND, message)


class ConflictError(DomainError):
    status_code = 409

    def __init__(self, message: str, code: ErrorCode = ErrorCode.CONFLICT):
        super().__init__(code, message)


class OrderExpiredError(ConflictError):
    def __init__(self, order_id: str):
        super().__init__("Order expired", code=ErrorCode.ORDER_EXPIRED)
        self.order_id = order_id


class SalesLockedError(ConflictError):
    def __init__(self, event_id: str):
        super().__init__("Sales are locked for this event",
                         code=ErrorCode.SALES_LOCKED)
        self.event_id = event_id


class IssuanceError(DomainError):
    """Ticket issuance could not complete; the order stays PAID."""

    status_code = 500

    def __init__(self, message: str,
                 code: ErrorCode = ErrorCode.ISSUANCE_FAILED):
        super().__init__(code, message)


class IssuanceExhaustedError(IssuanceError):
    """The retry ceiling was hit before enough unique grids were found."""

    def __init__(self, order_id: str, requested: int, created: int,
                 attempts: int):
        super().__init__(
            f"Could only generate {created} of {requested} unique cards "
            f"after {attempts} attempts",
            code=ErrorCode.ISSUANCE_EXHAUSTED,
        )
        self.order_id = order_id
        self.requested = requested
        self.created = created
        self.attempts = attempts


class StoreError(DomainError):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(ErrorCode.STORE_WRITE_FAILED, message)
