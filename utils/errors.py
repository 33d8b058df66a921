"""
Error Taxonomy for the Marketplace Backend
==========================================

Single boundary where storage-driver and payment-gateway failures are turned into
a small, closed set of error kinds. Nothing past this module should inspect vendor
error codes.

Usage Examples:
    # Raising a business error
    raise bad_request_error("Insufficient inventory", details={"code": ErrorCodes.INSUFFICIENT_STOCK})

    # Classifying anything that escaped a transaction
    kind = classify(exc)
    if is_retryable(exc):
        ...

    # Rendering for the HTTP layer
    payload, status = api_error.to_dict(debug=settings.DEBUG), api_error.status_code
"""

import enum
from typing import Any, Dict, Iterator, Optional

import stripe
from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DataError, DatabaseError, IntegrityError, InterfaceError, OperationalError


class ErrorKind(str, enum.Enum):
    """Semantic failure kinds exposed to collaborators."""

    NOT_FOUND = "NOT_FOUND"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMIT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONCURRENCY_CONFLICT = "CONCURRENCY_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.CONCURRENCY_CONFLICT: 409,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
    ErrorKind.INTERNAL_ERROR: 500,
}


class ErrorCodes:
    """Machine-readable codes carried in ``ApiError.details["code"]``."""

    # Product / inventory
    PRODUCT_NOT_FOUND = "product_not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    STALE_VERSION = "stale_version"

    # Cart input
    EMPTY_CART = "empty_cart"
    INVALID_QUANTITY = "invalid_quantity"
    INVALID_PRICE = "invalid_price"
    INVALID_INPUT = "invalid_input"

    # Orders
    ORDER_NOT_FOUND = "order_not_found"
    NOT_ORDER_OWNER = "not_order_owner"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"
    ADDRESS_NOT_FOUND = "address_not_found"


class ApiError(Exception):
    """
    Typed error value carrying ``{kind, message, details}``.

    ``message`` is always safe to show to a buyer. ``internal_message`` keeps the
    raw underlying text (driver messages, vendor codes) for logs only.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        internal_message: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.details = details
        self.internal_message = internal_message

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    @property
    def code(self) -> Optional[str]:
        return (self.details or {}).get("code")

    def to_dict(self, debug: bool = False) -> Dict[str, Any]:
        payload = {"error": self.message, "type": self.kind.value}
        if self.details:
            payload["details"] = self.details
        if debug and self.internal_message:
            payload["message"] = self.internal_message
        return payload

    def __repr__(self):
        return f"ApiError(kind={self.kind.name}, message={self.message!r}, details={self.details!r})"


def not_found_error(message: str = "Resource not found", details: Optional[Dict] = None) -> ApiError:
    return ApiError(ErrorKind.NOT_FOUND, message, details)


def bad_request_error(message: str = "Invalid request", details: Optional[Dict] = None) -> ApiError:
    return ApiError(ErrorKind.BAD_REQUEST, message, details)


def unauthorized_error(message: str = "Unauthorized") -> ApiError:
    return ApiError(ErrorKind.UNAUTHORIZED, message)


def forbidden_error(message: str = "Forbidden", details: Optional[Dict] = None) -> ApiError:
    return ApiError(ErrorKind.FORBIDDEN, message, details)


def conflict_error(message: str = "Resource conflict", details: Optional[Dict] = None) -> ApiError:
    return ApiError(ErrorKind.CONFLICT, message, details)


def rate_limited_error(message: str = "Too many requests") -> ApiError:
    return ApiError(ErrorKind.RATE_LIMITED, message)


def validation_error(message: str = "Validation failed", details: Optional[Dict] = None) -> ApiError:
    return ApiError(ErrorKind.VALIDATION_ERROR, message, details)


def concurrency_error(message: str = "Concurrent modification conflict", details: Optional[Dict] = None) -> ApiError:
    return ApiError(ErrorKind.CONCURRENCY_CONFLICT, message, details)


def service_unavailable_error(message: str = "Service unavailable") -> ApiError:
    return ApiError(ErrorKind.SERVICE_UNAVAILABLE, message)


def internal_error(message: str = "Internal server error", details: Optional[Dict] = None) -> ApiError:
    return ApiError(ErrorKind.INTERNAL_ERROR, message, details)


# ---------------------------------------------------------------------------
# Storage-layer signals raised by the transaction utilities themselves
# ---------------------------------------------------------------------------


class TransactionError(Exception):
    """Base class for transaction-level failures raised by this project."""

    pass


class TransactionTimeout(TransactionError):
    """An attempt ran past its deadline and was rolled back."""

    pass


class SerializationConflict(TransactionError):
    """A conditional write matched no row: the row changed after it was read."""

    pass


# PostgreSQL SQLSTATE values
PG_SERIALIZATION_FAILURE = "40001"
PG_DEADLOCK_DETECTED = "40P01"
PG_LOCK_NOT_AVAILABLE = "55P03"
PG_QUERY_CANCELED = "57014"
PG_UNIQUE_VIOLATION = "23505"
PG_FOREIGN_KEY_VIOLATION = "23503"
PG_CONNECTION_CLASS = "08"
PG_INVALID_AUTHORIZATION_CLASS = "28"

# MySQL server / client error numbers
MYSQL_DEADLOCK = 1213
MYSQL_LOCK_WAIT_TIMEOUT = 1205
MYSQL_LOCK_NOWAIT = 3572
MYSQL_DUPLICATE_ENTRY = 1062
MYSQL_FK_PARENT = 1451
MYSQL_FK_CHILD = 1452
MYSQL_CONNECTION_ERRORS = {1040, 2002, 2003, 2006, 2013}

SQLITE_LOCKED_MESSAGES = ("database is locked", "database table is locked")

# Client-side connection loss raised without a SQLSTATE (psycopg, libpq)
CONNECTION_LOST_MESSAGES = (
    "server closed the connection unexpectedly",
    "connection refused",
    "could not connect to server",
    "connection to server at",
    "connection already closed",
    "terminating connection",
    "ssl connection has been closed unexpectedly",
    "the connection is lost",
    "can't reach database server",
)


def _error_chain(error: BaseException) -> Iterator[BaseException]:
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        yield error
        error = error.__cause__


def _sqlstate(error: BaseException) -> Optional[str]:
    for exc in _error_chain(error):
        code = getattr(exc, "sqlstate", None) or getattr(exc, "pgcode", None)
        if code:
            return str(code)
    return None


def _mysql_errno(error: BaseException) -> Optional[int]:
    for exc in _error_chain(error):
        args = getattr(exc, "args", ())
        if args and isinstance(args[0], int):
            return args[0]
    return None


def _message(error: BaseException) -> str:
    return str(error).lower()


def _is_lock_contention(error: BaseException) -> bool:
    if isinstance(error, SerializationConflict):
        return True
    if not isinstance(error, DatabaseError):
        return False
    if _sqlstate(error) in (PG_SERIALIZATION_FAILURE, PG_DEADLOCK_DETECTED, PG_LOCK_NOT_AVAILABLE):
        return True
    if _mysql_errno(error) in (MYSQL_DEADLOCK, MYSQL_LOCK_WAIT_TIMEOUT, MYSQL_LOCK_NOWAIT):
        return True
    message = _message(error)
    return any(text in message for text in SQLITE_LOCKED_MESSAGES)


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, TransactionTimeout):
        return True
    return isinstance(error, DatabaseError) and _sqlstate(error) == PG_QUERY_CANCELED


def is_connection_error(error: BaseException) -> bool:
    if isinstance(error, InterfaceError):
        return True
    if not isinstance(error, DatabaseError):
        return False
    sqlstate = _sqlstate(error)
    if sqlstate:
        return sqlstate.startswith((PG_CONNECTION_CLASS, PG_INVALID_AUTHORIZATION_CLASS))
    errno = _mysql_errno(error)
    if errno is not None:
        return errno in MYSQL_CONNECTION_ERRORS
    if not isinstance(error, OperationalError):
        return False
    message = _message(error)
    return any(text in message for text in CONNECTION_LOST_MESSAGES)


def _classify_integrity(error: IntegrityError) -> ErrorKind:
    sqlstate = _sqlstate(error)
    errno = _mysql_errno(error)
    message = _message(error)
    if sqlstate == PG_UNIQUE_VIOLATION or errno == MYSQL_DUPLICATE_ENTRY or "unique constraint" in message:
        return ErrorKind.CONFLICT
    if sqlstate == PG_FOREIGN_KEY_VIOLATION or errno in (MYSQL_FK_PARENT, MYSQL_FK_CHILD) or "foreign key" in message:
        return ErrorKind.BAD_REQUEST
    return ErrorKind.VALIDATION_ERROR


def _classify_stripe(error: "stripe.StripeError") -> ErrorKind:
    if isinstance(error, stripe.RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, stripe.CardError):
        return ErrorKind.BAD_REQUEST
    if isinstance(error, stripe.InvalidRequestError):
        return ErrorKind.VALIDATION_ERROR
    if isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
        return ErrorKind.SERVICE_UNAVAILABLE
    return ErrorKind.INTERNAL_ERROR


def classify(error: BaseException) -> ErrorKind:
    """
    Map any failure to an ``ErrorKind``. Pure; never raises.

    Args:
        error: Exception raised by business code, the ORM, a driver or Stripe

    Returns:
        ErrorKind for the failure (INTERNAL_ERROR when nothing matches)
    """
    if isinstance(error, ApiError):
        return error.kind
    if isinstance(error, ObjectDoesNotExist):
        return ErrorKind.NOT_FOUND
    if isinstance(error, (DjangoValidationError, DataError)):
        return ErrorKind.VALIDATION_ERROR
    if isinstance(error, IntegrityError):
        return _classify_integrity(error)
    if _is_lock_contention(error):
        return ErrorKind.CONCURRENCY_CONFLICT
    if _is_timeout(error):
        return ErrorKind.INTERNAL_ERROR
    if is_connection_error(error):
        return ErrorKind.SERVICE_UNAVAILABLE
    if isinstance(error, stripe.StripeError):
        return _classify_stripe(error)
    return ErrorKind.INTERNAL_ERROR


def is_retryable(error: BaseException) -> bool:
    """
    True when re-running the whole transaction could succeed.

    Business errors (``ApiError``), including deliberate concurrency conflicts,
    are never retryable.
    """
    if isinstance(error, ApiError):
        return False
    if _is_lock_contention(error) or _is_timeout(error) or is_connection_error(error):
        return True
    return isinstance(error, stripe.RateLimitError)


_SAFE_MESSAGES = {
    ErrorKind.NOT_FOUND: "Record not found",
    ErrorKind.BAD_REQUEST: "Related record not found",
    ErrorKind.CONFLICT: "A record with these values already exists",
    ErrorKind.VALIDATION_ERROR: "Validation error in database operation",
    ErrorKind.CONCURRENCY_CONFLICT: "Concurrent modification conflict",
    ErrorKind.SERVICE_UNAVAILABLE: "Database connection error",
    ErrorKind.RATE_LIMITED: "Too many requests to payment processor",
    ErrorKind.INTERNAL_ERROR: "Internal server error",
}


def _safe_message(error: BaseException, kind: ErrorKind) -> str:
    if _is_timeout(error):
        return "Transaction timed out or failed to commit"
    if _is_lock_contention(error):
        if _sqlstate(error) == PG_DEADLOCK_DETECTED or _mysql_errno(error) == MYSQL_DEADLOCK:
            return "Transaction failed due to a deadlock"
        return "Transaction failed due to a serialization error"
    if isinstance(error, stripe.StripeError):
        if kind == ErrorKind.SERVICE_UNAVAILABLE:
            return "Payment service unavailable"
        if kind in (ErrorKind.BAD_REQUEST, ErrorKind.VALIDATION_ERROR):
            return getattr(error, "user_message", None) or "Invalid payment request"
        if kind == ErrorKind.INTERNAL_ERROR:
            return "Payment processing error"
    return _SAFE_MESSAGES.get(kind, "Internal server error")


def to_api_error(error: BaseException) -> ApiError:
    """
    Convert any exception into an ``ApiError`` without leaking driver details.

    ``ApiError`` instances pass through unchanged.
    """
    if isinstance(error, ApiError):
        return error

    kind = classify(error)
    details = None
    if _is_timeout(error):
        details = {"rollback": True}
    elif isinstance(error, stripe.CardError) and getattr(error, "code", None):
        details = {"code": error.code}

    return ApiError(
        kind,
        _safe_message(error, kind),
        details=details,
        internal_message=f"{error.__class__.__name__}: {error}",
    )
