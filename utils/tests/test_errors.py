import pytest
import stripe
from django.core.exceptions import ObjectDoesNotExist
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DataError, IntegrityError, InterfaceError, OperationalError

from utils.errors import (
    ApiError,
    ErrorCodes,
    ErrorKind,
    SerializationConflict,
    TransactionTimeout,
    bad_request_error,
    classify,
    concurrency_error,
    conflict_error,
    forbidden_error,
    internal_error,
    is_connection_error,
    is_retryable,
    not_found_error,
    rate_limited_error,
    service_unavailable_error,
    to_api_error,
    unauthorized_error,
    validation_error,
)


class DriverError(Exception):
    """Stands in for a psycopg error carrying a SQLSTATE."""

    def __init__(self, sqlstate, message="driver failure"):
        super().__init__(message)
        self.sqlstate = sqlstate


def pg_error(sqlstate, cls=OperationalError, message="could not serialize access"):
    error = cls(message)
    error.__cause__ = DriverError(sqlstate, message)
    return error


@pytest.mark.unit
class TestApiError:
    @pytest.mark.parametrize(
        "constructor,kind,status",
        [
            (not_found_error, ErrorKind.NOT_FOUND, 404),
            (bad_request_error, ErrorKind.BAD_REQUEST, 400),
            (unauthorized_error, ErrorKind.UNAUTHORIZED, 401),
            (forbidden_error, ErrorKind.FORBIDDEN, 403),
            (conflict_error, ErrorKind.CONFLICT, 409),
            (rate_limited_error, ErrorKind.RATE_LIMITED, 429),
            (validation_error, ErrorKind.VALIDATION_ERROR, 400),
            (concurrency_error, ErrorKind.CONCURRENCY_CONFLICT, 409),
            (service_unavailable_error, ErrorKind.SERVICE_UNAVAILABLE, 503),
            (internal_error, ErrorKind.INTERNAL_ERROR, 500),
        ],
    )
    def test_constructors(self, constructor, kind, status):
        error = constructor()

        assert isinstance(error, ApiError)
        assert error.kind == kind
        assert error.status_code == status
        assert error.message
        assert error.to_dict()["type"] == kind.value

    def test_to_dict_hides_internal_message_unless_debug(self):
        error = ApiError(
            ErrorKind.INTERNAL_ERROR,
            "Internal server error",
            internal_message="OperationalError: relation marketplace_product does not exist",
        )

        assert error.to_dict() == {"error": "Internal server error", "type": "INTERNAL_ERROR"}
        assert "marketplace_product" in error.to_dict(debug=True)["message"]

    def test_to_dict_includes_details(self):
        error = bad_request_error("Insufficient inventory", details={"code": ErrorCodes.INSUFFICIENT_STOCK})

        payload = error.to_dict()
        assert payload["type"] == "BAD_REQUEST"
        assert payload["details"]["code"] == "insufficient_stock"
        assert error.code == ErrorCodes.INSUFFICIENT_STOCK


@pytest.mark.unit
class TestClassify:
    @pytest.mark.parametrize(
        "error,kind",
        [
            (ObjectDoesNotExist("gone"), ErrorKind.NOT_FOUND),
            (DjangoValidationError("bad"), ErrorKind.VALIDATION_ERROR),
            (DataError("value too long"), ErrorKind.VALIDATION_ERROR),
            (pg_error("23505", IntegrityError), ErrorKind.CONFLICT),
            (pg_error("23503", IntegrityError), ErrorKind.BAD_REQUEST),
            (IntegrityError("UNIQUE constraint failed: auth_user.username"), ErrorKind.CONFLICT),
            (IntegrityError("FOREIGN KEY constraint failed"), ErrorKind.BAD_REQUEST),
            (IntegrityError("CHECK constraint failed: inventory_non_negative"), ErrorKind.VALIDATION_ERROR),
            (pg_error("40001"), ErrorKind.CONCURRENCY_CONFLICT),
            (pg_error("40P01"), ErrorKind.CONCURRENCY_CONFLICT),
            (OperationalError(1213, "Deadlock found when trying to get lock"), ErrorKind.CONCURRENCY_CONFLICT),
            (OperationalError(1205, "Lock wait timeout exceeded"), ErrorKind.CONCURRENCY_CONFLICT),
            (OperationalError("database is locked"), ErrorKind.CONCURRENCY_CONFLICT),
            (SerializationConflict("lost write"), ErrorKind.CONCURRENCY_CONFLICT),
            (TransactionTimeout("late"), ErrorKind.INTERNAL_ERROR),
            (pg_error("57014"), ErrorKind.INTERNAL_ERROR),
            (pg_error("08006"), ErrorKind.SERVICE_UNAVAILABLE),
            (pg_error("28P01"), ErrorKind.SERVICE_UNAVAILABLE),
            (pg_error(None, message="server closed the connection unexpectedly"), ErrorKind.SERVICE_UNAVAILABLE),
            (OperationalError(2006, "MySQL server has gone away"), ErrorKind.SERVICE_UNAVAILABLE),
            (InterfaceError("connection already closed"), ErrorKind.SERVICE_UNAVAILABLE),
            (stripe.RateLimitError("Too many requests"), ErrorKind.RATE_LIMITED),
            (stripe.CardError("Card declined", None, "card_declined"), ErrorKind.BAD_REQUEST),
            (stripe.InvalidRequestError("No such payment_intent", None), ErrorKind.VALIDATION_ERROR),
            (stripe.APIConnectionError("Network down"), ErrorKind.SERVICE_UNAVAILABLE),
            (stripe.AuthenticationError("Invalid API key"), ErrorKind.INTERNAL_ERROR),
            (ValueError("anything else"), ErrorKind.INTERNAL_ERROR),
        ],
    )
    def test_classify(self, error, kind):
        assert classify(error) == kind

    def test_api_error_keeps_its_kind(self):
        assert classify(concurrency_error()) == ErrorKind.CONCURRENCY_CONFLICT


@pytest.mark.unit
class TestIsRetryable:
    @pytest.mark.parametrize(
        "error",
        [
            pg_error("40001"),
            pg_error("40P01"),
            pg_error("55P03"),
            OperationalError(1213, "Deadlock found"),
            OperationalError("database is locked"),
            SerializationConflict("lost write"),
            TransactionTimeout("late"),
            pg_error("08006"),
            pg_error("28000"),
            pg_error(None, message="server closed the connection unexpectedly"),
            pg_error(None, message="connection to server at \"db\" (10.0.0.5), port 5432 failed: Connection refused"),
            OperationalError("could not connect to server: Connection refused"),
            InterfaceError("connection already closed"),
            stripe.RateLimitError("Too many requests"),
        ],
    )
    def test_transient_failures_are_retryable(self, error):
        assert is_retryable(error)

    @pytest.mark.parametrize(
        "error",
        [
            concurrency_error("Record has been modified by another user"),
            bad_request_error("Insufficient inventory"),
            pg_error("23505", IntegrityError),
            DataError("value too long"),
            stripe.CardError("Card declined", None, "card_declined"),
            ValueError("bug"),
        ],
    )
    def test_terminal_failures_are_not_retryable(self, error):
        assert not is_retryable(error)


@pytest.mark.unit
class TestToApiError:
    def test_passes_api_errors_through(self):
        error = not_found_error("Product not found")
        assert to_api_error(error) is error

    def test_serialization_failure_message_is_safe(self):
        api_error = to_api_error(pg_error("40001", message="could not serialize access due to concurrent update"))

        assert api_error.kind == ErrorKind.CONCURRENCY_CONFLICT
        assert api_error.message == "Transaction failed due to a serialization error"
        assert "concurrent update" not in str(api_error.to_dict())
        assert "concurrent update" in api_error.internal_message

    def test_deadlock_message(self):
        api_error = to_api_error(OperationalError(1213, "Deadlock found"))
        assert api_error.message == "Transaction failed due to a deadlock"

    def test_timeout_reports_rollback(self):
        api_error = to_api_error(TransactionTimeout("attempt 1 exceeded its deadline"))

        assert api_error.kind == ErrorKind.INTERNAL_ERROR
        assert api_error.status_code == 500
        assert api_error.details == {"rollback": True}

    def test_card_error_carries_decline_code(self):
        api_error = to_api_error(stripe.CardError("Your card was declined.", None, "card_declined"))

        assert api_error.kind == ErrorKind.BAD_REQUEST
        assert api_error.code == "card_declined"

    def test_unknown_error_is_internal(self):
        api_error = to_api_error(RuntimeError("secret stack detail"))

        assert api_error.kind == ErrorKind.INTERNAL_ERROR
        assert api_error.to_dict() == {"error": "Internal server error", "type": "INTERNAL_ERROR"}


@pytest.mark.unit
class TestConnectionErrors:
    def test_connection_drop_without_sqlstate(self):
        error = pg_error(None, message="server closed the connection unexpectedly")

        assert is_connection_error(error)
        assert is_retryable(error)
        api_error = to_api_error(error)
        assert api_error.kind == ErrorKind.SERVICE_UNAVAILABLE
        assert api_error.message == "Database connection error"

    def test_authentication_failure_class(self):
        assert is_connection_error(pg_error("28P01", message="password authentication failed"))

    def test_other_operational_errors_are_not_connection_errors(self):
        error = OperationalError("no such table: marketplace_product")

        assert not is_connection_error(error)
        assert not is_retryable(error)

    def test_other_sqlstate_is_not_a_connection_error(self):
        assert not is_connection_error(pg_error("42P01", message="connection refused in relation name"))
