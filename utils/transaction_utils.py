"""
Transaction Utilities for the Marketplace Backend
=================================================

One injectable executor that runs a unit of work inside a database transaction
with an explicit isolation level and timeout, retrying the whole attempt with
exponential backoff and jitter when the failure is transient.

Usage Examples:
    executor = TransactionExecutor()

    # Raises ApiError on terminal failure
    order = executor.execute(lambda tx: create_order(tx), max_retries=5)

    # Result-returning variant for service code
    result = executor.run_with_retry(lambda tx: create_order(tx))
    if not result.ok:
        return result

Retryable failures: serialization failures, deadlocks, lock timeouts, lost
conditional writes, attempt timeouts, dropped connections and payment-gateway
rate limits. Everything else (business errors included) surfaces immediately.
"""

import logging
import math
import random
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional, TypeVar

from django.conf import settings
from django.core.signals import setting_changed
from django.db import DatabaseError, connections, transaction
from django.dispatch import receiver
from prometheus_client import Counter
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from .errors import (
    ApiError,
    ErrorKind,
    SerializationConflict,
    TransactionError,
    TransactionTimeout,
    classify,
    is_connection_error,
    is_retryable,
    to_api_error,
)
from .service_base import ServiceResult, service_err, service_ok

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "ISOLATION_LEVELS",
    "SerializationConflict",
    "TransactionError",
    "TransactionExecutor",
    "TransactionHandle",
    "TransactionOptions",
    "TransactionTimeout",
    "configure_transaction",
    "get_current_isolation_level",
    "get_executor",
]

ISOLATION_LEVELS = {
    "READ_UNCOMMITTED": "READ UNCOMMITTED",
    "READ_COMMITTED": "READ COMMITTED",
    "REPEATABLE_READ": "REPEATABLE READ",
    "SERIALIZABLE": "SERIALIZABLE",
}

transaction_retries_total = Counter(
    "marketplace_transaction_retries_total", "Transaction attempts retried after a transient failure", ["kind"]
)


def _normalise_isolation_level(level: str) -> str:
    key = level.strip().upper().replace(" ", "_")
    if key not in ISOLATION_LEVELS:
        raise ValueError(f"Invalid isolation level: {level}. Must be one of {list(ISOLATION_LEVELS)}")
    return key


@dataclass(frozen=True)
class TransactionOptions:
    """
    Per-call transaction policy.

    Delays and timeout are in seconds. ``max_retries`` counts retries, so a call
    makes at most ``max_retries + 1`` attempts.
    """

    max_retries: int = 3
    initial_delay: float = 0.1
    max_delay: float = 3.0
    jitter: float = 0.1
    isolation_level: str = "SERIALIZABLE"
    timeout: float = 10.0
    using: str = "default"

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        object.__setattr__(self, "isolation_level", _normalise_isolation_level(self.isolation_level))

    @classmethod
    def from_settings(cls) -> "TransactionOptions":
        """Build defaults from ``settings.ORDER_TRANSACTIONS`` (delays in milliseconds)."""
        config = getattr(settings, "ORDER_TRANSACTIONS", {})
        return cls(
            max_retries=config.get("MAX_RETRIES", 3),
            initial_delay=config.get("INITIAL_DELAY_MS", 100) / 1000,
            max_delay=config.get("MAX_DELAY_MS", 3000) / 1000,
            jitter=config.get("JITTER_MS", 100) / 1000,
            isolation_level=config.get("ISOLATION_LEVEL", "SERIALIZABLE"),
            timeout=config.get("TIMEOUT_SECONDS", 10),
            using=config.get("DATABASE", "default"),
        )

    def with_overrides(self, **overrides) -> "TransactionOptions":
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self


@dataclass
class TransactionHandle:
    """Handed to the unit of work for the lifetime of one attempt."""

    using: str
    attempt: int
    isolation_level: str
    deadline: float

    @property
    def connection(self):
        return connections[self.using]

    def check_deadline(self) -> None:
        if time.monotonic() > self.deadline:
            raise TransactionTimeout(f"Transaction attempt {self.attempt} exceeded its deadline")


def configure_transaction(using: str, isolation_level: str, timeout: float) -> None:
    """
    Apply isolation level and lock/statement timeouts to the transaction that is
    about to start on ``using``. Must run before the first query of the attempt.

    SQLite transactions are already serializable and time out through the
    connection's busy timeout, so nothing is issued there.
    """
    conn = connections[using]
    level = ISOLATION_LEVELS[_normalise_isolation_level(isolation_level)]
    timeout_ms = int(timeout * 1000)

    if conn.vendor == "postgresql":
        with conn.cursor() as cursor:
            cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {level}")
            cursor.execute(f"SET LOCAL statement_timeout = {timeout_ms}")
            cursor.execute(f"SET LOCAL lock_timeout = {timeout_ms}")
    elif conn.vendor == "mysql":
        with conn.cursor() as cursor:
            # Applies to the next transaction only; with autocommit off that is this attempt
            cursor.execute(f"SET TRANSACTION ISOLATION LEVEL {level}")
            cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {max(1, math.ceil(timeout))}")
    else:
        return

    logger.debug(f"Configured {conn.vendor} transaction: isolation={level}, timeout={timeout_ms}ms")


def get_current_isolation_level(using: str = "default") -> Optional[str]:
    """
    Get the current transaction isolation level for debugging.

    Returns:
        str: Current isolation level, or None if the backend cannot report it
    """
    conn = connections[using]
    if conn.vendor == "postgresql":
        query = "SHOW transaction_isolation"
    elif conn.vendor == "mysql":
        query = "SELECT @@transaction_isolation"
    elif conn.vendor == "sqlite":
        return "SERIALIZABLE"
    else:
        return None

    try:
        with conn.cursor() as cursor:
            cursor.execute(query)
            result = cursor.fetchone()[0]
    except DatabaseError as e:
        logger.error(f"Failed to get isolation level: {e}")
        return None

    logger.debug(f"Current isolation level: {result}")
    return str(result).upper().replace("-", " ")


class TransactionExecutor:
    """
    Runs ``work(tx)`` inside a transaction, retrying transient failures.

    Args:
        options: Default policy; per-call keyword overrides are merged on top
        sleep: Sleep function used between attempts (injectable for tests)
        jitter_source: ``uniform(a, b)``-style random source for backoff jitter
    """

    def __init__(
        self,
        options: Optional[TransactionOptions] = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter_source: Callable[[float, float], float] = random.uniform,
    ):
        self.options = options or TransactionOptions.from_settings()
        self.sleep = sleep
        self.jitter_source = jitter_source

    def backoff_delay(self, attempt: int, options: Optional[TransactionOptions] = None) -> float:
        """Delay before the retry that follows zero-based ``attempt``."""
        options = options or self.options
        delay = options.initial_delay * (2**attempt) + self.jitter_source(0, options.jitter)
        return min(delay, options.max_delay)

    def execute(self, work: Callable[[TransactionHandle], T], **overrides: Any) -> T:
        """
        Run ``work`` with retries and return its result.

        Raises:
            ApiError: classified terminal failure (business errors pass through as-is)
        """
        options = self.options.with_overrides(**overrides)
        retrying = Retrying(
            stop=stop_after_attempt(options.max_retries + 1),
            wait=lambda state: self.backoff_delay(state.attempt_number - 1, options),
            retry=retry_if_exception(is_retryable),
            before_sleep=lambda state: self._before_retry(state, options),
            sleep=self.sleep,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    result = self._run_attempt(work, options, attempt.retry_state.attempt_number)
        except ApiError:
            raise
        except Exception as exc:
            api_error = to_api_error(exc)
            if api_error.kind == ErrorKind.INTERNAL_ERROR:
                logger.error(f"Transaction failed: {api_error.internal_message}", exc_info=exc)
            else:
                logger.warning(f"Transaction failed with {api_error.kind.name}: {api_error.internal_message}")
            raise api_error from exc

        return result

    def run_with_retry(self, work: Callable[[TransactionHandle], T], **overrides: Any) -> ServiceResult[T]:
        """Same as ``execute`` but returns a ServiceResult instead of raising."""
        try:
            return service_ok(self.execute(work, **overrides))
        except ApiError as exc:
            return service_err(exc)

    def _run_attempt(self, work: Callable[[TransactionHandle], T], options: TransactionOptions, attempt: int) -> T:
        conn = connections[options.using]
        outermost = not conn.in_atomic_block
        handle = TransactionHandle(
            using=options.using,
            attempt=attempt,
            isolation_level=options.isolation_level,
            deadline=time.monotonic() + options.timeout,
        )

        with transaction.atomic(using=options.using):
            if outermost:
                configure_transaction(options.using, options.isolation_level, options.timeout)
            else:
                logger.debug("Joining an outer atomic block; isolation level is inherited")
            result = work(handle)
            handle.check_deadline()

        return result

    def _before_retry(self, state: RetryCallState, options: TransactionOptions) -> None:
        exc = state.outcome.exception()
        kind = classify(exc)
        delay = state.next_action.sleep if state.next_action else 0
        transaction_retries_total.labels(kind=kind.value).inc()
        logger.warning(
            f"Transient {kind.name} on attempt {state.attempt_number}/{options.max_retries + 1} "
            f"({exc.__class__.__name__}: {exc}), retrying in {delay:.3f}s"
        )

        conn = connections[options.using]
        if is_connection_error(exc) and not conn.in_atomic_block:
            conn.close_if_unusable_or_obsolete()


_default_executor: Optional[TransactionExecutor] = None


def get_executor() -> TransactionExecutor:
    """Process-wide executor built from settings; services accept their own instance too."""
    global _default_executor
    if _default_executor is None:
        _default_executor = TransactionExecutor()
    return _default_executor


@receiver(setting_changed)
def _reset_default_executor(setting, **kwargs):
    global _default_executor
    if setting == "ORDER_TRANSACTIONS":
        _default_executor = None
