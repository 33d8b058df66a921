"""
Concurrency control primitives layered on the TransactionExecutor.

- Optimistic: compare the caller's version stamp with the stored one, fail fast on
  mismatch, bump the version in the same transaction as the mutation.
- Pessimistic: take a row lock with a locking read and hold it for the rest of the
  transaction.

A stale version is a ``CONCURRENCY_CONFLICT`` ApiError and is never retried: the
caller has to re-read and resubmit. A conditional write that matches no row inside
an attempt raises ``SerializationConflict`` instead, which restarts the attempt.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional, Type, TypeVar

from django.db import models
from django.db.models import F

from .errors import ErrorCodes, SerializationConflict, concurrency_error, not_found_error
from .transaction_utils import TransactionExecutor, TransactionHandle, get_executor

logger = logging.getLogger(__name__)

T = TypeVar("T")


def conditional_update(model: Type[models.Model], record_id: Any, expected_version: int, **changes) -> None:
    """
    ``UPDATE ... SET <changes>, version = version + 1 WHERE pk = id AND version = expected``.

    Raises:
        SerializationConflict: no row matched (changed or deleted since it was read)
    """
    updated = model.objects.filter(pk=record_id, version=expected_version).update(
        version=F("version") + 1, **changes
    )
    if updated != 1:
        raise SerializationConflict(
            f"{model.__name__} {record_id} changed after it was read (expected version {expected_version})"
        )


def lock_rows(queryset: models.QuerySet, ids: Iterable[Any]) -> Dict[Any, models.Model]:
    """
    Lock several rows with one locking read, in primary-key order.

    Must run inside a transaction. Rows that do not exist are simply absent from
    the returned mapping.
    """
    rows = queryset.select_for_update().filter(pk__in=set(ids)).order_by("pk")
    return {row.pk: row for row in rows}


def with_optimistic_concurrency(
    model: Type[models.Model],
    record_id: Any,
    expected_version: int,
    mutator: Callable[[TransactionHandle], T],
    executor: Optional[TransactionExecutor] = None,
    **options,
) -> T:
    """
    Run ``mutator`` only if the record is still at ``expected_version``.

    Args:
        model: Model with an integer ``version`` field
        record_id: Primary key of the record
        expected_version: Version the caller last read
        mutator: Unit of work; receives the transaction handle
        executor: TransactionExecutor to use (default from settings)
        **options: Per-call TransactionOptions overrides

    Returns:
        Whatever ``mutator`` returns

    Raises:
        ApiError: NOT_FOUND if the record is gone, CONCURRENCY_CONFLICT if stale
    """
    label = model.__name__

    def work(tx: TransactionHandle) -> T:
        current_version = model.objects.filter(pk=record_id).values_list("version", flat=True).first()
        if current_version is None:
            raise not_found_error(f"{label} not found", details={"id": str(record_id)})

        if current_version != expected_version:
            logger.info(
                f"Stale version for {label} {record_id}: expected {expected_version}, found {current_version}"
            )
            raise concurrency_error(
                "Record has been modified by another user",
                details={
                    "code": ErrorCodes.STALE_VERSION,
                    "expected_version": expected_version,
                    "current_version": current_version,
                },
            )

        result = mutator(tx)
        conditional_update(model, record_id, expected_version)
        return result

    return (executor or get_executor()).execute(work, **options)


def with_pessimistic_lock(
    model: Type[models.Model],
    record_id: Any,
    worker: Callable[[TransactionHandle, models.Model], T],
    executor: Optional[TransactionExecutor] = None,
    **options,
) -> T:
    """
    Lock the record for the rest of the transaction and hand it to ``worker``.

    Each retry re-acquires the lock from scratch.

    Raises:
        ApiError: NOT_FOUND if the record does not exist
    """

    def work(tx: TransactionHandle) -> T:
        try:
            record = model.objects.select_for_update().get(pk=record_id)
        except model.DoesNotExist:
            raise not_found_error(f"{model.__name__} not found", details={"id": str(record_id)})
        return worker(tx, record)

    return (executor or get_executor()).execute(work, **options)
