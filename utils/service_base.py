"""
Shared service-layer utilities to encourage separation of concerns.

This module provides the ServiceResult pattern (inspired by Rust's Result type)
and the BaseService class used by the marketplace services.

Guidelines
- Keep services stateless; pass dependencies via the constructor.
- Return structured results instead of raising for expected outcomes.
- Reserve exceptions for truly exceptional/unrecoverable scenarios.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from .errors import ApiError, ErrorKind, to_api_error

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """Standard wrapper for service outcomes.

    - ok: True if the operation succeeded
    - value: payload on success (may be None for void operations)
    - error: typed ApiError on failure (kind, safe message, details)

    Examples:
        >>> result = order_service.place_order(user_id, items)
        >>> if result.ok:
        ...     order = result.value
        >>> else:
        ...     status, body = result.error.status_code, result.to_dict()
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[ApiError] = None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    def to_dict(self, debug: bool = False) -> Dict[str, Any]:
        """Convert to a dictionary with 'success' and either 'data' or 'error'."""
        if self.ok:
            return {"success": True, "data": self.value}
        return {"success": False, **self.error.to_dict(debug=debug)}


def service_ok(value: Optional[T] = None) -> ServiceResult[T]:
    return ServiceResult(ok=True, value=value)


def service_err(error: BaseException) -> ServiceResult[T]:
    """Wrap any exception as a failed result; non-ApiError values are classified first."""
    return ServiceResult(ok=False, error=to_api_error(error))


class BaseService:
    """
    Base class for services providing a class-named logger and timing.

    Usage:
        class OrderService(BaseService):
            @BaseService.log_performance
            def place_order(self, user_id, line_items):
                ...
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__module__ + "." + self.__class__.__name__)

    @staticmethod
    def log_performance(func: Callable) -> Callable:
        """
        Decorator to log execution time and outcome of service methods.

        Failed ServiceResults are logged at WARNING with their error kind.
        """

        @wraps(func)
        def wrapper(self, *args, **kwargs):
            start_time = time.time()
            method_name = f"{self.__class__.__name__}.{func.__name__}"

            try:
                self.logger.debug(f"{method_name} started")
                result = func(self, *args, **kwargs)
                elapsed_time = (time.time() - start_time) * 1000

                if isinstance(result, ServiceResult):
                    if result.ok:
                        self.logger.info(f"{method_name} completed successfully in {elapsed_time:.2f}ms")
                    else:
                        self.logger.warning(
                            f"{method_name} failed with {result.error_kind.name} "
                            f"'{result.error.message}' in {elapsed_time:.2f}ms"
                        )
                else:
                    self.logger.info(f"{method_name} completed in {elapsed_time:.2f}ms")

                return result

            except Exception as e:
                elapsed_time = (time.time() - start_time) * 1000
                self.logger.error(
                    f"{method_name} raised exception after {elapsed_time:.2f}ms: {str(e)}",
                    exc_info=True,
                )
                raise

        return wrapper

    def fail(self, error: BaseException) -> ServiceResult:
        """
        Convert an exception into a failed ServiceResult, logging unexpected ones.

        ApiErrors are expected outcomes; anything else is logged with its traceback
        before being reduced to a safe message.
        """
        api_error = to_api_error(error)
        if api_error.kind == ErrorKind.INTERNAL_ERROR:
            self.logger.error(f"Internal error: {api_error.internal_message or api_error.message}", exc_info=error)
        return ServiceResult(ok=False, error=api_error)
