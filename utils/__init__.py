# Utils package for the marketplace backend

from .errors import ApiError, ErrorCodes, ErrorKind, classify, is_retryable, to_api_error
from .service_base import BaseService, ServiceResult, service_err, service_ok
from .transaction_utils import TransactionExecutor, TransactionHandle, TransactionOptions, get_executor


__all__ = [
    "ApiError",
    "ErrorCodes",
    "ErrorKind",
    "classify",
    "is_retryable",
    "to_api_error",
    "BaseService",
    "ServiceResult",
    "service_err",
    "service_ok",
    "TransactionExecutor",
    "TransactionHandle",
    "TransactionOptions",
    "get_executor",
]
