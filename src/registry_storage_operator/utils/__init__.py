"""Utility functions for the Registry Storage Operator."""

from .cache import TTLCache, make_cache_key
from .conditions import get_condition, update_condition
from .errors import (
    AggregateError,
    ConfigurationError,
    MultiStoragesError,
    OperationError,
    StorageError,
    StorageNotConfiguredError,
    sanitize_exception,
)
from .naming import generate_account_name, generate_storage_name
from .rate_limit import TokenBucketLimiter, rate_limit_k8s

__all__ = [
    "update_condition",
    "get_condition",
    "TTLCache",
    "make_cache_key",
    "AggregateError",
    "ConfigurationError",
    "MultiStoragesError",
    "OperationError",
    "StorageError",
    "StorageNotConfiguredError",
    "sanitize_exception",
    "generate_storage_name",
    "generate_account_name",
    "TokenBucketLimiter",
    "rate_limit_k8s",
]
