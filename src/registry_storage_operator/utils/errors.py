"""Error types and sanitization utilities."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any


class ConfigurationError(ValueError):
    """Invalid or missing configuration. Never retried."""


class StorageNotConfiguredError(ConfigurationError):
    """No storage backend is configured."""

    def __init__(self, message: str = "storage backend not configured") -> None:
        super().__init__(message)


class MultiStoragesError(ConfigurationError):
    """More than one storage backend is configured at the same time."""

    def __init__(self, names: list[str]) -> None:
        self.names = list(names)
        super().__init__(
            f"exactly one storage type should be configured at the same time, "
            f"got {len(self.names)}: {self.names}"
        )


class StorageError(Exception):
    """A cloud storage operation failed.

    Attributes:
        retryable: Whether the caller should retry on the next reconcile
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


@dataclass
class OperationError:
    """A single failed item in a multi-item operation."""

    operation: str
    resource_id: str
    cause: Exception | str
    retryable: bool = True

    def __str__(self) -> str:
        return f"{self.operation} {self.resource_id}: {self.cause}"


class AggregateError(Exception):
    """Collects per-item failures from a best-effort operation."""

    def __init__(self, message: str, errors: list[OperationError]) -> None:
        self.errors = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{message}: {details}" if details else message)

    @property
    def retryable(self) -> bool:
        """True when every collected failure is retryable."""
        return all(e.retryable for e in self.errors)


class BlobMoveError(AggregateError):
    """Some blobs could not be moved. Carries the blobs that were moved."""

    def __init__(self, moved: list[str], errors: list[OperationError]) -> None:
        self.moved = list(moved)
        super().__init__(f"failed to move {len(errors)} blob operation(s)", errors)


# Patterns that might expose sensitive information
SENSITIVE_PATTERNS = [
    r"access[_\s]?key[_\s]?id[:\s]+([A-Z0-9]{20})",
    r"secret[_\s]?access[_\s]?key[:\s]+([A-Za-z0-9/+=]{40})",
    r"account[_\s]?key[:\s=]+([A-Za-z0-9/+=]+)",
    r"client[_\s]?secret[:\s=]+([^\s,;\)]+)",
    r"sig=([A-Za-z0-9%/+=]+)",
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "aws_access_key_id",
    "aws_secret_access_key",
    "password",
    "secret",
    "credentials",
    "token",
    "accountkey",
    "private_key",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove sensitive information.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with sensitive data redacted
    """
    sanitized = message

    for pattern in SENSITIVE_PATTERNS:
        sanitized = re.sub(
            pattern,
            lambda m: m.group(0).replace(m.group(1), "[REDACTED]"),
            sanitized,
            flags=re.IGNORECASE,
        )

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"\b{field}[:=\s]+([^\s,;\)]+)",
            rf"{field}: [REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: Exception) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
