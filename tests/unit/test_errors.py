"""Tests for error types and sanitization."""

from __future__ import annotations

from registry_storage_operator.utils.errors import (
    AggregateError,
    BlobMoveError,
    ConfigurationError,
    MultiStoragesError,
    OperationError,
    StorageError,
    StorageNotConfiguredError,
    sanitize_dict,
    sanitize_error_message,
    sanitize_exception,
)


class TestErrorTypes:
    """Test cases for the error hierarchy."""

    def test_not_configured_is_configuration_error(self):
        assert isinstance(StorageNotConfiguredError(), ConfigurationError)
        assert str(StorageNotConfiguredError()) == "storage backend not configured"

    def test_multi_storages_lists_names(self):
        error = MultiStoragesError(["S3", "GCS"])
        assert isinstance(error, ConfigurationError)
        assert error.names == ["S3", "GCS"]
        assert "got 2" in str(error)

    def test_storage_error_is_retryable_by_default(self):
        assert StorageError("boom").retryable is True
        assert StorageError("boom", retryable=False).retryable is False

    def test_aggregate_error_message_and_retryable(self):
        errors = [
            OperationError("delete", "a", "denied"),
            OperationError("delete", "b", "gone", retryable=False),
        ]
        error = AggregateError("failed", errors)

        assert str(error) == "failed: delete a: denied; delete b: gone"
        assert error.retryable is False
        assert AggregateError("failed", errors[:1]).retryable is True

    def test_blob_move_error_carries_moved(self):
        error = BlobMoveError(["docker/a"], [OperationError("copy", "docker/b", "failed")])
        assert error.moved == ["docker/a"]
        assert len(error.errors) == 1


class TestSanitize:
    """Test cases for secret redaction."""

    def test_redacts_account_key(self):
        message = sanitize_error_message("bad AccountKey=abc123/+= in connection string")
        assert "abc123" not in message

    def test_redacts_client_secret(self):
        message = sanitize_exception(ValueError("client_secret: s3cr3t was rejected"))
        assert "s3cr3t" not in message

    def test_redacts_sas_signature(self):
        message = sanitize_error_message("https://a.blob.core.windows.net/c?sig=abcDEF%2B123&se=1")
        assert "abcDEF" not in message

    def test_sanitize_dict(self):
        data = sanitize_dict({"password": "p", "nested": {"token": "t"}, "name": "ok"})
        assert data["password"] == "[REDACTED]"
        assert data["nested"]["token"] == "[REDACTED]"
        assert data["name"] == "ok"
