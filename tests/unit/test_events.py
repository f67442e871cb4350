"""Tests for Kubernetes event utilities."""

from __future__ import annotations

from unittest.mock import patch

from registry_storage_operator.utils.events import (
    emit_event,
    emit_reconcile_failed,
    emit_storage_adopted,
    emit_storage_created,
    emit_storage_drift,
    emit_storage_removed,
)

META = {"name": "cluster"}


class TestEmitEvent:
    """Test cases for emit_event function."""

    @patch("registry_storage_operator.utils.events.kopf.event")
    def test_emit_event_normal(self, mock_event):
        emit_event(META, "TestReason", "Test message")

        mock_event.assert_called_once_with(META, reason="TestReason", message="Test message", type="Normal")

    @patch("registry_storage_operator.utils.events.kopf.event")
    def test_reconcile_failed_is_warning(self, mock_event):
        emit_reconcile_failed(META, "Reconciliation failed: boom")

        mock_event.assert_called_once_with(
            META, reason="ReconcileFailed", message="Reconciliation failed: boom", type="Warning"
        )


class TestStorageEvents:
    """Test cases for storage lifecycle events."""

    @patch("registry_storage_operator.utils.events.kopf.event")
    def test_created(self, mock_event):
        emit_storage_created(META, "S3", "bucket-1")

        assert mock_event.call_args.kwargs["reason"] == "StorageCreated"
        assert mock_event.call_args.kwargs["message"] == "S3 storage bucket-1 created"

    @patch("registry_storage_operator.utils.events.kopf.event")
    def test_adopted(self, mock_event):
        emit_storage_adopted(META, "GCS", "user-bucket")

        assert mock_event.call_args.kwargs["message"] == "Using existing GCS storage user-bucket"

    @patch("registry_storage_operator.utils.events.kopf.event")
    def test_removed(self, mock_event):
        emit_storage_removed(META, "Azure")

        assert mock_event.call_args.kwargs["reason"] == "StorageRemoved"

    @patch("registry_storage_operator.utils.events.kopf.event")
    def test_drift_is_warning(self, mock_event):
        emit_storage_drift(META, "Swift")

        assert mock_event.call_args.kwargs["type"] == "Warning"
        assert mock_event.call_args.kwargs["reason"] == "StorageConfigurationChanged"
