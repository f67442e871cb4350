"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_STORAGE_ADOPTED,
    EVENT_REASON_STORAGE_CREATED,
    EVENT_REASON_STORAGE_DRIFT,
    EVENT_REASON_STORAGE_REMOVED,
)


def emit_event(
    meta: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        meta: Resource metadata
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        meta,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(meta: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(meta, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(meta: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(meta, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_storage_created(meta: dict[str, Any], backend: str, name: str) -> None:
    """Emit storage created event."""
    emit_event(meta, EVENT_REASON_STORAGE_CREATED, f"{backend} storage {name} created")


def emit_storage_adopted(meta: dict[str, Any], backend: str, name: str) -> None:
    """Emit storage adopted event."""
    emit_event(meta, EVENT_REASON_STORAGE_ADOPTED, f"Using existing {backend} storage {name}")


def emit_storage_removed(meta: dict[str, Any], backend: str) -> None:
    """Emit storage removed event."""
    emit_event(meta, EVENT_REASON_STORAGE_REMOVED, f"{backend} storage removed")


def emit_storage_drift(meta: dict[str, Any], backend: str) -> None:
    """Emit storage configuration changed event."""
    emit_event(
        meta,
        EVENT_REASON_STORAGE_DRIFT,
        f"{backend} storage configuration differs from the last applied configuration",
        type_="Warning",
    )
