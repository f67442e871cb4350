"""Utilities for managing status conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import COND_STORAGE_EXISTS, STATUS_FALSE, STATUS_TRUE, STATUS_UNKNOWN

_VALID_STATUSES = {STATUS_TRUE, STATUS_FALSE, STATUS_UNKNOWN}


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    The list is modified in place. ``lastTransitionTime`` only moves when the
    status of an existing condition changes.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message

    Returns:
        Updated list of conditions

    Raises:
        ValueError: If status is not one of the three condition statuses
    """
    if status not in _VALID_STATUSES:
        raise ValueError(f"Invalid condition status '{status}'")

    now = datetime.now(timezone.utc).isoformat()

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    for idx, existing in enumerate(conditions):
        if existing.get("type") != condition_type:
            continue
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
        conditions[idx] = new_condition
        return conditions

    conditions.append(new_condition)
    return conditions


def get_condition(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    """Return the condition of the given type, or None."""
    for cond in conditions:
        if cond.get("type") == condition_type:
            return cond
    return None


def set_storage_exists_condition(
    conditions: list[dict[str, Any]], status: str, reason: str, message: str
) -> list[dict[str, Any]]:
    """Set the StorageExists condition."""
    return update_condition(conditions, COND_STORAGE_EXISTS, status, reason, message)
