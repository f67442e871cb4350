"""Handler for the image registry Config resource storage."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Callable

import kopf
from kubernetes import config

from .. import metrics
from ..constants import (
    API_GROUP,
    API_VERSION,
    CONFIG_PLURAL,
    KIND_CONFIG,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_REMOVED,
    REASON_CONFIG_ERROR,
    REASON_STORAGE_NOT_CONFIGURED,
    STATUS_FALSE,
)
from ..listers import StorageListers
from ..models import RegistryConfig
from ..storage import get_driver
from ..storage.base import Driver
from ..tracing import add_span_attribute, storage_span, trace_span
from ..utils.conditions import set_storage_exists_condition
from ..utils.errors import ConfigurationError, StorageNotConfiguredError, sanitize_exception
from ..utils.events import (
    emit_storage_adopted,
    emit_storage_created,
    emit_storage_drift,
    emit_storage_removed,
)
from .base import BaseHandler

# Delay before kopf calls the handler again while removal is in progress
REMOVAL_RETRY_DELAY_SECONDS = 10

# Status fields written by this handler
STATUS_FIELDS = ("storage", "storageManagementState", "conditions")


def get_listers() -> StorageListers:
    """Load the Kubernetes client configuration and return the cluster lookups."""
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()
    return StorageListers()


def backend_name(driver: Driver) -> str:
    return getattr(driver, "backend", type(driver).__name__)


def merge_patch(current: Mapping[str, Any] | None, desired: dict[str, Any]) -> dict[str, Any]:
    """Build a JSON merge patch turning ``current`` into ``desired``.

    kopf applies patches as merge patches, where an absent key leaves the
    stored value alone. Keys that ``desired`` no longer has are therefore
    sent as None so the API server deletes them. Nested mappings are diffed
    recursively, any other value is sent as is.
    """
    current = current or {}
    result: dict[str, Any] = {}
    for key, value in desired.items():
        old = current.get(key)
        if isinstance(value, dict) and isinstance(old, Mapping):
            result[key] = merge_patch(old, value)
        else:
            result[key] = copy.deepcopy(value)
    for key in current:
        if key not in desired:
            result[key] = None
    return result


class StorageHandler(BaseHandler):
    """Runs one storage reconcile tick per Config event."""

    def __init__(
        self,
        listers_factory: Callable[[], StorageListers] = get_listers,
        driver_factory: Callable[..., Driver] = get_driver,
    ):
        super().__init__(KIND_CONFIG)
        self.listers_factory = listers_factory
        self.driver_factory = driver_factory

    def _operation(self, driver: Driver, operation: str, fn: Callable[[], Any]) -> Any:
        """Run a driver operation inside a span, counting the outcome."""
        backend = backend_name(driver)
        with storage_span(backend, operation, kind=self.kind):
            try:
                result = fn()
            except Exception:
                metrics.storage_operations_total.labels(backend=backend, operation=operation, result="error").inc()
                raise
        metrics.storage_operations_total.labels(backend=backend, operation=operation, result="success").inc()
        return result

    def _run(
        self,
        spec: dict[str, Any],
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
        tick: Callable[[Driver, RegistryConfig], None],
    ) -> None:
        cr = RegistryConfig.from_resource(spec, status)
        driver: Driver | None = None
        try:
            try:
                driver = self.driver_factory(cr.spec, self.listers_factory())
            except StorageNotConfiguredError as e:
                set_storage_exists_condition(
                    cr.status.conditions, STATUS_FALSE, REASON_STORAGE_NOT_CONFIGURED, sanitize_exception(e)
                )
                raise
            except ConfigurationError as e:
                set_storage_exists_condition(
                    cr.status.conditions, STATUS_FALSE, REASON_CONFIG_ERROR, sanitize_exception(e)
                )
                raise
            tick(driver, cr)
        finally:
            if driver is not None and hasattr(driver, "close"):
                driver.close()
            # Conditions are recorded even when the tick failed
            patch.spec["storage"] = merge_patch((spec or {}).get("storage"), cr.spec.to_dict())
            owned_status = {key: value for key, value in (status or {}).items() if key in STATUS_FIELDS}
            patch.status.update(merge_patch(owned_status, cr.status.to_dict()))

    def _ensure(self, meta: dict[str, Any], driver: Driver, cr: RegistryConfig) -> None:
        backend = backend_name(driver)

        exists = self._operation(driver, "exists", lambda: driver.storage_exists(cr))
        if not exists:
            self._operation(driver, "create", lambda: driver.create_storage(cr))
            add_span_attribute("storage.name", driver.id())
            if cr.management_state == MANAGEMENT_STATE_MANAGED:
                emit_storage_created(meta, backend, driver.id())
            else:
                emit_storage_adopted(meta, backend, driver.id())
            self.log_info(meta, f"{backend} storage {driver.id()} is ready", reason="StorageReady")
            return

        if self._operation(driver, "changed", lambda: driver.storage_changed(cr)):
            metrics.drift_detected_total.labels(backend=backend).inc()
            emit_storage_drift(meta, backend)
            self.log_warning(meta, f"{backend} storage configuration changed", reason="StorageDrift")
            self._operation(driver, "create", lambda: driver.create_storage(cr))

    def _remove(self, meta: dict[str, Any], driver: Driver, cr: RegistryConfig) -> None:
        backend = backend_name(driver)
        was_managed = cr.management_state == MANAGEMENT_STATE_MANAGED

        if self._operation(driver, "remove", lambda: driver.remove_storage(cr)):
            raise kopf.TemporaryError(
                f"{backend} storage removal is in progress", delay=REMOVAL_RETRY_DELAY_SECONDS
            )
        if was_managed:
            emit_storage_removed(meta, backend)
            self.log_info(meta, f"{backend} storage removed", reason="StorageRemoved")
        else:
            self.log_info(meta, f"{backend} storage is not managed by the operator, leaving it in place")

    def reconcile(
        self,
        spec: dict[str, Any],
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
    ) -> None:
        """Reconcile the storage of a Config resource."""
        name = meta.get("name", "unknown")
        with trace_span("reconcile_storage", kind=self.kind, attributes={"config.name": name}):
            if spec.get("managementState") == MANAGEMENT_STATE_REMOVED:
                self._run(spec, meta, status, patch, lambda driver, cr: self._remove(meta, driver, cr))
            else:
                self._run(spec, meta, status, patch, lambda driver, cr: self._ensure(meta, driver, cr))

    def delete(
        self,
        spec: dict[str, Any],
        meta: dict[str, Any],
        status: dict[str, Any],
        patch: kopf.Patch,
    ) -> None:
        """Remove operator-owned storage when the Config resource is deleted."""
        name = meta.get("name", "unknown")
        self.log_info(meta, f"Config {name} is being deleted")
        with trace_span("delete_storage", kind=self.kind, attributes={"config.name": name}):
            self._run(spec, meta, status, patch, lambda driver, cr: self._remove(meta, driver, cr))


# Global handler instance
_handler = StorageHandler()


@kopf.on.create(API_GROUP, API_VERSION, CONFIG_PLURAL)
@kopf.on.update(API_GROUP, API_VERSION, CONFIG_PLURAL)
@kopf.on.resume(API_GROUP, API_VERSION, CONFIG_PLURAL)
def handle_config(
    spec: dict[str, Any],
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Handle Config resource reconciliation."""
    _handler.reconcile_with_metrics(meta, lambda: _handler.reconcile(spec, meta, status, patch))


@kopf.on.delete(API_GROUP, API_VERSION, CONFIG_PLURAL)
def handle_config_delete(
    spec: dict[str, Any],
    meta: dict[str, Any],
    status: dict[str, Any],
    patch: kopf.Patch,
    **kwargs: Any,
) -> None:
    """Handle Config resource deletion."""
    _handler.reconcile_with_metrics(meta, lambda: _handler.delete(spec, meta, status, patch))
