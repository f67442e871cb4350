"""Base handler class: structured logging, reconcile metrics and kopf error mapping."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import kopf

from .. import metrics
from ..constants import CONTROLLER_NAME
from ..logging import log_resource_event
from ..utils.errors import AggregateError, ConfigurationError, StorageError, sanitize_exception
from ..utils.events import emit_reconcile_failed, emit_reconcile_started


class BaseHandler:
    """Shared plumbing for handlers of one resource kind."""

    def __init__(self, kind: str):
        """Initialize base handler.

        Args:
            kind: The Kubernetes resource kind (e.g., "Config")
        """
        self.kind = kind
        self.logger = logging.getLogger(__name__)

    def _get_resource_context(self, meta: dict[str, Any]) -> dict[str, Any]:
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", ""),
            "uid": meta.get("uid", "unknown"),
        }

    def log(
        self,
        level: int,
        meta: dict[str, Any],
        message: str,
        reason: str,
        error: Exception | None = None,
        **fields: Any,
    ) -> None:
        """Write one structured log line about the resource.

        The event field is the lowercased level name. A given ``error`` is
        logged sanitized together with its type.
        """
        if error is not None:
            fields["error"] = sanitize_exception(error)
            fields["error_type"] = type(error).__name__
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=logging.getLevelName(level).lower(),
            reason=reason,
            message=message,
            level=level,
            **fields,
        )

    def log_info(self, meta: dict[str, Any], message: str, reason: str = "Info", **fields: Any) -> None:
        self.log(logging.INFO, meta, message, reason, **fields)

    def log_warning(self, meta: dict[str, Any], message: str, reason: str = "Warning", **fields: Any) -> None:
        self.log(logging.WARNING, meta, message, reason, **fields)

    def to_kopf_error(self, error: Exception) -> Exception:
        """Map a reconcile failure onto kopf's retry semantics.

        Configuration problems are never retried. Retryable storage failures
        are retried with kopf's backoff. Anything else is returned unchanged.
        """
        message = sanitize_exception(error)
        if isinstance(error, ConfigurationError):
            return kopf.PermanentError(message)
        if isinstance(error, (StorageError, AggregateError)) and error.retryable:
            return kopf.TemporaryError(message)
        return error

    def reconcile_with_metrics(
        self,
        meta: dict[str, Any],
        reconcile_fn: Callable[[], None],
    ) -> None:
        """Run one reconcile tick, counting and timing it.

        Failures are logged, reported as a Warning event and re-raised mapped
        by ``to_kopf_error``. A ``kopf.TemporaryError`` raised by the tick is
        a retry request and passes through untouched.
        """
        emit_reconcile_started(meta)
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        start_time = time.time()
        result = "success"
        try:
            reconcile_fn()
        except kopf.TemporaryError:
            result = "retry"
            raise
        except Exception as e:
            result = "error"
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
            self.log(logging.ERROR, meta, "Reconciliation failed", "ReconciliationFailed", error=e)
            emit_reconcile_failed(meta, f"Reconciliation failed: {sanitize_exception(e)}")
            mapped = self.to_kopf_error(e)
            if mapped is e:
                raise
            raise mapped from e
        finally:
            metrics.reconcile_total.labels(kind=self.kind, result=result).inc()
            metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(time.time() - start_time)
