"""Read-only access to the cluster objects storage drivers depend on."""

from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import Any

from kubernetes import client

from . import metrics
from .constants import (
    INFRA_GROUP,
    INFRA_NAME,
    INFRA_PLURAL,
    INFRA_VERSION,
    OPERATOR_NAMESPACE,
)
from .models import Infrastructure
from .utils.rate_limit import rate_limit_k8s

logger = logging.getLogger(__name__)


def is_not_found(error: Exception) -> bool:
    """Return True if the error is a Kubernetes 404."""
    return isinstance(error, client.exceptions.ApiException) and error.status == 404


def _decode(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return value


class SecretData(dict):
    """Decoded secret payload that remembers where it came from."""

    def __init__(self, namespace: str, name: str, data: dict[str, str]) -> None:
        super().__init__(data)
        self.namespace = namespace
        self.name = name


class StorageListers:
    """Kubernetes lookups used by the storage drivers.

    Not-found lookups raise ``kubernetes.client.exceptions.ApiException`` with
    status 404 so callers can tell absence from failure via ``is_not_found``.
    """

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
        namespace: str = OPERATOR_NAMESPACE,
    ) -> None:
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.namespace = namespace

    def _timed(self, operation: str, fn: Any, **kwargs: Any) -> Any:
        start_time = time.time()
        try:
            result = rate_limit_k8s(fn)(**kwargs)
            metrics.api_call_total.labels(api_type="k8s", operation=operation, result="success").inc()
            return result
        except client.exceptions.ApiException as e:
            result_label = "not_found" if e.status == 404 else "error"
            metrics.api_call_total.labels(api_type="k8s", operation=operation, result=result_label).inc()
            raise
        finally:
            metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(
                time.time() - start_time
            )

    def get_secret(self, name: str, namespace: str | None = None) -> SecretData:
        """Read a secret and return its decoded data.

        Args:
            name: Name of the secret
            namespace: Namespace of the secret, defaults to the operator namespace

        Returns:
            Decoded secret data

        Raises:
            client.exceptions.ApiException: If the secret cannot be read
        """
        namespace = namespace or self.namespace
        secret = self._timed(
            "get_secret", self.core_api.read_namespaced_secret, name=name, namespace=namespace
        )
        data = {key: _decode(value) for key, value in (secret.data or {}).items()}
        return SecretData(namespace, name, data)

    def get_config_map(self, name: str, namespace: str) -> dict[str, str]:
        """Read a config map and return its data."""
        config_map = self._timed(
            "get_config_map", self.core_api.read_namespaced_config_map, name=name, namespace=namespace
        )
        return dict(config_map.data or {})

    def get_infrastructure(self) -> Infrastructure:
        """Read the cluster-scoped ``Infrastructure`` singleton."""
        obj = self._timed(
            "get_infrastructure",
            self.custom_api.get_cluster_custom_object,
            group=INFRA_GROUP,
            version=INFRA_VERSION,
            plural=INFRA_PLURAL,
            name=INFRA_NAME,
        )
        return Infrastructure.from_dict(obj)
