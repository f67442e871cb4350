"""Layered credential resolution from Kubernetes secrets."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from ..constants import (
    CLUSTER_SECRET_NAME,
    CLUSTER_SECRET_POLL_INTERVAL_SECONDS,
    CLUSTER_SECRET_POLL_TIMEOUT_SECONDS,
    USER_SECRET_NAME,
)
from ..listers import SecretData, StorageListers, is_not_found
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

SOURCE_USER = "user"
SOURCE_CLUSTER = "cluster"


def get_value_from_secret(secret: SecretData, key: str) -> str:
    """Get the value for a key in a secret.

    Args:
        secret: Decoded secret data
        key: Required key

    Returns:
        The value stored under ``key``

    Raises:
        ConfigurationError: If the key is missing
    """
    if key not in secret:
        raise ConfigurationError(
            f'secret "{secret.namespace}/{secret.name}" does not contain required key "{key}"'
        )
    return secret[key]


def get_user_secret(listers: StorageListers) -> SecretData | None:
    """Return the user override secret, or None if it does not exist.

    Raises:
        client.exceptions.ApiException: For any error other than not-found
    """
    try:
        return listers.get_secret(USER_SECRET_NAME)
    except Exception as e:
        if is_not_found(e):
            return None
        raise


def get_cluster_secret(
    listers: StorageListers,
    wait: bool = False,
    interval: float = CLUSTER_SECRET_POLL_INTERVAL_SECONDS,
    timeout: float = CLUSTER_SECRET_POLL_TIMEOUT_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> SecretData:
    """Return the cluster-minted credentials secret.

    Args:
        listers: Cluster lookups
        wait: Poll at a fixed interval until the secret appears
        interval: Seconds between polls
        timeout: Maximum seconds to poll
        sleep: Sleep function
        clock: Monotonic clock

    Returns:
        Decoded secret data

    Raises:
        ConfigurationError: If the secret does not exist (after polling when ``wait``)
    """
    deadline = clock() + timeout
    while True:
        try:
            return listers.get_secret(CLUSTER_SECRET_NAME)
        except Exception as e:
            if not is_not_found(e):
                raise
        if not wait or clock() >= deadline:
            break
        logger.info(f"Waiting for secret {CLUSTER_SECRET_NAME} to be created")
        sleep(interval)

    raise ConfigurationError(
        f"unable to get cluster minted credentials {listers.namespace}/{CLUSTER_SECRET_NAME}: not found"
    )


def resolve_secret(listers: StorageListers, wait_for_cluster: bool = False, **poll: Any) -> tuple[str, SecretData]:
    """Resolve the secret that carries backend credentials.

    The user override secret wins when it exists; otherwise the cluster-minted
    secret is used.

    Args:
        listers: Cluster lookups
        wait_for_cluster: Poll for the cluster secret when it is missing
        **poll: Overrides passed to ``get_cluster_secret``

    Returns:
        Tuple of (source, secret data) where source is "user" or "cluster"
    """
    user_secret = get_user_secret(listers)
    if user_secret is not None:
        return SOURCE_USER, user_secret
    return SOURCE_CLUSTER, get_cluster_secret(listers, wait=wait_for_cluster, **poll)
