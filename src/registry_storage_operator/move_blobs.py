"""Move registry blobs between prefixes of an Azure blob container.

Older registries stored blobs under ``docker/`` while current ones use
``/docker/``. The ``move-blobs`` command copies every blob under the source
prefix to the destination prefix and deletes the copied originals. It is safe
to run again after a partial failure.
"""

from __future__ import annotations

import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import quote

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import (
    ClientSecretCredential,
    DefaultAzureCredential,
    WorkloadIdentityCredential,
)
from azure.storage.blob import ContainerClient

from . import logging as structured_logging
from . import metrics
from .storage.azure import AzureEnvironment, get_environment, load_environment_file
from .utils.errors import BlobMoveError, ConfigurationError, OperationError

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "docker"
DEFAULT_DEST = "/docker"
DEFAULT_ENVIRONMENT = "AZUREPUBLICCLOUD"
DEFAULT_TIMEOUT_SECONDS = 1800.0
COPY_POLL_INTERVAL_SECONDS = 0.1

COPY_SUCCESS = "success"
COPY_PENDING = "pending"
COPY_FAILED = "failed"
COPY_ABORTED = "aborted"


def _copy_status(value: Any) -> str:
    return str(getattr(value, "value", value) or "").lower()


def move_blobs(
    container_client: Any,
    source: str = DEFAULT_SOURCE,
    dest: str = DEFAULT_DEST,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> list[str]:
    """Copy blobs from ``source`` to ``dest``, then delete the copied sources.

    Failures of individual blobs are collected so the remaining blobs are
    still moved.

    Args:
        container_client: Client of the container holding the blobs
        source: Prefix of the blobs to move
        dest: Replacement for the first occurrence of ``source`` in each name
        timeout: Deadline in seconds for pending copies
        sleep: Sleep function used between copy status polls
        clock: Monotonic clock used for the deadline

    Returns:
        Names of the source blobs that were moved

    Raises:
        BlobMoveError: If any copy or delete failed
        AzureError: If the blobs cannot be listed
    """
    deadline = clock() + timeout
    source_blobs = [b.name for b in container_client.list_blobs(name_starts_with=source)]
    logger.info(f"Found {len(source_blobs)} blobs to move")

    errors: list[OperationError] = []
    pending: dict[str, str] = {}
    moved: list[str] = []
    container_url = container_client.url.rstrip("/")

    for source_name in source_blobs:
        dest_name = source_name.replace(source, dest, 1)
        source_url = f"{container_url}/{quote(source_name, safe='')}"
        logger.info(f"Starting copy of {source_name!r} to {dest_name!r}")
        try:
            result = container_client.get_blob_client(dest_name).start_copy_from_url(source_url)
        except AzureError as e:
            errors.append(OperationError("start_copy", source_name, f"failed to start copy: {e}"))
            metrics.blob_move_total.labels(result="error").inc()
            continue

        status = _copy_status(result.get("copy_status"))
        if status == COPY_SUCCESS:
            logger.info(f"Copy finished instantly for blob {source_name!r}")
            moved.append(source_name)
        elif status == COPY_PENDING:
            logger.info(f"Copy is pending for blob {source_name!r}")
            pending[dest_name] = source_name
        else:
            logger.warning(f"Copy failed for blob {source_name!r}, moving on")
            errors.append(
                OperationError("copy", source_name, f"copy failed with status {status!r} for blob {source_name!r}")
            )
            metrics.blob_move_total.labels(result="error").inc()

    for dest_name, source_name in pending.items():
        blob_client = container_client.get_blob_client(dest_name)
        status = COPY_PENDING
        while status == COPY_PENDING:
            if clock() >= deadline:
                errors.append(OperationError("copy", dest_name, f"timed out waiting for copy of {dest_name}"))
                metrics.blob_move_total.labels(result="timeout").inc()
                break
            try:
                props = blob_client.get_blob_properties()
            except AzureError as e:
                errors.append(OperationError("get_properties", dest_name, e))
                sleep(COPY_POLL_INTERVAL_SECONDS)
                continue
            status = _copy_status(props.copy.status)
            if status in (COPY_FAILED, COPY_ABORTED):
                message = f"copy failed, status: {status!r}, blob: {dest_name!r}"
                if props.copy.status_description:
                    message = (
                        f"copy failed, status: {status!r}, desc: {props.copy.status_description!r}, "
                        f"blob: {dest_name!r}"
                    )
                errors.append(OperationError("copy", dest_name, message))
                metrics.blob_move_total.labels(result="error").inc()
            elif status == COPY_PENDING:
                sleep(COPY_POLL_INTERVAL_SECONDS)
            else:
                moved.append(source_name)

    # Only delete sources that are known to be copied
    for source_name in moved:
        try:
            container_client.delete_blob(source_name)
        except ResourceNotFoundError:
            pass
        except AzureError as e:
            errors.append(OperationError("delete", source_name, f"failed deleting copied blob: {e}"))
            metrics.blob_move_total.labels(result="error").inc()
            continue
        logger.info(f"Deleted copied blob from source {source_name!r}")
        metrics.blob_move_total.labels(result="moved").inc()

    logger.info(f"Moved {len(moved)} blobs")
    if errors:
        raise BlobMoveError(moved, errors)
    return moved


@dataclass
class MoveBlobsOptions:
    """Settings of the ``move-blobs`` command, read from the environment."""

    storage_account_name: str = ""
    container_name: str = ""
    client_id: str = ""
    tenant_id: str = ""
    client_secret: str = ""
    federated_token_file: str = ""
    account_key: str = ""
    environment: str = ""
    environment_file_path: str = ""
    environment_file_contents: str = ""
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> MoveBlobsOptions:
        """Read the options from environment variables.

        Raises:
            ConfigurationError: If the timeout is not a number
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str:
            return env.get(name, "").strip()

        timeout = get("MOVE_BLOBS_TIMEOUT_SECONDS")
        try:
            timeout_seconds = float(timeout) if timeout else DEFAULT_TIMEOUT_SECONDS
        except ValueError as e:
            raise ConfigurationError(f"MOVE_BLOBS_TIMEOUT_SECONDS must be a number: {timeout!r}") from e

        return cls(
            storage_account_name=get("AZURE_STORAGE_ACCOUNT_NAME"),
            container_name=get("AZURE_CONTAINER_NAME"),
            client_id=get("AZURE_CLIENT_ID"),
            tenant_id=get("AZURE_TENANT_ID"),
            client_secret=get("AZURE_CLIENT_SECRET"),
            federated_token_file=get("AZURE_FEDERATED_TOKEN_FILE"),
            account_key=get("AZURE_ACCOUNTKEY"),
            environment=get("AZURE_ENVIRONMENT") or DEFAULT_ENVIRONMENT,
            environment_file_path=get("AZURE_ENVIRONMENT_FILEPATH"),
            environment_file_contents=get("AZURE_ENVIRONMENT_FILECONTENTS"),
            timeout=timeout_seconds,
        )

    def validate(self) -> None:
        """Check that the required options are present.

        Raises:
            ConfigurationError: Naming the first missing option
        """
        if not (self.client_secret or self.federated_token_file or self.account_key):
            raise ConfigurationError(
                "One of AZURE_CLIENT_SECRET or AZURE_FEDERATED_TOKEN_FILE or AZURE_ACCOUNTKEY "
                "is required for authentication"
            )
        if not self.client_id and not self.account_key:
            raise ConfigurationError("AZURE_CLIENT_ID is required for authentication")
        if not self.tenant_id and not self.account_key:
            raise ConfigurationError("AZURE_TENANT_ID is required for authentication")
        if not self.storage_account_name:
            raise ConfigurationError("AZURE_STORAGE_ACCOUNT_NAME is required")
        if not self.container_name:
            raise ConfigurationError("AZURE_CONTAINER_NAME is required")


def resolve_environment(opts: MoveBlobsOptions) -> AzureEnvironment:
    """Return the cloud to talk to.

    An Azure Stack Hub environment file takes precedence over the named
    cloud. When its contents are passed in the environment they are written
    to the file first.
    """
    if opts.environment_file_path:
        if opts.environment_file_contents:
            with open(opts.environment_file_path, "w") as f:
                f.write(opts.environment_file_contents)
        if os.path.exists(opts.environment_file_path):
            return load_environment_file(opts.environment_file_path)
        logger.info("Azure Stack Hub environment file not present, using the named cloud")
    return get_environment(opts.environment)


def get_credential(opts: MoveBlobsOptions, environment: AzureEnvironment) -> Any:
    """Pick the credential: account key, client secret, workload identity, then default."""
    if opts.account_key:
        return {"account_name": opts.storage_account_name, "account_key": opts.account_key}
    if opts.client_secret:
        return ClientSecretCredential(
            opts.tenant_id,
            opts.client_id,
            opts.client_secret,
            authority=environment.authority_host,
        )
    if opts.federated_token_file:
        return WorkloadIdentityCredential(
            tenant_id=opts.tenant_id,
            client_id=opts.client_id,
            token_file_path=opts.federated_token_file,
            authority=environment.authority_host,
        )
    return DefaultAzureCredential(authority=environment.authority_host)


def get_container_client(opts: MoveBlobsOptions, environment: AzureEnvironment) -> ContainerClient:
    account_url = f"https://{opts.storage_account_name}.blob.{environment.storage_endpoint_suffix}"
    return ContainerClient(
        account_url,
        opts.container_name,
        credential=get_credential(opts, environment),
    )


def main() -> None:
    """Entry point of the ``move-blobs`` command."""
    structured_logging.setup_structured_logging()

    try:
        opts = MoveBlobsOptions.from_env()
        opts.validate()
        environment = resolve_environment(opts)
    except (ConfigurationError, OSError) as e:
        logger.error(str(e))
        sys.exit(1)

    container_client = get_container_client(opts, environment)
    try:
        move_blobs(container_client, timeout=opts.timeout)
    except BlobMoveError as e:
        logger.error(f"Encountered errors when moving blobs: {e}")
        sys.exit(1)
    except AzureError as e:
        logger.error(f"Unable to list blobs: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
