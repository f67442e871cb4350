"""Google Cloud Storage driver."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from google.api_core import exceptions
from google.cloud import storage
from google.oauth2 import service_account

from ..builders.envvar import EnvVar
from ..builders.volumes import secret_volume
from ..constants import (
    COND_STORAGE_ENCRYPTED,
    COND_STORAGE_LABELED,
    COND_STORAGE_PUBLIC_ACCESS_BLOCKED,
    COND_STORAGE_TAGGED,
    ENV_REGISTRY_STORAGE,
    GCS_KEYFILE_MOUNT_PATH,
    GCS_KEYFILE_PATH,
    VOLUME_GCS_KEYFILE,
)
from ..listers import StorageListers
from ..models import GCSConfig, Infrastructure, RegistryConfig
from ..utils.errors import ConfigurationError
from ..utils.naming import generate_storage_name
from ..utils.secrets import SOURCE_USER, get_value_from_secret, resolve_secret
from . import gcs_tags
from .base import BucketDriver, HardeningStep, StorageAbsent, StorageConflict

logger = logging.getLogger(__name__)

USER_KEYFILE_KEY = "REGISTRY_STORAGE_GCS_KEYFILE"
CLUSTER_KEYFILE_KEY = "service_account.json"
VOLUME_SECRET_KEY = "STORAGE_GCS_KEYFILE"

VISIBILITY_POLL_INTERVAL_SECONDS = 1.0
VISIBILITY_TIMEOUT_SECONDS = 60.0
DELETE_BATCH_SIZE = 100


@dataclass
class GCSCredentials:
    """Service account key file contents."""

    keyfile_data: str = ""

    def info(self) -> dict[str, Any]:
        """Parse the key file.

        Raises:
            ConfigurationError: If the key file is not valid JSON
        """
        try:
            return json.loads(self.keyfile_data)
        except ValueError as e:
            raise ConfigurationError(f"unable to parse GCS key file: {e}") from e

    def project_id(self) -> str:
        return self.info().get("project_id", "")


def get_config(listers: StorageListers) -> GCSCredentials:
    """Resolve the GCS service account key file.

    Raises:
        ConfigurationError: If no secret exists or the key file is missing
    """
    source, secret = resolve_secret(listers)
    key = USER_KEYFILE_KEY if source == SOURCE_USER else CLUSTER_KEYFILE_KEY
    return GCSCredentials(keyfile_data=get_value_from_secret(secret, key))


class GCSDriver(BucketDriver):
    """Provisions a GCS bucket for the registry."""

    backend = "GCS"
    variant = "gcs"
    name_field = "bucket"
    resource_label = "Bucket"

    def __init__(
        self,
        config: GCSConfig,
        listers: StorageListers,
        client_factory: Callable[[], Any] | None = None,
        tag_binder_factory: Callable[[str], gcs_tags.TagBinder] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, listers)
        self._client_factory = client_factory
        self._tag_binder_factory = tag_binder_factory
        self._client: Any = None
        self._credentials: GCSCredentials | None = None
        self._sleep = sleep
        self._clock = clock

    def credentials(self) -> GCSCredentials:
        if self._credentials is None:
            self._credentials = get_config(self.listers)
        return self._credentials

    def update_effective_config(self) -> Infrastructure:
        """Default the project and region from the key file and the cluster."""
        infra = self.listers.get_infrastructure()
        if not self.config.project_id:
            self.config.project_id = self.credentials().project_id() or infra.gcp.get("projectID", "")
        if not self.config.region:
            self.config.region = infra.gcp.get("region", "")
        return infra

    # Workload contract ------------------------------------------------------

    def config_env(self) -> list[EnvVar]:
        return [
            EnvVar(ENV_REGISTRY_STORAGE, "gcs"),
            EnvVar("REGISTRY_STORAGE_GCS_BUCKET", self.config.bucket),
            EnvVar("REGISTRY_STORAGE_GCS_KEYFILE", GCS_KEYFILE_PATH),
        ]

    def volumes(self) -> tuple[list[Any], list[Any]]:
        volume, mount = secret_volume(
            VOLUME_GCS_KEYFILE,
            GCS_KEYFILE_MOUNT_PATH,
            items={VOLUME_SECRET_KEY: "keyfile"},
            projected=True,
        )
        return [volume], [mount]

    def volume_secrets(self) -> dict[str, str]:
        return {VOLUME_SECRET_KEY: self.credentials().keyfile_data}

    # Clients ----------------------------------------------------------------

    def _google_credentials(self) -> Any:
        return service_account.Credentials.from_service_account_info(self.credentials().info())

    def gcs_client(self) -> Any:
        """Return the storage client owned by this driver instance."""
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = storage.Client(
                    project=self.config.project_id or None,
                    credentials=self._google_credentials(),
                )
        return self._client

    def tag_binder(self, location: str) -> gcs_tags.TagBinder:
        if self._tag_binder_factory is not None:
            return self._tag_binder_factory(location)
        client = gcs_tags.tag_bindings_client(self._google_credentials(), location)
        return gcs_tags.TagBinder(client)

    # Strategy hooks ---------------------------------------------------------

    def _check(self, name: str) -> None:
        try:
            bucket = self.gcs_client().lookup_bucket(name)
        except exceptions.Forbidden as e:
            raise StorageAbsent("Forbidden", str(e)) from e
        if bucket is None:
            raise StorageAbsent("NotFound", f"bucket {name} does not exist")

    def _create(self, name: str, infra: Infrastructure) -> None:
        try:
            self.gcs_client().create_bucket(
                name,
                project=self.config.project_id or None,
                location=self.config.region or None,
            )
        except exceptions.Conflict as e:
            raise StorageConflict(str(e)) from e

    def _wait_until_visible(self, name: str) -> None:
        deadline = self._clock() + VISIBILITY_TIMEOUT_SECONDS
        while self.gcs_client().lookup_bucket(name) is None:
            if self._clock() >= deadline:
                raise TimeoutError(f"bucket {name} was not visible after {VISIBILITY_TIMEOUT_SECONDS:.0f}s")
            self._sleep(VISIBILITY_POLL_INTERVAL_SECONDS)

    def _hardening_steps(self, cr: RegistryConfig, name: str, infra: Infrastructure) -> list[HardeningStep]:
        bucket = self.gcs_client().bucket(name)

        def label() -> None:
            labels = {f"kubernetes-io-cluster-{infra.infrastructure_name}": "owned"}
            for resource_label in infra.gcp.get("resourceLabels") or []:
                labels[resource_label["key"]] = resource_label["value"]
            bucket.reload()
            bucket.labels = {**bucket.labels, **labels}
            bucket.patch()

        def encrypt() -> None:
            bucket.default_kms_key_name = self.config.key_id
            bucket.patch()

        def block_public_access() -> None:
            bucket.iam_configuration.uniform_bucket_level_access_enabled = True
            bucket.iam_configuration.public_access_prevention = "enforced"
            bucket.patch()

        def tag() -> None:
            gcs_tags.add_tags_to_bucket(self.tag_binder, infra, name, self.config.region)

        steps = [
            HardeningStep(
                COND_STORAGE_LABELED,
                label,
                "Labeling Successful",
                "Labels were successfully applied to the GCS bucket",
                "Labeling Failed",
            ),
        ]
        if self.config.key_id:
            steps.append(
                HardeningStep(
                    COND_STORAGE_ENCRYPTED,
                    encrypt,
                    "Encryption Successful",
                    "Customer managed encryption key was successfully set on the GCS bucket",
                    "Encryption Failed",
                )
            )
        steps.extend(
            [
                HardeningStep(
                    COND_STORAGE_PUBLIC_ACCESS_BLOCKED,
                    block_public_access,
                    "Public Access Block Successful",
                    "Public access prevention is enforced on the GCS bucket",
                    "Public Access Block Failed",
                ),
                HardeningStep(
                    COND_STORAGE_TAGGED,
                    tag,
                    gcs_tags.SUCCESS_REASON,
                    f"Successfully added user-defined tags to {name} storage bucket",
                    gcs_tags.FAILURE_REASON,
                ),
            ]
        )
        return steps

    def _empty(self, name: str) -> None:
        client = self.gcs_client()
        try:
            blobs = list(client.list_blobs(name))
        except exceptions.NotFound as e:
            raise StorageAbsent("NotFound", str(e)) from e

        bucket = client.bucket(name)
        for start in range(0, len(blobs), DELETE_BATCH_SIZE):
            # on_error is only called for blobs that are already gone
            bucket.delete_blobs(blobs[start : start + DELETE_BATCH_SIZE], on_error=lambda blob: None)

    def _delete(self, name: str) -> None:
        try:
            self.gcs_client().bucket(name).delete()
        except exceptions.NotFound as e:
            raise StorageAbsent("NotFound", str(e)) from e

    def _generate_name(self, infra: Infrastructure) -> str:
        return generate_storage_name(infra.infrastructure_name, self.config.region)

    # Operations that need the effective configuration ---------------------

    def storage_exists(self, cr: RegistryConfig) -> bool:
        self.update_effective_config()
        return super().storage_exists(cr)

    def create_storage(self, cr: RegistryConfig) -> None:
        self.update_effective_config()
        super().create_storage(cr)
