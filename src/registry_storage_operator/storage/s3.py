"""S3 storage driver."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Callable

import boto3
import botocore.session
from botocore.config import Config
from botocore.exceptions import ClientError
from botocore.httpsession import get_cert_path
from kubernetes import client

from ..builders.envvar import EnvVar
from ..builders.volumes import secret_volume
from ..constants import (
    CLOUD_CA_KEY,
    CLOUD_CREDENTIALS_MOUNT_PATH,
    CLOUD_CREDENTIALS_PATH,
    CLOUDFRONT_MOUNT_PATH,
    CLOUDFRONT_PRIVATE_KEY_PATH,
    COND_STORAGE_ENCRYPTED,
    COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP,
    COND_STORAGE_PUBLIC_ACCESS_BLOCKED,
    COND_STORAGE_TAGGED,
    ENV_REGISTRY_MIDDLEWARE_STORAGE,
    ENV_REGISTRY_STORAGE,
    KUBE_CLOUD_CONFIG_NAME,
    OPENSHIFT_CONFIG_MANAGED_NAMESPACE,
    OPENSHIFT_CONFIG_NAMESPACE,
    PLATFORM_AWS,
    TRUSTED_CA_KEY,
    VOLUME_CLOUD_CREDENTIALS,
    VOLUME_CLOUDFRONT,
)
from ..listers import StorageListers, is_not_found
from ..models import Infrastructure, RegistryConfig, S3Config
from ..utils.errors import AggregateError, ConfigurationError, OperationError
from ..utils.naming import generate_storage_name
from ..utils.secrets import SOURCE_USER, get_value_from_secret, resolve_secret
from .base import BucketDriver, HardeningStep, StorageAbsent, StorageConflict

logger = logging.getLogger(__name__)

USER_ACCESS_KEY = "REGISTRY_STORAGE_S3_ACCESSKEY"
USER_SECRET_KEY = "REGISTRY_STORAGE_S3_SECRETKEY"
CLUSTER_CREDENTIALS_KEY = "credentials"
CLUSTER_ACCESS_KEY = "aws_access_key_id"
CLUSTER_SECRET_KEY = "aws_secret_access_key"

CREDENTIALS_DATA_KEY = "credentials"
LIFECYCLE_RULE_ID = "cleanup-incomplete-multipart-registry-uploads"
DEFAULT_CLOUDFRONT_DURATION = "1200s"
DELETE_BATCH_SIZE = 1000

_ABSENT_CODES = {
    "NoSuchBucket": "NoSuchBucket",
    "NotFound": "NotFound",
    "404": "NotFound",
    "Forbidden": "Forbidden",
    "403": "Forbidden",
}


@dataclass
class S3Credentials:
    """Static keys, or a complete shared credentials file."""

    access_key: str = ""
    secret_key: str = ""
    shared_credentials_file: str = ""

    def shared_credentials_data(self) -> str:
        """Render the credentials as an AWS shared credentials file."""
        if self.shared_credentials_file:
            return self.shared_credentials_file
        return (
            "[default]\n"
            f"aws_access_key_id = {self.access_key}\n"
            f"aws_secret_access_key = {self.secret_key}\n"
        )


def get_config(listers: StorageListers, **poll: Any) -> S3Credentials:
    """Resolve S3 credentials from the user secret or the cluster secret.

    The cluster secret is minted asynchronously, so a missing one is polled for.

    Raises:
        ConfigurationError: If no secret exists or a required key is missing
    """
    source, secret = resolve_secret(listers, wait_for_cluster=True, **poll)
    if source == SOURCE_USER:
        return S3Credentials(
            access_key=get_value_from_secret(secret, USER_ACCESS_KEY),
            secret_key=get_value_from_secret(secret, USER_SECRET_KEY),
        )
    if CLUSTER_CREDENTIALS_KEY in secret:
        return S3Credentials(shared_credentials_file=secret[CLUSTER_CREDENTIALS_KEY])
    return S3Credentials(
        access_key=get_value_from_secret(secret, CLUSTER_ACCESS_KEY),
        secret_key=get_value_from_secret(secret, CLUSTER_SECRET_KEY),
    )


def region_has_dual_stack(region: str) -> bool:
    """Return True if the region belongs to a known AWS partition."""
    if not region:
        return False
    session = boto3.session.Session()
    for partition in session.get_available_partitions():
        if region in session.get_available_regions("s3", partition_name=partition):
            return True
    return False


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3Driver(BucketDriver):
    """Provisions an S3 bucket for the registry."""

    backend = "S3"
    variant = "s3"
    name_field = "bucket"
    resource_label = "Bucket"

    def __init__(
        self,
        config: S3Config,
        listers: StorageListers,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        super().__init__(config, listers)
        self._client_factory = client_factory
        self._client: Any = None
        self._temp_files: list[str] = []

    def update_effective_config(self) -> Infrastructure:
        """Fill region and endpoint from the cluster when neither is configured."""
        infra = self.listers.get_infrastructure()
        if infra.platform_type == PLATFORM_AWS and not self.config.region and not self.config.region_endpoint:
            self.config.region = infra.aws.get("region", "")
            self.config.region_endpoint = infra.aws_service_endpoint("s3")
            if self.config.region_endpoint:
                self.config.virtual_hosted_style = True
        return infra

    def use_dual_stack(self) -> bool:
        if self.config.region_endpoint:
            return True
        return region_has_dual_stack(self.config.region)

    # Workload contract ------------------------------------------------------

    def config_env(self) -> list[EnvVar]:
        self.update_effective_config()

        env: list[EnvVar] = []
        if self.config.region_endpoint:
            env.append(EnvVar("REGISTRY_STORAGE_S3_REGIONENDPOINT", self.config.region_endpoint))
        if self.config.key_id:
            env.append(EnvVar("REGISTRY_STORAGE_S3_KEYID", self.config.key_id))
        if self.config.chunk_size_mib:
            env.append(EnvVar("REGISTRY_STORAGE_S3_CHUNKSIZE", self.config.chunk_size_mib * 1024 * 1024))

        env.extend(
            [
                EnvVar(ENV_REGISTRY_STORAGE, "s3"),
                EnvVar("REGISTRY_STORAGE_S3_BUCKET", self.config.bucket),
                EnvVar("REGISTRY_STORAGE_S3_REGION", self.config.region),
                EnvVar("REGISTRY_STORAGE_S3_ENCRYPT", self.config.encrypt),
                EnvVar("REGISTRY_STORAGE_S3_FORCEPATHSTYLE", not self.config.virtual_hosted_style),
                EnvVar("REGISTRY_STORAGE_S3_CREDENTIALSCONFIGPATH", CLOUD_CREDENTIALS_PATH),
            ]
        )

        if self.use_dual_stack():
            env.append(EnvVar("REGISTRY_STORAGE_S3_USEDUALSTACK", True))

        cloud_front = self.config.cloud_front
        if cloud_front is not None:
            middleware = [
                {
                    "name": "cloudfront",
                    "options": {
                        "baseurl": cloud_front.base_url,
                        "privatekey": CLOUDFRONT_PRIVATE_KEY_PATH,
                        "keypairid": cloud_front.key_pair_id,
                        "duration": cloud_front.duration or DEFAULT_CLOUDFRONT_DURATION,
                        "ipfilteredby": "none",
                    },
                }
            ]
            env.append(EnvVar(ENV_REGISTRY_MIDDLEWARE_STORAGE, middleware))

        return env

    def volumes(self) -> tuple[list[Any], list[Any]]:
        volume, mount = secret_volume(VOLUME_CLOUD_CREDENTIALS, CLOUD_CREDENTIALS_MOUNT_PATH)
        volumes, mounts = [volume], [mount]

        cloud_front = self.config.cloud_front
        if cloud_front is not None:
            key_ref = cloud_front.private_key or {}
            volume, mount = secret_volume(
                VOLUME_CLOUDFRONT,
                CLOUDFRONT_MOUNT_PATH,
                secret_name=key_ref.get("name", ""),
                items={key_ref.get("key", ""): "private.pem"},
            )
            volumes.append(volume)
            mounts.append(mount)

        return volumes, mounts

    def volume_secrets(self) -> dict[str, str]:
        return {CREDENTIALS_DATA_KEY: get_config(self.listers).shared_credentials_data()}

    def ca_bundle(self) -> tuple[str, bool]:
        """Return the CA bundle to trust when talking to S3.

        Raises:
            ConfigurationError: If the configured trusted CA is missing or incomplete
        """
        if self.config.trusted_ca:
            try:
                data = self.listers.get_config_map(self.config.trusted_ca, OPENSHIFT_CONFIG_NAMESPACE)
            except client.exceptions.ApiException as e:
                raise ConfigurationError(f'failed to get trusted CA "{self.config.trusted_ca}": {e}') from e
            if TRUSTED_CA_KEY not in data:
                raise ConfigurationError(
                    f'trusted CA config map "{self.config.trusted_ca}" does not contain required key "{TRUSTED_CA_KEY}"'
                )
            return data[TRUSTED_CA_KEY], False

        try:
            data = self.listers.get_config_map(KUBE_CLOUD_CONFIG_NAME, OPENSHIFT_CONFIG_MANAGED_NAMESPACE)
        except client.exceptions.ApiException as e:
            if is_not_found(e):
                return "", True
            raise
        return data.get(CLOUD_CA_KEY, ""), True

    # Client -----------------------------------------------------------------

    def _write_temp_file(self, data: str, suffix: str) -> str:
        fd, path = tempfile.mkstemp(prefix="registry-storage-", suffix=suffix)
        with os.fdopen(fd, "w") as f:
            f.write(data)
        self._temp_files.append(path)
        return path

    def _verify(self) -> bool | str:
        bundle, use_system = self.ca_bundle()
        if not bundle:
            return True
        if use_system:
            with open(get_cert_path(True)) as f:
                bundle = f.read() + "\n" + bundle
        return self._write_temp_file(bundle, ".pem")

    def s3_client(self) -> Any:
        """Return the S3 client owned by this driver instance."""
        if self._client is not None:
            return self._client
        if self._client_factory is not None:
            self._client = self._client_factory()
            return self._client

        credentials = get_config(self.listers)
        core_session = botocore.session.Session()
        core_session.set_config_variable(
            "credentials_file",
            self._write_temp_file(credentials.shared_credentials_data(), ".ini"),
        )
        session = boto3.session.Session(botocore_session=core_session)

        config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "virtual" if self.config.virtual_hosted_style else "path"},
            use_dualstack_endpoint=not self.config.region_endpoint and self.use_dual_stack(),
        )
        self._client = session.client(
            "s3",
            region_name=self.config.region or None,
            endpoint_url=self.config.region_endpoint or None,
            config=config,
            verify=self._verify(),
        )
        return self._client

    def close(self) -> None:
        """Remove the temporary credential and CA files written for the client."""
        for path in self._temp_files:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
        self._temp_files = []

    # Strategy hooks ---------------------------------------------------------

    def _check(self, name: str) -> None:
        try:
            self.s3_client().head_bucket(Bucket=name)
        except ClientError as e:
            code = _error_code(e)
            if code in _ABSENT_CODES:
                raise StorageAbsent(_ABSENT_CODES[code], str(e)) from e
            raise

    def _create(self, name: str, infra: Infrastructure) -> None:
        params: dict[str, Any] = {"Bucket": name}
        if self.config.region and self.config.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.config.region}
        try:
            self.s3_client().create_bucket(**params)
        except ClientError as e:
            code = _error_code(e)
            if code == "BucketAlreadyOwnedByYou":
                return
            if code == "BucketAlreadyExists":
                raise StorageConflict(str(e)) from e
            logger.error(f"Failed to create bucket {name}: {e}")
            raise

    def _wait_until_visible(self, name: str) -> None:
        self.s3_client().get_waiter("bucket_exists").wait(Bucket=name)

    def _wait_until_gone(self, name: str) -> None:
        self.s3_client().get_waiter("bucket_not_exists").wait(Bucket=name)

    def _hardening_steps(self, cr: RegistryConfig, name: str, infra: Infrastructure) -> list[HardeningStep]:
        s3 = self.s3_client()

        def block_public_access() -> None:
            s3.put_public_access_block(
                Bucket=name,
                PublicAccessBlockConfiguration={
                    "BlockPublicAcls": True,
                    "BlockPublicPolicy": True,
                    "IgnorePublicAcls": True,
                    "RestrictPublicBuckets": True,
                },
            )

        def tag() -> None:
            tags = {
                f"kubernetes.io/cluster/{infra.infrastructure_name}": "owned",
                "Name": f"{infra.infrastructure_name}-image-registry",
            }
            for resource_tag in infra.aws.get("resourceTags") or []:
                tags[resource_tag["key"]] = resource_tag["value"]
            s3.put_bucket_tagging(
                Bucket=name,
                Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in tags.items()]},
            )

        def encrypt() -> None:
            if self.config.key_id:
                default = {"SSEAlgorithm": "aws:kms", "KMSMasterKeyID": self.config.key_id}
            else:
                default = {"SSEAlgorithm": "AES256"}
            s3.put_bucket_encryption(
                Bucket=name,
                ServerSideEncryptionConfiguration={
                    "Rules": [{"ApplyServerSideEncryptionByDefault": default, "BucketKeyEnabled": True}]
                },
            )
            self.config.encrypt = True
            self._persist(cr)

        def lifecycle() -> None:
            s3.put_bucket_lifecycle_configuration(
                Bucket=name,
                LifecycleConfiguration={
                    "Rules": [
                        {
                            "ID": LIFECYCLE_RULE_ID,
                            "Status": "Enabled",
                            "Filter": {"Prefix": ""},
                            "AbortIncompleteMultipartUpload": {"DaysAfterInitiation": 1},
                        }
                    ]
                },
            )

        return [
            HardeningStep(
                COND_STORAGE_PUBLIC_ACCESS_BLOCKED,
                block_public_access,
                "Public Access Block Successful",
                "Public access to the S3 bucket and its contents have been successfully blocked.",
                "Public Access Block Failed",
            ),
            HardeningStep(
                COND_STORAGE_TAGGED,
                tag,
                "Tagging Successful",
                "UserTags were successfully applied to the S3 bucket",
                "Tagging Failed",
            ),
            HardeningStep(
                COND_STORAGE_ENCRYPTED,
                encrypt,
                "Encryption Successful",
                "Default encryption was successfully enabled on the S3 bucket",
                "Encryption Failed",
            ),
            HardeningStep(
                COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP,
                lifecycle,
                "Enable Cleanup Successful",
                "Default cleanup of incomplete multipart uploads after one (1) day was successfully enabled",
                "Enable Cleanup Failed",
            ),
        ]

    def _delete_batch(self, name: str, objects: list[dict[str, str]], errors: list[OperationError]) -> None:
        s3 = self.s3_client()
        for start in range(0, len(objects), DELETE_BATCH_SIZE):
            response = s3.delete_objects(
                Bucket=name,
                Delete={"Objects": objects[start : start + DELETE_BATCH_SIZE], "Quiet": True},
            )
            for failure in response.get("Errors", []):
                if failure.get("Code") == "NoSuchKey":
                    continue
                target = f"{name}/{failure.get('Key')}"
                if failure.get("VersionId"):
                    target = f"{target}?versionId={failure['VersionId']}"
                errors.append(OperationError("delete_object", target, failure.get("Message", "")))

    def _is_versioned(self, name: str) -> bool:
        # Suspended buckets keep the versions written while versioning was on
        status = self.s3_client().get_bucket_versioning(Bucket=name).get("Status", "")
        return status in ("Enabled", "Suspended")

    def _empty(self, name: str) -> None:
        s3 = self.s3_client()
        errors: list[OperationError] = []
        try:
            if self._is_versioned(name):
                logger.info(f"Bucket {name} is versioned, deleting all object versions")
                for page in s3.get_paginator("list_object_versions").paginate(Bucket=name):
                    objects = [
                        {"Key": obj["Key"], "VersionId": obj["VersionId"]}
                        for obj in page.get("Versions", []) + page.get("DeleteMarkers", [])
                    ]
                    self._delete_batch(name, objects, errors)
            else:
                for page in s3.get_paginator("list_objects_v2").paginate(Bucket=name):
                    self._delete_batch(name, [{"Key": obj["Key"]} for obj in page.get("Contents", [])], errors)
        except ClientError as e:
            if _error_code(e) == "NoSuchBucket":
                raise StorageAbsent("NoSuchBucket", str(e)) from e
            raise
        if errors:
            raise AggregateError(f"unable to empty bucket {name}", errors)

    def _delete(self, name: str) -> None:
        try:
            self.s3_client().delete_bucket(Bucket=name)
        except ClientError as e:
            if _error_code(e) == "NoSuchBucket":
                raise StorageAbsent("NoSuchBucket", str(e)) from e
            logger.error(f"Failed to delete bucket {name}: {e}")
            raise

    # Operations that need the effective configuration ---------------------

    def storage_exists(self, cr: RegistryConfig) -> bool:
        self.update_effective_config()
        return super().storage_exists(cr)

    def create_storage(self, cr: RegistryConfig) -> None:
        self.update_effective_config()
        super().create_storage(cr)

    def _generate_name(self, infra: Infrastructure) -> str:
        return generate_storage_name(infra.infrastructure_name, self.config.region)
