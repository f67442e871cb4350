"""OpenStack Swift storage driver."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlparse

import openstack
import yaml
from kubernetes import client
from openstack import exceptions

from ..builders.envvar import EnvVar
from ..constants import (
    CLOUD_CA_KEY,
    CLOUD_PROVIDER_CONFIG_NAME,
    ENV_REGISTRY_STORAGE,
    OPENSHIFT_CONFIG_NAMESPACE,
)
from ..listers import StorageListers, is_not_found
from ..models import Infrastructure, SwiftConfig
from ..utils.errors import AggregateError, ConfigurationError, OperationError
from ..utils.secrets import SOURCE_USER, get_value_from_secret, resolve_secret
from .base import BucketDriver, StorageAbsent, StorageConflict

logger = logging.getLogger(__name__)

USER_USERNAME = "REGISTRY_STORAGE_SWIFT_USERNAME"
USER_PASSWORD = "REGISTRY_STORAGE_SWIFT_PASSWORD"
USER_APP_CREDENTIAL_ID = "REGISTRY_STORAGE_SWIFT_APPLICATIONCREDENTIALID"
USER_APP_CREDENTIAL_NAME = "REGISTRY_STORAGE_SWIFT_APPLICATIONCREDENTIALNAME"
USER_APP_CREDENTIAL_SECRET = "REGISTRY_STORAGE_SWIFT_APPLICATIONCREDENTIALSECRET"
CLUSTER_CLOUDS_KEY = "clouds.yaml"
DEFAULT_CLOUD_NAME = "openstack"
DEFAULT_AUTH_VERSION = "3"


@dataclass
class SwiftCredentials:
    """Keystone credentials and connection defaults."""

    auth_url: str = ""
    username: str = ""
    password: str = ""
    application_credential_id: str = ""
    application_credential_name: str = ""
    application_credential_secret: str = ""
    tenant: str = ""
    tenant_id: str = ""
    domain: str = ""
    domain_id: str = ""
    region_name: str = ""
    identity_api_version: str = ""

    @property
    def uses_application_credential(self) -> bool:
        return bool(self.application_credential_secret)


def _from_clouds_yaml(data: str, cloud_name: str) -> SwiftCredentials:
    try:
        clouds = yaml.safe_load(data) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to unmarshal clouds credentials: {e}") from e

    cloud = (clouds.get("clouds") or {}).get(cloud_name)
    if cloud is None:
        raise ConfigurationError(f'clouds.yaml does not contain required cloud "{cloud_name}"')

    auth = cloud.get("auth") or {}
    return SwiftCredentials(
        auth_url=auth.get("auth_url", ""),
        username=auth.get("username", ""),
        password=auth.get("password", ""),
        application_credential_id=auth.get("application_credential_id", ""),
        application_credential_name=auth.get("application_credential_name", ""),
        application_credential_secret=auth.get("application_credential_secret", ""),
        tenant=auth.get("project_name", ""),
        tenant_id=auth.get("project_id", ""),
        domain=auth.get("domain_name") or auth.get("user_domain_name", ""),
        domain_id=auth.get("domain_id") or auth.get("user_domain_id", ""),
        region_name=cloud.get("region_name", ""),
        identity_api_version=str(cloud.get("identity_api_version", "") or ""),
    )


def get_config(listers: StorageListers) -> SwiftCredentials:
    """Resolve Swift credentials.

    The user secret carries a username and password or an application
    credential. The cluster secret carries a ``clouds.yaml`` whose cloud is
    named by the infrastructure.

    Raises:
        ConfigurationError: If no usable credentials are found
    """
    source, secret = resolve_secret(listers)
    if source == SOURCE_USER:
        creds = SwiftCredentials(
            username=secret.get(USER_USERNAME, ""),
            password=secret.get(USER_PASSWORD, ""),
            application_credential_id=secret.get(USER_APP_CREDENTIAL_ID, ""),
            application_credential_name=secret.get(USER_APP_CREDENTIAL_NAME, ""),
            application_credential_secret=secret.get(USER_APP_CREDENTIAL_SECRET, ""),
        )
        if not (creds.username and creds.password) and not creds.uses_application_credential:
            raise ConfigurationError(
                f'secret "{secret.namespace}/{secret.name}" must contain either '
                f"{USER_USERNAME} and {USER_PASSWORD} or an application credential"
            )
        return creds

    data = get_value_from_secret(secret, CLUSTER_CLOUDS_KEY)
    try:
        infra = listers.get_infrastructure()
    except client.exceptions.ApiException as e:
        if not is_not_found(e):
            raise
        infra = Infrastructure()
    cloud_name = infra.openstack.get("cloudName") or DEFAULT_CLOUD_NAME
    return _from_clouds_yaml(data, cloud_name)


def ensure_auth_url_has_api_version(auth_url: str, auth_version: str) -> str:
    """Append ``/v<auth_version>`` to an auth URL that has no version path.

    Raises:
        ConfigurationError: If the URL has a path that is not a version
    """
    if "://" not in auth_url:
        auth_url = "http://" + auth_url
    path = urlparse(auth_url).path

    if path.startswith(("/v1", "/v2", "/v3")):
        return auth_url
    if path not in ("", "/"):
        raise ConfigurationError(f"Incorrect Auth URL: {path}")

    if not auth_url.endswith("/"):
        auth_url += "/"
    return auth_url + "v" + auth_version


def _first(*values: str) -> str:
    for value in values:
        if value:
            return value
    return ""


class SwiftDriver(BucketDriver):
    """Provisions a Swift container for the registry."""

    backend = "Swift"
    variant = "swift"
    name_field = "container"
    resource_label = "Container"

    def __init__(
        self,
        config: SwiftConfig,
        listers: StorageListers,
        connection_factory: Callable[[], Any] | None = None,
    ) -> None:
        super().__init__(config, listers)
        self._connection_factory = connection_factory
        self._connection: Any = None
        self._credentials: SwiftCredentials | None = None
        self._temp_files: list[str] = []

    def credentials(self) -> SwiftCredentials:
        if self._credentials is None:
            self._credentials = get_config(self.listers)
        return self._credentials

    def _settings(self) -> dict[str, str]:
        """Merge the configured values with the connection defaults from the credentials."""
        creds = self.credentials()
        return {
            "auth_url": _first(self.config.auth_url, creds.auth_url),
            "tenant": _first(self.config.tenant, creds.tenant),
            "tenant_id": _first(self.config.tenant_id, creds.tenant_id),
            "domain": _first(self.config.domain, creds.domain),
            "domain_id": _first(self.config.domain_id, creds.domain_id),
            "region_name": _first(self.config.region_name, creds.region_name),
            "auth_version": _first(self.config.auth_version, creds.identity_api_version, DEFAULT_AUTH_VERSION),
        }

    # Workload contract ------------------------------------------------------

    def config_env(self) -> list[EnvVar]:
        creds = self.credentials()
        settings = self._settings()

        try:
            auth_version = int(settings["auth_version"])
        except ValueError as e:
            raise ConfigurationError(f"unable to parse authVersion: {e}") from e
        auth_url = ensure_auth_url_has_api_version(settings["auth_url"], settings["auth_version"])

        env = [
            EnvVar(ENV_REGISTRY_STORAGE, "swift"),
            EnvVar("REGISTRY_STORAGE_SWIFT_CONTAINER", self.config.container),
            EnvVar("REGISTRY_STORAGE_SWIFT_AUTHURL", auth_url),
            EnvVar(USER_USERNAME, creds.username, secret=True),
            EnvVar(USER_PASSWORD, creds.password, secret=True),
            EnvVar(USER_APP_CREDENTIAL_ID, creds.application_credential_id, secret=True),
            EnvVar(USER_APP_CREDENTIAL_NAME, creds.application_credential_name, secret=True),
            EnvVar(USER_APP_CREDENTIAL_SECRET, creds.application_credential_secret, secret=True),
            EnvVar("REGISTRY_STORAGE_SWIFT_AUTHVERSION", auth_version),
        ]
        optional = [
            ("REGISTRY_STORAGE_SWIFT_DOMAIN", settings["domain"]),
            ("REGISTRY_STORAGE_SWIFT_DOMAINID", settings["domain_id"]),
            ("REGISTRY_STORAGE_SWIFT_TENANT", settings["tenant"]),
            ("REGISTRY_STORAGE_SWIFT_TENANTID", settings["tenant_id"]),
            ("REGISTRY_STORAGE_SWIFT_REGION", settings["region_name"]),
        ]
        env.extend(EnvVar(name, value) for name, value in optional if value)
        return env

    def volumes(self) -> tuple[list[Any], list[Any]]:
        return [], []

    def ca_bundle(self) -> tuple[str, bool]:
        try:
            data = self.listers.get_config_map(CLOUD_PROVIDER_CONFIG_NAME, OPENSHIFT_CONFIG_NAMESPACE)
        except client.exceptions.ApiException as e:
            if is_not_found(e):
                return "", True
            raise
        bundle = data.get(CLOUD_CA_KEY, "")
        if not bundle:
            return "", True
        return bundle, False

    # Client -----------------------------------------------------------------

    def connection(self) -> Any:
        """Return the OpenStack connection owned by this driver instance."""
        if self._connection is not None:
            return self._connection
        if self._connection_factory is not None:
            self._connection = self._connection_factory()
            return self._connection

        creds = self.credentials()
        settings = self._settings()
        auth: dict[str, Any] = {
            "auth_url": ensure_auth_url_has_api_version(settings["auth_url"], settings["auth_version"]),
        }
        if creds.uses_application_credential:
            auth_type = "v3applicationcredential"
            auth.update(
                application_credential_id=creds.application_credential_id or None,
                application_credential_name=creds.application_credential_name or None,
                application_credential_secret=creds.application_credential_secret,
                username=creds.username or None,
            )
        else:
            auth_type = "password"
            auth.update(username=creds.username, password=creds.password)
        auth.update(
            project_name=settings["tenant"] or None,
            project_id=settings["tenant_id"] or None,
            user_domain_name=settings["domain"] or None,
            user_domain_id=settings["domain_id"] or None,
            project_domain_name=settings["domain"] or None,
            project_domain_id=settings["domain_id"] or None,
        )
        auth = {key: value for key, value in auth.items() if value is not None}

        kwargs: dict[str, Any] = {}
        bundle, _ = self.ca_bundle()
        if bundle:
            kwargs["cacert"] = self._write_temp_file(bundle, ".pem")

        self._connection = openstack.connection.Connection(
            auth_type=auth_type,
            auth=auth,
            region_name=settings["region_name"] or None,
            identity_api_version=settings["auth_version"],
            **kwargs,
        )
        return self._connection

    def _write_temp_file(self, data: str, suffix: str) -> str:
        fd, path = tempfile.mkstemp(prefix="registry-storage-", suffix=suffix)
        with os.fdopen(fd, "w") as f:
            f.write(data)
        self._temp_files.append(path)
        return path

    def close(self) -> None:
        """Close the connection and remove the temporary CA file."""
        if self._connection is not None and self._connection_factory is None:
            self._connection.close()
        for path in self._temp_files:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
        self._temp_files = []

    # Strategy hooks ---------------------------------------------------------

    def _check(self, name: str) -> None:
        try:
            self.connection().object_store.get_container_metadata(name)
        except exceptions.NotFoundException as e:
            raise StorageAbsent("Storage does not exist", str(e)) from e
        except exceptions.ForbiddenException as e:
            raise StorageAbsent("Forbidden", str(e)) from e

    def _create(self, name: str, infra: Infrastructure) -> None:
        # Swift creates are upserts, so a taken name has to be detected up front.
        try:
            self._check(name)
        except StorageAbsent:
            pass
        else:
            raise StorageConflict(f"container {name} already exists")

        object_store = self.connection().object_store
        object_store.create_container(name=name)
        object_store.set_container_metadata(
            name,
            Openshiftclusterid=infra.infrastructure_name,
            Name=name,
        )

    def _empty(self, name: str) -> None:
        object_store = self.connection().object_store
        errors: list[OperationError] = []
        try:
            for obj in object_store.objects(name):
                try:
                    object_store.delete_object(obj, container=name, ignore_missing=True)
                except exceptions.SDKException as e:
                    errors.append(OperationError("delete_object", f"{name}/{obj.name}", e))
        except exceptions.NotFoundException as e:
            raise StorageAbsent("NotFound", str(e)) from e
        if errors:
            raise AggregateError(f"unable to empty container {name}", errors)

    def _delete(self, name: str) -> None:
        try:
            self.connection().object_store.delete_container(name, ignore_missing=False)
        except exceptions.NotFoundException as e:
            raise StorageAbsent("NotFound", str(e)) from e
