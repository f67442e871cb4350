"""Data models for registry storage configuration."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from typing import Any

from .constants import (
    PLATFORM_AWS,
    PLATFORM_AZURE,
    PLATFORM_GCP,
    PLATFORM_OPENSTACK,
)


def _camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part.capitalize() for part in tail)


class _CamelModel:
    """Mixin converting flat dataclasses to and from camelCase CR dicts.

    Fields holding ``None`` or an empty string are omitted on output.
    """

    _aliases: dict[str, str] = {}

    @classmethod
    def _key(cls, name: str) -> str:
        return cls._aliases.get(name, _camel(name))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Any:
        data = data or {}
        kwargs = {}
        for f in fields(cls):  # type: ignore[arg-type]
            key = cls._key(f.name)
            if key in data and data[key] is not None:
                kwargs[f.name] = copy.deepcopy(data[key])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None or value == "":
                continue
            result[self._key(f.name)] = copy.deepcopy(value)
        return result


@dataclass
class CloudFrontConfig(_CamelModel):
    """CloudFront signing configuration for the S3 backend."""

    base_url: str = ""
    # {"name": <secret name>, "key": <secret key>}
    private_key: dict[str, str] = field(default_factory=dict)
    key_pair_id: str = ""
    duration: str = ""

    _aliases = {"base_url": "baseURL", "key_pair_id": "keypairID"}


@dataclass
class S3Config(_CamelModel):
    """S3 storage configuration."""

    bucket: str = ""
    region: str = ""
    region_endpoint: str = ""
    encrypt: bool = False
    key_id: str = ""
    virtual_hosted_style: bool = False
    chunk_size_mib: int | None = None
    trusted_ca: str = ""
    cloud_front: CloudFrontConfig | None = None

    _aliases = {"key_id": "keyID", "chunk_size_mib": "chunkSizeMiB", "trusted_ca": "trustedCA"}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> S3Config:
        data = dict(data or {})
        cloud_front = data.pop("cloudFront", None)
        trusted_ca = data.pop("trustedCA", None)
        config = super().from_dict(data)
        if cloud_front is not None:
            config.cloud_front = CloudFrontConfig.from_dict(cloud_front)
        if isinstance(trusted_ca, dict):
            config.trusted_ca = trusted_ca.get("name", "")
        elif trusted_ca:
            config.trusted_ca = trusted_ca
        return config

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.pop("encrypt", None)
        result.pop("virtualHostedStyle", None)
        result["encrypt"] = self.encrypt
        result["virtualHostedStyle"] = self.virtual_hosted_style
        if self.cloud_front is not None:
            result["cloudFront"] = self.cloud_front.to_dict()
        if self.trusted_ca:
            result["trustedCA"] = {"name": self.trusted_ca}
        return result


@dataclass
class AzureNetworkAccessInternal(_CamelModel):
    """Where the private endpoint of an internal storage account lives.

    Empty vnet and subnet names are discovered from the cluster network.
    """

    network_resource_group_name: str = ""
    vnet_name: str = ""
    subnet_name: str = ""
    private_endpoint_name: str = ""


@dataclass
class AzureNetworkAccess(_CamelModel):
    """Network exposure of the storage account: External or Internal."""

    type: str = ""
    internal: AzureNetworkAccessInternal | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AzureNetworkAccess:
        data = dict(data or {})
        internal = data.pop("internal", None)
        access = super().from_dict(data)
        if internal is not None:
            access.internal = AzureNetworkAccessInternal.from_dict(internal)
        return access

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.internal is not None:
            result["internal"] = self.internal.to_dict()
        return result


@dataclass
class AzureConfig(_CamelModel):
    """Azure Blob storage configuration."""

    account_name: str = ""
    container: str = ""
    cloud_name: str = ""
    network_access: AzureNetworkAccess | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AzureConfig:
        data = dict(data or {})
        network_access = data.pop("networkAccess", None)
        config = super().from_dict(data)
        if network_access is not None:
            config.network_access = AzureNetworkAccess.from_dict(network_access)
        return config

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.network_access is not None:
            result["networkAccess"] = self.network_access.to_dict()
        return result


@dataclass
class GCSConfig(_CamelModel):
    """Google Cloud Storage configuration."""

    bucket: str = ""
    region: str = ""
    project_id: str = ""
    key_id: str = ""

    _aliases = {"project_id": "projectID", "key_id": "keyID"}


@dataclass
class SwiftConfig(_CamelModel):
    """OpenStack Swift configuration."""

    container: str = ""
    auth_url: str = ""
    auth_version: str = ""
    domain: str = ""
    domain_id: str = ""
    tenant: str = ""
    tenant_id: str = ""
    region_name: str = ""

    _aliases = {
        "auth_url": "authURL",
        "domain_id": "domainID",
        "tenant_id": "tenantID",
        "region_name": "regionName",
    }


@dataclass
class FilesystemConfig(_CamelModel):
    """Filesystem storage backed by an arbitrary Kubernetes volume source."""

    volume_source: dict[str, Any] = field(default_factory=dict)


@dataclass
class EmptyDirConfig(_CamelModel):
    """Ephemeral emptyDir storage. Has no fields."""


# (attribute, CR key, display name, model)
STORAGE_VARIANTS: list[tuple[str, str, str, Any]] = [
    ("empty_dir", "emptyDir", "EmptyDir", EmptyDirConfig),
    ("s3", "s3", "S3", S3Config),
    ("swift", "swift", "Swift", SwiftConfig),
    ("gcs", "gcs", "GCS", GCSConfig),
    ("azure", "azure", "Azure", AzureConfig),
    ("filesystem", "filesystem", "Filesystem", FilesystemConfig),
]


@dataclass
class StorageSpec:
    """Desired storage configuration: at most one variant set."""

    s3: S3Config | None = None
    azure: AzureConfig | None = None
    gcs: GCSConfig | None = None
    swift: SwiftConfig | None = None
    filesystem: FilesystemConfig | None = None
    empty_dir: EmptyDirConfig | None = None
    management_state: str = ""

    def configured(self) -> list[str]:
        """Return display names of the configured variants."""
        return [name for attr, _, name, _ in STORAGE_VARIANTS if getattr(self, attr) is not None]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StorageSpec:
        data = data or {}
        spec = cls(management_state=data.get("managementState", "") or "")
        for attr, key, _, model in STORAGE_VARIANTS:
            if data.get(key) is not None:
                setattr(spec, attr, model.from_dict(data[key]))
        return spec

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for attr, key, _, _ in STORAGE_VARIANTS:
            value = getattr(self, attr)
            if value is not None:
                result[key] = value.to_dict()
        if self.management_state:
            result["managementState"] = self.management_state
        return result


@dataclass
class StorageStatus:
    """Observed storage state: last applied variant, ownership and conditions."""

    storage: StorageSpec = field(default_factory=StorageSpec)
    management_state: str = ""
    conditions: list[dict[str, Any]] = field(default_factory=list)

    def record_applied(self, variant: str, config: Any) -> None:
        """Replace the applied storage with ``config`` as its only variant."""
        storage = StorageSpec()
        setattr(storage, variant, copy.deepcopy(config))
        self.storage = storage

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StorageStatus:
        data = data or {}
        return cls(
            storage=StorageSpec.from_dict(data.get("storage")),
            management_state=data.get("storageManagementState", "") or "",
            conditions=copy.deepcopy(data.get("conditions") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        storage = self.storage.to_dict()
        storage.pop("managementState", None)
        result: dict[str, Any] = {"storage": storage, "conditions": copy.deepcopy(self.conditions)}
        if self.management_state:
            result["storageManagementState"] = self.management_state
        return result


@dataclass
class RegistryConfig:
    """The storage-relevant part of the image registry config resource."""

    spec: StorageSpec = field(default_factory=StorageSpec)
    status: StorageStatus = field(default_factory=StorageStatus)

    def set_management_state(self, state: str) -> None:
        """Record the management state on spec and status."""
        self.spec.management_state = state
        self.status.management_state = state

    def adopt_management_state(self, default: str) -> str:
        """Set ``default`` unless a management state is already recorded."""
        state = self.spec.management_state or self.status.management_state or default
        self.set_management_state(state)
        return state

    @property
    def management_state(self) -> str:
        return self.spec.management_state or self.status.management_state

    @classmethod
    def from_resource(cls, spec: dict[str, Any], status: dict[str, Any]) -> RegistryConfig:
        """Build from the ``spec`` and ``status`` of a config resource."""
        return cls(
            spec=StorageSpec.from_dict((spec or {}).get("storage")),
            status=StorageStatus.from_dict(status),
        )


@dataclass
class Infrastructure:
    """View over the cluster ``Infrastructure`` resource."""

    infrastructure_name: str = ""
    platform_type: str = ""
    platform_status: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> Infrastructure:
        status = obj.get("status") or {}
        platform_status = status.get("platformStatus") or {}
        return cls(
            infrastructure_name=status.get("infrastructureName", ""),
            platform_type=platform_status.get("type") or status.get("platform", ""),
            platform_status=platform_status,
        )

    def _platform(self, key: str) -> dict[str, Any]:
        return self.platform_status.get(key) or {}

    @property
    def aws(self) -> dict[str, Any]:
        return self._platform("aws")

    @property
    def azure(self) -> dict[str, Any]:
        return self._platform("azure")

    @property
    def gcp(self) -> dict[str, Any]:
        return self._platform("gcp")

    @property
    def openstack(self) -> dict[str, Any]:
        return self._platform("openstack")

    @property
    def region(self) -> str:
        """Region of the platform the cluster runs on, if it has one."""
        if self.platform_type == PLATFORM_AWS:
            return self.aws.get("region", "")
        if self.platform_type == PLATFORM_GCP:
            return self.gcp.get("region", "")
        if self.platform_type == PLATFORM_AZURE:
            return self.azure.get("region", "")
        if self.platform_type == PLATFORM_OPENSTACK:
            return self.openstack.get("region", "")
        return ""

    def aws_service_endpoint(self, service: str) -> str:
        """Return the custom endpoint URL configured for an AWS service."""
        for endpoint in self.aws.get("serviceEndpoints") or []:
            if endpoint.get("name") == service:
                return endpoint.get("url", "")
        return ""
