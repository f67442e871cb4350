"""Filesystem and EmptyDir storage drivers.

Both store blobs on a volume mounted into the registry pod, so there is no
cloud resource to create or remove.
"""

from __future__ import annotations

from typing import Any

from ..builders.envvar import EnvVar
from ..builders.volumes import raw_volume
from ..constants import (
    ENV_REGISTRY_STORAGE,
    FILESYSTEM_ROOT_DIRECTORY,
    MANAGEMENT_STATE_MANAGED,
    REASON_CONFIGURATION_CHANGED,
    STATUS_TRUE,
    STATUS_UNKNOWN,
    VOLUME_REGISTRY_STORAGE,
)
from ..listers import StorageListers
from ..models import EmptyDirConfig, FilesystemConfig, RegistryConfig
from ..utils.conditions import set_storage_exists_condition
from ..utils.errors import ConfigurationError


def volume_source_kind(volume_source: dict[str, Any]) -> str:
    """Return the lowercased kind of a volume source such as ``persistentvolumeclaim``.

    Raises:
        ConfigurationError: If more than one kind is set
    """
    kinds = [key for key, value in volume_source.items() if value is not None]
    if len(kinds) > 1:
        raise ConfigurationError("too many storage types defined")
    return kinds[0].lower() if kinds else ""


class FilesystemDriver:
    """Stores blobs on a user supplied volume."""

    backend = "Filesystem"
    variant = "filesystem"

    def __init__(self, config: FilesystemConfig | EmptyDirConfig, listers: StorageListers) -> None:
        self.config = config
        self.listers = listers

    def id(self) -> str:
        return self.variant

    def volume_source(self) -> dict[str, Any]:
        return self.config.volume_source

    def config_env(self) -> list[EnvVar]:
        return [
            EnvVar(ENV_REGISTRY_STORAGE, "filesystem"),
            EnvVar("REGISTRY_STORAGE_FILESYSTEM_ROOTDIRECTORY", FILESYSTEM_ROOT_DIRECTORY),
        ]

    def volumes(self) -> tuple[list[Any], list[Any]]:
        volume, mount = raw_volume(VOLUME_REGISTRY_STORAGE, FILESYSTEM_ROOT_DIRECTORY, self.volume_source())
        return [volume], [mount]

    def volume_secrets(self) -> dict[str, str]:
        return {}

    def ca_bundle(self) -> tuple[str, bool]:
        return "", True

    def storage_exists(self, cr: RegistryConfig) -> bool:
        return True

    def storage_changed(self, cr: RegistryConfig) -> bool:
        if getattr(cr.spec, self.variant) != getattr(cr.status.storage, self.variant):
            set_storage_exists_condition(
                cr.status.conditions,
                STATUS_UNKNOWN,
                f"{self.backend} {REASON_CONFIGURATION_CHANGED}",
                f"{self.backend} storage is in an unknown state: configuration changed",
            )
            return True
        return False

    def create_storage(self, cr: RegistryConfig) -> None:
        """Record the volume configuration as applied.

        Raises:
            ConfigurationError: If the volume source names more than one kind
        """
        volume_source_kind(self.volume_source())
        cr.status.record_applied(self.variant, self.config)
        set_storage_exists_condition(cr.status.conditions, STATUS_TRUE, f"{self.backend} Storage Exists", "")

    def remove_storage(self, cr: RegistryConfig) -> bool:
        return False


class EmptyDirDriver(FilesystemDriver):
    """Stores blobs on an ephemeral emptyDir volume that the operator owns."""

    backend = "EmptyDir"
    variant = "empty_dir"

    def id(self) -> str:
        return "emptydir"

    def volume_source(self) -> dict[str, Any]:
        return {"emptyDir": {}}

    def create_storage(self, cr: RegistryConfig) -> None:
        cr.adopt_management_state(MANAGEMENT_STATE_MANAGED)
        super().create_storage(cr)
