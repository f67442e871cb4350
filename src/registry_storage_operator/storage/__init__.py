"""Storage drivers and driver selection."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..constants import (
    PLATFORM_AWS,
    PLATFORM_AZURE,
    PLATFORM_BAREMETAL,
    PLATFORM_GCP,
    PLATFORM_NONE,
    PLATFORM_OPENSTACK,
    PLATFORM_OVIRT,
    PLATFORM_VSPHERE,
)
from ..listers import StorageListers
from ..models import (
    AzureConfig,
    EmptyDirConfig,
    GCSConfig,
    S3Config,
    StorageSpec,
    SwiftConfig,
)
from ..utils.errors import MultiStoragesError, StorageNotConfiguredError
from .azure import AzureDriver
from .base import BucketDriver, Driver
from .filesystem import EmptyDirDriver, FilesystemDriver
from .gcs import GCSDriver
from .s3 import S3Driver
from .swift import SwiftDriver

logger = logging.getLogger(__name__)

# StorageSpec attribute -> driver class
DRIVERS: dict[str, Callable[..., Any]] = {
    "empty_dir": EmptyDirDriver,
    "s3": S3Driver,
    "swift": SwiftDriver,
    "gcs": GCSDriver,
    "azure": AzureDriver,
    "filesystem": FilesystemDriver,
}

# Platforms whose storage has to be configured by the administrator
_UNCONFIGURED_PLATFORMS = {PLATFORM_BAREMETAL, PLATFORM_OVIRT, PLATFORM_VSPHERE, PLATFORM_NONE}


def new_driver(spec: StorageSpec, listers: StorageListers) -> Driver:
    """Create the driver for the single configured storage variant.

    The driver shares the variant object with ``spec`` so names it fills in
    are visible to the caller.

    Raises:
        StorageNotConfiguredError: If no variant is configured
        MultiStoragesError: If more than one variant is configured
    """
    names = spec.configured()
    if not names:
        raise StorageNotConfiguredError()
    if len(names) > 1:
        raise MultiStoragesError(names)

    for attr, driver_class in DRIVERS.items():
        config = getattr(spec, attr)
        if config is not None:
            return driver_class(config, listers)
    raise StorageNotConfiguredError()


def get_platform_storage(listers: StorageListers) -> StorageSpec:
    """Return the default storage for the platform the cluster runs on."""
    infra = listers.get_infrastructure()
    platform = infra.platform_type

    spec = StorageSpec()
    if platform in _UNCONFIGURED_PLATFORMS:
        pass
    elif platform == PLATFORM_AWS:
        spec.s3 = S3Config()
    elif platform == PLATFORM_AZURE:
        spec.azure = AzureConfig()
    elif platform == PLATFORM_GCP:
        spec.gcs = GCSConfig()
    elif platform == PLATFORM_OPENSTACK:
        spec.swift = SwiftConfig()
    else:
        spec.empty_dir = EmptyDirConfig()
    return spec


def get_driver(spec: StorageSpec, listers: StorageListers) -> Driver:
    """Create the driver for ``spec``, defaulting it from the platform when empty.

    When nothing is configured the platform default variant is written into
    ``spec``.

    Raises:
        StorageNotConfiguredError: If nothing is configured and the platform has no default
        MultiStoragesError: If more than one variant is configured
    """
    if spec.configured():
        return new_driver(spec, listers)

    platform_spec = get_platform_storage(listers)
    for attr in DRIVERS:
        value = getattr(platform_spec, attr)
        if value is not None:
            logger.info(f"No storage configured, using platform default {attr}")
            setattr(spec, attr, value)
    return new_driver(spec, listers)


__all__ = [
    "BucketDriver",
    "Driver",
    "DRIVERS",
    "AzureDriver",
    "EmptyDirDriver",
    "FilesystemDriver",
    "GCSDriver",
    "S3Driver",
    "SwiftDriver",
    "get_driver",
    "get_platform_storage",
    "new_driver",
]
