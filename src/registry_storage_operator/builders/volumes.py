"""Builders for registry volumes and mounts."""

from __future__ import annotations

from typing import Any

from kubernetes import client

from ..constants import PRIVATE_CONFIG_SECRET_NAME


def secret_volume(
    name: str,
    mount_path: str,
    secret_name: str = PRIVATE_CONFIG_SECRET_NAME,
    items: dict[str, str] | None = None,
    projected: bool = False,
) -> tuple[client.V1Volume, client.V1VolumeMount]:
    """Build a volume exposing keys of a secret as files.

    Args:
        name: Volume name
        mount_path: Where the volume is mounted in the registry container
        secret_name: Secret to expose
        items: Optional mapping of secret key to file path
        projected: Use a projected volume source instead of a secret source

    Returns:
        Tuple of (volume, volume mount)
    """
    key_to_path = None
    if items:
        key_to_path = [client.V1KeyToPath(key=key, path=path) for key, path in items.items()]

    if projected:
        source = {
            "projected": client.V1ProjectedVolumeSource(
                sources=[
                    client.V1VolumeProjection(
                        secret=client.V1SecretProjection(name=secret_name, items=key_to_path),
                    )
                ]
            )
        }
    else:
        source = {"secret": client.V1SecretVolumeSource(secret_name=secret_name, items=key_to_path)}

    volume = client.V1Volume(name=name, **source)
    mount = client.V1VolumeMount(name=name, mount_path=mount_path, read_only=True)
    return volume, mount


def raw_volume(
    name: str,
    mount_path: str,
    volume_source: dict[str, Any],
) -> tuple[dict[str, Any], client.V1VolumeMount]:
    """Build a volume from a raw volume source dict such as ``{"emptyDir": {}}``.

    The volume is returned as a dict so any volume source kind passes through
    unchanged.
    """
    volume = {"name": name, **volume_source}
    mount = client.V1VolumeMount(name=name, mount_path=mount_path)
    return volume, mount
