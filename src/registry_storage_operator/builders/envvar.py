"""Builder for registry environment variables.

Drivers return ``EnvVar`` lists from ``config_env``. ``to_k8s_env_vars`` and
``secret_data`` are the hand-off to the outer loop that deploys the registry
workload: it renders the container environment and the private
configuration secret from them. Nothing inside the storage reconcile calls
them.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from kubernetes import client

from ..constants import PRIVATE_CONFIG_SECRET_NAME


@dataclass(frozen=True)
class EnvVar:
    """A registry configuration parameter.

    Secret values are not placed in the pod spec; they are stored in the
    private configuration secret and referenced by key.
    """

    name: str
    value: Any
    secret: bool = False

    def env_value(self) -> str:
        """Return the string form of the value for the container environment."""
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        if isinstance(self.value, (dict, list)):
            return json.dumps(self.value, separators=(",", ":"), sort_keys=True)
        return str(self.value)


def to_k8s_env_vars(
    env: list[EnvVar],
    secret_name: str = PRIVATE_CONFIG_SECRET_NAME,
) -> list[client.V1EnvVar]:
    """Convert parameters to container environment variables.

    Args:
        env: Registry configuration parameters
        secret_name: Secret holding the values of secret parameters

    Returns:
        List of Kubernetes environment variables
    """
    result = []
    for e in env:
        if e.secret:
            result.append(
                client.V1EnvVar(
                    name=e.name,
                    value_from=client.V1EnvVarSource(
                        secret_key_ref=client.V1SecretKeySelector(name=secret_name, key=e.name),
                    ),
                )
            )
        else:
            result.append(client.V1EnvVar(name=e.name, value=e.env_value()))
    return result


def secret_data(env: list[EnvVar]) -> dict[str, str]:
    """Return the private configuration secret data for the secret parameters."""
    return {e.name: e.env_value() for e in env if e.secret}


def find(env: list[EnvVar], name: str) -> EnvVar | None:
    """Return the parameter with the given name, or None."""
    for e in env:
        if e.name == name:
            return e
    return None
