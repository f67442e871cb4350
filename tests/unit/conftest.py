"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import Any

import pytest
from kubernetes import client

from registry_storage_operator.constants import OPERATOR_NAMESPACE
from registry_storage_operator.listers import SecretData
from registry_storage_operator.models import Infrastructure


def not_found() -> client.exceptions.ApiException:
    return client.exceptions.ApiException(status=404, reason="Not Found")


class FakeListers:
    """In-memory stand-in for StorageListers."""

    def __init__(
        self,
        secrets: dict[str, dict[str, str]] | None = None,
        config_maps: dict[tuple[str, str], dict[str, str]] | None = None,
        infra: Infrastructure | None = None,
        namespace: str = OPERATOR_NAMESPACE,
    ) -> None:
        self.secrets = secrets or {}
        self.config_maps = config_maps or {}
        self.infra = infra or Infrastructure(infrastructure_name="test-abc12", platform_type="None")
        self.namespace = namespace
        self.secret_reads: list[str] = []

    def get_secret(self, name: str, namespace: str | None = None) -> SecretData:
        self.secret_reads.append(name)
        if name not in self.secrets:
            raise not_found()
        return SecretData(namespace or self.namespace, name, dict(self.secrets[name]))

    def get_config_map(self, name: str, namespace: str) -> dict[str, str]:
        if (namespace, name) not in self.config_maps:
            raise not_found()
        return dict(self.config_maps[(namespace, name)])

    def get_infrastructure(self) -> Infrastructure:
        if self.infra is None:
            raise not_found()
        return self.infra


def make_infra(platform: str, platform_status: dict[str, Any] | None = None, name: str = "test-abc12") -> Infrastructure:
    status = {"type": platform}
    if platform_status:
        status.update(platform_status)
    return Infrastructure(infrastructure_name=name, platform_type=platform, platform_status=status)


@pytest.fixture
def listers() -> FakeListers:
    return FakeListers()


@pytest.fixture(name="make_listers")
def make_listers_fixture() -> type[FakeListers]:
    return FakeListers


@pytest.fixture(name="make_infra")
def make_infra_fixture() -> Any:
    return make_infra
