"""Tests for credential resolution."""

from __future__ import annotations

import pytest

from registry_storage_operator.constants import CLUSTER_SECRET_NAME, USER_SECRET_NAME
from registry_storage_operator.listers import SecretData
from registry_storage_operator.utils.errors import ConfigurationError
from registry_storage_operator.utils.secrets import (
    SOURCE_CLUSTER,
    SOURCE_USER,
    get_cluster_secret,
    get_value_from_secret,
    resolve_secret,
)


class TestGetValueFromSecret:
    """Test cases for get_value_from_secret."""

    def test_returns_value(self):
        secret = SecretData("ns", "s", {"key": "value"})
        assert get_value_from_secret(secret, "key") == "value"

    def test_missing_key_names_secret_and_key(self):
        secret = SecretData("ns", "s", {})
        with pytest.raises(ConfigurationError, match='secret "ns/s" does not contain required key "key"'):
            get_value_from_secret(secret, "key")


class TestResolveSecret:
    """Test cases for the user then cluster secret fallback."""

    def test_user_secret_wins(self, make_listers):
        listers = make_listers(secrets={USER_SECRET_NAME: {"a": "1"}, CLUSTER_SECRET_NAME: {"b": "2"}})

        source, secret = resolve_secret(listers)

        assert source == SOURCE_USER
        assert secret == {"a": "1"}
        assert secret.name == USER_SECRET_NAME

    def test_falls_back_to_cluster_secret(self, make_listers):
        listers = make_listers(secrets={CLUSTER_SECRET_NAME: {"b": "2"}})

        source, secret = resolve_secret(listers)

        assert source == SOURCE_CLUSTER
        assert secret == {"b": "2"}

    def test_no_secret_is_configuration_error(self, make_listers):
        listers = make_listers()
        with pytest.raises(ConfigurationError, match="unable to get cluster minted credentials"):
            resolve_secret(listers)


class TestGetClusterSecret:
    """Test cases for polling for the cluster secret."""

    def test_polls_until_secret_appears(self, make_listers):
        listers = make_listers()
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 3:
                listers.secrets[CLUSTER_SECRET_NAME] = {"k": "v"}

        secret = get_cluster_secret(listers, wait=True, interval=1.0, timeout=60.0, sleep=sleep)

        assert secret == {"k": "v"}
        assert sleeps == [1.0, 1.0, 1.0]

    def test_gives_up_after_timeout(self, make_listers):
        listers = make_listers()
        now = [0.0]

        def sleep(seconds):
            now[0] += seconds

        with pytest.raises(ConfigurationError):
            get_cluster_secret(listers, wait=True, interval=1.0, timeout=5.0, sleep=sleep, clock=lambda: now[0])
        assert now[0] == 5.0
