"""Tests for the move-blobs command."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from registry_storage_operator import move_blobs as mb
from registry_storage_operator.utils.errors import BlobMoveError, ConfigurationError

CONTAINER_URL = "https://account.blob.core.windows.net/registry"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeContainer:
    """Container client with scripted copy behavior per source blob.

    ``script`` maps a source blob name to the status returned by
    start_copy_from_url followed by the statuses returned by each properties
    poll.
    """

    def __init__(self, script: dict[str, list[str]]) -> None:
        self.url = CONTAINER_URL + "/"
        self.script = {name: list(statuses) for name, statuses in script.items()}
        self.copies: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.delete_errors: dict[str, Exception] = {}
        self._by_dest: dict[str, str] = {}

    def list_blobs(self, name_starts_with: str = ""):
        return [SimpleNamespace(name=name) for name in self.script if name.startswith(name_starts_with)]

    def get_blob_client(self, dest: str):
        blob = MagicMock()

        def start_copy(url: str) -> dict:
            source = next(name for name in self.script if url.endswith(name.replace("/", "%2F")))
            self._by_dest[dest] = source
            self.copies.append((dest, url))
            return {"copy_status": self.script[source].pop(0)}

        def properties():
            source = self._by_dest[dest]
            status = self.script[source].pop(0) if len(self.script[source]) > 1 else self.script[source][0]
            return SimpleNamespace(copy=SimpleNamespace(status=status, status_description=""))

        blob.start_copy_from_url.side_effect = start_copy
        blob.get_blob_properties.side_effect = properties
        return blob

    def delete_blob(self, name: str) -> None:
        if name in self.delete_errors:
            raise self.delete_errors[name]
        self.deleted.append(name)


@pytest.fixture
def clock():
    return FakeClock()


def run(container, clock, timeout=mb.DEFAULT_TIMEOUT_SECONDS):
    return mb.move_blobs(container, timeout=timeout, sleep=clock.sleep, clock=clock)


class TestMoveBlobs:
    """Test cases for move_blobs."""

    def test_instant_copies_are_moved(self, clock):
        container = FakeContainer({"docker/registry/v2/a": ["success"], "docker/registry/v2/b": ["success"]})

        moved = run(container, clock)

        assert moved == ["docker/registry/v2/a", "docker/registry/v2/b"]
        assert container.deleted == moved
        dest, url = container.copies[0]
        assert dest == "/docker/registry/v2/a"
        assert url == CONTAINER_URL + "/docker%2Fregistry%2Fv2%2Fa"

    def test_pending_copy_is_polled(self, clock):
        container = FakeContainer({"docker/a": ["pending", "pending", "success"]})

        moved = run(container, clock)

        assert moved == ["docker/a"]
        assert container.deleted == ["docker/a"]
        assert clock.now == pytest.approx(mb.COPY_POLL_INTERVAL_SECONDS)

    def test_pending_copy_deletes_its_own_source(self, clock):
        container = FakeContainer({"a/1": ["pending", "success"]})

        moved = mb.move_blobs(container, source="a", dest="ba", sleep=clock.sleep, clock=clock)

        assert moved == ["a/1"]
        assert container.deleted == ["a/1"]
        assert container.copies[0][0] == "ba/1"

    def test_failed_copy_keeps_source(self, clock):
        container = FakeContainer({"docker/a": ["failed"], "docker/b": ["success"]})

        with pytest.raises(BlobMoveError) as exc_info:
            run(container, clock)

        assert exc_info.value.moved == ["docker/b"]
        assert [e.resource_id for e in exc_info.value.errors] == ["docker/a"]
        assert container.deleted == ["docker/b"]

    def test_pending_copy_times_out(self, clock):
        container = FakeContainer({"docker/a": ["pending", "pending"]})

        with pytest.raises(BlobMoveError) as exc_info:
            run(container, clock, timeout=1.0)

        assert "timed out waiting for copy of /docker/a" in str(exc_info.value.errors[0])
        assert container.deleted == []

    def test_already_deleted_source_is_ignored(self, clock):
        container = FakeContainer({"docker/a": ["success"]})
        container.delete_errors["docker/a"] = ResourceNotFoundError("BlobNotFound")

        assert run(container, clock) == ["docker/a"]

    def test_delete_failure_is_collected(self, clock):
        container = FakeContainer({"docker/a": ["success"]})
        container.delete_errors["docker/a"] = HttpResponseError("boom")

        with pytest.raises(BlobMoveError) as exc_info:
            run(container, clock)

        assert exc_info.value.errors[0].operation == "delete"

    def test_nothing_to_move(self, clock):
        assert run(FakeContainer({"other/a": ["success"]}), clock) == []


FULL_ENV = {
    "AZURE_STORAGE_ACCOUNT_NAME": "account",
    "AZURE_CONTAINER_NAME": "registry",
    "AZURE_CLIENT_ID": "client",
    "AZURE_TENANT_ID": "tenant",
    "AZURE_CLIENT_SECRET": "secret",
}


class TestMoveBlobsOptions:
    """Test cases for reading and validating the command options."""

    def test_from_env_strips_values(self):
        opts = mb.MoveBlobsOptions.from_env({**FULL_ENV, "AZURE_CONTAINER_NAME": " registry\n"})

        assert opts.container_name == "registry"
        assert opts.environment == mb.DEFAULT_ENVIRONMENT
        assert opts.timeout == mb.DEFAULT_TIMEOUT_SECONDS
        opts.validate()

    def test_invalid_timeout(self):
        with pytest.raises(ConfigurationError, match="MOVE_BLOBS_TIMEOUT_SECONDS"):
            mb.MoveBlobsOptions.from_env({"MOVE_BLOBS_TIMEOUT_SECONDS": "soon"})

    @pytest.mark.parametrize(
        "missing, message",
        [
            ("AZURE_CLIENT_SECRET", "One of AZURE_CLIENT_SECRET or AZURE_FEDERATED_TOKEN_FILE or AZURE_ACCOUNTKEY"),
            ("AZURE_CLIENT_ID", "AZURE_CLIENT_ID is required for authentication"),
            ("AZURE_TENANT_ID", "AZURE_TENANT_ID is required for authentication"),
            ("AZURE_STORAGE_ACCOUNT_NAME", "AZURE_STORAGE_ACCOUNT_NAME is required"),
            ("AZURE_CONTAINER_NAME", "AZURE_CONTAINER_NAME is required"),
        ],
    )
    def test_missing_option(self, missing, message):
        env = {k: v for k, v in FULL_ENV.items() if k != missing}

        with pytest.raises(ConfigurationError, match=message):
            mb.MoveBlobsOptions.from_env(env).validate()

    def test_account_key_needs_no_client(self):
        opts = mb.MoveBlobsOptions.from_env(
            {"AZURE_STORAGE_ACCOUNT_NAME": "a", "AZURE_CONTAINER_NAME": "c", "AZURE_ACCOUNTKEY": "key"}
        )

        opts.validate()
        credential = mb.get_credential(opts, mb.get_environment(opts.environment))
        assert credential == {"account_name": "a", "account_key": "key"}


class TestResolveEnvironment:
    def test_named_cloud(self):
        opts = mb.MoveBlobsOptions.from_env({"AZURE_ENVIRONMENT": "AzureChinaCloud"})

        assert mb.resolve_environment(opts).storage_endpoint_suffix == "core.chinacloudapi.cn"

    def test_environment_file_contents_are_written(self, tmp_path):
        path = tmp_path / "azurestack.json"
        contents = json.dumps(
            {
                "name": "AzureStackCloud",
                "activeDirectoryEndpoint": "https://login.stack.example.com/",
                "resourceManagerEndpoint": "https://management.stack.example.com/",
                "storageEndpointSuffix": "stack.example.com",
            }
        )
        opts = mb.MoveBlobsOptions.from_env(
            {"AZURE_ENVIRONMENT_FILEPATH": str(path), "AZURE_ENVIRONMENT_FILECONTENTS": contents}
        )

        environment = mb.resolve_environment(opts)

        assert path.read_text() == contents
        assert environment.authority_host == "login.stack.example.com"
        assert environment.storage_endpoint_suffix == "stack.example.com"

    def test_missing_environment_file_falls_back(self, tmp_path):
        opts = mb.MoveBlobsOptions.from_env({"AZURE_ENVIRONMENT_FILEPATH": str(tmp_path / "missing.json")})

        assert mb.resolve_environment(opts).name == "AzurePublicCloud"


class TestMain:
    def test_missing_configuration_exits(self, monkeypatch):
        for name in FULL_ENV:
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr(mb.structured_logging, "setup_structured_logging", lambda: None)

        with pytest.raises(SystemExit) as exc_info:
            mb.main()

        assert exc_info.value.code == 1

    def test_move_errors_exit(self, monkeypatch):
        for name, value in FULL_ENV.items():
            monkeypatch.setenv(name, value)
        monkeypatch.setattr(mb.structured_logging, "setup_structured_logging", lambda: None)
        monkeypatch.setattr(mb, "get_container_client", lambda opts, env: MagicMock())

        def fail(container_client, timeout):
            raise BlobMoveError([], [mb.OperationError("copy", "docker/a", "failed")])

        monkeypatch.setattr(mb, "move_blobs", fail)

        with pytest.raises(SystemExit) as exc_info:
            mb.main()

        assert exc_info.value.code == 1
