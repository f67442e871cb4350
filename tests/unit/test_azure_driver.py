"""Tests for the Azure storage driver."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, Mock

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from registry_storage_operator.builders.envvar import find
from registry_storage_operator.constants import (
    CLUSTER_SECRET_NAME,
    COND_STORAGE_EXISTS,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_UNMANAGED,
    USER_SECRET_NAME,
)
from registry_storage_operator.models import (
    AzureConfig,
    AzureNetworkAccess,
    AzureNetworkAccessInternal,
    RegistryConfig,
    StorageSpec,
)
from registry_storage_operator.storage.azure import (
    AzureDriver,
    get_config,
    get_environment,
    load_environment_file,
)
from registry_storage_operator.utils.conditions import get_condition
from registry_storage_operator.utils.errors import ConfigurationError

CLUSTER_CREDENTIALS = {
    "azure_subscription_id": "sub",
    "azure_client_id": "client",
    "azure_client_secret": "secret",
    "azure_tenant_id": "tenant",
    "azure_region": "eastus",
}


@pytest.fixture
def azure_listers(make_listers, make_infra):
    return make_listers(
        secrets={CLUSTER_SECRET_NAME: dict(CLUSTER_CREDENTIALS)},
        infra=make_infra("Azure", {"azure": {"resourceGroupName": "rg"}}),
    )


def make_storage_client(name_available=True, key="primary-key"):
    storage_client = MagicMock()
    storage_client.storage_accounts.check_name_availability.return_value = Mock(name_available=name_available)
    storage_client.storage_accounts.list_keys.return_value = Mock(keys=[Mock(value=key)])
    return storage_client


def make_driver(listers, config=None, storage_client=None, container=None, clock=None, network=None, dns=None):
    config = config or AzureConfig()
    cr = RegistryConfig(spec=StorageSpec(azure=config))
    storage_client = storage_client or make_storage_client()
    container = container or MagicMock()
    blob_service = MagicMock()
    blob_service.get_container_client.return_value = container
    blob_factory = MagicMock(return_value=blob_service)
    kwargs = {"clock": clock} if clock else {}
    driver = AzureDriver(
        config,
        listers,
        storage_client_factory=lambda creds, env: storage_client,
        blob_service_factory=blob_factory,
        network_client_factory=lambda creds, env: network or MagicMock(),
        dns_client_factory=lambda creds, env: dns or MagicMock(),
        **kwargs,
    )
    return driver, cr, storage_client, container, blob_factory


class TestEnvironments:
    """Test cases for Azure cloud environments."""

    def test_empty_name_is_public_cloud(self):
        assert get_environment("").storage_endpoint_suffix == "core.windows.net"

    def test_lookup_is_case_insensitive(self):
        env = get_environment("AzureUSGovernmentCloud")
        assert env.storage_endpoint_suffix == "core.usgovcloudapi.net"
        assert env.credential_scope == "https://management.usgovcloudapi.net/.default"

    def test_unknown_cloud(self):
        with pytest.raises(ConfigurationError, match="no cloud environment"):
            get_environment("MarsCloud")

    def test_environment_file(self, tmp_path):
        path = tmp_path / "env.json"
        path.write_text(
            json.dumps(
                {
                    "name": "AzureStackCloud",
                    "activeDirectoryEndpoint": "https://login.stack.example.com/",
                    "resourceManagerEndpoint": "https://management.stack.example.com/",
                    "storageEndpointSuffix": "stack.example.com",
                }
            )
        )

        env = load_environment_file(str(path))

        assert env.authority_host == "login.stack.example.com"
        assert env.storage_endpoint_suffix == "stack.example.com"

    def test_environment_file_missing_key(self, tmp_path):
        path = tmp_path / "env.json"
        path.write_text(json.dumps({"activeDirectoryEndpoint": "https://login/"}))

        with pytest.raises(ConfigurationError, match="is missing"):
            load_environment_file(str(path))


class TestGetConfig:
    """Test cases for Azure credential resolution."""

    def test_cluster_secret_uses_infra_resource_group(self, azure_listers):
        creds = get_config(azure_listers)

        assert creds.client_id == "client"
        assert creds.client_secret == "secret"
        assert creds.resource_group == "rg"
        assert creds.account_key == ""

    def test_user_secret_with_empty_key(self, make_listers):
        listers = make_listers(secrets={USER_SECRET_NAME: {"REGISTRY_STORAGE_AZURE_ACCOUNTKEY": ""}})

        with pytest.raises(ConfigurationError, match="has an empty value"):
            get_config(listers)


class TestAzureCreate:
    """Test cases for creating or adopting the account and container."""

    def test_create_from_empty_config(self, azure_listers):
        driver, cr, storage_client, container, blob_factory = make_driver(azure_listers)

        assert driver.storage_exists(cr) is False
        driver.create_storage(cr)

        account = cr.spec.azure.account_name
        assert account.startswith("imageregistrytestab")
        assert cr.spec.azure.container.startswith("test-abc12-image-registry-")
        assert cr.status.storage.azure.account_name == account
        assert cr.management_state == MANAGEMENT_STATE_MANAGED

        args = storage_client.storage_accounts.begin_create.call_args.args
        assert args[0] == "rg"
        assert args[1] == account
        assert args[2].tags == {"kubernetes.io_cluster.test-abc12": "owned"}
        assert args[2].allow_blob_public_access is False

        account_url, credential = blob_factory.call_args.args
        assert account_url == f"https://{account}.blob.core.windows.net"
        assert credential == {"account_name": account, "account_key": "primary-key"}
        container.create_container.assert_called_once()
        assert get_condition(cr.status.conditions, COND_STORAGE_EXISTS)["reason"] == "ContainerExists"

    def test_existing_account_and_container_are_unmanaged(self, azure_listers):
        container = MagicMock()
        container.exists.return_value = True
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers,
            AzureConfig(account_name="acct", container="registry"),
            storage_client=make_storage_client(name_available=False),
            container=container,
        )

        driver.create_storage(cr)

        storage_client.storage_accounts.begin_create.assert_not_called()
        container.create_container.assert_not_called()
        assert cr.management_state == MANAGEMENT_STATE_UNMANAGED

    def test_account_creation_failure(self, azure_listers):
        storage_client = make_storage_client()
        storage_client.storage_accounts.begin_create.side_effect = HttpResponseError(message="quota")
        driver, cr, _, _, _ = make_driver(azure_listers, storage_client=storage_client)

        with pytest.raises(Exception, match="unable to process Azure storage account/container"):
            driver.create_storage(cr)

        condition = get_condition(cr.status.conditions, COND_STORAGE_EXISTS)
        assert condition["reason"] == "AzureError"
        assert condition["status"] == "Unknown"


class TestAzureUserProvisioned:
    """Test cases for storage provisioned by the user with an account key."""

    @pytest.fixture
    def key_listers(self, make_listers, make_infra):
        return make_listers(
            secrets={USER_SECRET_NAME: {"REGISTRY_STORAGE_AZURE_ACCOUNTKEY": "user-key"}},
            infra=make_infra("Azure"),
        )

    def test_missing_account_name(self, key_listers):
        driver, cr, _, _, _ = make_driver(key_listers, AzureConfig(container="c"))

        with pytest.raises(ConfigurationError, match="account name is not specified"):
            driver.create_storage(cr)

    def test_missing_container(self, key_listers):
        driver, cr, _, _, _ = make_driver(key_listers, AzureConfig(account_name="acct"))

        with pytest.raises(ConfigurationError, match="container is not specified"):
            driver.create_storage(cr)

    def test_complete_configuration_is_user_managed(self, key_listers):
        driver, cr, storage_client, container, _ = make_driver(
            key_listers, AzureConfig(account_name="acct", container="c")
        )

        driver.create_storage(cr)

        assert cr.management_state == MANAGEMENT_STATE_UNMANAGED
        assert get_condition(cr.status.conditions, COND_STORAGE_EXISTS)["reason"] == "UserManaged"
        storage_client.storage_accounts.begin_create.assert_not_called()
        container.create_container.assert_not_called()

    def test_account_key_is_passed_as_secret(self, key_listers):
        driver, _, _, _, _ = make_driver(key_listers, AzureConfig(account_name="acct", container="c"))

        env = driver.config_env()

        key = find(env, "REGISTRY_STORAGE_AZURE_ACCOUNTKEY")
        assert key.value == "user-key"
        assert key.secret is True
        assert find(env, "REGISTRY_STORAGE_AZURE_REALM") is None


class TestAzureRemove:
    """Test cases for removing the account and container."""

    def test_unmanaged_storage_is_left_alone(self, azure_listers):
        driver, cr, storage_client, _, _ = make_driver(azure_listers, AzureConfig(account_name="acct", container="c"))
        cr.set_management_state(MANAGEMENT_STATE_UNMANAGED)

        assert driver.remove_storage(cr) is False
        storage_client.storage_accounts.delete.assert_not_called()

    def test_managed_storage_is_deleted(self, azure_listers):
        driver, cr, storage_client, container, _ = make_driver(
            azure_listers, AzureConfig(account_name="acct", container="c")
        )
        cr.set_management_state(MANAGEMENT_STATE_MANAGED)

        assert driver.remove_storage(cr) is False

        container.delete_container.assert_called_once()
        storage_client.storage_accounts.delete.assert_called_once_with("rg", "acct")
        assert cr.spec.azure.account_name == ""
        assert cr.spec.azure.container == ""
        assert get_condition(cr.status.conditions, COND_STORAGE_EXISTS)["reason"] == "AccountDeleted"

    def test_missing_account(self, azure_listers):
        storage_client = make_storage_client()
        storage_client.storage_accounts.get_properties.side_effect = ResourceNotFoundError(message="gone")
        driver, cr, _, _, _ = make_driver(
            azure_listers, AzureConfig(account_name="acct", container="c"), storage_client=storage_client
        )
        cr.set_management_state(MANAGEMENT_STATE_MANAGED)

        assert driver.remove_storage(cr) is False

        storage_client.storage_accounts.delete.assert_not_called()
        assert get_condition(cr.status.conditions, COND_STORAGE_EXISTS)["reason"] == "AccountNotFound"

    def test_container_permission_mismatch_still_deletes_account(self, azure_listers):
        error = HttpResponseError(message="denied")
        error.error_code = "AuthorizationPermissionMismatch"
        container = MagicMock()
        container.delete_container.side_effect = error
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers, AzureConfig(account_name="acct", container="c"), container=container
        )
        cr.set_management_state(MANAGEMENT_STATE_MANAGED)

        driver.remove_storage(cr)

        storage_client.storage_accounts.delete.assert_called_once_with("rg", "acct")


def named(name, **kwargs):
    item = Mock(**kwargs)
    item.name = name
    return item


def make_network(vnet_tags=None, subnets=("worker-subnet",)):
    network = MagicMock()
    tags = {"kubernetes.io_cluster.test-abc12": "owned"} if vnet_tags is None else vnet_tags
    network.virtual_networks.list.return_value = [named("cluster-vnet", tags=tags)]
    network.subnets.list.return_value = [named(subnet) for subnet in subnets]
    nic = Mock(id="/subscriptions/sub/resourceGroups/rg/providers/Microsoft.Network/networkInterfaces/pe-nic")
    endpoint = named("pe", network_interfaces=[nic])
    network.private_endpoints.begin_create_or_update.return_value.result.return_value = endpoint
    network.network_interfaces.get.return_value = Mock(ip_configurations=[Mock(private_ip_address="10.0.0.5")])
    return network


def internal_config(internal=None):
    return AzureConfig(
        account_name="acct",
        container="c",
        network_access=AzureNetworkAccess(type="Internal", internal=internal),
    )


class TestAzurePrivateAccess:
    """Test cases for serving the account through a private endpoint."""

    @pytest.fixture
    def existing_container(self):
        container = MagicMock()
        container.exists.return_value = True
        return container

    def make_public_client(self):
        storage_client = make_storage_client(name_available=False)
        storage_client.storage_accounts.get_properties.return_value = Mock(public_network_access="Enabled")
        return storage_client

    def test_network_access_keys(self):
        data = {
            "accountName": "acct",
            "networkAccess": {
                "type": "Internal",
                "internal": {"vnetName": "vnet", "privateEndpointName": "pe"},
            },
        }

        config = AzureConfig.from_dict(data)

        assert config.network_access.internal.vnet_name == "vnet"
        assert config.to_dict() == data

    def test_internal_access_creates_private_endpoint(self, azure_listers, existing_container):
        network = make_network()
        dns = MagicMock()
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers,
            internal_config(),
            storage_client=self.make_public_client(),
            container=existing_container,
            network=network,
            dns=dns,
        )

        driver.create_storage(cr)

        internal = cr.spec.azure.network_access.internal
        assert internal.private_endpoint_name.startswith("imageregistrytestab")
        assert internal.vnet_name == "cluster-vnet"
        assert internal.subnet_name == "worker-subnet"
        assert cr.status.storage.azure.network_access.internal.private_endpoint_name == internal.private_endpoint_name

        args = network.private_endpoints.begin_create_or_update.call_args.args
        assert args[0] == "rg"
        assert args[1] == internal.private_endpoint_name
        assert args[2].subnet.id.endswith("/virtualNetworks/cluster-vnet/subnets/worker-subnet")
        assert args[2].private_link_service_connections[0].group_ids == ["blob"]
        assert args[2].private_link_service_connections[0].private_link_service_id.endswith(
            "/storageAccounts/acct"
        )

        network.network_interfaces.get.assert_called_once_with("rg", "pe-nic")
        record = dns.record_sets.create_or_update.call_args.args
        assert record[:4] == ("rg", "privatelink.blob.core.windows.net", "A", "acct")
        assert record[4].a_records[0].ipv4_address == "10.0.0.5"
        dns.virtual_network_links.begin_create_or_update.assert_called_once()

        update = storage_client.storage_accounts.update.call_args.args
        assert update[:2] == ("rg", "acct")
        assert update[2].public_network_access == "Disabled"
        assert get_condition(cr.status.conditions, COND_STORAGE_EXISTS)["reason"] == "ContainerExists"

    def test_given_network_details_skip_discovery(self, azure_listers, existing_container):
        network = make_network()
        driver, cr, _, _, _ = make_driver(
            azure_listers,
            internal_config(
                AzureNetworkAccessInternal(
                    network_resource_group_name="net-rg",
                    vnet_name="vnet",
                    subnet_name="subnet",
                    private_endpoint_name="my-endpoint",
                )
            ),
            storage_client=self.make_public_client(),
            container=existing_container,
            network=network,
        )

        driver.create_storage(cr)

        network.virtual_networks.list.assert_not_called()
        network.subnets.list.assert_not_called()
        args = network.private_endpoints.begin_create_or_update.call_args.args
        assert args[1] == "my-endpoint"
        assert args[2].subnet.id == (
            "/subscriptions/sub/resourceGroups/net-rg/providers/Microsoft.Network/virtualNetworks/vnet/subnets/subnet"
        )

    def test_private_account_is_left_alone(self, azure_listers, existing_container):
        storage_client = make_storage_client(name_available=False)
        storage_client.storage_accounts.get_properties.return_value = Mock(public_network_access="Disabled")
        network = make_network()
        driver, cr, _, _, _ = make_driver(
            azure_listers,
            internal_config(),
            storage_client=storage_client,
            container=existing_container,
            network=network,
        )

        driver.create_storage(cr)

        network.private_endpoints.begin_create_or_update.assert_not_called()
        storage_client.storage_accounts.update.assert_not_called()
        assert cr.spec.azure.network_access.internal.private_endpoint_name != ""

    def test_external_access_creates_nothing(self, azure_listers, existing_container):
        network = make_network()
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers,
            AzureConfig(account_name="acct", container="c", network_access=AzureNetworkAccess(type="External")),
            storage_client=self.make_public_client(),
            container=existing_container,
            network=network,
        )

        driver.create_storage(cr)

        network.private_endpoints.begin_create_or_update.assert_not_called()
        storage_client.storage_accounts.update.assert_not_called()

    def test_vnet_discovery_failure(self, azure_listers, existing_container):
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers,
            internal_config(),
            storage_client=self.make_public_client(),
            container=existing_container,
            network=make_network(vnet_tags={}),
        )

        with pytest.raises(Exception, match="unable to process Azure private endpoint"):
            driver.create_storage(cr)

        condition = get_condition(cr.status.conditions, COND_STORAGE_EXISTS)
        assert condition["status"] == "Unknown"
        assert condition["message"].startswith("Unable to process private endpoint")
        storage_client.storage_accounts.update.assert_not_called()
        assert cr.spec.azure.network_access.internal.private_endpoint_name != ""

    def test_removal_deletes_private_endpoint(self, azure_listers):
        network = MagicMock()
        dns = MagicMock()
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers,
            internal_config(AzureNetworkAccessInternal(private_endpoint_name="my-endpoint")),
            network=network,
            dns=dns,
        )
        cr.set_management_state(MANAGEMENT_STATE_MANAGED)

        assert driver.remove_storage(cr) is False

        network.private_endpoints.begin_delete.assert_called_once_with("rg", "my-endpoint")
        dns.record_sets.delete.assert_called_once_with("rg", "privatelink.blob.core.windows.net", "A", "acct")
        dns.virtual_network_links.begin_delete.assert_called_once_with(
            "rg", "privatelink.blob.core.windows.net", "acct"
        )
        storage_client.storage_accounts.delete.assert_called_once_with("rg", "acct")
        assert cr.spec.azure.network_access is None

    def test_removal_tolerates_missing_endpoint(self, azure_listers):
        network = MagicMock()
        network.private_endpoints.begin_delete.side_effect = ResourceNotFoundError(message="gone")
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers,
            internal_config(AzureNetworkAccessInternal(private_endpoint_name="my-endpoint")),
            network=network,
        )
        cr.set_management_state(MANAGEMENT_STATE_MANAGED)

        driver.remove_storage(cr)

        storage_client.storage_accounts.delete.assert_called_once_with("rg", "acct")

    def test_removal_failure_keeps_account(self, azure_listers):
        network = MagicMock()
        network.private_endpoints.begin_delete.side_effect = HttpResponseError(message="busy")
        driver, cr, storage_client, _, _ = make_driver(
            azure_listers,
            internal_config(AzureNetworkAccessInternal(private_endpoint_name="my-endpoint")),
            network=network,
        )
        cr.set_management_state(MANAGEMENT_STATE_MANAGED)

        with pytest.raises(Exception, match="unable to delete Azure private endpoint"):
            driver.remove_storage(cr)

        storage_client.storage_accounts.delete.assert_not_called()
        condition = get_condition(cr.status.conditions, COND_STORAGE_EXISTS)
        assert condition["message"].startswith("Unable to delete private endpoint")


class TestPrimaryKeyCache:
    """Test cases for the per-driver account key cache."""

    def test_key_is_cached_until_expiry(self, azure_listers):
        now = [0.0]
        driver, _, storage_client, _, _ = make_driver(
            azure_listers, AzureConfig(account_name="acct", container="c"), clock=lambda: now[0]
        )

        assert driver.primary_key() == "primary-key"
        assert driver.primary_key() == "primary-key"
        assert storage_client.storage_accounts.list_keys.call_count == 1

        now[0] = 301.0
        driver.primary_key()
        assert storage_client.storage_accounts.list_keys.call_count == 2

    def test_cache_is_scoped_to_driver_instance(self, azure_listers):
        config = AzureConfig(account_name="acct", container="c")
        first, _, first_client, _, _ = make_driver(azure_listers, config)
        second, _, second_client, _, _ = make_driver(
            azure_listers, AzureConfig(account_name="acct", container="c"),
            storage_client=make_storage_client(key="other-key"),
        )

        assert first.primary_key() == "primary-key"
        assert second.primary_key() == "other-key"
        assert first_client.storage_accounts.list_keys.call_count == 1
        assert second_client.storage_accounts.list_keys.call_count == 1
