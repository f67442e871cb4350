"""Azure Blob storage driver."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from azure.core.exceptions import HttpResponseError, ResourceExistsError, ResourceNotFoundError
from azure.identity import AzureAuthorityHosts, ClientSecretCredential, WorkloadIdentityCredential
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.network.models import (
    PrivateDnsZoneConfig,
    PrivateDnsZoneGroup,
    PrivateEndpoint,
    PrivateLinkServiceConnection,
    Subnet,
)
from azure.mgmt.privatedns import PrivateDnsManagementClient
from azure.mgmt.privatedns.models import ARecord, PrivateZone, RecordSet, SubResource, VirtualNetworkLink
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.storage.models import (
    Sku,
    StorageAccountCheckNameAvailabilityParameters,
    StorageAccountCreateParameters,
    StorageAccountUpdateParameters,
)
from azure.storage.blob import BlobServiceClient

from .. import metrics
from ..builders.envvar import EnvVar
from ..constants import (
    ENV_REGISTRY_STORAGE,
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_UNMANAGED,
    MAX_CREATE_ATTEMPTS,
    REASON_CONFIG_ERROR,
    REASON_STORAGE_NOT_CONFIGURED,
    REASON_USER_MANAGED,
    STATUS_FALSE,
    STATUS_TRUE,
    STATUS_UNKNOWN,
)
from ..listers import StorageListers
from ..models import AzureConfig, AzureNetworkAccessInternal, Infrastructure, RegistryConfig
from ..utils.cache import TTLCache, make_cache_key
from ..utils.errors import ConfigurationError, StorageError, sanitize_exception
from ..utils.naming import generate_account_name, generate_storage_name
from ..utils.secrets import SOURCE_USER, get_value_from_secret, resolve_secret
from .base import BucketDriver, StorageAbsent

logger = logging.getLogger(__name__)

USER_ACCOUNT_KEY = "REGISTRY_STORAGE_AZURE_ACCOUNTKEY"
CLUSTER_SUBSCRIPTION_ID = "azure_subscription_id"
CLUSTER_CLIENT_ID = "azure_client_id"
CLUSTER_CLIENT_SECRET = "azure_client_secret"
CLUSTER_TENANT_ID = "azure_tenant_id"
CLUSTER_RESOURCE_GROUP = "azure_resourcegroup"
CLUSTER_REGION = "azure_region"
CLUSTER_FEDERATED_TOKEN_FILE = "azure_federated_token_file"

PRIMARY_KEY_CACHE_TTL_SECONDS = 300.0

REASON_AZURE_ERROR = "AzureError"
REASON_CONTAINER_NOT_FOUND = "ContainerNotFound"
REASON_CONTAINER_EXISTS = "ContainerExists"
REASON_ACCOUNT_NOT_FOUND = "AccountNotFound"
REASON_ACCOUNT_DELETED = "AccountDeleted"

NETWORK_ACCESS_INTERNAL = "Internal"
PRIVATE_LINK_SUB_RESOURCE = "blob"
PRIVATE_ZONE_LOCATION = "global"
PRIVATE_RECORD_SET_TTL = 10


@dataclass(frozen=True)
class AzureEnvironment:
    """Endpoints of one Azure cloud."""

    name: str
    authority_host: str
    resource_manager_endpoint: str
    storage_endpoint_suffix: str

    @property
    def authority_url(self) -> str:
        return f"https://{self.authority_host}/"

    @property
    def credential_scope(self) -> str:
        return self.resource_manager_endpoint.rstrip("/") + "/.default"


AZURE_ENVIRONMENTS: dict[str, AzureEnvironment] = {
    "AZUREPUBLICCLOUD": AzureEnvironment(
        "AzurePublicCloud",
        AzureAuthorityHosts.AZURE_PUBLIC_CLOUD,
        "https://management.azure.com/",
        "core.windows.net",
    ),
    "AZUREUSGOVERNMENTCLOUD": AzureEnvironment(
        "AzureUSGovernmentCloud",
        AzureAuthorityHosts.AZURE_GOVERNMENT,
        "https://management.usgovcloudapi.net/",
        "core.usgovcloudapi.net",
    ),
    "AZURECHINACLOUD": AzureEnvironment(
        "AzureChinaCloud",
        AzureAuthorityHosts.AZURE_CHINA,
        "https://management.chinacloudapi.cn/",
        "core.chinacloudapi.cn",
    ),
    "AZUREGERMANCLOUD": AzureEnvironment(
        "AzureGermanCloud",
        "login.microsoftonline.de",
        "https://management.microsoftazure.de/",
        "core.cloudapi.de",
    ),
}


def get_environment(cloud_name: str) -> AzureEnvironment:
    """Look up an Azure cloud by name, case-insensitively.

    An empty name selects the public cloud.

    Raises:
        ConfigurationError: If the cloud name is unknown
    """
    if not cloud_name:
        return AZURE_ENVIRONMENTS["AZUREPUBLICCLOUD"]
    try:
        return AZURE_ENVIRONMENTS[cloud_name.upper()]
    except KeyError:
        raise ConfigurationError(f'autorest/azure: There is no cloud environment matching the name "{cloud_name}"')


def load_environment_file(path: str) -> AzureEnvironment:
    """Load a custom cloud (such as Azure Stack Hub) from its JSON description.

    Raises:
        ConfigurationError: If the file cannot be read or misses an endpoint
    """
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"unable to read Azure environment file {path}: {e}") from e

    try:
        authority = data["activeDirectoryEndpoint"]
        return AzureEnvironment(
            name=data.get("name", "AzureStackCloud"),
            authority_host=authority.split("://", 1)[-1].rstrip("/"),
            resource_manager_endpoint=data["resourceManagerEndpoint"],
            storage_endpoint_suffix=data["storageEndpointSuffix"],
        )
    except KeyError as e:
        raise ConfigurationError(f"Azure environment file {path} is missing {e}") from e


@dataclass
class AzureCredentials:
    """Azure access material resolved from the user or cluster secret."""

    subscription_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    tenant_id: str = ""
    resource_group: str = ""
    region: str = ""
    federated_token_file: str = ""
    account_key: str = ""


def get_config(listers: StorageListers, infra: Infrastructure | None = None) -> AzureCredentials:
    """Resolve Azure credentials.

    The user secret only carries an account key. The cluster secret carries a
    service principal or workload identity; its resource group falls back to
    the one recorded on the infrastructure.

    Raises:
        ConfigurationError: If no usable secret exists or a required key is missing
    """
    source, secret = resolve_secret(listers)
    if source == SOURCE_USER:
        key = get_value_from_secret(secret, USER_ACCOUNT_KEY)
        if not key:
            raise ConfigurationError(
                f"the secret {secret.namespace}/{secret.name} has an empty value for {USER_ACCOUNT_KEY}; "
                "the secret should be removed so that the operator can use cluster-wide secrets "
                "or it should contain a valid storage account access key"
            )
        return AzureCredentials(account_key=key)

    creds = AzureCredentials(
        subscription_id=get_value_from_secret(secret, CLUSTER_SUBSCRIPTION_ID),
        client_id=get_value_from_secret(secret, CLUSTER_CLIENT_ID),
        tenant_id=get_value_from_secret(secret, CLUSTER_TENANT_ID),
        resource_group=secret.get(CLUSTER_RESOURCE_GROUP, ""),
        region=get_value_from_secret(secret, CLUSTER_REGION),
        client_secret=secret.get(CLUSTER_CLIENT_SECRET, ""),
        federated_token_file=secret.get(CLUSTER_FEDERATED_TOKEN_FILE, ""),
    )
    if not creds.resource_group:
        infra = infra or listers.get_infrastructure()
        creds.resource_group = infra.azure.get("resourceGroupName", "")
    return creds


def token_credential(creds: AzureCredentials, environment: AzureEnvironment) -> Any:
    """Build the Azure AD credential for a service principal or workload identity.

    Raises:
        ConfigurationError: If neither a client secret nor a federated token is available
    """
    if creds.federated_token_file:
        return WorkloadIdentityCredential(
            tenant_id=creds.tenant_id,
            client_id=creds.client_id,
            token_file_path=creds.federated_token_file,
            authority=environment.authority_host,
        )
    if creds.client_secret:
        return ClientSecretCredential(
            creds.tenant_id,
            creds.client_id,
            creds.client_secret,
            authority=environment.authority_host,
        )
    raise ConfigurationError("Azure credentials need either a client secret or a federated token file")


class AzureDriver(BucketDriver):
    """Provisions an Azure storage account and blob container for the registry."""

    backend = "Azure"
    variant = "azure"
    name_field = "container"
    resource_label = "Container"

    def __init__(
        self,
        config: AzureConfig,
        listers: StorageListers,
        storage_client_factory: Callable[[AzureCredentials, AzureEnvironment], Any] | None = None,
        blob_service_factory: Callable[[str, Any], Any] | None = None,
        network_client_factory: Callable[[AzureCredentials, AzureEnvironment], Any] | None = None,
        dns_client_factory: Callable[[AzureCredentials, AzureEnvironment], Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, listers)
        self._storage_client_factory = storage_client_factory
        self._blob_service_factory = blob_service_factory
        self._network_client_factory = network_client_factory
        self._dns_client_factory = dns_client_factory
        self._storage_client: Any = None
        self._network_client: Any = None
        self._dns_client: Any = None
        self._credentials: AzureCredentials | None = None
        self._key_cache = TTLCache(PRIMARY_KEY_CACHE_TTL_SECONDS, clock=clock)

    def id(self) -> str:
        return self.config.container

    def storage_name(self) -> str:
        # A container is only addressable once its account is known.
        if not self.config.account_name:
            return ""
        return self.config.container

    # Clients ----------------------------------------------------------------

    def credentials(self) -> AzureCredentials:
        if self._credentials is None:
            self._credentials = get_config(self.listers)
        return self._credentials

    def environment(self) -> AzureEnvironment:
        return get_environment(self.config.cloud_name)

    def storage_client(self) -> Any:
        """Return the management plane client owned by this driver instance."""
        if self._storage_client is not None:
            return self._storage_client
        creds = self.credentials()
        environment = self.environment()
        if self._storage_client_factory is not None:
            self._storage_client = self._storage_client_factory(creds, environment)
        else:
            self._storage_client = StorageManagementClient(
                token_credential(creds, environment),
                creds.subscription_id,
                base_url=environment.resource_manager_endpoint,
                credential_scopes=[environment.credential_scope],
            )
        return self._storage_client

    def network_client(self) -> Any:
        if self._network_client is None:
            creds = self.credentials()
            environment = self.environment()
            if self._network_client_factory is not None:
                self._network_client = self._network_client_factory(creds, environment)
            else:
                self._network_client = NetworkManagementClient(
                    token_credential(creds, environment),
                    creds.subscription_id,
                    base_url=environment.resource_manager_endpoint,
                    credential_scopes=[environment.credential_scope],
                )
        return self._network_client

    def dns_client(self) -> Any:
        if self._dns_client is None:
            creds = self.credentials()
            environment = self.environment()
            if self._dns_client_factory is not None:
                self._dns_client = self._dns_client_factory(creds, environment)
            else:
                self._dns_client = PrivateDnsManagementClient(
                    token_credential(creds, environment),
                    creds.subscription_id,
                    base_url=environment.resource_manager_endpoint,
                    credential_scopes=[environment.credential_scope],
                )
        return self._dns_client

    def primary_key(self) -> str:
        """Return the first access key of the storage account, cached for five minutes."""
        creds = self.credentials()
        cache_key = make_cache_key(creds.resource_group, self.config.account_name)
        key = self._key_cache.get(cache_key)
        if key is not None:
            metrics.azure_key_cache_total.labels(result="hit").inc()
            return key

        metrics.azure_key_cache_total.labels(result="miss").inc()
        result = self.storage_client().storage_accounts.list_keys(creds.resource_group, self.config.account_name)
        if not result.keys:
            raise StorageError(f"storage account {self.config.account_name} has no access keys")
        key = result.keys[0].value
        self._key_cache.set(cache_key, key)
        return key

    def blob_service(self) -> Any:
        creds = self.credentials()
        environment = self.environment()
        account_url = f"https://{self.config.account_name}.blob.{environment.storage_endpoint_suffix}"

        key = creds.account_key
        if not key and not creds.federated_token_file:
            key = self.primary_key()
        if key:
            credential: Any = {"account_name": self.config.account_name, "account_key": key}
        else:
            credential = token_credential(creds, environment)

        if self._blob_service_factory is not None:
            return self._blob_service_factory(account_url, credential)
        return BlobServiceClient(account_url=account_url, credential=credential)

    def container_client(self, name: str) -> Any:
        return self.blob_service().get_container_client(name)

    # Workload contract ------------------------------------------------------

    def config_env(self) -> list[EnvVar]:
        creds = self.credentials()

        env = [
            EnvVar(ENV_REGISTRY_STORAGE, "azure"),
            EnvVar("REGISTRY_STORAGE_AZURE_CONTAINER", self.config.container),
            EnvVar("REGISTRY_STORAGE_AZURE_ACCOUNTNAME", self.config.account_name),
        ]

        key = creds.account_key
        if not key and not creds.federated_token_file:
            key = self.primary_key()
        if key:
            env.append(EnvVar(USER_ACCOUNT_KEY, key, secret=True))

        if creds.federated_token_file:
            env.extend(
                [
                    EnvVar("AZURE_CLIENT_ID", creds.client_id),
                    EnvVar("AZURE_TENANT_ID", creds.tenant_id),
                    EnvVar("AZURE_FEDERATED_TOKEN_FILE", creds.federated_token_file),
                    EnvVar("AZURE_AUTHORITY_HOST", self.environment().authority_url),
                ]
            )

        if self.config.cloud_name:
            env.append(EnvVar("REGISTRY_STORAGE_AZURE_REALM", self.environment().storage_endpoint_suffix))

        return env

    def volumes(self) -> tuple[list[Any], list[Any]]:
        return [], []

    # Exists -----------------------------------------------------------------

    def _check(self, name: str) -> None:
        if not self.container_client(name).exists():
            raise StorageAbsent(REASON_CONTAINER_NOT_FOUND, f"Could not find storage container {name}")

    def storage_exists(self, cr: RegistryConfig) -> bool:
        if not self.config.account_name or not self.config.container:
            self._condition(cr, STATUS_FALSE, REASON_STORAGE_NOT_CONFIGURED, "Storage is not configured")
            return False

        try:
            self.credentials()
        except ConfigurationError as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_CONFIG_ERROR, f"Unable to get configuration: {e}")
            raise

        try:
            self._check(self.config.container)
        except StorageAbsent as e:
            self._condition(cr, STATUS_FALSE, e.reason, str(e))
            return False
        except Exception as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_AZURE_ERROR, sanitize_exception(e))
            raise

        self._condition(cr, STATUS_TRUE, REASON_CONTAINER_EXISTS, "Storage container exists")
        return True

    # Create -----------------------------------------------------------------

    def create_storage(self, cr: RegistryConfig) -> None:
        """Create or adopt the storage account and container.

        An account key in the user secret means the storage is provisioned by
        the user; nothing is created and the storage is left unmanaged.

        Raises:
            ConfigurationError: If credentials or user-provided settings are incomplete
            StorageError: If the account or container cannot be ensured
        """
        try:
            creds = self.credentials()
        except ConfigurationError as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_CONFIG_ERROR, f"Unable to get configuration: {e}")
            raise

        if creds.account_key:
            self._process_user_provisioned(cr)
            return

        infra = self.listers.get_infrastructure()
        if not self.config.cloud_name and not self.config.account_name:
            self.config.cloud_name = infra.azure.get("cloudName", "")

        try:
            account_created = self._ensure_account(cr, creds, infra)
            container_created = self._ensure_container(infra)
        except ConfigurationError:
            raise
        except Exception as e:
            self._condition(
                cr,
                STATUS_UNKNOWN,
                REASON_AZURE_ERROR,
                f"Unable to process storage account/container: {sanitize_exception(e)}",
            )
            raise StorageError(f"unable to process Azure storage account/container: {e}") from e

        default_state = MANAGEMENT_STATE_MANAGED if account_created or container_created else MANAGEMENT_STATE_UNMANAGED
        cr.adopt_management_state(default_state)
        self._persist(cr)

        try:
            self._ensure_private_access(creds, infra)
        except Exception as e:
            # The endpoint name recorded so far is reused by the next attempt
            self._persist(cr)
            self._condition(
                cr,
                STATUS_UNKNOWN,
                REASON_AZURE_ERROR,
                f"Unable to process private endpoint: {sanitize_exception(e)}",
            )
            raise StorageError(f"unable to process Azure private endpoint: {e}") from e

        self._persist(cr)
        self._condition(cr, STATUS_TRUE, REASON_CONTAINER_EXISTS, "Storage container exists")
        logger.info(f"Azure storage account {self.config.account_name} container {self.config.container} is ready")

    def _process_user_provisioned(self, cr: RegistryConfig) -> None:
        if not self.config.account_name:
            message = "Storage account key is provided, but account name is not specified"
        elif not self.config.container:
            message = "Storage account is provided, but container is not specified"
        else:
            message = ""
        if message:
            self._condition(cr, STATUS_FALSE, REASON_STORAGE_NOT_CONFIGURED, message)
            raise ConfigurationError(message)

        cr.adopt_management_state(MANAGEMENT_STATE_UNMANAGED)
        self._persist(cr)
        self._condition(cr, STATUS_TRUE, REASON_USER_MANAGED, "Storage is managed by the user")

    def _tags(self, infra: Infrastructure) -> dict[str, str]:
        tags = {f"kubernetes.io_cluster.{infra.infrastructure_name}": "owned"}
        for resource_tag in infra.azure.get("resourceTags") or []:
            tags[resource_tag["key"]] = resource_tag["value"]
        return tags

    def _name_available(self, name: str) -> bool:
        result = self.storage_client().storage_accounts.check_name_availability(
            StorageAccountCheckNameAvailabilityParameters(name=name, type="Microsoft.Storage/storageAccounts")
        )
        return bool(result.name_available)

    def _create_account(self, creds: AzureCredentials, name: str, infra: Infrastructure) -> None:
        params = StorageAccountCreateParameters(
            sku=Sku(name="Standard_LRS"),
            kind="StorageV2",
            location=creds.region,
            tags=self._tags(infra),
            enable_https_traffic_only=True,
            allow_blob_public_access=False,
            minimum_tls_version="TLS1_2",
        )
        if creds.federated_token_file:
            params.allow_shared_key_access = False
        self.storage_client().storage_accounts.begin_create(creds.resource_group, name, params).result()
        logger.info(f"Created Azure storage account {name} in resource group {creds.resource_group}")

    def _ensure_account(self, cr: RegistryConfig, creds: AzureCredentials, infra: Infrastructure) -> bool:
        """Make sure the storage account exists. Returns True if it was created."""
        if self.config.account_name:
            if not self._name_available(self.config.account_name):
                return False
            self._create_account(creds, self.config.account_name, infra)
            return True

        for _ in range(MAX_CREATE_ATTEMPTS):
            name = generate_account_name(infra.infrastructure_name)
            if not self._name_available(name):
                logger.info(f"Azure storage account name {name} is not available, generating a new one")
                continue
            self._create_account(creds, name, infra)
            self.config.account_name = name
            # Record the account before touching the container so it is never orphaned.
            self._persist(cr)
            return True

        raise StorageError("create storage account failed, name not available")

    def _ensure_container(self, infra: Infrastructure) -> bool:
        """Make sure the blob container exists. Returns True if it was created."""
        if self.config.container:
            container = self.container_client(self.config.container)
            if container.exists():
                return False
            container.create_container()
            return True

        for _ in range(MAX_CREATE_ATTEMPTS):
            name = generate_storage_name(infra.infrastructure_name)
            try:
                self.container_client(name).create_container()
            except ResourceExistsError:
                continue
            self.config.container = name
            return True

        raise StorageError("unable to generate a unique Azure container name")

    # Private network access -------------------------------------------------

    def _private_zone_name(self) -> str:
        return f"privatelink.blob.{self.environment().storage_endpoint_suffix}"

    def _account_is_private(self, resource_group: str, account: str) -> bool:
        try:
            properties = self.storage_client().storage_accounts.get_properties(resource_group, account)
        except HttpResponseError:
            return False
        return getattr(properties, "public_network_access", None) == "Disabled"

    def _discover_vnet(self, resource_group: str, infra: Infrastructure) -> str:
        tag_key = f"kubernetes.io_cluster.{infra.infrastructure_name}"
        for vnet in self.network_client().virtual_networks.list(resource_group):
            if (vnet.tags or {}).get(tag_key) in ("owned", "shared"):
                return vnet.name
        raise StorageError(
            f"failed to discover vnet name, please provide network details manually: "
            f"no vnet tagged {tag_key} in resource group {resource_group}"
        )

    def _discover_subnet(self, resource_group: str, vnet_name: str) -> str:
        # Any subnet of the cluster vnet can reach the endpoint
        for subnet in self.network_client().subnets.list(resource_group, vnet_name):
            return subnet.name
        raise StorageError(
            f'failed to discover subnet name, please provide network details manually: no subnets found on vnet "{vnet_name}"'
        )

    def _create_private_endpoint(
        self,
        creds: AzureCredentials,
        network_resource_group: str,
        internal: AzureNetworkAccessInternal,
        infra: Infrastructure,
    ) -> Any:
        subscription = creds.subscription_id
        name = internal.private_endpoint_name
        subnet_id = (
            f"/subscriptions/{subscription}/resourceGroups/{network_resource_group}"
            f"/providers/Microsoft.Network/virtualNetworks/{internal.vnet_name}/subnets/{internal.subnet_name}"
        )
        account_id = (
            f"/subscriptions/{subscription}/resourceGroups/{creds.resource_group}"
            f"/providers/Microsoft.Storage/storageAccounts/{self.config.account_name}"
        )
        params = PrivateEndpoint(
            location=creds.region,
            tags=self._tags(infra),
            subnet=Subnet(id=subnet_id),
            custom_network_interface_name=f"{name}-nic",
            private_link_service_connections=[
                PrivateLinkServiceConnection(
                    name=name,
                    private_link_service_id=account_id,
                    group_ids=[PRIVATE_LINK_SUB_RESOURCE],
                )
            ],
        )
        logger.info(f"Configuring private endpoint {name} for storage account {self.config.account_name}")
        return self.network_client().private_endpoints.begin_create_or_update(
            creds.resource_group, name, params
        ).result()

    def _endpoint_address(self, resource_group: str, endpoint: Any) -> str:
        # Azure creates exactly one interface per private endpoint
        nic_name = endpoint.network_interfaces[0].id.rsplit("/", 1)[-1]
        nic = self.network_client().network_interfaces.get(resource_group, nic_name)
        return nic.ip_configurations[0].private_ip_address

    def _configure_private_dns(
        self,
        creds: AzureCredentials,
        endpoint: Any,
        network_resource_group: str,
        vnet_name: str,
        infra: Infrastructure,
    ) -> None:
        """Resolve the account's blob host to the endpoint address inside the vnet."""
        resource_group = creds.resource_group
        account = self.config.account_name
        zone = self._private_zone_name()
        tags = self._tags(infra)
        dns = self.dns_client()

        dns.private_zones.begin_create_or_update(
            resource_group, zone, PrivateZone(location=PRIVATE_ZONE_LOCATION, tags=tags)
        ).result()
        dns.record_sets.create_or_update(
            resource_group,
            zone,
            "A",
            account,
            RecordSet(
                ttl=PRIVATE_RECORD_SET_TTL,
                a_records=[ARecord(ipv4_address=self._endpoint_address(resource_group, endpoint))],
            ),
        )

        group_name = zone.replace(".", "-")
        zone_id = (
            f"/subscriptions/{creds.subscription_id}/resourceGroups/{resource_group}"
            f"/providers/Microsoft.Network/privateDnsZones/{zone}"
        )
        self.network_client().private_dns_zone_groups.begin_create_or_update(
            resource_group,
            endpoint.name,
            group_name,
            PrivateDnsZoneGroup(
                private_dns_zone_configs=[PrivateDnsZoneConfig(name=group_name, private_dns_zone_id=zone_id)]
            ),
        ).result()

        vnet_id = (
            f"/subscriptions/{creds.subscription_id}/resourceGroups/{network_resource_group}"
            f"/providers/Microsoft.Network/virtualNetworks/{vnet_name}"
        )
        try:
            dns.virtual_network_links.begin_create_or_update(
                resource_group,
                zone,
                account,
                VirtualNetworkLink(
                    location=PRIVATE_ZONE_LOCATION,
                    tags=tags,
                    registration_enabled=False,
                    virtual_network=SubResource(id=vnet_id),
                ),
            ).result()
        except HttpResponseError as e:
            if e.error_code != "Conflict":
                raise

    def _ensure_private_access(self, creds: AzureCredentials, infra: Infrastructure) -> None:
        """Serve the storage account only through a private endpoint when Internal access is requested.

        Disabling public network access is the last step, so an account that
        is already private needs nothing else. The endpoint name is recorded
        on the config as soon as the endpoint exists.
        """
        access = self.config.network_access
        if access is None or access.type != NETWORK_ACCESS_INTERNAL:
            return

        internal = access.internal or AzureNetworkAccessInternal()
        access.internal = internal
        if not internal.private_endpoint_name:
            internal.private_endpoint_name = generate_account_name(infra.infrastructure_name)
        network_resource_group = internal.network_resource_group_name or creds.resource_group
        account = self.config.account_name

        if self._account_is_private(creds.resource_group, account):
            return

        if not internal.vnet_name:
            internal.vnet_name = self._discover_vnet(network_resource_group, infra)
        if not internal.subnet_name:
            internal.subnet_name = self._discover_subnet(network_resource_group, internal.vnet_name)

        endpoint = self._create_private_endpoint(creds, network_resource_group, internal, infra)
        self._configure_private_dns(creds, endpoint, network_resource_group, internal.vnet_name, infra)

        logger.info(f"Disabling public network access for storage account {account}")
        self.storage_client().storage_accounts.update(
            creds.resource_group, account, StorageAccountUpdateParameters(public_network_access="Disabled")
        )
        logger.info(
            f"Storage account {account} is now served by private endpoint {internal.private_endpoint_name}, "
            "public network access is disabled"
        )

    def _destroy_private_access(self, creds: AzureCredentials) -> None:
        """Delete the private endpoint and the DNS entries only the registry uses.

        The private zone itself is shared with other components and is kept.
        """
        access = self.config.network_access
        internal = access.internal if access is not None else None
        if internal is None or not internal.private_endpoint_name:
            return

        resource_group = creds.resource_group
        endpoint = internal.private_endpoint_name
        account = self.config.account_name
        zone = self._private_zone_name()
        dns = self.dns_client()
        network = self.network_client()

        steps: list[Callable[[], Any]] = [
            lambda: dns.record_sets.delete(resource_group, zone, "A", account),
            lambda: network.private_dns_zone_groups.begin_delete(
                resource_group, endpoint, zone.replace(".", "-")
            ).result(),
            lambda: dns.virtual_network_links.begin_delete(resource_group, zone, account).result(),
            lambda: network.private_endpoints.begin_delete(resource_group, endpoint).result(),
        ]
        for step in steps:
            try:
                step()
            except ResourceNotFoundError:
                pass

        logger.info(f"Deleted private endpoint {endpoint} of storage account {account}")
        self.config.network_access = None

    # Remove -----------------------------------------------------------------

    def remove_storage(self, cr: RegistryConfig) -> bool:
        """Delete the container and the storage account when the operator owns them.

        Returns:
            Always False, removal completes in one pass

        Raises:
            StorageError: If the container or account cannot be deleted
        """
        if cr.management_state != MANAGEMENT_STATE_MANAGED:
            return False
        if not self.config.account_name:
            self._condition(cr, STATUS_FALSE, REASON_STORAGE_NOT_CONFIGURED, "Storage is not configured")
            return False

        creds = self.credentials()
        accounts = self.storage_client().storage_accounts
        account = self.config.account_name

        try:
            self._destroy_private_access(creds)
        except Exception as e:
            self._condition(
                cr, STATUS_UNKNOWN, REASON_AZURE_ERROR, f"Unable to delete private endpoint: {sanitize_exception(e)}"
            )
            raise StorageError(f"unable to delete Azure private endpoint: {e}") from e

        try:
            accounts.get_properties(creds.resource_group, account)
        except ResourceNotFoundError:
            self._clear(cr)
            self._condition(
                cr, STATUS_FALSE, REASON_ACCOUNT_NOT_FOUND, f"Storage account {account} does not exist"
            )
            return False
        except Exception as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_AZURE_ERROR, sanitize_exception(e))
            raise StorageError(f"unable to get Azure storage account {account}: {e}") from e

        if self.config.container:
            try:
                self.container_client(self.config.container).delete_container()
            except ResourceNotFoundError:
                pass
            except HttpResponseError as e:
                if e.error_code != "AuthorizationPermissionMismatch":
                    self._condition(cr, STATUS_UNKNOWN, REASON_AZURE_ERROR, sanitize_exception(e))
                    raise StorageError(f"unable to delete Azure container {self.config.container}: {e}") from e
                logger.warning(
                    f"Not permitted to delete container {self.config.container}, deleting account {account}"
                )

        try:
            accounts.delete(creds.resource_group, account)
        except ResourceNotFoundError:
            pass
        except Exception as e:
            self._condition(cr, STATUS_FALSE, REASON_AZURE_ERROR, sanitize_exception(e))
            raise StorageError(f"unable to delete Azure storage account {account}: {e}") from e

        self._key_cache.invalidate()
        self._clear(cr)
        self._condition(cr, STATUS_FALSE, REASON_ACCOUNT_DELETED, "Storage account has been deleted")
        logger.info(f"Removed Azure storage account {account}")
        return False

    def _clear(self, cr: RegistryConfig) -> None:
        self.config.account_name = ""
        self.config.container = ""
        self._persist(cr)
