"""Constants for the Registry Storage Operator."""

import os

# API Group
API_GROUP = "imageregistry.operator.openshift.io"
API_VERSION = "v1"
CONFIG_PLURAL = "configs"

# Infrastructure
INFRA_GROUP = "config.openshift.io"
INFRA_VERSION = "v1"
INFRA_PLURAL = "infrastructures"
INFRA_NAME = "cluster"

# Resource Kinds
KIND_CONFIG = "Config"

# Controller name used in structured logs
CONTROLLER_NAME = "registry-storage-operator"

# Namespaces
OPERATOR_NAMESPACE = os.getenv("OPERATOR_NAMESPACE", "openshift-image-registry")
OPENSHIFT_CONFIG_NAMESPACE = "openshift-config"
OPENSHIFT_CONFIG_MANAGED_NAMESPACE = "openshift-config-managed"

# Secrets
USER_SECRET_NAME = "image-registry-private-configuration-user"
CLUSTER_SECRET_NAME = "installer-cloud-credentials"
PRIVATE_CONFIG_SECRET_NAME = "image-registry-private-configuration"

# Config maps
KUBE_CLOUD_CONFIG_NAME = "kube-cloud-config"
CLOUD_PROVIDER_CONFIG_NAME = "cloud-provider-config"
TRUSTED_CA_KEY = "ca-bundle.crt"
CLOUD_CA_KEY = "ca-bundle.pem"

# Naming
IMAGE_REGISTRY_NAME = "image-registry"
STORAGE_NAME_MAX_LENGTH = 62
AZURE_ACCOUNT_NAME_PREFIX = "imageregistry"
AZURE_ACCOUNT_NAME_MAX_LENGTH = 24
AZURE_ACCOUNT_NAME_RANDOM_LENGTH = 5
MAX_CREATE_ATTEMPTS = 5000

# Credential polling
CLUSTER_SECRET_POLL_INTERVAL_SECONDS = 1.0
CLUSTER_SECRET_POLL_TIMEOUT_SECONDS = 300.0

# Management states
MANAGEMENT_STATE_MANAGED = "Managed"
MANAGEMENT_STATE_UNMANAGED = "Unmanaged"
MANAGEMENT_STATE_REMOVED = "Removed"

# Condition Types
COND_STORAGE_EXISTS = "StorageExists"
COND_STORAGE_TAGGED = "StorageTagged"
COND_STORAGE_LABELED = "StorageLabeled"
COND_STORAGE_ENCRYPTED = "StorageEncrypted"
COND_STORAGE_PUBLIC_ACCESS_BLOCKED = "StoragePublicAccessBlocked"
COND_STORAGE_INCOMPLETE_UPLOAD_CLEANUP = "StorageIncompleteUploadCleanupEnabled"

# Condition statuses
STATUS_TRUE = "True"
STATUS_FALSE = "False"
STATUS_UNKNOWN = "Unknown"

# Shared condition reasons
REASON_STORAGE_NOT_CONFIGURED = "StorageNotConfigured"
REASON_CONFIG_ERROR = "ConfigError"
REASON_UNKNOWN_ERROR = "Unknown Error Occurred"
REASON_CONFIGURATION_CHANGED = "Configuration Changed"
REASON_CREATION_SUCCESSFUL = "Creation Successful"
REASON_USER_MANAGED = "UserManaged"
REASON_ACCESS_DENIED = "Unable to Access Bucket"
REASON_STORAGE_DELETED = "Storage Deleted"
REASON_WAIT_TIMEOUT = "Timeout Waiting For Storage"

# Registry environment
ENV_REGISTRY_STORAGE = "REGISTRY_STORAGE"
ENV_REGISTRY_MIDDLEWARE_STORAGE = "REGISTRY_MIDDLEWARE_STORAGE"

# Mount paths
CLOUD_CREDENTIALS_MOUNT_PATH = "/var/run/secrets/cloud"
CLOUD_CREDENTIALS_PATH = f"{CLOUD_CREDENTIALS_MOUNT_PATH}/credentials"
CLOUDFRONT_MOUNT_PATH = "/etc/docker/cloudfront"
CLOUDFRONT_PRIVATE_KEY_PATH = f"{CLOUDFRONT_MOUNT_PATH}/private.pem"
GCS_KEYFILE_MOUNT_PATH = "/gcs"
GCS_KEYFILE_PATH = f"{GCS_KEYFILE_MOUNT_PATH}/keyfile"
FILESYSTEM_ROOT_DIRECTORY = "/registry"

# Volume names
VOLUME_CLOUD_CREDENTIALS = "registry-cloud-credentials"
VOLUME_CLOUDFRONT = "registry-cloudfront"
VOLUME_GCS_KEYFILE = "registry-storage-keyfile"
VOLUME_REGISTRY_STORAGE = "registry-storage"

# Platform types
PLATFORM_AWS = "AWS"
PLATFORM_AZURE = "Azure"
PLATFORM_GCP = "GCP"
PLATFORM_OPENSTACK = "OpenStack"
PLATFORM_BAREMETAL = "BareMetal"
PLATFORM_OVIRT = "oVirt"
PLATFORM_VSPHERE = "VSphere"
PLATFORM_NONE = "None"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_STORAGE_CREATED = "StorageCreated"
EVENT_REASON_STORAGE_ADOPTED = "StorageAdopted"
EVENT_REASON_STORAGE_REMOVED = "StorageRemoved"
EVENT_REASON_STORAGE_DRIFT = "StorageConfigurationChanged"
