"""Prometheus metrics for the Registry Storage Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "registry_storage_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "registry_storage_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Storage driver metrics
storage_operations_total = Counter(
    "registry_storage_operator_storage_operations_total",
    "Total number of storage driver operations",
    ["backend", "operation", "result"],
)

drift_detected_total = Counter(
    "registry_storage_operator_drift_detected_total",
    "Total number of storage configuration drift detections",
    ["backend"],
)

# API call metrics
api_call_total = Counter(
    "registry_storage_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "registry_storage_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

# GCS tag binding metrics
tag_binding_total = Counter(
    "registry_storage_operator_tag_binding_total",
    "Total number of GCS tag binding attempts",
    ["result"],
)

# Azure primary key cache metrics
azure_key_cache_total = Counter(
    "registry_storage_operator_azure_key_cache_total",
    "Azure storage account key cache lookups",
    ["result"],
)

# Blob migration metrics
blob_move_total = Counter(
    "registry_storage_operator_blob_move_total",
    "Total number of blob move outcomes",
    ["result"],
)

# Error metrics
error_total = Counter(
    "registry_storage_operator_error_total",
    "Total number of errors",
    ["kind", "error_type"],
)
