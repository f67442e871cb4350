"""Binding user-defined GCP resource tags to storage buckets."""

from __future__ import annotations

import logging
from typing import Any

from google.api_core import exceptions
from google.api_core import retry as retries
from google.cloud import resourcemanager_v3

from .. import metrics
from ..models import Infrastructure
from ..utils.errors import AggregateError, OperationError
from ..utils.rate_limit import TokenBucketLimiter

logger = logging.getLogger(__name__)

SUCCESS_REASON = "SuccessTaggingBucket"
FAILURE_REASON = "ErrorTaggingBucket"

# A resource can carry at most this many tags
MAX_TAGS_PER_RESOURCE = 50

# The API allows 600 requests per minute
REQUEST_RATE_LIMIT = 8
REQUEST_BURST = 8

RESOURCE_MANAGER_HOST = "cloudresourcemanager.googleapis.com"
BUCKET_PARENT_FORMAT = "//storage.googleapis.com/projects/_/buckets/{}"

# Tags are not supported for buckets in these regions
UNSUPPORTED_REGIONS = frozenset({"us-east2", "us-east3"})

# 429 responses are retried for at most five minutes
CREATE_RETRY_TIMEOUT_SECONDS = 300.0

CREATE_RETRY = retries.Retry(
    predicate=retries.if_exception_type(exceptions.TooManyRequests),
    initial=90.0,
    maximum=300.0,
    multiplier=2.0,
    timeout=CREATE_RETRY_TIMEOUT_SECONDS,
)


def bucket_parent(bucket: str) -> str:
    return BUCKET_PARENT_FORMAT.format(bucket)


def desired_tags(infra: Infrastructure) -> list[str]:
    """Return the infrastructure resource tags as ``parentID/key/value`` names."""
    tags = infra.gcp.get("resourceTags") or []
    return [f"{tag['parentID']}/{tag['key']}/{tag['value']}" for tag in tags]


def tag_bindings_client(credentials: Any, location: str) -> resourcemanager_v3.TagBindingsClient:
    """Create a tag bindings client for the regional resource manager endpoint."""
    return resourcemanager_v3.TagBindingsClient(
        credentials=credentials,
        transport="rest",
        client_options={"api_endpoint": f"https://{location}-{RESOURCE_MANAGER_HOST}"},
    )


class TagBinder:
    """Attaches tag values to one resource, skipping those already effective on it."""

    def __init__(self, client: Any, limiter: TokenBucketLimiter | None = None) -> None:
        self.client = client
        self.limiter = limiter or TokenBucketLimiter(REQUEST_RATE_LIMIT, REQUEST_BURST, drained=True)

    def effective_tags(self, parent: str) -> set[str]:
        """List tags effective on the resource, including inherited ones.

        Listing is an optimization only: an error ends the listing and
        whatever was collected so far is returned.
        """
        found: set[str] = set()
        try:
            pager = self.client.list_effective_tags(request={"parent": parent})
            for i, tag in enumerate(pager):
                if i >= MAX_TAGS_PER_RESOURCE:
                    break
                found.add(tag.namespaced_tag_value)
        except exceptions.GoogleAPICallError as e:
            logger.debug(f"Failed to list effective tags on {parent}: {e}")
        return found

    def filter_tags(self, parent: str, tags: list[str]) -> list[str]:
        """Drop the tags that are already effective on the resource."""
        existing = self.effective_tags(parent)
        filtered = []
        for tag in tags:
            if tag in existing:
                logger.debug(f"Skipping tag {tag}, it already exists on {parent}")
                continue
            if tag not in filtered:
                filtered.append(tag)
        return filtered

    def bind(self, parent: str, tags: list[str]) -> None:
        """Create one binding per tag value.

        Every tag is attempted; failures are collected.

        Raises:
            AggregateError: If any binding failed
        """
        errors: list[OperationError] = []
        for value in self.filter_tags(parent, tags):
            try:
                self.limiter.wait(timeout=CREATE_RETRY_TIMEOUT_SECONDS)
            except TimeoutError as e:
                logger.error(f"Rate limiting request to add {value} tag to {parent} failed: {e}")
                errors.append(OperationError("rate_limit", value, e))
                metrics.tag_binding_total.labels(result="error").inc()
                continue

            request = {"tag_binding": {"parent": parent, "tag_value_namespaced_name": value}}
            try:
                operation = self.client.create_tag_binding(request=request, retry=CREATE_RETRY)
                operation.result()
            except exceptions.Conflict:
                logger.info(f"Tag binding {value} already exists on {parent}")
                metrics.tag_binding_total.labels(result="exists").inc()
                continue
            except exceptions.GoogleAPIError as e:
                logger.error(f"Request to add {value} tag to {parent} failed: {e}")
                errors.append(OperationError("create_tag_binding", value, e))
                metrics.tag_binding_total.labels(result="error").inc()
                continue

            logger.info(f"Binding tag {value} to {parent} successful")
            metrics.tag_binding_total.labels(result="success").inc()

        if errors:
            raise AggregateError(f"failed to add tag(s) to {parent} resource", errors)


def add_tags_to_bucket(binder_factory: Any, infra: Infrastructure, bucket: str, region: str) -> None:
    """Bind the infrastructure resource tags to a bucket.

    Args:
        binder_factory: Callable taking the bucket location and returning a TagBinder
        infra: Cluster infrastructure
        bucket: Bucket name
        region: Bucket location

    Raises:
        AggregateError: If any tag could not be bound
    """
    if region.lower() in UNSUPPORTED_REGIONS:
        logger.info(f"Skip tagging bucket {bucket} created in tags unsupported region {region}")
        return

    tags = desired_tags(infra)
    if not tags:
        logger.debug(f"No user-defined tags to add to bucket {bucket}")
        return

    binder_factory(region).bind(bucket_parent(bucket), tags)
