"""Storage resource name generation."""

from __future__ import annotations

import random
import re
import string

from ..constants import (
    AZURE_ACCOUNT_NAME_MAX_LENGTH,
    AZURE_ACCOUNT_NAME_PREFIX,
    AZURE_ACCOUNT_NAME_RANDOM_LENGTH,
    IMAGE_REGISTRY_NAME,
    STORAGE_NAME_MAX_LENGTH,
)

_MULTI_DASHES = re.compile(r"-{2,}")
_NON_ALPHANUMERIC = re.compile(r"[^0-9A-Za-z]")


def _random_letters(length: int) -> str:
    return "".join(random.choice(string.ascii_lowercase) for _ in range(length))


def generate_storage_name(
    infra_name: str,
    *extra: str,
    max_length: int = STORAGE_NAME_MAX_LENGTH,
) -> str:
    """Generate a unique name for the storage medium the registry will use.

    The name is ``<infra>-image-registry[-<extra>...]`` lowercased with
    repeated dashes collapsed. Shorter names are padded with a dash and random
    letters up to ``max_length``; longer names are truncated. Each call draws
    fresh randomness.

    Args:
        infra_name: Cluster infrastructure name
        *extra: Additional name parts, empty parts are skipped
        max_length: Maximum length accepted by the backend

    Returns:
        Generated name of exactly ``max_length`` characters
    """
    parts = [infra_name, IMAGE_REGISTRY_NAME]
    parts.extend(part for part in extra if part)

    name = _MULTI_DASHES.sub("-", "-".join(parts).lower())

    if len(name) < max_length:
        name = name.rstrip("-") + "-"
        name += _random_letters(max_length - len(name))
    name = name[:max_length]
    if name.endswith("-"):
        name = name[:-1] + _random_letters(1)

    return name


def generate_account_name(infra_name: str) -> str:
    """Generate an Azure storage account name.

    Storage account names are 3-24 lowercase alphanumerics, globally unique.
    """
    prefix = AZURE_ACCOUNT_NAME_PREFIX + _NON_ALPHANUMERIC.sub("", infra_name)
    prefix = prefix[: AZURE_ACCOUNT_NAME_MAX_LENGTH - AZURE_ACCOUNT_NAME_RANDOM_LENGTH]
    suffix = "".join(
        random.choice(string.ascii_lowercase + string.digits)
        for _ in range(AZURE_ACCOUNT_NAME_RANDOM_LENGTH)
    )
    return (prefix + suffix).lower()
