"""Storage driver contract and the shared provisioning state machine."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from ..builders.envvar import EnvVar
from ..constants import (
    MANAGEMENT_STATE_MANAGED,
    MANAGEMENT_STATE_UNMANAGED,
    MAX_CREATE_ATTEMPTS,
    REASON_ACCESS_DENIED,
    REASON_CONFIGURATION_CHANGED,
    REASON_CREATION_SUCCESSFUL,
    REASON_STORAGE_DELETED,
    REASON_STORAGE_NOT_CONFIGURED,
    REASON_UNKNOWN_ERROR,
    REASON_WAIT_TIMEOUT,
    STATUS_FALSE,
    STATUS_TRUE,
    STATUS_UNKNOWN,
)
from ..listers import StorageListers
from ..models import Infrastructure, RegistryConfig
from ..utils.conditions import set_storage_exists_condition, update_condition
from ..utils.errors import (
    AggregateError,
    OperationError,
    StorageError,
    sanitize_exception,
)
from ..utils.naming import generate_storage_name

logger = logging.getLogger(__name__)


class StorageAbsent(Exception):
    """Raised by existence checks and deletes when the resource does not exist or is not accessible.

    Attributes:
        reason: Short machine token used as the condition reason
    """

    def __init__(self, reason: str, message: str = "") -> None:
        super().__init__(message or reason)
        self.reason = reason


class StorageConflict(Exception):
    """Raised by creates when the name is already taken by someone else."""


class Driver(Protocol):
    """Contract every storage backend implements."""

    def id(self) -> str: ...

    def config_env(self) -> list[EnvVar]: ...

    def volumes(self) -> tuple[list[Any], list[Any]]: ...

    def volume_secrets(self) -> dict[str, str]: ...

    def storage_exists(self, cr: RegistryConfig) -> bool: ...

    def storage_changed(self, cr: RegistryConfig) -> bool: ...

    def create_storage(self, cr: RegistryConfig) -> None: ...

    def remove_storage(self, cr: RegistryConfig) -> bool: ...

    def ca_bundle(self) -> tuple[str, bool]: ...


@dataclass
class HardeningStep:
    """One post-creation configuration step reported as its own condition."""

    condition_type: str
    apply: Callable[[], None]
    success_reason: str
    success_message: str
    failure_reason: str


class BucketDriver:
    """Shared algorithm for backends with a single named bucket or container.

    Subclasses provide the backend strategy: ``_check``, ``_create``,
    ``_wait_until_visible``, ``_hardening_steps``, ``_empty`` and ``_delete``.
    """

    #: Display name, also used in metrics and ids
    backend = ""
    #: Attribute of StorageSpec holding this backend's config
    variant = ""
    #: Attribute of the config holding the resource name
    name_field = "bucket"
    #: Human readable resource kind used in condition text
    resource_label = "Bucket"
    #: Maximum length of generated names
    name_max_length = 62

    def __init__(self, config: Any, listers: StorageListers) -> None:
        self.config = config
        self.listers = listers

    # Identification -------------------------------------------------------

    def id(self) -> str:
        return self.storage_name()

    def storage_name(self) -> str:
        return getattr(self.config, self.name_field) or ""

    def _set_storage_name(self, name: str) -> None:
        setattr(self.config, self.name_field, name)

    # Defaults for the workload contract -----------------------------------

    def volume_secrets(self) -> dict[str, str]:
        return {}

    def ca_bundle(self) -> tuple[str, bool]:
        return "", True

    # Strategy hooks -------------------------------------------------------

    def _check(self, name: str) -> None:
        raise NotImplementedError

    def _create(self, name: str, infra: Infrastructure) -> None:
        raise NotImplementedError

    def _wait_until_visible(self, name: str) -> None:
        """Block until a newly created resource is visible. Raise on timeout."""

    def _wait_until_gone(self, name: str) -> None:
        """Block until a deleted resource is no longer visible."""

    def _hardening_steps(self, cr: RegistryConfig, name: str, infra: Infrastructure) -> list[HardeningStep]:
        return []

    def _empty(self, name: str) -> None:
        raise NotImplementedError

    def _delete(self, name: str) -> None:
        raise NotImplementedError

    def _generate_name(self, infra: Infrastructure) -> str:
        return generate_storage_name(infra.infrastructure_name, max_length=self.name_max_length)

    # Helpers --------------------------------------------------------------

    def _persist(self, cr: RegistryConfig) -> None:
        """Copy the driver config into both spec and status."""
        setattr(cr.spec, self.variant, copy.deepcopy(self.config))
        cr.status.record_applied(self.variant, self.config)

    def _condition(self, cr: RegistryConfig, status: str, reason: str, message: str) -> None:
        set_storage_exists_condition(cr.status.conditions, status, reason, message)

    # Common state machine -------------------------------------------------

    def storage_exists(self, cr: RegistryConfig) -> bool:
        """Check whether the configured resource exists and is accessible.

        Returns:
            True if the resource exists, False if it is absent or not configured

        Raises:
            Exception: Any lookup error other than not-found or forbidden
        """
        name = self.storage_name()
        if not name:
            self._condition(
                cr, STATUS_FALSE, REASON_STORAGE_NOT_CONFIGURED, f"{self.backend} storage is not configured"
            )
            return False

        try:
            self._check(name)
        except StorageAbsent as e:
            self._condition(cr, STATUS_FALSE, e.reason, sanitize_exception(e))
            return False
        except Exception as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise

        self._condition(cr, STATUS_TRUE, f"{self.backend} {self.resource_label} Exists", "")
        return True

    def storage_changed(self, cr: RegistryConfig) -> bool:
        """Report drift between the desired and the last applied configuration."""
        desired = getattr(cr.spec, self.variant)
        applied = getattr(cr.status.storage, self.variant)
        if desired != applied:
            self._condition(
                cr,
                STATUS_UNKNOWN,
                f"{self.backend} {REASON_CONFIGURATION_CHANGED}",
                f"{self.backend} storage is in an unknown state: configuration changed",
            )
            return True
        return False

    def create_storage(self, cr: RegistryConfig) -> None:
        """Create or adopt the storage resource, then harden it when owned.

        Raises:
            StorageError: If the resource cannot be created or configured
        """
        infra = self.listers.get_infrastructure()
        name = self.storage_name()
        created = False

        if name:
            try:
                self._check(name)
                exists = True
            except StorageAbsent:
                exists = False
            except Exception as e:
                self._condition(cr, STATUS_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
                raise StorageError(f"unable to check {self.backend} storage {name}: {e}") from e

            if exists:
                state = cr.adopt_management_state(MANAGEMENT_STATE_UNMANAGED)
                self._persist(cr)
                if state == MANAGEMENT_STATE_MANAGED:
                    self._created_condition(cr)
                else:
                    self._condition(
                        cr,
                        STATUS_TRUE,
                        f"User supplied {self.resource_label.lower()} exists",
                        f"User supplied {self.backend} {self.resource_label.lower()} exists and is accessible",
                    )
            else:
                try:
                    self._create(name, infra)
                except StorageConflict as e:
                    self._condition(cr, STATUS_FALSE, REASON_ACCESS_DENIED, sanitize_exception(e))
                    raise StorageError(
                        f"{self.backend} {self.resource_label.lower()} {name} exists but is not accessible",
                        retryable=False,
                    ) from e
                except Exception as e:
                    self._condition(cr, STATUS_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
                    raise StorageError(f"unable to create {self.backend} storage {name}: {e}") from e
                created = True
        else:
            name = self._create_with_generated_name(cr, infra)
            created = True

        if created:
            self._set_storage_name(name)
            cr.adopt_management_state(MANAGEMENT_STATE_MANAGED)
            self._persist(cr)
            logger.info(f"Created {self.backend} {self.resource_label.lower()} {name}")

            try:
                self._wait_until_visible(name)
            except Exception as e:
                self._condition(cr, STATUS_FALSE, REASON_WAIT_TIMEOUT, sanitize_exception(e))
                raise StorageError(f"{self.backend} storage {name} did not become available: {e}") from e

            self._created_condition(cr)

        if cr.management_state == MANAGEMENT_STATE_MANAGED:
            self._harden(cr, name, infra)

    def _created_condition(self, cr: RegistryConfig) -> None:
        self._condition(
            cr,
            STATUS_TRUE,
            REASON_CREATION_SUCCESSFUL,
            f"{self.backend} {self.resource_label.lower()} was successfully created",
        )

    def _create_with_generated_name(self, cr: RegistryConfig, infra: Infrastructure) -> str:
        for _ in range(MAX_CREATE_ATTEMPTS):
            candidate = self._generate_name(infra)
            try:
                self._create(candidate, infra)
                return candidate
            except StorageConflict:
                logger.info(f"{self.backend} name {candidate} is taken, generating a new one")
                continue
            except Exception as e:
                self._condition(cr, STATUS_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
                raise StorageError(f"unable to create {self.backend} storage: {e}") from e

        message = f"unable to generate a unique {self.backend} {self.resource_label.lower()} name"
        self._condition(cr, STATUS_FALSE, REASON_UNKNOWN_ERROR, message)
        raise StorageError(message)

    def _harden(self, cr: RegistryConfig, name: str, infra: Infrastructure) -> None:
        errors = []
        for step in self._hardening_steps(cr, name, infra):
            try:
                step.apply()
            except Exception as e:
                logger.warning(f"{step.condition_type} step failed for {self.backend} storage {name}: {e}")
                update_condition(
                    cr.status.conditions,
                    step.condition_type,
                    STATUS_FALSE,
                    step.failure_reason,
                    sanitize_exception(e),
                )
                errors.append(OperationError(step.condition_type, name, e))
                continue
            update_condition(
                cr.status.conditions,
                step.condition_type,
                STATUS_TRUE,
                step.success_reason,
                step.success_message,
            )
        if errors:
            raise AggregateError(f"unable to configure {self.backend} storage {name}", errors)

    def remove_storage(self, cr: RegistryConfig) -> bool:
        """Delete the resource if and only if the operator owns it.

        Returns:
            True if the caller should call again to finish removal

        Raises:
            StorageError: If emptying or deleting failed, always retryable
        """
        name = self.storage_name()
        if cr.management_state != MANAGEMENT_STATE_MANAGED or not name:
            return False

        try:
            self._empty(name)
        except StorageAbsent:
            pass
        except Exception as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise StorageError(f"unable to empty {self.backend} storage {name}: {e}") from e

        message = f"{self.backend} {self.resource_label.lower()} has been removed."
        try:
            self._delete(name)
        except StorageAbsent:
            message = f"{self.backend} {self.resource_label.lower()} did not exist."
        except Exception as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise StorageError(f"unable to delete {self.backend} storage {name}: {e}") from e

        try:
            self._wait_until_gone(name)
        except Exception as e:
            self._condition(cr, STATUS_UNKNOWN, REASON_UNKNOWN_ERROR, sanitize_exception(e))
            raise StorageError(f"{self.backend} storage {name} is still present: {e}") from e

        self._set_storage_name("")
        self._persist(cr)
        self._condition(cr, STATUS_FALSE, f"{self.backend} {REASON_STORAGE_DELETED}", message)
        logger.info(f"Removed {self.backend} {self.resource_label.lower()} {name}")
        return False
