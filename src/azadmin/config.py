"""Configuration management with validation.

Inputs are validated at load time so that a bad resource name or
subscription id fails before any Azure API call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Lock auditor constants
DELETE_LOCK_LEVEL = "CanNotDelete"
DELETE_LOCK_NAME_SUFFIX = "-delete"
DEFAULT_LOCK_NOTES = "Protects the resource group from accidental deletion."
MAX_LOCK_NOTES_LENGTH = 512

# Firewall reconciler constants
RULE_NAME_PREFIX = "App"
RULE_SEQUENCE_WIDTH = 2
DEPRECATED_RULE_PREFIX = "DEP"
# Two-digit year, month, day, second
DEPRECATED_TIMESTAMP_FORMAT = "%y%m%d%S"

# Azure naming bounds
MAX_RESOURCE_GROUP_NAME_LENGTH = 90
MAX_SQL_SERVER_NAME_LENGTH = 63
MAX_APP_SERVICE_NAME_LENGTH = 60

# Input validation patterns
VALID_SUBSCRIPTION_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w._()]+$"
VALID_SQL_SERVER_PATTERN = r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$"
VALID_APP_SERVICE_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9-]*$"


def _get_bool(key: str, default: bool) -> bool:
    value = os.environ.get(key, "").lower()
    if not value:
        return default
    return value in ("true", "1", "yes")


def _validate_resource_group(label: str, value: str, errors: list[str]) -> None:
    if not value:
        errors.append(f"{label} is required")
    elif len(value) > MAX_RESOURCE_GROUP_NAME_LENGTH:
        errors.append(f"{label} exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}")
    elif not re.match(VALID_RESOURCE_GROUP_PATTERN, value) or value.endswith("."):
        errors.append(f"{label} is not a valid resource group name: {value}")


@dataclass(frozen=True)
class CredentialConfig:
    """How the tools authenticate against Azure.

    The default is the Azure CLI login of the operator running the tool.
    Automation hosts can switch to a managed identity, optionally a
    user-assigned one selected by client id.
    """

    use_managed_identity: bool = False
    client_id: str | None = None

    def __post_init__(self) -> None:
        if self.client_id and not self.use_managed_identity:
            raise ConfigurationError(
                "Configuration validation failed:\n"
                "  - client_id requires use_managed_identity"
            )


@dataclass(frozen=True)
class LockAuditConfig:
    """Configuration for the resource group lock auditor."""

    dry_run: bool = False
    lock_notes: str = DEFAULT_LOCK_NOTES
    credential: CredentialConfig = field(default_factory=CredentialConfig)

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.lock_notes:
            errors.append("lock_notes must not be empty")
        elif len(self.lock_notes) > MAX_LOCK_NOTES_LENGTH:
            errors.append(f"lock_notes exceeds maximum length of {MAX_LOCK_NOTES_LENGTH}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)


@dataclass(frozen=True)
class FirewallSyncConfig:
    """Configuration for the SQL firewall reconciler.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError listing every problem found.
    """

    # Required fields
    subscription_id: str
    sql_server_name: str
    sql_resource_group: str
    app_service_name: str
    app_service_resource_group: str

    # Behavior
    remove_conflicts: bool = False
    dry_run: bool = False

    credential: CredentialConfig = field(default_factory=CredentialConfig)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_SUBSCRIPTION_ID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if not self.sql_server_name:
            errors.append("SQL_SERVER_NAME is required")
        elif len(self.sql_server_name) > MAX_SQL_SERVER_NAME_LENGTH:
            errors.append(f"SQL_SERVER_NAME exceeds maximum length of {MAX_SQL_SERVER_NAME_LENGTH}")
        elif not re.match(VALID_SQL_SERVER_PATTERN, self.sql_server_name):
            errors.append(
                f"SQL_SERVER_NAME must match pattern {VALID_SQL_SERVER_PATTERN}: "
                f"{self.sql_server_name}"
            )

        if not self.app_service_name:
            errors.append("APP_SERVICE_NAME is required")
        elif len(self.app_service_name) > MAX_APP_SERVICE_NAME_LENGTH:
            errors.append(
                f"APP_SERVICE_NAME exceeds maximum length of {MAX_APP_SERVICE_NAME_LENGTH}"
            )
        elif not re.match(VALID_APP_SERVICE_PATTERN, self.app_service_name):
            errors.append(
                f"APP_SERVICE_NAME must match pattern {VALID_APP_SERVICE_PATTERN}: "
                f"{self.app_service_name}"
            )

        _validate_resource_group("SQL_RESOURCE_GROUP", self.sql_resource_group, errors)
        _validate_resource_group(
            "APP_SERVICE_RESOURCE_GROUP", self.app_service_resource_group, errors
        )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> FirewallSyncConfig:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Subscription holding the SQL server and App Service
            SQL_SERVER_NAME: Azure SQL logical server whose firewall is reconciled
            SQL_RESOURCE_GROUP: Resource group of the SQL server
            APP_SERVICE_NAME: App Service whose outbound IPs are allowed
            APP_SERVICE_RESOURCE_GROUP: Resource group of the App Service
            REMOVE_CONFLICTS: If "true", delete conflicting rules instead of
                deprecating them (default: false)
            DRY_RUN: If "true", only compute and log the plan (default: false)
        """
        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            sql_server_name=os.environ.get("SQL_SERVER_NAME", ""),
            sql_resource_group=os.environ.get("SQL_RESOURCE_GROUP", ""),
            app_service_name=os.environ.get("APP_SERVICE_NAME", ""),
            app_service_resource_group=os.environ.get("APP_SERVICE_RESOURCE_GROUP", ""),
            remove_conflicts=_get_bool("REMOVE_CONFLICTS", False),
            dry_run=_get_bool("DRY_RUN", False),
        )
