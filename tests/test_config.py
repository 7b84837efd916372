"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from azadmin.config import (
    DEFAULT_LOCK_NOTES,
    ConfigurationError,
    CredentialConfig,
    FirewallSyncConfig,
    LockAuditConfig,
)

VALID_SUBSCRIPTION = "12345678-1234-1234-1234-123456789012"


def make_config(**overrides: object) -> FirewallSyncConfig:
    values: dict[str, object] = {
        "subscription_id": VALID_SUBSCRIPTION,
        "sql_server_name": "sql-prod",
        "sql_resource_group": "rg-data",
        "app_service_name": "app-web",
        "app_service_resource_group": "rg-web",
    }
    values.update(overrides)
    return FirewallSyncConfig(**values)  # type: ignore[arg-type]


class TestFirewallSyncConfig:
    """Tests for FirewallSyncConfig."""

    def test_valid_config(self) -> None:
        """Test creating a valid configuration."""
        config = make_config()

        assert config.sql_server_name == "sql-prod"
        assert config.remove_conflicts is False
        assert config.dry_run is False
        assert config.credential.use_managed_identity is False

    def test_missing_sql_server(self) -> None:
        """Test that missing SQL server name raises error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(sql_server_name="")

        assert "SQL_SERVER_NAME" in str(exc_info.value)

    def test_invalid_subscription_id(self) -> None:
        """Test that a non-GUID subscription is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(subscription_id="not-a-guid")

        assert "AZURE_SUBSCRIPTION_ID" in str(exc_info.value)

    def test_uppercase_subscription_id_accepted(self) -> None:
        """Test that GUIDs are matched case-insensitively."""
        config = make_config(subscription_id="ABCDEF12-1234-1234-1234-123456789012")
        assert config.subscription_id.startswith("ABCDEF12")

    def test_sql_server_name_must_be_lowercase(self) -> None:
        """Test that SQL server names follow Azure naming rules."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(sql_server_name="SQL-Prod")

        assert "SQL_SERVER_NAME" in str(exc_info.value)

    def test_resource_group_too_long(self) -> None:
        """Test that resource group names over 90 characters are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(app_service_resource_group="r" * 91)

        assert "APP_SERVICE_RESOURCE_GROUP" in str(exc_info.value)

    def test_resource_group_trailing_period_rejected(self) -> None:
        """Test that resource group names cannot end with a period."""
        with pytest.raises(ConfigurationError):
            make_config(sql_resource_group="rg-data.")

    def test_all_errors_reported_together(self) -> None:
        """Test that every validation problem appears in one error."""
        with pytest.raises(ConfigurationError) as exc_info:
            make_config(sql_server_name="", app_service_name="", sql_resource_group="")

        message = str(exc_info.value)
        assert "SQL_SERVER_NAME" in message
        assert "APP_SERVICE_NAME" in message
        assert "SQL_RESOURCE_GROUP" in message

    def test_from_env(self) -> None:
        """Test loading configuration from environment variables."""
        env = {
            "AZURE_SUBSCRIPTION_ID": VALID_SUBSCRIPTION,
            "SQL_SERVER_NAME": "sql-prod",
            "SQL_RESOURCE_GROUP": "rg-data",
            "APP_SERVICE_NAME": "app-web",
            "APP_SERVICE_RESOURCE_GROUP": "rg-web",
            "REMOVE_CONFLICTS": "true",
            "DRY_RUN": "1",
        }

        with patch.dict(os.environ, env, clear=True):
            config = FirewallSyncConfig.from_env()

        assert config.app_service_name == "app-web"
        assert config.remove_conflicts is True
        assert config.dry_run is True

    def test_from_env_missing_values(self) -> None:
        """Test that an empty environment fails validation."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                FirewallSyncConfig.from_env()

        assert "AZURE_SUBSCRIPTION_ID is required" in str(exc_info.value)


class TestLockAuditConfig:
    """Tests for LockAuditConfig."""

    def test_defaults(self) -> None:
        """Test default lock audit configuration."""
        config = LockAuditConfig()

        assert config.dry_run is False
        assert config.lock_notes == DEFAULT_LOCK_NOTES

    def test_empty_notes_rejected(self) -> None:
        """Test that the lock note cannot be empty."""
        with pytest.raises(ConfigurationError):
            LockAuditConfig(lock_notes="")

    def test_notes_too_long(self) -> None:
        """Test that lock notes over the ARM limit are rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            LockAuditConfig(lock_notes="x" * 513)

        assert "lock_notes" in str(exc_info.value)


class TestCredentialConfig:
    """Tests for CredentialConfig."""

    def test_client_id_requires_managed_identity(self) -> None:
        """Test that a client id without managed identity is rejected."""
        with pytest.raises(ConfigurationError):
            CredentialConfig(client_id="00000000-0000-0000-0000-000000000000")

    def test_user_assigned_identity(self) -> None:
        """Test that a user-assigned managed identity is accepted."""
        config = CredentialConfig(use_managed_identity=True, client_id="abc")
        assert config.client_id == "abc"
