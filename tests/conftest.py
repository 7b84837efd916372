"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from azadmin.config import FirewallSyncConfig  # noqa: E402

SUBSCRIPTION_ID = "12345678-1234-1234-1234-123456789012"
SQL_RESOURCE_GROUP = "rg-data"
SQL_SERVER = "sql-prod"
APP_RESOURCE_GROUP = "rg-web"
APP_SERVICE = "App1"
PLAN_NAME = "Plan1"


@pytest.fixture
def firewall_config() -> FirewallSyncConfig:
    """A valid reconciler configuration pointing at the mock resources."""
    return FirewallSyncConfig(
        subscription_id=SUBSCRIPTION_ID,
        sql_server_name=SQL_SERVER,
        sql_resource_group=SQL_RESOURCE_GROUP,
        app_service_name=APP_SERVICE,
        app_service_resource_group=APP_RESOURCE_GROUP,
    )
