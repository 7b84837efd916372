"""Azure API Mock for Integration Testing.

In-memory implementations of the Azure management clients used by azadmin,
so the lock auditor and firewall reconciler can be exercised end to end
without Azure connectivity.

Key Features:
- Shared in-memory state for subscriptions, groups, locks, sites and firewall rules
- Recording of every write call for idempotence assertions
- Error injection per operation for failure scenarios

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext() as ctx:
        ctx.state.add_firewall_rule("rg-data", "sql-prod", "Legacy", "1.2.3.4")
        FirewallReconciler(config).run()
        assert "Legacy" not in ctx.state.firewall_rules_for("rg-data", "sql-prod")
"""

from .context import MockAzureContext, mock_azure_context
from .credential import MockTokenCredential, create_mock_credential
from .resources import MockResourceState

__all__ = [
    "MockAzureContext",
    "MockResourceState",
    "MockTokenCredential",
    "create_mock_credential",
    "mock_azure_context",
]
