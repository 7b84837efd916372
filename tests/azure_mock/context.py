"""Azure Mock Context for integration testing.

Provides a context manager that patches the Azure SDK classes imported by
azadmin with mock implementations backed by one shared MockResourceState.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any
from unittest import mock

from .credential import MockTokenCredential, create_mock_credential
from .resources import (
    MockLockClient,
    MockResourceClient,
    MockResourceState,
    MockSqlClient,
    MockSubscriptionClient,
)


class MockAzureContext:
    """Context manager for Azure API mocking in integration tests.

    Patches:
    - azadmin.security.AzureCliCredential / ManagedIdentityCredential → MockTokenCredential
    - azadmin.locks SubscriptionClient, ResourceManagementClient, ManagementLockClient
    - azadmin.firewall SqlManagementClient, ResourceManagementClient

    Usage:
        with MockAzureContext() as ctx:
            ctx.state.add_subscription(SUB_ID)
            ctx.state.add_resource_group(SUB_ID, "rg-app")

            LockAuditor(LockAuditConfig()).run()

            assert ctx.state.write_count == 1
    """

    def __init__(self, *, client_id: str | None = None, fail_auth: bool = False) -> None:
        self._client_id = client_id
        self._fail_auth = fail_auth

        # These are set when context is entered
        self._state: MockResourceState | None = None
        self._credential: MockTokenCredential | None = None
        self._patches: list[Any] = []

    @property
    def state(self) -> MockResourceState:
        """Get the mock resource state.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._state is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._state

    @property
    def credential(self) -> MockTokenCredential:
        """Get the mock credential.

        Raises:
            RuntimeError: If accessed outside of context.
        """
        if self._credential is None:
            raise RuntimeError("MockAzureContext must be used as a context manager")
        return self._credential

    def __enter__(self) -> MockAzureContext:
        """Enter the mock context, applying patches."""
        state = MockResourceState()
        self._state = state
        self._credential = create_mock_credential(client_id=self._client_id)

        if self._fail_auth:
            self._credential.set_failure(True, "Simulated authentication failure")

        def subscription_client(credential: Any, **_kwargs: Any) -> MockSubscriptionClient:
            return MockSubscriptionClient(state)

        def resource_client(
            credential: Any, subscription_id: str, **_kwargs: Any
        ) -> MockResourceClient:
            return MockResourceClient(state, subscription_id)

        def lock_client(credential: Any, subscription_id: str, **_kwargs: Any) -> MockLockClient:
            return MockLockClient(state, subscription_id)

        def sql_client(credential: Any, subscription_id: str, **_kwargs: Any) -> MockSqlClient:
            return MockSqlClient(state, subscription_id)

        self._patches = [
            mock.patch("azadmin.security.AzureCliCredential", return_value=self._credential),
            mock.patch("azadmin.security.ManagedIdentityCredential", return_value=self._credential),
            mock.patch("azadmin.locks.SubscriptionClient", side_effect=subscription_client),
            mock.patch("azadmin.locks.ResourceManagementClient", side_effect=resource_client),
            mock.patch("azadmin.locks.ManagementLockClient", side_effect=lock_client),
            mock.patch("azadmin.firewall.ResourceManagementClient", side_effect=resource_client),
            mock.patch("azadmin.firewall.SqlManagementClient", side_effect=sql_client),
        ]

        for patch in self._patches:
            patch.start()

        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the mock context, removing patches."""
        for patch in reversed(self._patches):
            patch.stop()
        self._patches.clear()


@contextmanager
def mock_azure_context(
    *,
    client_id: str | None = None,
    fail_auth: bool = False,
) -> Generator[MockAzureContext, None, None]:
    """Convenience function for creating a mock Azure context."""
    ctx = MockAzureContext(client_id=client_id, fail_auth=fail_auth)
    with ctx:
        yield ctx
