"""Credential acquisition for the administration tools.

These tools only ever authenticate through Entra ID tokens:
- the Azure CLI login of the operator running the tool, or
- a managed identity when running on an automation host.

SECURITY INVARIANTS:
1. Service principal secrets must never be present in the environment
2. AzureCliCredential and ManagedIdentityCredential are the only credential types
3. Every mutation is recorded as a structured audit event
"""

from __future__ import annotations

import logging
import os

from azure.core.credentials import TokenCredential
from azure.identity import AzureCliCredential, ManagedIdentityCredential

from .config import CredentialConfig

logger = logging.getLogger(__name__)

# Environment variables that indicate credential leakage
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = """
SECURITY VIOLATION DETECTED

Detected: {env_var}

This environment variable indicates service principal or password-based
authentication, which is not allowed for these tools.

RESOLUTION:
  1. Remove all credential environment variables
  2. Sign in with 'az login', or run on a host with a managed identity
  3. Grant that identity the required RBAC roles on the target resources
"""


class SecretlessViolationError(Exception):
    """Raised when credential secrets are found in the environment.

    This is a fatal error: no Azure call is made once it is raised.
    """

    pass


def enforce_secretless_architecture() -> None:
    """Refuse to continue when credential secrets are present in the environment.

    Raises:
        SecretlessViolationError: If any credential environment variables detected.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))


def get_credential(config: CredentialConfig | None = None) -> TokenCredential:
    """Get the credential used for every management client.

    Args:
        config: Credential selection. Defaults to the Azure CLI login.

    Returns:
        AzureCliCredential or ManagedIdentityCredential.

    Raises:
        SecretlessViolationError: If credential environment variables detected.
    """
    config = config or CredentialConfig()

    # Always enforce secretless before returning credentials
    enforce_secretless_architecture()

    if not config.use_managed_identity:
        logger.info("Using Azure CLI credential")
        return AzureCliCredential()

    if config.client_id:
        client_id = config.client_id
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": client_id[:8] + "..." if len(client_id) > 8 else client_id},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def log_audit_event(
    event_type: str,
    target_resource: str,
    action: str,
    result: str = "success",
    **details: str,
) -> None:
    """Log a change made to an Azure resource.

    Args:
        event_type: Kind of change (resource_lock, firewall_rule).
        target_resource: Resource the change applies to.
        action: Action performed (create, delete, deprecate).
        result: Outcome of the action (success, or dry_run when nothing was written).
        **details: Additional string fields attached to the record.
    """
    logger.info(
        f"Audit: {event_type} {action} {target_resource}",
        extra={
            "audit": True,
            "event_type": event_type,
            "target_resource": target_resource,
            "action": action,
            "result": result,
            **details,
        },
    )
