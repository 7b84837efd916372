"""Azure administration CLI (azadmin).

Usage:
    azadmin lock-groups                       # Lock every resource group
    azadmin lock-groups --dry-run             # Report unlocked groups only
    azadmin sync-sql-firewall \\
        --sql-server sql-prod --sql-resource-group rg-data \\
        --app-service app-web --app-service-resource-group rg-web
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from typing import Any

import click

from .config import ConfigurationError, CredentialConfig, FirewallSyncConfig, LockAuditConfig
from .main import run_firewall_sync, run_lock_audit, setup_logging


def credential_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that talks to Azure."""
    func = click.option(
        "--client-id",
        envvar="AZURE_CLIENT_ID",
        help="Client ID of a user-assigned managed identity",
    )(func)
    func = click.option(
        "--managed-identity",
        is_flag=True,
        help="Authenticate with a managed identity instead of the Azure CLI login",
    )(func)
    func = click.option("--log-json", is_flag=True, help="Emit JSON log lines")(func)
    func = click.option("--verbose", "-v", is_flag=True, help="Verbose output")(func)
    return func


def _credential_config(managed_identity: bool, client_id: str | None) -> CredentialConfig:
    # AZURE_CLIENT_ID only matters with a managed identity
    return CredentialConfig(
        use_managed_identity=managed_identity,
        client_id=client_id if managed_identity else None,
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="azadmin")
def cli() -> None:
    """Azure administration tools (azadmin).

    \b
    Commands:
        lock-groups        Add CanNotDelete locks to unprotected resource groups
        sync-sql-firewall  Allow an App Service's outbound IPs on a SQL server
    """
    pass


@cli.command("lock-groups")
@click.option("--dry-run", is_flag=True, help="Report unlocked groups without creating locks")
@credential_options
def lock_groups(
    dry_run: bool,
    verbose: bool,
    log_json: bool,
    managed_identity: bool,
    client_id: str | None,
) -> None:
    """Add a CanNotDelete lock to every resource group that lacks one.

    Walks every subscription visible to the signed-in identity.
    """
    setup_logging(json_output=log_json, verbose=verbose)

    try:
        config = LockAuditConfig(
            dry_run=dry_run,
            credential=_credential_config(managed_identity, client_id),
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    sys.exit(run_lock_audit(config))


@cli.command("sync-sql-firewall")
@click.option("--sql-server", "sql_server", required=True, help="Azure SQL logical server name")
@click.option(
    "--sql-resource-group", "sql_resource_group", required=True, help="SQL server resource group"
)
@click.option("--app-service", "app_service", required=True, help="App Service name")
@click.option(
    "--app-service-resource-group",
    "app_service_resource_group",
    required=True,
    help="App Service resource group",
)
@click.option(
    "--remove-conflicts",
    is_flag=True,
    help="Delete conflicting rules instead of renaming them with a DEP prefix",
)
@click.option(
    "--subscription", "-s", envvar="AZURE_SUBSCRIPTION_ID", help="Azure subscription ID"
)
@click.option("--dry-run", is_flag=True, help="Compute and log the plan without applying it")
@credential_options
def sync_sql_firewall(
    sql_server: str,
    sql_resource_group: str,
    app_service: str,
    app_service_resource_group: str,
    remove_conflicts: bool,
    subscription: str | None,
    dry_run: bool,
    verbose: bool,
    log_json: bool,
    managed_identity: bool,
    client_id: str | None,
) -> None:
    """Reconcile SQL firewall rules with an App Service's outbound IPs.

    \b
    Each outbound IP gets a rule named App-<plan>-<app>-<NN>. Rules that hold
    one of these IPs under another name are removed. Rules that hold one of
    these names with another IP are renamed to DEP<timestamp>-<name>, or
    deleted with --remove-conflicts.
    """
    setup_logging(json_output=log_json, verbose=verbose)

    if not subscription:
        raise click.ClickException(
            "Azure subscription ID required. Set AZURE_SUBSCRIPTION_ID or use --subscription."
        )

    try:
        config = FirewallSyncConfig(
            subscription_id=subscription,
            sql_server_name=sql_server,
            sql_resource_group=sql_resource_group,
            app_service_name=app_service,
            app_service_resource_group=app_service_resource_group,
            remove_conflicts=remove_conflicts,
            dry_run=dry_run,
            credential=_credential_config(managed_identity, client_id),
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    sys.exit(run_firewall_sync(config))


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
