"""Delete-protection locks for every resource group the caller can see.

For each subscription, for each resource group: if no lock at level
CanNotDelete exists, create one named <group>-delete. Groups that are
already protected are left untouched, so re-running is a no-op.

Each subscription is handled through an explicit SubscriptionContext that
carries its own clients; nothing depends on a globally selected subscription.
Provider errors are not caught here and stop the run where they occur.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from azure.core.credentials import TokenCredential
from azure.mgmt.resource import ManagementLockClient, ResourceManagementClient, SubscriptionClient
from azure.mgmt.resource.locks.models import ManagementLockObject

from .config import DELETE_LOCK_LEVEL, DELETE_LOCK_NAME_SUFFIX, LockAuditConfig
from .security import get_credential, log_audit_event

logger = logging.getLogger(__name__)

AUDIT_EVENT_TYPE = "resource_lock"


class LockOutcome(str, Enum):
    """Decision taken for one resource group."""

    ALREADY_LOCKED = "AlreadyLocked"
    CREATED = "Created"
    WOULD_CREATE = "WouldCreate"


def delete_lock_name(resource_group: str) -> str:
    return f"{resource_group}{DELETE_LOCK_NAME_SUFFIX}"


def _group_id(context: SubscriptionContext, resource_group: str) -> str:
    return f"/subscriptions/{context.subscription_id}/resourceGroups/{resource_group}"


@dataclass
class SubscriptionContext:
    """A subscription and the clients scoped to it."""

    subscription_id: str
    display_name: str
    resource_client: ResourceManagementClient
    lock_client: ManagementLockClient


@dataclass
class GroupLockResult:
    """Outcome for a single resource group."""

    subscription_id: str
    resource_group: str
    outcome: LockOutcome
    lock_name: str | None = None


@dataclass
class LockAuditResult:
    """Result of a full lock audit pass."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    subscriptions_scanned: int = 0
    groups: list[GroupLockResult] = field(default_factory=list)

    @property
    def groups_checked(self) -> int:
        return len(self.groups)

    @property
    def locks_created(self) -> int:
        return sum(1 for g in self.groups if g.outcome == LockOutcome.CREATED)

    @property
    def already_locked(self) -> int:
        return sum(1 for g in self.groups if g.outcome == LockOutcome.ALREADY_LOCKED)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class LockAuditor:
    """Ensures every visible resource group carries a CanNotDelete lock."""

    def __init__(
        self,
        config: LockAuditConfig,
        credential: TokenCredential | None = None,
    ) -> None:
        """Initialize the auditor.

        Args:
            config: Auditor configuration.
            credential: Credential for the management clients. Resolved from
                config.credential when omitted.
        """
        self._config = config
        self._credential = credential or get_credential(config.credential)
        self._subscription_client = SubscriptionClient(credential=self._credential)

    def subscriptions(self) -> Iterator[SubscriptionContext]:
        """Yield a context for every subscription visible to the credential."""
        for subscription in self._subscription_client.subscriptions.list():
            yield SubscriptionContext(
                subscription_id=subscription.subscription_id,
                display_name=subscription.display_name or subscription.subscription_id,
                resource_client=ResourceManagementClient(
                    credential=self._credential,
                    subscription_id=subscription.subscription_id,
                ),
                lock_client=ManagementLockClient(
                    credential=self._credential,
                    subscription_id=subscription.subscription_id,
                ),
            )

    def resource_groups(self, context: SubscriptionContext) -> Iterator[str]:
        """Yield the names of the resource groups in one subscription."""
        for group in context.resource_client.resource_groups.list():
            yield group.name

    def has_delete_lock(self, context: SubscriptionContext, resource_group: str) -> bool:
        locks = context.lock_client.management_locks.list_at_resource_group_level(resource_group)
        return any(lock.level == DELETE_LOCK_LEVEL for lock in locks)

    def ensure_group_locked(
        self,
        context: SubscriptionContext,
        resource_group: str,
    ) -> GroupLockResult:
        """Create the delete lock on a resource group unless one exists."""
        if self.has_delete_lock(context, resource_group):
            logger.info(
                f"Resource group {resource_group} already has a {DELETE_LOCK_LEVEL} lock",
                extra={"subscription_id": context.subscription_id},
            )
            return GroupLockResult(
                subscription_id=context.subscription_id,
                resource_group=resource_group,
                outcome=LockOutcome.ALREADY_LOCKED,
            )

        lock_name = delete_lock_name(resource_group)

        if self._config.dry_run:
            logger.info(
                f"Dry run - would create lock {lock_name} on {resource_group}",
                extra={"subscription_id": context.subscription_id},
            )
            log_audit_event(
                AUDIT_EVENT_TYPE,
                target_resource=_group_id(context, resource_group),
                action="create",
                result="dry_run",
                lock_name=lock_name,
            )
            return GroupLockResult(
                subscription_id=context.subscription_id,
                resource_group=resource_group,
                outcome=LockOutcome.WOULD_CREATE,
                lock_name=lock_name,
            )

        logger.info(
            f"Creating lock {lock_name} on {resource_group}",
            extra={"subscription_id": context.subscription_id},
        )
        context.lock_client.management_locks.create_or_update_at_resource_group_level(
            resource_group,
            lock_name,
            ManagementLockObject(level=DELETE_LOCK_LEVEL, notes=self._config.lock_notes),
        )
        log_audit_event(
            AUDIT_EVENT_TYPE,
            target_resource=_group_id(context, resource_group),
            action="create",
            lock_name=lock_name,
        )
        return GroupLockResult(
            subscription_id=context.subscription_id,
            resource_group=resource_group,
            outcome=LockOutcome.CREATED,
            lock_name=lock_name,
        )

    def run(self) -> LockAuditResult:
        """Audit every resource group of every visible subscription."""
        result = LockAuditResult()

        for context in self.subscriptions():
            logger.info(
                f"Processing subscription {context.display_name}",
                extra={"subscription_id": context.subscription_id},
            )
            result.subscriptions_scanned += 1

            for resource_group in self.resource_groups(context):
                result.groups.append(self.ensure_group_locked(context, resource_group))

        result.end_time = datetime.now(UTC)
        logger.info(
            "Lock audit complete",
            extra={
                "subscriptions_scanned": result.subscriptions_scanned,
                "groups_checked": result.groups_checked,
                "already_locked": result.already_locked,
                "locks_created": result.locks_created,
                "dry_run": self._config.dry_run,
                "duration_seconds": result.duration_seconds,
            },
        )
        return result
