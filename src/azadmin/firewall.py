"""SQL Server firewall reconciliation against App Service outbound IPs.

One pass of the reconciler:
1. Fetch the SQL server's firewall rules
2. Resolve the App Service and its plan, derive the ordered target IPs
3. Classify every existing rule against every target IP (pure, no API calls)
4. Apply the plan: conflicts first, then creations, then redundant removals

Classification always runs against a single snapshot taken before any
mutation. Nothing is rolled back when a call fails part-way; the next run
re-derives the plan from live state and converges.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from azure.core.credentials import TokenCredential
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.sql import SqlManagementClient
from azure.mgmt.sql import models as sql_models
from pydantic import ValidationError

from .config import (
    DEPRECATED_RULE_PREFIX,
    DEPRECATED_TIMESTAMP_FORMAT,
    FirewallSyncConfig,
)
from .models import (
    AppServiceSite,
    FirewallRule,
    IpDecision,
    IpDisposition,
    ReconciliationPlan,
    RuleClassification,
    RuleDecision,
    TargetIP,
    canonical_rule_name,
)
from .security import get_credential, log_audit_event

logger = logging.getLogger(__name__)

# Generic resource lookups
WEB_PROVIDER_NAMESPACE = "Microsoft.Web"
SITES_RESOURCE_TYPE = "sites"
WEB_API_VERSION = "2022-03-01"

AUDIT_EVENT_TYPE = "firewall_rule"


class AppServiceLookupError(Exception):
    """Raised when the App Service resource lacks the properties we need."""

    pass


class FirewallRuleError(Exception):
    """Raised when a firewall rule returned by the server cannot be parsed."""

    pass


def build_targets(plan_name: str, app_name: str, ips: Sequence[str]) -> list[TargetIP]:
    """Assign canonical rule names to outbound IPs by 1-based position."""
    return [
        TargetIP(
            position=position,
            address=ip,
            rule_name=canonical_rule_name(plan_name, app_name, position),
        )
        for position, ip in enumerate(ips, start=1)
    ]


def classify_rules(
    existing: Sequence[FirewallRule],
    targets: Sequence[TargetIP],
) -> ReconciliationPlan:
    """Classify existing rules against target IPs and build the action sets.

    A rule is considered for a target when its name equals the target's
    canonical name or its start IP equals the target address:

    - other name: REDUNDANT, queued for removal
    - canonical name, different range: CONFLICTING, queued for deprecation
    - canonical name, same single address: CORRECT

    A target is created unless a CORRECT rule exists for it. Rules matched by
    several targets produce one action per match; nothing is de-duplicated.

    Args:
        existing: Firewall rules currently on the server.
        targets: Target IPs in provider order.

    Returns:
        ReconciliationPlan with the per-IP decisions and the three action sets.
    """
    decisions: list[IpDecision] = []
    to_add: list[FirewallRule] = []
    to_remove: list[FirewallRule] = []
    to_deprecate: list[FirewallRule] = []

    for target in targets:
        matches: list[RuleDecision] = []

        for rule in existing:
            name_matches = rule.name == target.rule_name
            if not name_matches and rule.start_ip != target.address:
                continue

            if not name_matches:
                classification = RuleClassification.REDUNDANT
                to_remove.append(rule)
            elif not rule.covers_only(target.address):
                classification = RuleClassification.CONFLICTING
                to_deprecate.append(rule)
            else:
                classification = RuleClassification.CORRECT

            matches.append(RuleDecision(target=target, rule=rule, classification=classification))

        if any(m.classification == RuleClassification.CORRECT for m in matches):
            disposition = IpDisposition.ALREADY_CORRECT
        else:
            disposition = IpDisposition.CREATE
            to_add.append(FirewallRule.single(target.rule_name, target.address))

        decisions.append(IpDecision(target=target, disposition=disposition, matches=matches))

    return ReconciliationPlan(
        decisions=decisions,
        to_add=to_add,
        to_remove=to_remove,
        to_deprecate=to_deprecate,
    )


def removals_to_apply(plan: ReconciliationPlan) -> list[FirewallRule]:
    """Redundant rules that still need deleting after conflicts and creations.

    The plan's action sets are left untouched. When applying, a redundant rule
    is skipped if its name was already deleted by the conflict phase, written
    by the creation phase, removed earlier in the removal phase, or belongs to
    a rule that is CORRECT for another target. Deleting such a name would undo
    work done in the same pass.
    """
    handled = {rule.name for rule in plan.to_deprecate}
    handled.update(rule.name for rule in plan.to_add)
    handled.update(
        match.rule.name
        for decision in plan.decisions
        for match in decision.matches
        if match.classification == RuleClassification.CORRECT
    )

    removals: list[FirewallRule] = []
    for rule in plan.to_remove:
        if rule.name in handled:
            continue
        handled.add(rule.name)
        removals.append(rule)
    return removals


def deprecated_rule_name(name: str, now: datetime) -> str:
    """Name a conflicting rule is moved to: DEP<yyMMddss>-<name>."""
    return f"{DEPRECATED_RULE_PREFIX}{now.strftime(DEPRECATED_TIMESTAMP_FORMAT)}-{name}"


@dataclass
class ReconcileResult:
    """Result of one firewall reconciliation pass."""

    plan: ReconciliationPlan
    dry_run: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    rules_created: int = 0
    rules_removed: int = 0
    conflicts_deprecated: int = 0
    conflicts_removed: int = 0

    @property
    def changes_applied(self) -> int:
        return (
            self.rules_created
            + self.rules_removed
            + self.conflicts_deprecated
            + self.conflicts_removed
        )

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class FirewallReconciler:
    """Reconciles a SQL server firewall with an App Service's outbound IPs."""

    def __init__(
        self,
        config: FirewallSyncConfig,
        credential: TokenCredential | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            config: Reconciler configuration.
            credential: Credential for the management clients. Resolved from
                config.credential when omitted.
            clock: Source of the deprecation timestamp. Defaults to local time.
        """
        self._config = config
        self._clock = clock or datetime.now
        self._credential = credential or get_credential(config.credential)

        self._sql_client = SqlManagementClient(
            credential=self._credential,
            subscription_id=config.subscription_id,
        )
        self._resource_client = ResourceManagementClient(
            credential=self._credential,
            subscription_id=config.subscription_id,
        )

    def fetch_rules(self) -> list[FirewallRule]:
        """List every firewall rule currently on the SQL server.

        Raises:
            FirewallRuleError: If a rule does not hold a valid IPv4 range.
        """
        rules: list[FirewallRule] = []
        for rule in self._sql_client.firewall_rules.list_by_server(
            self._config.sql_resource_group,
            self._config.sql_server_name,
        ):
            try:
                rules.append(
                    FirewallRule(
                        name=rule.name,
                        start_ip=rule.start_ip_address,
                        end_ip=rule.end_ip_address,
                    )
                )
            except ValidationError as e:
                raise FirewallRuleError(
                    f"Firewall rule '{rule.name}' on '{self._config.sql_server_name}' "
                    f"is not a valid IPv4 range: {e}"
                ) from e

        logger.info(
            "Fetched firewall rules",
            extra={"sql_server": self._config.sql_server_name, "rule_count": len(rules)},
        )
        return rules

    def resolve_app_service(self) -> tuple[AppServiceSite, str]:
        """Look up the App Service and the name of its App Service Plan.

        Raises:
            ResourceNotFoundError: If the App Service or its plan does not exist.
            AppServiceLookupError: If the site lacks outbound IPs or a plan id.
        """
        resource = self._resource_client.resources.get(
            resource_group_name=self._config.app_service_resource_group,
            resource_provider_namespace=WEB_PROVIDER_NAMESPACE,
            parent_resource_path="",
            resource_type=SITES_RESOURCE_TYPE,
            resource_name=self._config.app_service_name,
            api_version=WEB_API_VERSION,
        )

        try:
            site = AppServiceSite.model_validate(resource.properties or {})
        except ValidationError as e:
            raise AppServiceLookupError(
                f"App Service '{self._config.app_service_name}' has unusable properties: {e}"
            ) from e

        plan = self._resource_client.resources.get_by_id(
            resource_id=site.server_farm_id,
            api_version=WEB_API_VERSION,
        )

        logger.info(
            "Resolved App Service",
            extra={
                "app_service": self._config.app_service_name,
                "service_plan": plan.name,
                "outbound_ips": site.outbound_ip_addresses,
            },
        )
        return site, plan.name

    def plan(self) -> ReconciliationPlan:
        """Take a snapshot of provider state and classify it."""
        existing = self.fetch_rules()
        site, plan_name = self.resolve_app_service()

        try:
            targets = build_targets(plan_name, self._config.app_service_name, site.outbound_ips())
        except ValidationError as e:
            raise AppServiceLookupError(
                f"App Service '{self._config.app_service_name}' reported an invalid "
                f"outbound IP: {e}"
            ) from e

        plan = classify_rules(existing, targets)

        for decision in plan.decisions:
            logger.info(
                f"{decision.target.address} -> {decision.target.rule_name}: "
                f"{decision.disposition.value}",
                extra={
                    "matched_rules": [
                        f"{m.rule.name}={m.classification.value}" for m in decision.matches
                    ],
                },
            )

        logger.info(
            "Reconciliation plan computed",
            extra={
                "target_ips": len(targets),
                "to_add": len(plan.to_add),
                "to_remove": len(plan.to_remove),
                "to_deprecate": len(plan.to_deprecate),
            },
        )
        return plan

    def apply(self, plan: ReconciliationPlan) -> ReconcileResult:
        """Apply a plan in fixed order: conflicts, creations, redundant removals.

        Any provider error propagates immediately; changes already made stay.
        In dry run mode every planned action is audited with result dry_run
        and nothing is written.
        """
        result = ReconcileResult(plan=plan, dry_run=self._config.dry_run)
        removals = removals_to_apply(plan)
        conflict_action = "delete" if self._config.remove_conflicts else "deprecate"

        if self._config.dry_run:
            for rule in plan.to_deprecate:
                self._audit(rule, conflict_action, result="dry_run")
            for rule in plan.to_add:
                self._audit(rule, "create", result="dry_run")
            for rule in removals:
                self._audit(rule, "delete", result="dry_run")
            logger.info(
                "Dry run - no firewall changes applied",
                extra={"planned_actions": plan.action_count},
            )
            result.end_time = datetime.now(UTC)
            return result

        for rule in plan.to_deprecate:
            if self._config.remove_conflicts:
                self._delete_rule(rule, action=conflict_action)
                result.conflicts_removed += 1
            else:
                self._deprecate_rule(rule)
                result.conflicts_deprecated += 1

        for rule in plan.to_add:
            self._create_rule(rule, action="create")
            result.rules_created += 1

        skipped = len(plan.to_remove) - len(removals)
        if skipped:
            logger.info(
                "Skipping redundant removals already handled in this pass",
                extra={"skipped_removals": skipped},
            )

        for rule in removals:
            self._delete_rule(rule, action="delete")
            result.rules_removed += 1

        result.end_time = datetime.now(UTC)
        return result

    def run(self) -> ReconcileResult:
        """Run a full reconciliation pass."""
        logger.info(
            "Starting firewall reconciliation",
            extra={
                "sql_server": self._config.sql_server_name,
                "app_service": self._config.app_service_name,
                "remove_conflicts": self._config.remove_conflicts,
                "dry_run": self._config.dry_run,
            },
        )

        result = self.apply(self.plan())

        logger.info(
            "Firewall reconciliation complete",
            extra={
                "rules_created": result.rules_created,
                "rules_removed": result.rules_removed,
                "conflicts_deprecated": result.conflicts_deprecated,
                "conflicts_removed": result.conflicts_removed,
                "duration_seconds": result.duration_seconds,
            },
        )
        return result

    def _deprecate_rule(self, rule: FirewallRule) -> None:
        """Move a conflicting rule aside, keeping its IP range allowed."""
        new_name = deprecated_rule_name(rule.name, self._clock())
        replacement = FirewallRule(name=new_name, start_ip=rule.start_ip, end_ip=rule.end_ip)

        self._create_rule(replacement, action="deprecate", original_name=rule.name)
        self._delete_rule(rule, action="deprecate")

    def _create_rule(self, rule: FirewallRule, action: str, **details: str) -> None:
        logger.info(f"Creating firewall rule {rule.name} ({rule.start_ip} - {rule.end_ip})")
        self._sql_client.firewall_rules.create_or_update(
            self._config.sql_resource_group,
            self._config.sql_server_name,
            rule.name,
            sql_models.FirewallRule(start_ip_address=rule.start_ip, end_ip_address=rule.end_ip),
        )
        self._audit(rule, action, **details)

    def _delete_rule(self, rule: FirewallRule, action: str) -> None:
        logger.info(f"Removing firewall rule {rule.name} ({rule.start_ip} - {rule.end_ip})")
        self._sql_client.firewall_rules.delete(
            self._config.sql_resource_group,
            self._config.sql_server_name,
            rule.name,
        )
        self._audit(rule, action)

    def _audit(
        self, rule: FirewallRule, action: str, result: str = "success", **details: str
    ) -> None:
        log_audit_event(
            AUDIT_EVENT_TYPE,
            target_resource=f"{self._config.sql_server_name}/{rule.name}",
            action=action,
            result=result,
            start_ip=rule.start_ip,
            end_ip=rule.end_ip,
            **details,
        )
