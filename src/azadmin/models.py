"""Pydantic models for firewall reconciliation with validation.

These models provide:
1. Type-safe parsing of App Service properties returned by ARM
2. Validation at the boundary (fail fast, fail loudly)
3. Immutable values for rules, target IPs and the reconciliation plan
"""

from __future__ import annotations

import ipaddress
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .config import RULE_NAME_PREFIX, RULE_SEQUENCE_WIDTH

# =============================================================================
# Classification tags
# =============================================================================


class RuleClassification(str, Enum):
    """How an existing firewall rule relates to a target IP."""

    # Holds the target IP under a non-canonical name
    REDUNDANT = "Redundant"
    # Holds the canonical name with a different IP range
    CONFLICTING = "Conflicting"
    CORRECT = "Correct"


class IpDisposition(str, Enum):
    """What happens to a target IP in this pass."""

    CREATE = "Create"
    ALREADY_CORRECT = "AlreadyCorrect"


# =============================================================================
# Firewall rules
# =============================================================================


def _validate_ipv4(v: str) -> str:
    try:
        return str(ipaddress.IPv4Address(v))
    except ValueError as e:
        raise ValueError(f"not a valid IPv4 address: {v}") from e


class FirewallRule(BaseModel):
    """A named IP range allowed through the SQL server firewall."""

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    name: str = Field(min_length=1, max_length=128)
    start_ip: str = Field(alias="startIpAddress")
    end_ip: str = Field(alias="endIpAddress")

    @field_validator("start_ip", "end_ip")
    @classmethod
    def validate_ip(cls, v: str) -> str:
        return _validate_ipv4(v)

    @classmethod
    def single(cls, name: str, ip: str) -> FirewallRule:
        """Build a rule covering exactly one address."""
        return cls(name=name, start_ip=ip, end_ip=ip)

    def covers_only(self, ip: str) -> bool:
        """True if the rule's range is exactly this single address."""
        return self.start_ip == ip and self.end_ip == ip


class TargetIP(BaseModel):
    """One outbound address of the App Service and its canonical rule name."""

    model_config = {"frozen": True}

    position: int = Field(ge=1)
    address: str
    rule_name: str

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _validate_ipv4(v)


def canonical_rule_name(plan_name: str, app_name: str, position: int) -> str:
    """Rule name for the IP at a 1-based position: App-<plan>-<app>-<NN>."""
    return f"{RULE_NAME_PREFIX}-{plan_name}-{app_name}-{position:0{RULE_SEQUENCE_WIDTH}d}"


# =============================================================================
# App Service
# =============================================================================


class AppServiceSite(BaseModel):
    """The App Service properties used to derive the target IP set.

    Parsed from the generic resource properties of a Microsoft.Web/sites
    resource. Unknown properties are ignored.
    """

    model_config = {"extra": "ignore"}

    outbound_ip_addresses: str = Field(alias="outboundIpAddresses")
    server_farm_id: str = Field(alias="serverFarmId", min_length=1)

    @field_validator("server_farm_id")
    @classmethod
    def validate_server_farm_id(cls, v: str) -> str:
        if "/providers/microsoft.web/serverfarms/" not in v.lower():
            raise ValueError("serverFarmId must be an App Service Plan resource ID")
        return v

    def outbound_ips(self) -> list[str]:
        """Split the comma-delimited outbound list, keeping provider order.

        Duplicates are kept. Whitespace around entries and empty entries
        are dropped.
        """
        return [ip.strip() for ip in self.outbound_ip_addresses.split(",") if ip.strip()]


# =============================================================================
# Reconciliation plan
# =============================================================================


class RuleDecision(BaseModel):
    """Classification of one existing rule against one target IP."""

    model_config = {"frozen": True}

    target: TargetIP
    rule: FirewallRule
    classification: RuleClassification


class IpDecision(BaseModel):
    """Outcome for one target IP, with the rule matches that led to it."""

    model_config = {"frozen": True}

    target: TargetIP
    disposition: IpDisposition
    matches: list[RuleDecision] = Field(default_factory=list)


class ReconciliationPlan(BaseModel):
    """The three action sets derived from one snapshot of provider state."""

    model_config = {"frozen": True}

    decisions: list[IpDecision] = Field(default_factory=list)
    to_add: list[FirewallRule] = Field(default_factory=list)
    to_remove: list[FirewallRule] = Field(default_factory=list)
    to_deprecate: list[FirewallRule] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_add or self.to_remove or self.to_deprecate)

    @property
    def action_count(self) -> int:
        return len(self.to_add) + len(self.to_remove) + len(self.to_deprecate)
