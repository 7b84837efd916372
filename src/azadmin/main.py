"""Runners for the administration tools.

Both tools are one-shot: load configuration, acquire a credential, run a
single sequential pass and exit. The runners here are the only place where
errors are caught; they are logged and turned into an exit code.

Exit codes:
    0: success
    1: configuration, lookup or Azure API failure
    2: credential secrets detected in the environment
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from azure.core.exceptions import AzureError

from .config import ConfigurationError, FirewallSyncConfig, LockAuditConfig
from .firewall import AppServiceLookupError, FirewallReconciler, FirewallRuleError
from .locks import LockAuditor
from .security import SecretlessViolationError

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SECURITY_VIOLATION = 2

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "asctime",
    }
)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_RECORD_ATTRS}


class JsonFormatter(logging.Formatter):
    """Format logs as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        log_data.update(_extra_fields(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines with extra fields appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-8s %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        if extras:
            line += "  " + " ".join(f"{k}={v}" for k, v in extras.items())
        return line


def setup_logging(json_output: bool = False, verbose: bool = False) -> None:
    """Configure console logging for the tools."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if json_output else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def run_lock_audit(config: LockAuditConfig) -> int:
    """Run the lock auditor and map failures to an exit code."""
    logger = logging.getLogger(__name__)

    try:
        result = LockAuditor(config).run()
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return EXIT_SECURITY_VIOLATION
    except AzureError as e:
        logger.error(
            "Lock audit aborted by Azure API error",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return EXIT_FAILURE

    logger.info(
        f"Checked {result.groups_checked} resource groups in "
        f"{result.subscriptions_scanned} subscriptions, created {result.locks_created} locks"
    )
    return EXIT_OK


def run_firewall_sync(config: FirewallSyncConfig) -> int:
    """Run the firewall reconciler and map failures to an exit code."""
    logger = logging.getLogger(__name__)

    try:
        result = FirewallReconciler(config).run()
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return EXIT_SECURITY_VIOLATION
    except AppServiceLookupError as e:
        logger.error("App Service lookup failed", extra={"error": str(e)})
        return EXIT_FAILURE
    except FirewallRuleError as e:
        logger.error("Unreadable firewall rule on SQL server", extra={"error": str(e)})
        return EXIT_FAILURE
    except AzureError as e:
        logger.error(
            "Firewall reconciliation aborted by Azure API error",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return EXIT_FAILURE

    if result.plan.is_empty:
        logger.info("Firewall already matches the App Service outbound IPs")
    return EXIT_OK


def run() -> None:
    """Entry point for running the firewall reconciler from environment variables."""
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = FirewallSyncConfig.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        sys.exit(EXIT_FAILURE)

    sys.exit(run_firewall_sync(config))


if __name__ == "__main__":
    run()
