"""
Health check utilities for verifying cluster access and configuration.

This module provides health checks for:
- Configuration validity
- Kubernetes API access
- State file (ledger) writability, for actions that modify workloads
"""

import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from utils.config_manager import ConfigManager, load_kubernetes_config
from utils.error_utils import create_kubernetes_error, create_ledger_error
from utils.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass
class HealthCheckResult:
    """Result of a health check"""

    name: str
    status: bool  # True if healthy, False if unhealthy
    message: str
    details: Optional[Dict] = None


class HealthChecker:
    """Performs health checks before a migration run"""

    def __init__(self, config: ConfigManager, context: Optional[str] = None, state_file: Optional[str] = None):
        self.logger = get_logger(self.__class__.__name__)
        self.config = config
        self.context = context
        self.state_file = state_file or config.get_state_file()

    def check_configuration(self) -> HealthCheckResult:
        """Check if configuration is valid

        Returns:
            HealthCheckResult indicating configuration validity
        """
        try:
            # This will raise ConfigValidationError if invalid
            self.config.validate_config()

            return HealthCheckResult(
                name="configuration",
                status=True,
                message="Configuration is valid",
                details={
                    "state_file": self.state_file,
                    "kinds": ",".join(self.config.get_kinds()),
                    "namespaces": ",".join(self.config.get_namespaces()) or "all",
                },
            )
        except Exception as e:
            return HealthCheckResult(
                name="configuration",
                status=False,
                message=f"Configuration validation failed: {str(e)}",
                details={"error": str(e)},
            )

    def check_kubernetes_access(self) -> HealthCheckResult:
        """Check that the Kubernetes API answers with the selected credentials

        Returns:
            HealthCheckResult indicating Kubernetes access status
        """
        try:
            from kubernetes import client as k8s_client

            load_kubernetes_config(self.context)
            version = k8s_client.VersionApi().get_code()

            return HealthCheckResult(
                name="kubernetes_access",
                status=True,
                message="Successfully connected to Kubernetes API",
                details={
                    "context": self.context or "current",
                    "server_version": getattr(version, "git_version", None),
                },
            )
        except ImportError:
            return HealthCheckResult(
                name="kubernetes_access",
                status=False,
                message="Kubernetes client not available (kubernetes package not installed)",
                details={},
            )
        except Exception as e:
            actionable_error = create_kubernetes_error("Connect to Kubernetes API", e)
            return HealthCheckResult(
                name="kubernetes_access",
                status=False,
                message=actionable_error.message,
                details={
                    "context": self.context or "current",
                    "error": str(e),
                    "suggestions": actionable_error.suggestions,
                },
            )

    def check_ledger_writable(self) -> HealthCheckResult:
        """Check that the state file can be appended to

        Returns:
            HealthCheckResult indicating ledger writability
        """
        path = self.state_file
        directory = os.path.dirname(os.path.abspath(path))

        if os.path.exists(path):
            writable = os.access(path, os.W_OK)
            reason = f"{path} is not writable"
        else:
            writable = os.path.isdir(directory) and os.access(directory, os.W_OK)
            reason = f"directory {directory} does not exist or is not writable"

        if writable:
            return HealthCheckResult(
                name="ledger_writable",
                status=True,
                message=f"State file {path} is writable",
                details={"state_file": path, "exists": os.path.exists(path)},
            )

        actionable_error = create_ledger_error(path, PermissionError(reason))
        return HealthCheckResult(
            name="ledger_writable",
            status=False,
            message=actionable_error.message,
            details={
                "state_file": path,
                "error": reason,
                "suggestions": actionable_error.suggestions,
            },
        )

    def run_all_checks(self, mutating: bool = True) -> List[HealthCheckResult]:
        """Run all health checks

        Args:
            mutating: If True, also check that the ledger can be written

        Returns:
            List of HealthCheckResult objects
        """
        results = [self.check_configuration(), self.check_kubernetes_access()]
        if mutating:
            results.append(self.check_ledger_writable())
        return results

    def print_health_report(self, results: List[HealthCheckResult]) -> bool:
        """Print a formatted health check report

        Args:
            results: List of HealthCheckResult objects

        Returns:
            True if all checks passed, False otherwise
        """
        print("\n" + "=" * 60)
        print("Health Check Report")
        print("=" * 60)

        all_healthy = True

        for result in results:
            status_icon = "✓" if result.status else "✗"
            status_text = "HEALTHY" if result.status else "UNHEALTHY"

            print(f"\n{status_icon} {result.name.upper().replace('_', ' ')}: {status_text}")
            print(f"   {result.message}")

            if result.details:
                for key, value in result.details.items():
                    if key == "suggestions":
                        for i, suggestion in enumerate(value, 1):
                            print(f"   {i}. {suggestion}")
                    elif key != "error":
                        print(f"   {key}: {value}")

            if not result.status:
                all_healthy = False

        print("\n" + "=" * 60)

        if all_healthy:
            print("✓ All health checks passed")
        else:
            print("✗ Some health checks failed - please review the issues above")

        print("=" * 60 + "\n")

        return all_healthy
