"""
Error message utilities for providing actionable guidance to users.

This module provides functions to create helpful error messages with
suggested fixes and troubleshooting steps.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    RESOURCE = "resource"
    STORAGE = "storage"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


def create_kubernetes_error(operation: str, error: Exception) -> ActionableError:
    """Create actionable error for Kubernetes API failures"""
    error_str = str(error).lower()
    status = getattr(error, "status", None)

    suggestions = [
        "Verify Kubernetes cluster access (kubectl cluster-info)",
        "Check that the expected kubeconfig context is selected (--context or KUBE_CONTEXT)",
        "Verify RBAC permissions to get, list and patch apps/v1 and batch/v1 workloads",
        "Check if the namespace exists and is accessible",
    ]

    forbidden = status == 403 or "403" in error_str or "forbidden" in error_str
    if forbidden:
        suggestions.insert(0, "Check Kubernetes RBAC permissions for the current user or service account")
        suggestions.insert(1, "kubectl auth can-i patch deployments --all-namespaces")

    if status == 404 or "404" in error_str or "not found" in error_str:
        suggestions.insert(0, "Verify the workload still exists in the namespace")
        suggestions.insert(1, "Check if the namespace name is correct")

    if "kube-config" in error_str or "kubeconfig" in error_str or "service host/port" in error_str:
        suggestions.insert(0, "Set KUBECONFIG or create ~/.kube/config for the target cluster")

    return ActionableError(
        message=f"Kubernetes operation failed: {operation}",
        category=ErrorCategory.PERMISSION if forbidden else ErrorCategory.RESOURCE,
        suggestions=suggestions,
        details={
            "operation": operation,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_config_error(field: str, value: Any, reason: str) -> ActionableError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml or the matching environment variable",
        "Verify the value matches the expected format",
        "Check config-example.yaml for correct format",
    ]

    if "timeout" in field.lower():
        suggestions.insert(1, "Durations look like 180s, 3m, 1m30s or a plain number of seconds")
    elif "kind" in field.lower():
        suggestions.insert(1, "Supported kinds: deploy, ds, sts, cronjob (or Deployment, DaemonSet, StatefulSet, CronJob)")
    elif "namespace" in field.lower():
        suggestions.insert(1, "Namespaces are comma separated lowercase Kubernetes names")

    return ActionableError(
        message=f"Configuration error: Invalid value for '{field}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason
        }
    )


def create_ledger_error(path: str, error: Exception) -> ActionableError:
    """Create actionable error for state ledger write failures"""
    error_str = str(error).lower()

    suggestions = [
        f"Verify the directory containing {path} exists and is writable",
        "Point STATE_FILE (or --state-file) at a writable location",
    ]

    if "no space" in error_str:
        suggestions.insert(0, "Free disk space on the volume holding the ledger")
    if "permission" in error_str:
        suggestions.insert(0, f"Fix file permissions on {path}")

    return ActionableError(
        message=f"Failed to append to migration state file {path}",
        category=ErrorCategory.STORAGE,
        suggestions=suggestions,
        details={
            "state_file": path,
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_rollout_error(resource: str, status: str, timeout_seconds: Optional[float] = None) -> ActionableError:
    """Create actionable error for a rollout that did not complete"""
    suggestions = [
        f"Inspect the rollout: kubectl rollout status {resource.lower()}",
        "Check pod events for image pull errors (the bitnamilegacy tag may not exist)",
        "Fix the workload, then re-run with the 'continue' action to resume",
    ]

    if timeout_seconds is not None:
        suggestions.insert(1, f"Increase TIMEOUT (currently {timeout_seconds:g}s) for slow rollouts")

    return ActionableError(
        message=f"Rollout of {resource} did not complete ({status}); halting migration",
        category=ErrorCategory.TIMEOUT if status == "timeout" else ErrorCategory.RESOURCE,
        suggestions=suggestions,
        details={
            "resource": resource,
            "rollout_status": status,
        }
    )
