#!/usr/bin/env python3
"""
Configuration Manager for the Bitnami legacy migrator

This module handles loading and managing configuration from config.yaml
and environment variables, and loading the Kubernetes client configuration.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import yaml

DEFAULT_KINDS = ["deploy", "ds", "sts", "cronjob"]

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")
_DURATION_FULL = re.compile(r"^(?:\d+(?:\.\d+)?(?:h|m|s))+$")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


def parse_duration(value: Any) -> float:
    """Parse a kubectl-style duration into seconds.

    Accepts plain numbers (seconds) and strings such as "180s", "3m",
    "1h" or "1m30s".

    Raises:
        ConfigValidationError: If the value is not a valid duration
    """
    if isinstance(value, bool):
        raise ConfigValidationError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        if re.match(r"^\d+(\.\d+)?$", text):
            seconds = float(text)
        elif _DURATION_FULL.match(text):
            units = {"h": 3600, "m": 60, "s": 1}
            seconds = sum(float(num) * units[unit] for num, unit in _DURATION_PART.findall(text))
        else:
            raise ConfigValidationError(f"Invalid duration: {value!r} (expected e.g. 180s, 3m, 1m30s)")
    if seconds < 0:
        raise ConfigValidationError(f"Duration must not be negative: {value!r}")
    return seconds


def split_list(value: Any) -> List[str]:
    """Normalize a comma separated string or a YAML list into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(item) for item in value]
    return [item.strip() for item in items if item and item.strip()]


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_kubernetes_config(context: Optional[str] = None) -> None:
    """Load Kubernetes client configuration.

    With an explicit context the local kubeconfig is used. Otherwise
    in-cluster config is tried first, then the local kubeconfig.

    Raises:
        Exception if no configuration can be loaded
    """
    from kubernetes.config import load_incluster_config, load_kube_config

    if context:
        load_kube_config(context=context)
        return
    try:
        load_incluster_config()
    except Exception:
        load_kube_config()


def get_kubernetes_clients(context: Optional[str] = None) -> Tuple[Any, Any]:
    """Helper function to get Kubernetes API clients.

    Returns:
        Tuple of (AppsV1Api, BatchV1Api)

    Raises:
        ImportError if kubernetes package is not available
    """
    from kubernetes import client as k8s_client

    load_kubernetes_config(context)

    return k8s_client.AppsV1Api(), k8s_client.BatchV1Api()


def get_current_context_id(context: Optional[str] = None) -> str:
    """Identify the cluster the migration state is keyed on.

    Returns the explicit context when given, otherwise the active kubeconfig
    context name. Falls back to "in-cluster" when running inside a pod
    without a kubeconfig, and "unknown" when nothing can be determined.
    """
    if context:
        return context
    try:
        from kubernetes.config import list_kube_config_contexts

        _, active_context = list_kube_config_contexts()
        if active_context and active_context.get("name"):
            return active_context["name"]
    except Exception as e:
        logging.debug(f"Could not read kubeconfig contexts: {e}")
    if os.environ.get("KUBERNETES_SERVICE_HOST"):
        return "in-cluster"
    return "unknown"


class ConfigManager:
    """Manages configuration for the migrator"""

    # Environment variable -> (section, key)
    ENV_OVERRIDES = {
        "STATE_FILE": ("migration", "state_file"),
        "TIMEOUT": ("migration", "rollout_timeout"),
        "NAMESPACE_SELECTOR": ("migration", "namespaces"),
        "KINDS": ("migration", "kinds"),
        "FORCE_RECHECK": ("migration", "force_recheck"),
        "KUBE_CONTEXT": ("kubernetes", "context"),
        "LOG_LEVEL": ("logging", "level"),
    }

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to CONFIG_FILE env var or ./config.yaml)
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "migration": {
                "state_file": "bitnami-migration-state.jsonl",
                "rollout_timeout": "180s",
                "namespaces": [],
                "kinds": list(DEFAULT_KINDS),
                "force_recheck": False,
                "poll_interval": 2.0,
            },
            "kubernetes": {"context": ""},
            "retry": {
                "max_retries": 3,
                "initial_delay": 1.0,
                "max_delay": 30.0,
                "exponential_base": 2.0,
                "jitter": True,
            },
            "logging": {"level": "info"},
        }

        if not os.path.exists(self.config_file):
            logging.debug(f"Config file {self.config_file} not found, using defaults")
            return default_config

        try:
            with open(self.config_file, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigValidationError(f"Error loading config file {self.config_file}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigValidationError(f"Config file {self.config_file} must contain a mapping")
        return self._merge_config(default_config, user_config)

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _get(self, env_name: str) -> Any:
        """Return the environment override if set, else the config value."""
        section, key = self.ENV_OVERRIDES[env_name]
        env_value = os.environ.get(env_name)
        if env_value is not None and env_value != "":
            return env_value
        return self.config.get(section, {}).get(key)

    # Migration configuration
    def get_state_file(self) -> str:
        """Get the ledger (state file) path"""
        value = self._get("STATE_FILE")
        return str(value) if value else ""

    def get_rollout_timeout(self) -> float:
        """Get the rollout wait timeout in seconds"""
        return parse_duration(self._get("TIMEOUT"))

    def get_namespaces(self) -> List[str]:
        """Get the namespace restriction list (empty means all namespaces)"""
        return split_list(self._get("NAMESPACE_SELECTOR"))

    def get_kinds(self) -> List[str]:
        """Get the raw workload kind list as configured (aliases allowed)"""
        return split_list(self._get("KINDS")) or list(DEFAULT_KINDS)

    def is_force_recheck(self) -> bool:
        """Whether verified resources are live-checked again"""
        value = self._get("FORCE_RECHECK")
        if isinstance(value, bool):
            return value
        return _env_flag(str(value or ""))

    def get_poll_interval(self) -> float:
        """Get the rollout status poll interval in seconds, with type coercion"""
        interval = self.config["migration"].get("poll_interval", 2.0)
        try:
            return float(interval)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"migration.poll_interval must be a number, got: {interval} (type: {type(interval).__name__})"
            )

    # Kubernetes configuration
    def get_kube_context(self) -> Optional[str]:
        """Get the kubeconfig context to use (None means the current context)"""
        return self._get("KUBE_CONTEXT") or None

    # Logging configuration
    def get_log_level(self) -> str:
        return str(self._get("LOG_LEVEL") or "info").lower()

    # Retry configuration
    def get_max_retries(self) -> int:
        """Get max retries from config, with type coercion"""
        retries = self.config.get("retry", {}).get("max_retries", 3)
        try:
            return int(retries)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_retries must be an integer, got: {retries} (type: {type(retries).__name__})"
            )

    def get_retry_initial_delay(self) -> float:
        """Get initial retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("initial_delay", 1.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.initial_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_max_delay(self) -> float:
        """Get max retry delay from config, with type coercion"""
        delay = self.config.get("retry", {}).get("max_delay", 30.0)
        try:
            return float(delay)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.max_delay must be a number, got: {delay} (type: {type(delay).__name__})"
            )

    def get_retry_exponential_base(self) -> float:
        """Get exponential base for retry backoff from config, with type coercion"""
        base = self.config.get("retry", {}).get("exponential_base", 2.0)
        try:
            return float(base)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retry.exponential_base must be a number, got: {base} (type: {type(base).__name__})"
            )

    def get_retry_jitter(self) -> bool:
        """Get whether to use jitter in retry delays from config"""
        return bool(self.config.get("retry", {}).get("jitter", True))

    def get_retry_settings(self) -> Dict[str, Any]:
        """Keyword arguments for retry_with_backoff"""
        return {
            "max_retries": self.get_max_retries(),
            "initial_delay": self.get_retry_initial_delay(),
            "max_delay": self.get_retry_max_delay(),
            "exponential_base": self.get_retry_exponential_base(),
            "jitter": self.get_retry_jitter(),
        }

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        from migration.models import WorkloadKind

        errors = []
        warnings = []

        state_file = self.get_state_file()
        if not state_file or not state_file.strip():
            errors.append("state_file is required and cannot be empty")

        try:
            timeout = self.get_rollout_timeout()
            if timeout == 0:
                warnings.append("rollout_timeout is 0; every rollout wait will time out unless already complete")
            elif timeout > 3600:
                warnings.append(f"rollout_timeout is very high ({timeout:g}s), a stuck rollout blocks the run")
        except ConfigValidationError as e:
            errors.append(f"rollout_timeout: {e}")

        for kind in self.get_kinds():
            try:
                WorkloadKind.parse(kind)
            except ValueError as e:
                errors.append(str(e))

        for namespace in self.get_namespaces():
            if not self._is_valid_k8s_name(namespace):
                errors.append(
                    f"Namespace '{namespace}' is not a valid Kubernetes name (lowercase alphanumeric and hyphens only)"
                )

        try:
            poll_interval = self.get_poll_interval()
            if poll_interval < 0:
                errors.append(f"migration.poll_interval must be non-negative, got: {poll_interval}")
        except ConfigValidationError as e:
            errors.append(str(e))

        try:
            max_retries = self.get_max_retries()
            if max_retries < 0:
                errors.append(f"retry.max_retries must be a non-negative integer, got: {max_retries}")
            elif max_retries > 10:
                warnings.append(f"max_retries is very high ({max_retries}), operations may take a long time")

            initial_delay = self.get_retry_initial_delay()
            max_delay = self.get_retry_max_delay()
            if initial_delay < 0:
                errors.append(f"retry.initial_delay must be a non-negative number, got: {initial_delay}")
            if max_delay < initial_delay:
                errors.append(f"retry.max_delay ({max_delay}) must be >= retry.initial_delay ({initial_delay})")

            exponential_base = self.get_retry_exponential_base()
            if exponential_base < 1.0:
                errors.append(f"retry.exponential_base must be >= 1.0, got: {exponential_base}")
        except ConfigValidationError as e:
            errors.append(str(e))

        level = self.get_log_level()
        if level not in ("debug", "info", "warning", "error"):
            errors.append(f"Invalid log level: {level}. Must be one of debug, info, warning, error")

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_k8s_name(self, name: str) -> bool:
        """Validate Kubernetes namespace name format"""
        if not name:
            return False
        # DNS-1123 label: lowercase alphanumeric and hyphens, max 63 chars
        pattern = r"^[a-z0-9]([a-z0-9\-]*[a-z0-9])?$"
        return bool(re.match(pattern, name)) and len(name) <= 63
