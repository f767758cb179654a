"""Configuration management with validation.

Every knob is validated at load time so the operator fails fast on a bad
deployment manifest instead of misbehaving during reconciliation.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_REQUEUE_INTERVAL_SECONDS = 30 * 60
MIN_REQUEUE_INTERVAL_SECONDS = 60
MAX_REQUEUE_INTERVAL_SECONDS = 2 * 60 * 60

DEFAULT_ERROR_BACKOFF_SECONDS = 3 * 60
MIN_ERROR_BACKOFF_SECONDS = 5
MAX_ERROR_BACKOFF_SECONDS = 30 * 60

DEFAULT_RECONCILE_TIMEOUT_SECONDS = 300
MIN_RECONCILE_TIMEOUT_SECONDS = 10

DEFAULT_RESOURCE_NAME = "cluster"
DEFAULT_EVENT_NAMESPACE = "default"
DEFAULT_FINALIZER = "MachineConfig"
DEFAULT_POOL_NAME = "profiling"

# Input validation patterns
VALID_DNS_SUBDOMAIN_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$"
VALID_DNS_LABEL_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"
MAX_DNS_SUBDOMAIN_LENGTH = 253

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Desired-state resource to reconcile
    resource_name: str = DEFAULT_RESOURCE_NAME
    resource_namespace: str | None = None

    # Namespace for emitted events when the resource is cluster-scoped
    event_namespace: str = DEFAULT_EVENT_NAMESPACE

    # Timing
    requeue_interval_seconds: int = DEFAULT_REQUEUE_INTERVAL_SECONDS
    error_backoff_seconds: int = DEFAULT_ERROR_BACKOFF_SECONDS
    reconcile_timeout_seconds: int = DEFAULT_RECONCILE_TIMEOUT_SECONDS

    # Lifecycle
    finalizer: str = DEFAULT_FINALIZER
    pool_name: str = DEFAULT_POOL_NAME
    manage_pool: bool = True

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.resource_name:
            errors.append("RESOURCE_NAME is required")
        elif len(self.resource_name) > MAX_DNS_SUBDOMAIN_LENGTH or not re.match(
            VALID_DNS_SUBDOMAIN_PATTERN, self.resource_name
        ):
            errors.append(f"RESOURCE_NAME must be a DNS-1123 subdomain: {self.resource_name}")

        if self.resource_namespace is not None and not re.match(
            VALID_DNS_LABEL_PATTERN, self.resource_namespace
        ):
            errors.append(f"RESOURCE_NAMESPACE must be a DNS-1123 label: {self.resource_namespace}")

        if not re.match(VALID_DNS_LABEL_PATTERN, self.event_namespace):
            errors.append(f"EVENT_NAMESPACE must be a DNS-1123 label: {self.event_namespace}")

        if not re.match(VALID_DNS_LABEL_PATTERN, self.pool_name):
            errors.append(f"PROFILING_POOL must be a DNS-1123 label: {self.pool_name}")

        if not self.finalizer:
            errors.append("FINALIZER must not be empty")

        # Timing validation
        if not (
            MIN_REQUEUE_INTERVAL_SECONDS
            <= self.requeue_interval_seconds
            <= MAX_REQUEUE_INTERVAL_SECONDS
        ):
            errors.append(
                f"REQUEUE_INTERVAL must be between {MIN_REQUEUE_INTERVAL_SECONDS} "
                f"and {MAX_REQUEUE_INTERVAL_SECONDS} seconds"
            )

        if not (MIN_ERROR_BACKOFF_SECONDS <= self.error_backoff_seconds <= MAX_ERROR_BACKOFF_SECONDS):
            errors.append(
                f"ERROR_BACKOFF must be between {MIN_ERROR_BACKOFF_SECONDS} "
                f"and {MAX_ERROR_BACKOFF_SECONDS} seconds"
            )
        elif self.error_backoff_seconds > self.requeue_interval_seconds:
            errors.append("ERROR_BACKOFF cannot exceed REQUEUE_INTERVAL")

        if self.reconcile_timeout_seconds < MIN_RECONCILE_TIMEOUT_SECONDS:
            errors.append(
                f"RECONCILE_TIMEOUT must be at least {MIN_RECONCILE_TIMEOUT_SECONDS} seconds"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_value(self) -> int:
        """Numeric logging level for the configured level name."""
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            RESOURCE_NAME: Name of the desired-state resource (default: cluster)
            RESOURCE_NAMESPACE: Namespace of the resource, unset when cluster-scoped
            EVENT_NAMESPACE: Namespace for events about cluster-scoped resources
            REQUEUE_INTERVAL: Seconds between successful passes (default: 1800)
            ERROR_BACKOFF: Seconds before retrying a failed pass (default: 180)
            RECONCILE_TIMEOUT: Deadline for a single pass in seconds (default: 300)
            FINALIZER: Sentinel finalizer token (default: MachineConfig)
            PROFILING_POOL: Name of the profiling MachineConfigPool (default: profiling)
            MANAGE_POOL: If "true", create the profiling pool when missing (default: true)
            LOG_LEVEL: Root log level (default: INFO)
            JSON_LOGS: If "true", emit JSON log lines (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            resource_name=os.environ.get("RESOURCE_NAME", DEFAULT_RESOURCE_NAME),
            resource_namespace=os.environ.get("RESOURCE_NAMESPACE") or None,
            event_namespace=os.environ.get("EVENT_NAMESPACE", DEFAULT_EVENT_NAMESPACE),
            requeue_interval_seconds=get_int(
                "REQUEUE_INTERVAL", DEFAULT_REQUEUE_INTERVAL_SECONDS
            ),
            error_backoff_seconds=get_int("ERROR_BACKOFF", DEFAULT_ERROR_BACKOFF_SECONDS),
            reconcile_timeout_seconds=get_int(
                "RECONCILE_TIMEOUT", DEFAULT_RECONCILE_TIMEOUT_SECONDS
            ),
            finalizer=os.environ.get("FINALIZER", DEFAULT_FINALIZER),
            pool_name=os.environ.get("PROFILING_POOL", DEFAULT_POOL_NAME),
            manage_pool=get_bool("MANAGE_POOL", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            json_logs=get_bool("JSON_LOGS", True),
        )
