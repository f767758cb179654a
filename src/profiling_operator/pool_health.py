"""Health signal of the profiling MachineConfigPool.

The reconciler does not judge node health itself. It consumes a
`PoolHealthReport` from a probe and only branches on the enumerated state:

- HEALTHY: every node in the pool applied the current configuration
- DEGRADED: the pool reports a degraded condition; recorded changes are reverted
- UNKNOWN: the pool is still updating, or its status cannot be read
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .models import MACHINE_CONFIG_POOL_KIND
from .store import ObjectStore, StoreError

logger = logging.getLogger(__name__)

DEGRADED_CONDITION_TYPES = ("Degraded", "NodeDegraded", "RenderDegraded")


class PoolHealth(str, Enum):
    """Enumerated pool health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PoolHealthReport:
    """Pool health plus free-form diagnostics."""

    state: PoolHealth
    message: str = ""

    @property
    def degraded(self) -> bool:
        return self.state == PoolHealth.DEGRADED


class PoolHealthProbe(Protocol):
    """Source of the pool health signal."""

    def check(self) -> PoolHealthReport: ...


def _condition_true(conditions: list[dict[str, Any]], condition_type: str) -> dict[str, Any] | None:
    for condition in conditions:
        if condition.get("type") == condition_type and condition.get("status") == "True":
            return condition
    return None


def evaluate_pool(pool: dict[str, Any]) -> PoolHealthReport:
    """Derive the health of a MachineConfigPool from its status conditions."""
    status = pool.get("status") or {}
    conditions = status.get("conditions") or []

    for condition_type in DEGRADED_CONDITION_TYPES:
        condition = _condition_true(conditions, condition_type)
        if condition is not None:
            degraded_count = status.get("degradedMachineCount", 0)
            message = condition.get("message") or condition.get("reason") or condition_type
            return PoolHealthReport(
                PoolHealth.DEGRADED,
                f"{condition_type}: {message} ({degraded_count} machines degraded)",
            )

    if _condition_true(conditions, "Updating") is not None:
        updated = status.get("updatedMachineCount", 0)
        total = status.get("machineCount", 0)
        return PoolHealthReport(PoolHealth.UNKNOWN, f"updating: {updated}/{total} machines updated")

    if _condition_true(conditions, "Updated") is not None:
        return PoolHealthReport(PoolHealth.HEALTHY, "all machines updated")

    return PoolHealthReport(PoolHealth.UNKNOWN, "pool has not reported an update status")


class MachineConfigPoolHealthProbe:
    """Reads the profiling MachineConfigPool and evaluates its conditions."""

    def __init__(self, store: ObjectStore, pool_name: str) -> None:
        self._store = store
        self._pool_name = pool_name

    def check(self) -> PoolHealthReport:
        try:
            pool = self._store.get(MACHINE_CONFIG_POOL_KIND, self._pool_name)
        except StoreError as e:
            logger.warning(
                "Failed to read profiling pool status",
                extra={"pool": self._pool_name, "error": str(e)},
            )
            return PoolHealthReport(PoolHealth.UNKNOWN, f"failed to read pool: {e}")

        if pool is None:
            return PoolHealthReport(PoolHealth.UNKNOWN, f"pool {self._pool_name} not found")
        return evaluate_pool(pool)
