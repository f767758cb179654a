"""Profiling MachineConfigPool provisioning.

Dependent profiling configs target a dedicated pool so that only nodes an
administrator labels for profiling are reconfigured.
"""

from __future__ import annotations

import logging
from typing import Any

from .capabilities import PROFILING_POOL_SELECTOR_LABELS, PROFILING_ROLE, ROLE_LABEL
from .models import MACHINE_CONFIG_POOL_KIND
from .store import ObjectStore

logger = logging.getLogger(__name__)

PROFILING_NODE_ROLE_LABEL = "node-role.kubernetes.io/profiling"


def build_profiling_pool(pool_name: str) -> dict[str, Any]:
    """Canonical MachineConfigPool for profiling nodes.

    Selects both worker configs and profiling configs so that profiling
    nodes keep the regular worker configuration.
    """
    return {
        "apiVersion": MACHINE_CONFIG_POOL_KIND.api_version,
        "kind": MACHINE_CONFIG_POOL_KIND.kind,
        "metadata": {
            "name": pool_name,
            "labels": dict(PROFILING_POOL_SELECTOR_LABELS),
        },
        "spec": {
            "machineConfigSelector": {
                "matchExpressions": [
                    {
                        "key": ROLE_LABEL,
                        "operator": "In",
                        "values": ["worker", PROFILING_ROLE],
                    }
                ]
            },
            "nodeSelector": {
                "matchLabels": {PROFILING_NODE_ROLE_LABEL: ""},
            },
        },
    }


class ProfilingPoolManager:
    """Ensures the profiling MachineConfigPool exists."""

    def __init__(self, store: ObjectStore, pool_name: str) -> None:
        self._store = store
        self._pool_name = pool_name

    def ensure_exists(self) -> bool:
        """Create the pool if missing.

        Returns:
            True if this call created the pool.

        Raises:
            StoreError: On store failures, including a ConflictError if
                another creator raced us.
        """
        if self._store.get(MACHINE_CONFIG_POOL_KIND, self._pool_name) is not None:
            return False

        self._store.create(MACHINE_CONFIG_POOL_KIND, build_profiling_pool(self._pool_name))
        logger.info("Created profiling MachineConfigPool", extra={"pool": self._pool_name})
        return True
