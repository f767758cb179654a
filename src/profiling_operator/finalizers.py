"""Finalizer handling for the desired-state resource.

The sentinel finalizer keeps the resource around until the reconciler has
removed every dependent object it may have created.
"""

from __future__ import annotations

import logging

from .models import PROFILING_CONFIG_KIND, ProfilingConfig, ResourceKind
from .store import ObjectStore

logger = logging.getLogger(__name__)


def has_finalizer(resource: ProfilingConfig, token: str) -> bool:
    return token in (resource.metadata.finalizers or [])


class FinalizerManager:
    """Adds and removes a finalizer token, always on a deep copy."""

    def __init__(
        self, store: ObjectStore, token: str, kind: ResourceKind = PROFILING_CONFIG_KIND
    ) -> None:
        self._store = store
        self._token = token
        self._kind = kind

    @property
    def token(self) -> str:
        return self._token

    def with_finalizer(self, resource: ProfilingConfig) -> ProfilingConfig:
        """Return the resource with the sentinel finalizer persisted.

        No store call is made if the token is already present. The caller's
        object is never mutated, also when the update fails.

        Raises:
            StoreError: If the update is rejected (ConflictError on a stale
                resourceVersion).
        """
        if has_finalizer(resource, self._token):
            return resource

        updated = resource.model_copy(deep=True)
        updated.metadata.finalizers = [*(updated.metadata.finalizers or []), self._token]
        persisted = self._store.update(self._kind, updated.to_k8s_object())
        logger.info(
            "Added finalizer",
            extra={"resource": resource.key, "finalizer": self._token},
        )
        return ProfilingConfig.from_k8s_object(persisted)

    def without_finalizer(self, resource: ProfilingConfig, token: str | None = None) -> ProfilingConfig:
        """Return the resource with `token` removed and persisted.

        Order of the remaining tokens is preserved. An empty result is stored
        as "no finalizers" rather than an empty list.
        """
        token = token or self._token
        updated = resource.model_copy(deep=True)
        remaining = [item for item in (updated.metadata.finalizers or []) if item != token]
        updated.metadata.finalizers = remaining or None

        persisted = self._store.update(self._kind, updated.to_k8s_object())
        logger.info(
            "Removed finalizer",
            extra={"resource": resource.key, "finalizer": token},
        )
        return ProfilingConfig.from_k8s_object(persisted)
