"""Reconciliation loop for node profiling configuration.

This module implements the Kubernetes-style reconciliation pattern for a
single desired-state resource:
1. Fetch the resource (a vanished resource ends the pass quietly)
2. Resource marked for deletion: remove every dependent object, then the finalizer
3. Otherwise: ensure the finalizer and the profiling pool exist
4. Converge each capability (ensure-exists if toggled on, ensure-absent if off)
   and record every change for rollback
5. Consult pool health; revert recorded changes if the pool is degraded
6. Persist status.lastUpdate and schedule the next pass

Every step is idempotent, so a pass that fails or is abandoned part-way is
simply repeated by the next trigger. Per-capability failures are accumulated
rather than short-circuited so one capability never blocks another.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError

from .capabilities import (
    CAPABILITIES,
    Capability,
    CapabilityConfigManager,
    CapabilityError,
    InconsistentStateError,
    build_managers,
)
from .config import Config
from .events import EventReason, EventRecorder, EventType
from .finalizers import FinalizerManager, has_finalizer
from .models import PROFILING_CONFIG_KIND, ProfilingConfig, ResourceKind
from .pool import ProfilingPoolManager
from .pool_health import MachineConfigPoolHealthProbe, PoolHealth, PoolHealthProbe, PoolHealthReport
from .rollback import Created, Deleted, RollbackError, RollbackTracker, SyncAction, SyncRecord
from .store import ObjectStore, StoreError

logger = logging.getLogger(__name__)


class ReconcileState(str, Enum):
    """States of a single reconciliation pass."""

    FETCHING = "fetching"
    NOT_FOUND = "not_found"
    DELETING = "deleting"
    NORMAL = "normal"


class InvalidResourceError(Exception):
    """The stored desired-state resource does not parse."""

    pass


class ConvergenceError(Exception):
    """One or more capabilities failed to converge in a pass."""

    def __init__(self, errors: dict[str, Exception]) -> None:
        self.errors = dict(errors)
        details = "; ".join(f"{key}: {err}" for key, err in sorted(self.errors.items()))
        super().__init__(f"failed to check profiling configs: {details}")


@dataclass(frozen=True)
class ReconcileRequest:
    """Reference to the desired-state resource a trigger fired for."""

    name: str
    namespace: str | None = None

    @property
    def key(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name


@dataclass(frozen=True)
class CapabilityChange:
    """A state-changing convergence step taken during a pass."""

    capability: str
    action: SyncAction


@dataclass
class ReconcileResult:
    """Result of a single reconciliation pass."""

    request: ReconcileRequest
    state: ReconcileState = ReconcileState.FETCHING
    requeue_after_seconds: float = 0.0
    changes: list[CapabilityChange] = field(default_factory=list)
    pool_health: PoolHealthReport | None = None
    reverted: list[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.error is None


class Reconciler:
    """Drives dependent profiling configs toward the desired-state resource.

    One instance owns the rollback bookkeeping for its lifetime. `reconcile`
    is synchronous and safe to call from several threads at once: the
    convergence-and-record sequence of a pass runs under the rollback
    tracker's lock.
    """

    def __init__(
        self,
        config: Config,
        store: ObjectStore,
        events: EventRecorder,
        *,
        pool_probe: PoolHealthProbe | None = None,
        capabilities: tuple[Capability, ...] = CAPABILITIES,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._config = config
        self._store = store
        self._events = events
        self._clock = clock

        self._kind: ResourceKind = PROFILING_CONFIG_KIND
        if config.resource_namespace:
            self._kind = dataclasses.replace(PROFILING_CONFIG_KIND, namespaced=True)

        self._managers: dict[str, CapabilityConfigManager] = build_managers(store, capabilities)
        self._finalizers = FinalizerManager(store, config.finalizer, self._kind)
        self._tracker = RollbackTracker()
        self._pool: ProfilingPoolManager | None = None
        if config.manage_pool:
            self._pool = ProfilingPoolManager(store, config.pool_name)
        self._pool_probe = pool_probe or MachineConfigPoolHealthProbe(store, config.pool_name)

    @property
    def config(self) -> Config:
        return self._config

    @property
    def managers(self) -> dict[str, CapabilityConfigManager]:
        return dict(self._managers)

    def default_request(self) -> ReconcileRequest:
        """Request for the resource named in the configuration."""
        return ReconcileRequest(self._config.resource_name, self._config.resource_namespace)

    def pending_changes(self, resource_key: str) -> dict[str, SyncRecord]:
        """Changes that would be undone by `revert`, keyed by capability."""
        return self._tracker.pending(resource_key)

    def revert(self, resource_key: str) -> list[str]:
        """Undo the recorded changes for a resource.

        Returns:
            Keys of the capabilities that were reverted.

        Raises:
            RollbackError: If any capability could not be reverted; its record
                is kept for the next attempt.
        """
        return self._tracker.revert_all(resource_key, self._managers)

    def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """Run one reconciliation pass. Errors are reported in the result."""
        result = ReconcileResult(request=request)
        logger.info("Reconciling profiling configuration", extra={"resource": request.key})

        try:
            return self._reconcile(request, result)
        except Exception as e:
            logger.exception(
                "Unexpected error during reconciliation", extra={"resource": request.key}
            )
            return self._finish(result, error=e)

    def _reconcile(self, request: ReconcileRequest, result: ReconcileResult) -> ReconcileResult:
        try:
            resource = self._fetch(request)
        except (StoreError, InvalidResourceError) as e:
            logger.error(
                "Failed to fetch profiling configuration",
                extra={"resource": request.key, "error": str(e)},
            )
            return self._finish(result, error=e)

        if resource is None:
            # Vanished between trigger and fetch; nothing left to converge
            logger.info(
                "Profiling configuration not found, ignoring since it could have been deleted",
                extra={"resource": request.key},
            )
            result.state = ReconcileState.NOT_FOUND
            return self._finish(result)

        if resource.is_being_deleted:
            logger.info(
                "Profiling configuration marked for deletion, cleaning up",
                extra={"resource": resource.key},
            )
            result.state = ReconcileState.DELETING
            return self._clean_up(resource, result)

        result.state = ReconcileState.NORMAL
        return self._reconcile_normal(resource, result)

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------

    def _fetch(self, request: ReconcileRequest) -> ProfilingConfig | None:
        obj = self._store.get(self._kind, request.name, request.namespace)
        if obj is None:
            return None
        try:
            return ProfilingConfig.from_k8s_object(obj)
        except ValidationError as e:
            raise InvalidResourceError(f"invalid profiling configuration {request.key}: {e}") from e

    def _clean_up(self, resource: ProfilingConfig, result: ReconcileResult) -> ReconcileResult:
        token = self._finalizers.token
        if not has_finalizer(resource, token):
            return self._finish(result)

        with self._tracker.session(resource.key):
            errors: dict[str, Exception] = {}
            # Every capability, regardless of toggles: remove anything we may have created
            for key, manager in self._managers.items():
                try:
                    deleted = manager.ensure_absent()
                except (StoreError, CapabilityError) as e:
                    logger.error(
                        f"Failed to remove {manager.capability.display_name} during cleanup",
                        extra={"resource": resource.key, "capability": key, "error": str(e)},
                    )
                    errors[key] = e
                    continue
                if deleted:
                    result.changes.append(CapabilityChange(key, SyncAction.DELETED))
                    self._notify(
                        resource,
                        EventReason.DELETE_CONFIG,
                        f"successfully deleted {manager.capability.display_name}",
                    )

            if errors:
                # Keep the finalizer so cleanup is retried
                return self._finish(result, error=ConvergenceError(errors))

            try:
                self._finalizers.without_finalizer(resource, token)
            except StoreError as e:
                logger.error(
                    "Failed to remove finalizer",
                    extra={"resource": resource.key, "finalizer": token, "error": str(e)},
                )
                return self._finish(result, error=e)

            self._tracker.discard(resource.key)

        return self._finish(result)

    def _reconcile_normal(self, resource: ProfilingConfig, result: ReconcileResult) -> ReconcileResult:
        try:
            resource = self._finalizers.with_finalizer(resource)
        except StoreError as e:
            logger.error(
                "Failed to update profiling configuration with finalizer",
                extra={"resource": resource.key, "error": str(e)},
            )
            return self._finish(result, error=e)

        if self._pool is not None:
            try:
                self._pool.ensure_exists()
            except StoreError as e:
                logger.error(
                    "Failed to ensure profiling pool",
                    extra={"resource": resource.key, "pool": self._config.pool_name, "error": str(e)},
                )
                return self._finish(result, error=e)

        error: Exception | None = None
        try:
            self._converge(resource, result)
        except ConvergenceError as e:
            logger.error(
                "Profiling config reconciliation failed",
                extra={"resource": resource.key, "error": str(e)},
            )
            error = e

        pool_error = self._check_pool_health(resource, result)
        error = error or pool_error

        status_error = self._update_status(resource)
        error = error or status_error

        if error is None and result.pool_health is not None:
            if result.pool_health.state == PoolHealth.UNKNOWN:
                # Pool still applying changes; look again sooner
                return self._finish(result, requeue_after=self._config.error_backoff_seconds)

        return self._finish(result, error=error)

    def _converge(self, resource: ProfilingConfig, result: ReconcileResult) -> None:
        """Converge every capability, recording each change.

        Raises:
            ConvergenceError: If any capability failed. Other capabilities
                are still converged.
        """
        errors: dict[str, Exception] = {}
        with self._tracker.session(resource.key) as session:
            for key, manager in self._managers.items():
                capability = manager.capability
                enabled = capability.enabled_in(resource)
                try:
                    if enabled:
                        obj, created = manager.ensure_exists()
                        if created:
                            session.record(key, Created.of(obj))
                            result.changes.append(CapabilityChange(key, SyncAction.CREATED))
                            self._notify(
                                resource,
                                EventReason.CREATE_CONFIG,
                                f"successfully created {capability.display_name}",
                            )
                    else:
                        deleted = manager.ensure_absent()
                        if deleted:
                            session.record(key, Deleted())
                            result.changes.append(CapabilityChange(key, SyncAction.DELETED))
                            self._notify(
                                resource,
                                EventReason.DELETE_CONFIG,
                                f"successfully deleted {capability.display_name}",
                            )
                except (StoreError, CapabilityError) as e:
                    if isinstance(e, InconsistentStateError) and e.created is not None:
                        # Created but not readable back; still ours to roll back
                        session.record(key, Created.of(e.created))
                        result.changes.append(CapabilityChange(key, SyncAction.CREATED))
                    verb = "enable" if enabled else "disable"
                    logger.error(
                        f"Failed to {verb} {key} profiling",
                        extra={"resource": resource.key, "capability": key, "error": str(e)},
                    )
                    errors[key] = e

        if errors:
            raise ConvergenceError(errors)

    def _check_pool_health(self, resource: ProfilingConfig, result: ReconcileResult) -> Exception | None:
        """Read pool health and revert recorded changes if the pool is degraded."""
        report = self._pool_probe.check()
        result.pool_health = report

        if not report.degraded:
            logger.debug(
                "Profiling pool health",
                extra={"resource": resource.key, "pool_health": report.state.value, "detail": report.message},
            )
            return None

        logger.warning(
            "Profiling pool degraded, reverting changes made by previous passes",
            extra={"resource": resource.key, "detail": report.message},
        )
        try:
            result.reverted = self.revert(resource.key)
        except RollbackError as e:
            self._notify(resource, EventReason.REVERT_FAILED, str(e), EventType.WARNING)
            return e

        for key in result.reverted:
            self._notify(
                resource,
                EventReason.REVERT_CONFIG,
                f"reverted {self._managers[key].capability.display_name} after pool degradation",
            )
        return None

    def _update_status(self, resource: ProfilingConfig) -> Exception | None:
        updated = resource.model_copy(deep=True)
        updated.status.last_update = self._clock()
        try:
            self._store.update_status(self._kind, updated.to_k8s_object())
        except StoreError as e:
            logger.error(
                "Failed to update status",
                extra={"resource": resource.key, "error": str(e)},
            )
            return e
        return None

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _notify(
        self,
        resource: ProfilingConfig,
        reason: EventReason,
        message: str,
        event_type: EventType = EventType.NORMAL,
    ) -> None:
        self._events.event(resource, event_type, reason, message)

    def _finish(
        self,
        result: ReconcileResult,
        *,
        error: Exception | None = None,
        requeue_after: float | None = None,
    ) -> ReconcileResult:
        result.error = error
        if requeue_after is not None:
            result.requeue_after_seconds = requeue_after
        elif error is not None:
            result.requeue_after_seconds = self._config.error_backoff_seconds
        else:
            result.requeue_after_seconds = self._config.requeue_interval_seconds
        result.end_time = datetime.now(UTC)
        return result


def log_result(result: ReconcileResult) -> None:
    """Log reconciliation result with structured data."""
    extra: dict[str, Any] = {
        "resource": result.request.key,
        "state": result.state.value,
        "duration_seconds": result.duration_seconds,
        "requeue_after_seconds": result.requeue_after_seconds,
        "changes": [f"{c.capability}:{c.action.value}" for c in result.changes],
    }
    if result.pool_health is not None:
        extra["pool_health"] = result.pool_health.state.value
    if result.reverted:
        extra["reverted"] = result.reverted

    if result.error is not None:
        extra["error"] = str(result.error)
        extra["error_type"] = type(result.error).__name__
        logger.error("Reconciliation failed", extra=extra)
    else:
        logger.info("Reconciliation succeeded", extra=extra)


class ReconcileRunner:
    """Periodic trigger for the reconciler.

    Each pass runs in a worker thread under the configured deadline. A pass
    that exceeds it is abandoned and retried after the error backoff; the
    worker thread finishes on its own and every step it takes is idempotent.
    """

    def __init__(self, reconciler: Reconciler) -> None:
        self._reconciler = reconciler
        self._config = reconciler.config
        self._shutdown_event = asyncio.Event()
        self._consecutive_failures = 0

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def run(self) -> None:
        """Run reconciliation passes until shutdown."""
        request = self._reconciler.default_request()
        logger.info(
            "Starting reconciler",
            extra={
                "resource": request.key,
                "requeue_interval_seconds": self._config.requeue_interval_seconds,
                "error_backoff_seconds": self._config.error_backoff_seconds,
            },
        )

        while not self._shutdown_event.is_set():
            result = await self.reconcile_once(request)
            log_result(result)

            if result.error is not None:
                self._consecutive_failures += 1
            else:
                self._consecutive_failures = 0

            # Wait for next pass or shutdown
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=result.requeue_after_seconds,
                )
            except TimeoutError:
                pass

        logger.info("Reconciler shutdown complete", extra={"resource": request.key})

    async def reconcile_once(self, request: ReconcileRequest) -> ReconcileResult:
        """Run a single pass in a worker thread, bounded by the pass deadline."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._reconciler.reconcile, request),
                timeout=self._config.reconcile_timeout_seconds,
            )
        except TimeoutError as e:
            logger.warning(
                "Reconciliation pass exceeded deadline, abandoning",
                extra={
                    "resource": request.key,
                    "timeout_seconds": self._config.reconcile_timeout_seconds,
                },
            )
            return self._failed(request, e)
        except Exception as e:
            logger.exception("Unexpected error during reconciliation", extra={"resource": request.key})
            return self._failed(request, e)

    def _failed(self, request: ReconcileRequest, error: Exception) -> ReconcileResult:
        result = ReconcileResult(request=request)
        result.error = error
        result.requeue_after_seconds = self._config.error_backoff_seconds
        result.end_time = datetime.now(UTC)
        return result

    def shutdown(self) -> None:
        """Signal the runner to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()
