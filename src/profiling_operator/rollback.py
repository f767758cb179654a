"""Rollback bookkeeping for changes made by reconciliation passes.

Every state-changing convergence step is recorded per capability so that it
can be inverted when the profiling pool reports degradation after the
change. Records are keyed by desired-state resource identity and live as long
as the tracker (one per reconciler instance).

A record is a tagged variant:

- Created(obj): the pass created `obj`; reverting deletes it
- Deleted(): the pass deleted the canonical object; reverting recreates it
  from the canonical capability configuration
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from .capabilities import CapabilityConfigManager, CapabilityError, snapshot
from .models import ConfigObject
from .store import ConflictError, StoreError

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    """Action taken for a capability during a pass."""

    CREATED = "created"
    DELETED = "deleted"


@dataclass(frozen=True)
class Created:
    """The pass created `obj`."""

    obj: ConfigObject
    action: ClassVar[SyncAction] = SyncAction.CREATED

    @classmethod
    def of(cls, obj: ConfigObject) -> Created:
        return cls(obj=snapshot(obj))


@dataclass(frozen=True)
class Deleted:
    """The pass deleted the capability's object."""

    action: ClassVar[SyncAction] = SyncAction.DELETED


SyncRecord = Created | Deleted


class RollbackError(Exception):
    """One or more capabilities could not be reverted.

    The failed records are retained so a later call can retry them.
    """

    def __init__(self, errors: Mapping[str, Exception]) -> None:
        self.errors = dict(errors)
        details = "; ".join(f"{key}: {err}" for key, err in sorted(self.errors.items()))
        super().__init__(f"failed to revert changes: {details}")


class TrackerSession:
    """Record view bound to one resource, valid while the tracker lock is held."""

    def __init__(self, tracker: RollbackTracker, resource_key: str) -> None:
        self._tracker = tracker
        self._resource_key = resource_key

    def record(self, capability_key: str, record: SyncRecord) -> None:
        self._tracker.record(self._resource_key, capability_key, record)

    def pending(self) -> dict[str, SyncRecord]:
        return self._tracker.pending(self._resource_key)


class RollbackTracker:
    """Per-resource map of capability -> SyncRecord behind a single lock.

    The lock is re-entrant so that a session spanning the
    convergence-and-record sequence can call the public methods.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, dict[str, SyncRecord]] = {}

    @contextmanager
    def session(self, resource_key: str) -> Iterator[TrackerSession]:
        """Hold the tracker lock for a whole convergence sequence."""
        with self._lock:
            yield TrackerSession(self, resource_key)

    def record(self, resource_key: str, capability_key: str, record: SyncRecord) -> None:
        """Store a record, replacing any stale one for the same capability."""
        with self._lock:
            self._records.setdefault(resource_key, {})[capability_key] = record
        logger.debug(
            "Recorded sync action",
            extra={
                "resource": resource_key,
                "capability": capability_key,
                "action": record.action.value,
            },
        )

    def pending(self, resource_key: str) -> dict[str, SyncRecord]:
        """Snapshot of the outstanding records for a resource."""
        with self._lock:
            return dict(self._records.get(resource_key, {}))

    def discard(self, resource_key: str) -> None:
        """Forget every record for a resource."""
        with self._lock:
            self._records.pop(resource_key, None)

    def revert_all(
        self, resource_key: str, managers: Mapping[str, CapabilityConfigManager]
    ) -> list[str]:
        """Invert every outstanding record for a resource.

        Each capability is attempted once per call. Successfully reverted
        records are cleared; failed ones are kept for a later retry.

        Returns:
            Keys of the capabilities that were reverted.

        Raises:
            RollbackError: If any capability could not be reverted.
        """
        with self._lock:
            records = self._records.get(resource_key)
            if not records:
                logger.info(
                    "Profiling pool degraded, but not because of changes made by this controller",
                    extra={"resource": resource_key},
                )
                return []

            reverted: list[str] = []
            errors: dict[str, Exception] = {}
            for capability_key, record in list(records.items()):
                manager = managers.get(capability_key)
                if manager is None:
                    errors[capability_key] = KeyError(f"no manager for capability {capability_key!r}")
                    continue
                try:
                    self._revert_one(manager, record)
                except (StoreError, CapabilityError) as e:
                    logger.error(
                        "Failed to revert sync action",
                        extra={
                            "resource": resource_key,
                            "capability": capability_key,
                            "action": record.action.value,
                            "error": str(e),
                        },
                    )
                    errors[capability_key] = e
                    continue
                del records[capability_key]
                reverted.append(capability_key)

            if not records:
                self._records.pop(resource_key, None)

        if errors:
            raise RollbackError(errors)
        return reverted

    @staticmethod
    def _revert_one(manager: CapabilityConfigManager, record: SyncRecord) -> None:
        match record:
            case Created(obj=obj):
                try:
                    manager.delete_object(obj)
                except ConflictError:
                    # uid precondition failed: our object is gone, a replacement stays
                    logger.info(
                        "Created object was replaced, leaving the replacement",
                        extra={"capability": manager.key, "object_name": obj.name},
                    )
            case Deleted():
                try:
                    manager.create_object()
                except ConflictError:
                    # Someone recreated it first; the pre-change state holds
                    logger.info(
                        "Object already recreated",
                        extra={"capability": manager.key},
                    )
            case _:
                raise TypeError(f"unknown sync record: {record!r}")
        logger.info(
            "Reverted sync action",
            extra={"capability": manager.key, "action": record.action.value},
        )
