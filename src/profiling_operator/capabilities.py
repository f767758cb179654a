"""Per-capability convergence of dependent configuration objects.

Each profiling capability (kubelet, CRI-O) owns exactly one dependent object
with a fixed, well-known name. Whether that object should exist is derived
purely from the capability's toggle, so convergence is expressed as two
idempotent operations instead of a field-level diff:

- ensure_exists: create the canonical object if it is missing
- ensure_absent: delete the object if it is present, then verify

The canonical object is always rebuilt from the capability descriptor, so
forward convergence and rollback can never disagree about the payload.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from .models import (
    KUBELET_CONFIG_KIND,
    MACHINE_CONFIG_KIND,
    ConfigObject,
    ObjectMeta,
    ProfilingConfig,
    ResourceKind,
)
from .store import NotFoundError, ObjectStore

logger = logging.getLogger(__name__)

# Pool the dependent objects target
PROFILING_ROLE = "profiling"
ROLE_LABEL = "machineconfiguration.openshift.io/role"
PROFILING_LABEL = "machineconfigs.nodeobservability.olm.openshift.io/profiling"

# Labels stamped on every dependent object
PROFILING_CONFIG_LABELS: dict[str, str] = {
    ROLE_LABEL: PROFILING_ROLE,
    PROFILING_LABEL: "",
}

# Labels a MachineConfigPool selects profiling configs by
PROFILING_POOL_SELECTOR_LABELS: dict[str, str] = {
    ROLE_LABEL: PROFILING_ROLE,
}

KUBELET_PROFILING_CONFIG_NAME = "99-kubelet-profiling"
CRIO_PROFILING_CONFIG_NAME = "10-crio-enable-profiling"

CRIO_SERVICE_UNIT = "crio.service"
CRIO_DROPIN_NAME = "10-mco-profile-unix-socket.conf"
CRIO_UNIX_SOCKET_ENV = "ENABLE_PROFILE_UNIX_SOCKET=true"
IGNITION_VERSION = "3.2.0"


class CapabilityError(Exception):
    """Base class for convergence failures of a single capability."""

    pass


class InconsistentStateError(CapabilityError):
    """A post-condition check after a mutation failed.

    The store is expected to be linearizable for a single key, so this
    indicates a stale read and is retried on the next pass.

    `created` is set when this call did create the object but could not read
    it back, so the change can still be recorded for rollback.
    """

    def __init__(self, message: str, *, created: ConfigObject | None = None) -> None:
        super().__init__(message)
        self.created = created


class SerializationError(CapabilityError):
    """The capability payload could not be constructed."""

    pass


PayloadBuilder = Callable[[], dict[str, Any]]


@dataclass(frozen=True)
class Capability:
    """Canonical configuration of one profiling capability.

    Attributes:
        key: Short identifier ("kubelet", "crio").
        kind: Resource kind of the dependent object.
        object_name: Fixed, well-known name of the dependent object.
        toggle: Field of the desired-state spec that enables the capability.
        build_payload: Produces the dependent object's spec.
        labels: Labels used for pool targeting.
        description: Human readable name used in events and logs.
    """

    key: str
    kind: ResourceKind
    object_name: str
    toggle: str
    build_payload: PayloadBuilder
    labels: dict[str, str] = field(default_factory=lambda: dict(PROFILING_CONFIG_LABELS))
    description: str = ""

    @property
    def display_name(self) -> str:
        return self.description or self.key

    def enabled_in(self, resource: ProfilingConfig) -> bool:
        """Whether the desired-state resource requests this capability."""
        return bool(getattr(resource.spec, self.toggle))


def kubelet_profiling_payload() -> dict[str, Any]:
    """KubeletConfig spec enabling the kubelet profiling handler."""
    return {
        "kubeletConfig": {"enableProfilingHandler": True},
        "machineConfigPoolSelector": {
            "matchLabels": dict(PROFILING_POOL_SELECTOR_LABELS),
        },
    }


def crio_profiling_payload() -> dict[str, Any]:
    """MachineConfig spec adding a systemd drop-in that enables the CRI-O profiling socket."""
    dropin = f'[Service]\nEnvironment="{CRIO_UNIX_SOCKET_ENV}"'
    return {
        "config": {
            "ignition": {"version": IGNITION_VERSION},
            "systemd": {
                "units": [
                    {
                        "name": CRIO_SERVICE_UNIT,
                        "dropins": [
                            {
                                "name": CRIO_DROPIN_NAME,
                                "contents": dropin,
                            }
                        ],
                    }
                ]
            },
        }
    }


KUBELET_CAPABILITY = Capability(
    key="kubelet",
    kind=KUBELET_CONFIG_KIND,
    object_name=KUBELET_PROFILING_CONFIG_NAME,
    toggle="enable_kubelet_profiling",
    build_payload=kubelet_profiling_payload,
    description="kubelet config",
)

CRIO_CAPABILITY = Capability(
    key="crio",
    kind=MACHINE_CONFIG_KIND,
    object_name=CRIO_PROFILING_CONFIG_NAME,
    toggle="enable_crio_profiling",
    build_payload=crio_profiling_payload,
    description="crio machine config",
)

# Order is the order capabilities are converged in
CAPABILITIES: tuple[Capability, ...] = (CRIO_CAPABILITY, KUBELET_CAPABILITY)


def get_capability(key: str) -> Capability:
    """Look up a canonical capability by key."""
    for capability in CAPABILITIES:
        if capability.key == key:
            return capability
    valid = [c.key for c in CAPABILITIES]
    raise KeyError(f"Unknown capability {key!r}, expected one of {valid}")


class CapabilityConfigManager:
    """Converges the dependent object of one capability against the store."""

    def __init__(self, capability: Capability, store: ObjectStore) -> None:
        self._capability = capability
        self._store = store

    @property
    def capability(self) -> Capability:
        return self._capability

    @property
    def key(self) -> str:
        return self._capability.key

    def build(self) -> ConfigObject:
        """Construct the canonical dependent object.

        Raises:
            SerializationError: If the payload is not JSON-serializable or
                does not form a valid object.
        """
        capability = self._capability
        try:
            payload = capability.build_payload()
            # Round-trip through JSON so that what we send is what we compare
            payload = json.loads(json.dumps(payload, sort_keys=True))
            return ConfigObject(
                api_version=capability.kind.api_version,
                kind=capability.kind.kind,
                metadata=ObjectMeta(
                    name=capability.object_name,
                    labels=dict(capability.labels),
                ),
                spec=payload,
            )
        except (TypeError, ValueError, ValidationError) as e:
            raise SerializationError(
                f"failed to build {capability.display_name} {capability.object_name}: {e}"
            ) from e

    def fetch(self) -> ConfigObject | None:
        """Fetch the dependent object by its well-known name."""
        obj = self._store.get(self._capability.kind, self._capability.object_name)
        if obj is None:
            return None
        return ConfigObject.from_k8s_object(obj)

    def create_object(self) -> ConfigObject:
        """Create the canonical dependent object.

        Returns:
            The object as acknowledged by the store (carries its uid).

        Raises:
            SerializationError: If the payload cannot be built.
            ConflictError: If an object with the same name already exists.
            StoreError: On any other store failure.
        """
        obj = self.build()
        persisted = self._store.create(self._capability.kind, obj.to_k8s_object())
        logger.info(
            f"Created {self._capability.display_name}",
            extra={"capability": self.key, "object_name": obj.name},
        )
        if not persisted:
            return obj
        return ConfigObject.from_k8s_object(persisted)

    def delete_object(self, obj: ConfigObject) -> None:
        """Delete the given dependent object. An already-deleted object is fine."""
        try:
            self._store.delete(self._capability.kind, obj.to_k8s_object())
        except NotFoundError:
            logger.info(
                f"{self._capability.display_name} already removed",
                extra={"capability": self.key, "object_name": obj.name},
            )
            return
        logger.info(
            f"Removed {self._capability.display_name}",
            extra={"capability": self.key, "object_name": obj.name},
        )

    def ensure_exists(self) -> tuple[ConfigObject, bool]:
        """Ensure the dependent object exists.

        Returns:
            Tuple of (object, created). `created` is True only if this call
            created the object.

        Raises:
            ConflictError: If another creator won the race. Not retried here,
                the next pass re-converges.
            InconsistentStateError: If the created object cannot be read back.
                Its `created` attribute holds the object the store acknowledged.
        """
        existing = self.fetch()
        if existing is not None:
            return existing, False

        acknowledged = self.create_object()

        created = self.fetch()
        if created is None:
            raise InconsistentStateError(
                f"failed to fetch just created {self._capability.display_name} "
                f"{self._capability.object_name}",
                created=acknowledged,
            )
        return created, True

    def ensure_absent(self) -> bool:
        """Ensure the dependent object does not exist.

        Returns:
            True if this call deleted the object, False if it was already absent.

        Raises:
            InconsistentStateError: If the store still reports the object after delete.
        """
        existing = self.fetch()
        if existing is None:
            return False

        self.delete_object(existing)

        if self.fetch() is not None:
            raise InconsistentStateError(
                f"{self._capability.display_name} {self._capability.object_name} "
                "still present after delete"
            )
        return True


def snapshot(obj: ConfigObject) -> ConfigObject:
    """Detached copy of an object, safe to hold across passes."""
    return obj.model_copy(deep=True)


def build_managers(
    store: ObjectStore, capabilities: tuple[Capability, ...] = CAPABILITIES
) -> dict[str, CapabilityConfigManager]:
    """Instantiate one manager per capability, keyed by capability key."""
    return {c.key: CapabilityConfigManager(c, store) for c in capabilities}


def render_capability(key: str) -> dict[str, Any]:
    """Canonical dependent object for a capability, without a store."""
    capability = get_capability(key)
    # build() does not touch the store
    return CapabilityConfigManager(capability, store=None).build().to_k8s_object()  # type: ignore[arg-type]
