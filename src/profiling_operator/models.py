"""Pydantic models for the resources this operator reads and writes.

These models provide:
1. Type-safe parsing of the Kubernetes wire format (camelCase JSON)
2. Validation at the boundary (fail fast, fail loudly)
3. Clean rendering back to dicts the API server accepts
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer

# =============================================================================
# Resource Kinds
# =============================================================================


@dataclass(frozen=True)
class ResourceKind:
    """Coordinates of a custom resource type on the API server."""

    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool = False

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


PROFILING_GROUP = "nodeobservability.olm.openshift.io"
MACHINECONFIG_GROUP = "machineconfiguration.openshift.io"

PROFILING_CONFIG_KIND = ResourceKind(
    group=PROFILING_GROUP,
    version="v1alpha1",
    plural="nodeobservabilitymachineconfigs",
    kind="NodeObservabilityMachineConfig",
)
KUBELET_CONFIG_KIND = ResourceKind(
    group=MACHINECONFIG_GROUP,
    version="v1",
    plural="kubeletconfigs",
    kind="KubeletConfig",
)
MACHINE_CONFIG_KIND = ResourceKind(
    group=MACHINECONFIG_GROUP,
    version="v1",
    plural="machineconfigs",
    kind="MachineConfig",
)
MACHINE_CONFIG_POOL_KIND = ResourceKind(
    group=MACHINECONFIG_GROUP,
    version="v1",
    plural="machineconfigpools",
    kind="MachineConfigPool",
)


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way metav1.Time does (RFC 3339, second precision, Z)."""
    return value.astimezone(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# =============================================================================
# Metadata
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of metav1.ObjectMeta used by the operator.

    Unknown metadata fields are kept so that a read-modify-write cycle never
    drops server-managed data.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(min_length=1, max_length=253)
    namespace: str | None = None
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None
    # None means "no finalizers"; never an empty list after our own edits
    finalizers: list[str] | None = None
    deletion_timestamp: str | None = Field(None, alias="deletionTimestamp")
    resource_version: str | None = Field(None, alias="resourceVersion")
    uid: str | None = None


# =============================================================================
# Desired-State Resource
# =============================================================================


class ProfilingSpec(BaseModel):
    """Capability toggles requested by the cluster administrator."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    enable_crio_profiling: bool = Field(False, alias="enableCrioProfiling")
    enable_kubelet_profiling: bool = Field(False, alias="enableKubeletProfiling")


class ProfilingStatus(BaseModel):
    """Status block. Only lastUpdate is owned by the reconciler."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    last_update: datetime | None = Field(None, alias="lastUpdate")
    # Written by the pool health collaborator
    update_status: dict[str, Any] | None = Field(None, alias="updateStatus")

    @field_serializer("last_update")
    def _serialize_last_update(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return format_timestamp(value)


class ProfilingConfig(BaseModel):
    """The desired-state resource (NodeObservabilityMachineConfig)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str = Field(PROFILING_CONFIG_KIND.api_version, alias="apiVersion")
    kind: str = PROFILING_CONFIG_KIND.kind
    metadata: ObjectMeta
    spec: ProfilingSpec = Field(default_factory=ProfilingSpec)
    status: ProfilingStatus = Field(default_factory=ProfilingStatus)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> ProfilingConfig:
        """Parse an API server response."""
        return cls.model_validate(obj)

    def to_k8s_object(self) -> dict[str, Any]:
        """Render to the wire format, omitting unset fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def key(self) -> str:
        """Identity used to key per-resource bookkeeping."""
        if self.metadata.namespace:
            return f"{self.metadata.namespace}/{self.metadata.name}"
        return self.metadata.name

    @property
    def is_being_deleted(self) -> bool:
        return self.metadata.deletion_timestamp is not None


# =============================================================================
# Dependent Configuration Objects
# =============================================================================


class ConfigObject(BaseModel):
    """A dependent configuration object (KubeletConfig, MachineConfig, ...).

    `spec` holds an opaque, capability-specific payload.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str = Field(alias="apiVersion")
    kind: str
    metadata: ObjectMeta
    spec: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> ConfigObject:
        return cls.model_validate(obj)

    def to_k8s_object(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @property
    def name(self) -> str:
        return self.metadata.name

    def payload_json(self) -> str:
        """Canonical JSON encoding of the payload, stable across calls."""
        return json.dumps(self.spec, sort_keys=True, separators=(",", ":"))
