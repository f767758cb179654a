"""Kubernetes API mock for reconciler tests.

Provides an in-memory cluster that stands in for the API server, so the
reconciliation flow can be tested end to end without a cluster.

Key Features:
- In-memory object store with resourceVersion and finalizer semantics
- Error injection per operation and resource kind
- Event capture
- Scripted MachineConfigPool health

Usage:
    from kube_mock import MockCluster

    cluster = MockCluster()
    cluster.add_profiling_config(kubelet=True)
    reconciler = cluster.reconciler()
    result = reconciler.reconcile(cluster.request())

    assert cluster.exists(KUBELET_CAPABILITY)
"""

from .cluster import FIXED_NOW, MockCluster
from .events import RecordedEvent, RecordingEventRecorder
from .pool import ScriptedPoolProbe
from .store import MockObjectStore, StoreCall

__all__ = [
    "FIXED_NOW",
    "MockCluster",
    "MockObjectStore",
    "RecordedEvent",
    "RecordingEventRecorder",
    "ScriptedPoolProbe",
    "StoreCall",
]
