"""Tests for the custom objects API adapter."""

from __future__ import annotations

import dataclasses
from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from profiling_operator.models import KUBELET_CONFIG_KIND, PROFILING_CONFIG_KIND
from profiling_operator.store import (
    ConflictError,
    KubernetesObjectStore,
    NotFoundError,
    StoreError,
    StoreUnavailableError,
    translate_api_exception,
)

KUBELET_OBJ = {
    "apiVersion": "machineconfiguration.openshift.io/v1",
    "kind": "KubeletConfig",
    "metadata": {"name": "99-kubelet-profiling"},
    "spec": {},
}

NAMESPACED_KIND = dataclasses.replace(PROFILING_CONFIG_KIND, namespaced=True)


@pytest.fixture
def api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def store(api: MagicMock) -> KubernetesObjectStore:
    return KubernetesObjectStore(api)


class TestTranslateApiException:
    """Tests for status code mapping."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (404, NotFoundError),
            (409, ConflictError),
            (429, StoreUnavailableError),
            (503, StoreUnavailableError),
        ],
    )
    def test_mapping(self, status: int, expected: type[StoreError]) -> None:
        error = translate_api_exception(ApiException(status=status, reason="x"), "get", KUBELET_CONFIG_KIND, "a")
        assert type(error) is expected
        assert error.status == status

    def test_forbidden_is_generic(self) -> None:
        error = translate_api_exception(
            ApiException(status=403, reason="Forbidden"), "create", KUBELET_CONFIG_KIND, "a"
        )
        assert type(error) is StoreError
        assert "create KubeletConfig 'a' failed: 403 Forbidden" in str(error)


class TestKubernetesObjectStore:
    """Tests for KubernetesObjectStore."""

    def test_get_cluster_scoped(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.get_cluster_custom_object.return_value = KUBELET_OBJ

        assert store.get(KUBELET_CONFIG_KIND, "99-kubelet-profiling") == KUBELET_OBJ
        api.get_cluster_custom_object.assert_called_once_with(
            "machineconfiguration.openshift.io", "v1", "kubeletconfigs", "99-kubelet-profiling"
        )

    def test_get_namespaced(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        store.get(NAMESPACED_KIND, "cluster", "node-observability")

        api.get_namespaced_custom_object.assert_called_once_with(
            "nodeobservability.olm.openshift.io",
            "v1alpha1",
            "node-observability",
            "nodeobservabilitymachineconfigs",
            "cluster",
        )

    def test_get_namespaced_requires_namespace(self, store: KubernetesObjectStore) -> None:
        with pytest.raises(ValueError):
            store.get(NAMESPACED_KIND, "cluster")

    def test_get_missing_returns_none(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.get_cluster_custom_object.side_effect = ApiException(status=404, reason="Not Found")

        assert store.get(KUBELET_CONFIG_KIND, "missing") is None

    def test_get_server_error(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.get_cluster_custom_object.side_effect = ApiException(status=500, reason="Internal Server Error")

        with pytest.raises(StoreUnavailableError):
            store.get(KUBELET_CONFIG_KIND, "99-kubelet-profiling")

    def test_connection_error(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.get_cluster_custom_object.side_effect = MaxRetryError(None, "/apis", "connection refused")

        with pytest.raises(StoreUnavailableError):
            store.get(KUBELET_CONFIG_KIND, "99-kubelet-profiling")

    def test_create_conflict(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.create_cluster_custom_object.side_effect = ApiException(status=409, reason="AlreadyExists")

        with pytest.raises(ConflictError):
            store.create(KUBELET_CONFIG_KIND, KUBELET_OBJ)

    def test_create_cluster_scoped(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        store.create(KUBELET_CONFIG_KIND, KUBELET_OBJ)

        api.create_cluster_custom_object.assert_called_once_with(
            "machineconfiguration.openshift.io", "v1", "kubeletconfigs", KUBELET_OBJ
        )

    def test_create_requires_name(self, store: KubernetesObjectStore) -> None:
        with pytest.raises(ValueError):
            store.create(KUBELET_CONFIG_KIND, {"metadata": {}})

    def test_update_uses_replace(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        obj = {"metadata": {"name": "cluster", "resourceVersion": "7"}}

        store.update(PROFILING_CONFIG_KIND, obj)

        api.replace_cluster_custom_object.assert_called_once_with(
            "nodeobservability.olm.openshift.io", "v1alpha1", "nodeobservabilitymachineconfigs", "cluster", obj
        )

    def test_update_stale_version(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.replace_cluster_custom_object.side_effect = ApiException(status=409, reason="Conflict")

        with pytest.raises(ConflictError):
            store.update(PROFILING_CONFIG_KIND, {"metadata": {"name": "cluster"}})

    def test_update_status_namespaced(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        obj = {"metadata": {"name": "cluster", "namespace": "node-observability"}, "status": {}}

        store.update_status(NAMESPACED_KIND, obj)

        api.replace_namespaced_custom_object_status.assert_called_once()

    def test_delete(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        store.delete(KUBELET_CONFIG_KIND, KUBELET_OBJ)

        api.delete_cluster_custom_object.assert_called_once_with(
            "machineconfiguration.openshift.io", "v1", "kubeletconfigs", "99-kubelet-profiling", body=None
        )

    def test_delete_preconditioned_on_uid(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        obj = {**KUBELET_OBJ, "metadata": {"name": "99-kubelet-profiling", "uid": "abc-123"}}

        store.delete(KUBELET_CONFIG_KIND, obj)

        body = api.delete_cluster_custom_object.call_args.kwargs["body"]
        assert body.preconditions.uid == "abc-123"

    def test_delete_uid_mismatch(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.delete_cluster_custom_object.side_effect = ApiException(status=409, reason="Conflict")
        obj = {**KUBELET_OBJ, "metadata": {"name": "99-kubelet-profiling", "uid": "stale"}}

        with pytest.raises(ConflictError):
            store.delete(KUBELET_CONFIG_KIND, obj)

    def test_delete_missing(self, store: KubernetesObjectStore, api: MagicMock) -> None:
        api.delete_cluster_custom_object.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(NotFoundError):
            store.delete(KUBELET_CONFIG_KIND, KUBELET_OBJ)
