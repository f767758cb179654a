"""Object store adapter over the Kubernetes custom objects API.

The reconciler only needs typed get/create/update/delete on a handful of
custom resource kinds. This module narrows `CustomObjectsApi` to that surface
and translates `ApiException` status codes into the error kinds the
reconciler branches on: not found, conflict, store unavailable.

All calls are blocking. Callers that live on an event loop offload them to a
worker thread.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from kubernetes.client import CustomObjectsApi, V1DeleteOptions, V1Preconditions
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from .models import ResourceKind

logger = logging.getLogger(__name__)

# HTTP statuses that indicate a transient infrastructure failure
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class StoreError(Exception):
    """Base class for object store failures."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """The object does not exist."""

    pass


class ConflictError(StoreError):
    """Optimistic-concurrency collision or create of an existing name."""

    pass


class StoreUnavailableError(StoreError):
    """Transient infrastructure failure talking to the API server."""

    pass


class ObjectStore(Protocol):
    """Typed access to custom resources, as consumed by the reconciler."""

    def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> dict[str, Any] | None:
        """Fetch an object. Returns None if it does not exist."""
        ...

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]: ...

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]: ...

    def update_status(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]: ...

    def delete(self, kind: ResourceKind, obj: dict[str, Any]) -> None:
        """Delete an object. A metadata.uid makes this conditional on identity."""
        ...


def translate_api_exception(e: ApiException, operation: str, kind: ResourceKind, name: str) -> StoreError:
    """Map an ApiException onto the store error hierarchy."""
    message = f"{operation} {kind.kind} {name!r} failed: {e.status} {e.reason}"
    if e.status == 404:
        return NotFoundError(message, status=e.status)
    if e.status == 409:
        return ConflictError(message, status=e.status)
    if e.status in TRANSIENT_STATUS_CODES:
        return StoreUnavailableError(message, status=e.status)
    return StoreError(message, status=e.status)


def _metadata(obj: dict[str, Any]) -> tuple[str, str | None]:
    metadata = obj.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise ValueError("object has no metadata.name")
    return name, metadata.get("namespace")


class KubernetesObjectStore:
    """ObjectStore backed by `kubernetes.client.CustomObjectsApi`.

    Cluster-scoped and namespaced kinds are both supported; the kind's
    `namespaced` flag selects the API family.
    """

    def __init__(self, api: CustomObjectsApi) -> None:
        self._api = api

    def get(
        self, kind: ResourceKind, name: str, namespace: str | None = None
    ) -> dict[str, Any] | None:
        try:
            if kind.namespaced:
                return self._api.get_namespaced_custom_object(
                    kind.group, kind.version, self._require_namespace(kind, namespace), kind.plural, name
                )
            return self._api.get_cluster_custom_object(kind.group, kind.version, kind.plural, name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_exception(e, "get", kind, name) from e
        except HTTPError as e:
            raise StoreUnavailableError(f"get {kind.kind} {name!r} failed: {e}") from e

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        name, namespace = _metadata(obj)
        try:
            if kind.namespaced:
                return self._api.create_namespaced_custom_object(
                    kind.group, kind.version, self._require_namespace(kind, namespace), kind.plural, obj
                )
            return self._api.create_cluster_custom_object(kind.group, kind.version, kind.plural, obj)
        except ApiException as e:
            raise translate_api_exception(e, "create", kind, name) from e
        except HTTPError as e:
            raise StoreUnavailableError(f"create {kind.kind} {name!r} failed: {e}") from e

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace an object. metadata.resourceVersion makes this conditional."""
        name, namespace = _metadata(obj)
        try:
            if kind.namespaced:
                return self._api.replace_namespaced_custom_object(
                    kind.group,
                    kind.version,
                    self._require_namespace(kind, namespace),
                    kind.plural,
                    name,
                    obj,
                )
            return self._api.replace_cluster_custom_object(
                kind.group, kind.version, kind.plural, name, obj
            )
        except ApiException as e:
            raise translate_api_exception(e, "update", kind, name) from e
        except HTTPError as e:
            raise StoreUnavailableError(f"update {kind.kind} {name!r} failed: {e}") from e

    def update_status(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        name, namespace = _metadata(obj)
        try:
            if kind.namespaced:
                return self._api.replace_namespaced_custom_object_status(
                    kind.group,
                    kind.version,
                    self._require_namespace(kind, namespace),
                    kind.plural,
                    name,
                    obj,
                )
            return self._api.replace_cluster_custom_object_status(
                kind.group, kind.version, kind.plural, name, obj
            )
        except ApiException as e:
            raise translate_api_exception(e, "update status of", kind, name) from e
        except HTTPError as e:
            raise StoreUnavailableError(f"update status of {kind.kind} {name!r} failed: {e}") from e

    def delete(self, kind: ResourceKind, obj: dict[str, Any]) -> None:
        """Delete an object.

        If the object carries metadata.uid the delete is preconditioned on it,
        so a same-named replacement is never removed (ConflictError instead).
        """
        name, namespace = _metadata(obj)
        uid = (obj.get("metadata") or {}).get("uid")
        body = V1DeleteOptions(preconditions=V1Preconditions(uid=uid)) if uid else None
        try:
            if kind.namespaced:
                self._api.delete_namespaced_custom_object(
                    kind.group,
                    kind.version,
                    self._require_namespace(kind, namespace),
                    kind.plural,
                    name,
                    body=body,
                )
            else:
                self._api.delete_cluster_custom_object(
                    kind.group, kind.version, kind.plural, name, body=body
                )
        except ApiException as e:
            raise translate_api_exception(e, "delete", kind, name) from e
        except HTTPError as e:
            raise StoreUnavailableError(f"delete {kind.kind} {name!r} failed: {e}") from e

    @staticmethod
    def _require_namespace(kind: ResourceKind, namespace: str | None) -> str:
        if not namespace:
            raise ValueError(f"{kind.kind} is namespaced but no namespace was given")
        return namespace
