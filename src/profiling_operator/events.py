"""Event emission for changes made by the reconciler.

Events are best-effort: a failure to post one is logged and never fails the
reconciliation pass that produced it.
"""

from __future__ import annotations

import logging
import secrets
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol

from kubernetes.client import CoreV1Api, CoreV1Event, V1EventSource, V1ObjectMeta, V1ObjectReference
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from .models import ProfilingConfig

logger = logging.getLogger(__name__)

EVENT_SOURCE_COMPONENT = "node-profiling-operator"


class EventType(str, Enum):
    NORMAL = "Normal"
    WARNING = "Warning"


class EventReason(str, Enum):
    """Reason codes for emitted events."""

    CREATE_CONFIG = "CreateConfig"
    DELETE_CONFIG = "DeleteConfig"
    REVERT_CONFIG = "RevertConfig"
    REVERT_FAILED = "RevertFailed"


class EventRecorder(Protocol):
    """Sink for human-visible notifications about a resource."""

    def event(
        self,
        resource: ProfilingConfig,
        event_type: EventType,
        reason: EventReason,
        message: str,
    ) -> None: ...


class LoggingEventRecorder:
    """Writes events to the log only."""

    def event(
        self,
        resource: ProfilingConfig,
        event_type: EventType,
        reason: EventReason,
        message: str,
    ) -> None:
        level = logging.WARNING if event_type == EventType.WARNING else logging.INFO
        logger.log(
            level,
            message,
            extra={"resource": resource.key, "reason": reason.value, "event_type": event_type.value},
        )


class KubernetesEventRecorder:
    """Posts core/v1 Events referencing the desired-state resource."""

    def __init__(self, api: CoreV1Api, default_namespace: str) -> None:
        self._api = api
        self._default_namespace = default_namespace

    def event(
        self,
        resource: ProfilingConfig,
        event_type: EventType,
        reason: EventReason,
        message: str,
    ) -> None:
        namespace = resource.metadata.namespace or self._default_namespace
        now = datetime.now(UTC)
        body = CoreV1Event(
            metadata=V1ObjectMeta(
                name=f"{resource.name}.{secrets.token_hex(8)}",
                namespace=namespace,
            ),
            involved_object=V1ObjectReference(
                api_version=resource.api_version,
                kind=resource.kind,
                name=resource.name,
                namespace=resource.metadata.namespace,
                uid=resource.metadata.uid,
                resource_version=resource.metadata.resource_version,
            ),
            type=event_type.value,
            reason=reason.value,
            message=message,
            source=V1EventSource(component=EVENT_SOURCE_COMPONENT),
            first_timestamp=now,
            last_timestamp=now,
            count=1,
        )
        try:
            self._api.create_namespaced_event(namespace, body)
        except ApiException as e:
            logger.warning(
                "Failed to record event",
                extra={
                    "resource": resource.key,
                    "reason": reason.value,
                    "status_code": e.status,
                    "error": str(e.reason),
                },
            )
            return
        except HTTPError as e:
            logger.warning(
                "Failed to record event",
                extra={"resource": resource.key, "reason": reason.value, "error": str(e)},
            )
            return
        logger.debug(
            "Recorded event",
            extra={"resource": resource.key, "reason": reason.value, "event_message": message},
        )
