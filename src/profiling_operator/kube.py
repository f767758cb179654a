"""Kubernetes client construction.

In a pod the service account token is used; outside a cluster (local runs,
the CLI) the current kubeconfig context is used instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from kubernetes import client, config

logger = logging.getLogger(__name__)


class ClusterConnectionError(Exception):
    """Raised when no cluster credentials can be loaded."""

    pass


@dataclass(frozen=True)
class KubeClients:
    """API clients used by the operator."""

    custom_objects: client.CustomObjectsApi
    core: client.CoreV1Api


def load_clients(kubeconfig: str | None = None, context: str | None = None) -> KubeClients:
    """Load cluster credentials and build API clients.

    Args:
        kubeconfig: Explicit kubeconfig path. Skips in-cluster detection.
        context: kubeconfig context to use.

    Raises:
        ClusterConnectionError: If neither in-cluster nor kubeconfig
            credentials are available.
    """
    if kubeconfig is None and context is None:
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
            return _build_clients()
        except config.ConfigException:
            logger.info("Not running in a cluster, falling back to kubeconfig")

    try:
        config.load_kube_config(config_file=kubeconfig, context=context)
    except (config.ConfigException, FileNotFoundError) as e:
        raise ClusterConnectionError(f"Failed to load Kubernetes configuration: {e}") from e

    logger.info("Loaded kubeconfig", extra={"kubeconfig": kubeconfig or "default", "context": context})
    return _build_clients()


def _build_clients() -> KubeClients:
    api_client = client.ApiClient()
    return KubeClients(
        custom_objects=client.CustomObjectsApi(api_client),
        core=client.CoreV1Api(api_client),
    )
