"""Tests for Kubernetes client construction."""

from unittest.mock import patch

import pytest
from kubernetes.config import ConfigException

from profiling_operator.kube import ClusterConnectionError, load_clients


class TestLoadClients:
    """Tests for load_clients."""

    def test_in_cluster(self) -> None:
        with (
            patch("profiling_operator.kube.config.load_incluster_config") as incluster,
            patch("profiling_operator.kube.config.load_kube_config") as kubeconfig,
        ):
            clients = load_clients()

        incluster.assert_called_once()
        kubeconfig.assert_not_called()
        assert clients.custom_objects.api_client is clients.core.api_client

    def test_falls_back_to_kubeconfig(self) -> None:
        with (
            patch(
                "profiling_operator.kube.config.load_incluster_config",
                side_effect=ConfigException("not in cluster"),
            ),
            patch("profiling_operator.kube.config.load_kube_config") as kubeconfig,
        ):
            load_clients()

        kubeconfig.assert_called_once_with(config_file=None, context=None)

    def test_explicit_kubeconfig_skips_in_cluster(self) -> None:
        with (
            patch("profiling_operator.kube.config.load_incluster_config") as incluster,
            patch("profiling_operator.kube.config.load_kube_config") as kubeconfig,
        ):
            load_clients(kubeconfig="/tmp/kubeconfig", context="lab")

        incluster.assert_not_called()
        kubeconfig.assert_called_once_with(config_file="/tmp/kubeconfig", context="lab")

    def test_no_credentials(self) -> None:
        with (
            patch(
                "profiling_operator.kube.config.load_incluster_config",
                side_effect=ConfigException("not in cluster"),
            ),
            patch(
                "profiling_operator.kube.config.load_kube_config",
                side_effect=ConfigException("Invalid kube-config file"),
            ),
        ):
            with pytest.raises(ClusterConnectionError):
                load_clients()
