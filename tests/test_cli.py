"""Tests for the profctl CLI."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner
from kube_mock import MockCluster

from profiling_operator.capabilities import KUBELET_CAPABILITY
from profiling_operator.cli import cli
from profiling_operator.store import StoreUnavailableError

MANIFEST = """\
apiVersion: nodeobservability.olm.openshift.io/v1alpha1
kind: NodeObservabilityMachineConfig
metadata:
  name: cluster
spec:
  enableKubeletProfiling: true
"""


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    # The CLI reconfigures root logging; keep pytest's handlers in place
    monkeypatch.setattr("profiling_operator.cli.setup_logging", lambda *args, **kwargs: None)
    for key in ("RESOURCE_NAME", "RESOURCE_NAMESPACE", "REQUEUE_INTERVAL", "ERROR_BACKOFF", "LOG_LEVEL"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestOfflineCommands:
    """Commands that never talk to a cluster."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_capabilities(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["capabilities"])

        assert result.exit_code == 0
        assert "99-kubelet-profiling" in result.output
        assert "10-crio-enable-profiling" in result.output

    def test_render(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["render", "kubelet"])

        assert result.exit_code == 0
        obj = yaml.safe_load(result.output)
        assert obj["kind"] == "KubeletConfig"
        assert obj["spec"]["kubeletConfig"] == {"enableProfilingHandler": True}

    def test_render_unknown_capability(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["render", "containerd"])
        assert result.exit_code == 2

    def test_validate(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "profiling.yaml"
        path.write_text(MANIFEST)

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 0
        assert "kubelet: enabled" in result.output
        assert "crio: disabled" in result.output
        assert "Valid" in result.output

    def test_validate_wrong_kind(self, runner: CliRunner, tmp_path: Path) -> None:
        path = tmp_path / "profiling.yaml"
        path.write_text(MANIFEST.replace("kind: NodeObservabilityMachineConfig", "kind: ConfigMap"))

        result = runner.invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "must be" in result.output


class TestClusterCommands:
    """Commands that run against a (mock) cluster."""

    def test_reconcile(self, runner: CliRunner, cluster: MockCluster) -> None:
        cluster.add_profiling_config(kubelet=True)

        with (
            patch("profiling_operator.cli.connect", return_value=MagicMock()),
            patch("profiling_operator.cli.build_reconciler", return_value=cluster.reconciler()),
        ):
            result = runner.invoke(cli, ["reconcile"])

        assert result.exit_code == 0, result.output
        assert "State:      normal" in result.output
        assert "Change:     kubelet created" in result.output
        assert "Reconciled" in result.output
        assert cluster.exists(KUBELET_CAPABILITY)

    def test_reconcile_failure(self, runner: CliRunner, cluster: MockCluster) -> None:
        cluster.add_profiling_config(kubelet=True)
        cluster.store.fail_on("get", StoreUnavailableError("connection refused"))

        with (
            patch("profiling_operator.cli.connect", return_value=MagicMock()),
            patch("profiling_operator.cli.build_reconciler", return_value=cluster.reconciler()),
        ):
            result = runner.invoke(cli, ["reconcile"])

        assert result.exit_code == 1
        assert "connection refused" in result.output

    def test_status(self, runner: CliRunner, cluster: MockCluster) -> None:
        cluster.add_dependent(KUBELET_CAPABILITY)

        with (
            patch("profiling_operator.cli.connect", return_value=MagicMock()),
            patch("profiling_operator.cli.KubernetesObjectStore", return_value=cluster.store),
        ):
            result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert any(line.startswith("kubelet") and line.endswith("present") for line in lines)
        assert any(line.startswith("crio") and line.endswith("absent") for line in lines)
        assert "pool" in lines[-1]
        assert "unknown" in lines[-1]

    def test_invalid_name_override(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["reconcile", "--name", "Bad_Name"])

        assert result.exit_code == 1
        assert "RESOURCE_NAME" in result.output
