"""Tests for manifest loading."""

from pathlib import Path

import pytest

from profiling_operator.manifests import MAX_MANIFEST_FILE_SIZE_BYTES, ManifestLoadError, load_manifest

VALID_MANIFEST = """\
apiVersion: nodeobservability.olm.openshift.io/v1alpha1
kind: NodeObservabilityMachineConfig
metadata:
  name: cluster
spec:
  enableCrioProfiling: true
"""


class TestLoadManifest:
    """Tests for load_manifest."""

    def test_valid(self, tmp_path: Path) -> None:
        path = tmp_path / "profiling.yaml"
        path.write_text(VALID_MANIFEST)

        resource = load_manifest(path)

        assert resource.name == "cluster"
        assert resource.spec.enable_crio_profiling is True
        assert resource.spec.enable_kubelet_profiling is False

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ManifestLoadError, match="not found"):
            load_manifest(tmp_path / "missing.yaml")

    def test_too_large(self, tmp_path: Path) -> None:
        path = tmp_path / "big.yaml"
        path.write_text(VALID_MANIFEST + "#" * MAX_MANIFEST_FILE_SIZE_BYTES)

        with pytest.raises(ManifestLoadError, match="exceeding limit"):
            load_manifest(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("spec: [unclosed\n")

        with pytest.raises(ManifestLoadError, match="Invalid YAML"):
            load_manifest(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ManifestLoadError, match="single mapping"):
            load_manifest(path)

    def test_wrong_kind(self, tmp_path: Path) -> None:
        path = tmp_path / "kubelet.yaml"
        path.write_text(VALID_MANIFEST.replace("NodeObservabilityMachineConfig", "KubeletConfig"))

        with pytest.raises(ManifestLoadError, match="must be"):
            load_manifest(path)

    def test_wrong_toggle_type(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text(VALID_MANIFEST.replace("true", "[yes]"))

        with pytest.raises(ManifestLoadError, match="failed validation"):
            load_manifest(path)
