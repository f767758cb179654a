"""Loading desired-state manifests from disk.

SECURITY: File reads enforce a size limit and all input is validated by the
pydantic models before it is used.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import PROFILING_CONFIG_KIND, ProfilingConfig

logger = logging.getLogger(__name__)

MAX_MANIFEST_FILE_SIZE_BYTES = 256 * 1024


class ManifestLoadError(Exception):
    """Raised when a manifest cannot be read or validated."""

    pass


def load_manifest(path: Path) -> ProfilingConfig:
    """Load and validate a NodeObservabilityMachineConfig manifest.

    Args:
        path: YAML file containing exactly one resource.

    Raises:
        ManifestLoadError: If the file is missing, too large, not YAML, of the
            wrong kind, or fails validation.
    """
    if not path.is_file():
        raise ManifestLoadError(f"Manifest not found: {path}")

    size = path.stat().st_size
    if size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise ManifestLoadError(
            f"Manifest {path} is {size} bytes, exceeding limit of {MAX_MANIFEST_FILE_SIZE_BYTES}"
        )

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ManifestLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestLoadError(f"Manifest {path} must contain a single mapping")

    api_version = data.get("apiVersion")
    kind = data.get("kind")
    if api_version != PROFILING_CONFIG_KIND.api_version or kind != PROFILING_CONFIG_KIND.kind:
        raise ManifestLoadError(
            f"Manifest {path} must be {PROFILING_CONFIG_KIND.api_version} "
            f"{PROFILING_CONFIG_KIND.kind}, got {api_version} {kind}"
        )

    try:
        resource = ProfilingConfig.from_k8s_object(data)
    except ValidationError as e:
        raise ManifestLoadError(f"Manifest {path} failed validation: {e}") from e

    logger.debug("Loaded manifest", extra={"path": str(path), "resource": resource.key})
    return resource
