"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for kube_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from kube_mock import MockCluster  # noqa: E402


@pytest.fixture
def cluster() -> MockCluster:
    """Empty mock cluster with default configuration."""
    return MockCluster()
