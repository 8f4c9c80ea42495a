"""
Pytest configuration and shared fixtures.
"""

import sys
from pathlib import Path

import pytest


# Add app directory to path
APP_DIR = Path(__file__).parent.parent / "app"
sys.path.insert(0, str(APP_DIR))

from kube_fleet_mcp.cluster import ClusterConfig, ClusterRegistry  # noqa: E402

from fakes import fake_resolver, make_kubeconfig  # noqa: E402


@pytest.fixture
def kubeconfig_text() -> str:
    return make_kubeconfig()


@pytest.fixture
def registry() -> ClusterRegistry:
    """Registry whose credential resolution is mocked out."""
    return ClusterRegistry(probe_timeout=0.5, resolver=fake_resolver)


@pytest.fixture
def inline_config() -> ClusterConfig:
    return ClusterConfig(kubeconfig_data=make_kubeconfig())
