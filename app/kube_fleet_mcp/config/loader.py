"""
Configuration loader with YAML and environment variable support.

Priority (highest to lowest):
1. Environment variables: KUBE_FLEET_SERVER__PORT=9000
2. User config: --config-dir path / ~/.kubefleet/config.yaml
   (plus ~/.kubefleet/clusters.yaml, appended to the clusters list)
3. Built-in defaults: kube_fleet_mcp/config/defaults/settings.yaml
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml

from kube_fleet_mcp.config.models import KubeFleetConfig
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".kubefleet"
PACKAGE_DEFAULTS_DIR = Path(__file__).parent / "defaults"

# Environment variable prefix
ENV_PREFIX = "KUBE_FLEET_"
ENV_DELIMITER = "__"

CLUSTERS_FILE = "clusters.yaml"


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Values from 'override' take precedence over 'base'.
    Nested dicts are merged recursively; lists are replaced.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or unparsable."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {path}: {e}")
        return {}
    if not isinstance(content, dict):
        if content:
            logger.warning(f"Ignoring {path}: top level is not a mapping")
        return {}
    return content


def _load_cluster_file(path: Path) -> list[dict[str, Any]]:
    """
    Load preloaded cluster entries kept outside config.yaml.

    Accepts either a bare list of entries or a mapping with a
    ``clusters`` list.
    """
    if not path.exists():
        return []
    try:
        with open(path) as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {path}: {e}")
        return []
    if isinstance(content, dict):
        content = content.get("clusters")
    if content is None:
        return []
    if not isinstance(content, list):
        logger.warning(f"Ignoring {path}: expected a list of clusters")
        return []
    return content


def _get_env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """
    Extract configuration overrides from environment variables.

    Environment variables are expected in the format:
    KUBE_FLEET_SECTION__KEY=value

    For nested keys, use double underscore as delimiter:
    KUBE_FLEET_SERVER__PORT=9000 -> {"server": {"port": 9000}}
    KUBE_FLEET_TUNNEL__READY_TIMEOUT_SECONDS=15 -> {"tunnel": {"ready_timeout_seconds": 15}}
    """
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        key_path = [p for p in key[len(ENV_PREFIX) :].lower().split(ENV_DELIMITER) if p]
        if not key_path:
            continue

        current = overrides
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[key_path[-1]] = _parse_env_value(value)

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse environment variable value to appropriate Python type."""
    # Boolean
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    # Integer
    try:
        return int(value)
    except ValueError:
        pass

    # Float
    try:
        return float(value)
    except ValueError:
        pass

    # String (default)
    return value


def load_config(config_dir: Optional[str | Path] = None) -> KubeFleetConfig:
    """
    Load configuration from multiple sources.

    Args:
        config_dir: Optional path to configuration directory.
                   If not provided, uses ~/.kubefleet/

    Returns:
        KubeFleetConfig: Validated configuration object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    # Start with package defaults
    config_data = _load_yaml_file(PACKAGE_DEFAULTS_DIR / "settings.yaml")

    # Merge user config
    user_config_dir = Path(config_dir).expanduser() if config_dir else DEFAULT_CONFIG_DIR
    user_config = _load_yaml_file(user_config_dir / "config.yaml")
    config_data = _deep_merge(config_data, user_config)

    # Clusters kept in their own file are appended, not merged
    extra_clusters = _load_cluster_file(user_config_dir / CLUSTERS_FILE)
    if extra_clusters:
        config_data["clusters"] = list(config_data.get("clusters") or []) + extra_clusters

    # Apply environment variable overrides (highest priority)
    config_data = _deep_merge(config_data, _get_env_overrides())

    return KubeFleetConfig.model_validate(config_data)


def reload_config(
    current_config: KubeFleetConfig, config_dir: Optional[str | Path] = None
) -> KubeFleetConfig:
    """
    Reload configuration (for SIGHUP handling).

    Args:
        current_config: Current configuration (for fallback on error)
        config_dir: Configuration directory path

    Returns:
        KubeFleetConfig: New configuration, or current if reload fails
    """
    try:
        return load_config(config_dir)
    except Exception as e:
        logger.warning(f"Config reload failed, keeping current config: {e}")
        return current_config
