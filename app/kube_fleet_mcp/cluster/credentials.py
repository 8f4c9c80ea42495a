"""
Credential resolution.

Turns a ClusterConfig into an authenticated ApiClient. Every call builds
its own kubernetes Configuration, so clusters never share (or clobber)
the client library's process-wide default.

Source precedence:
1. in_cluster=True: the pod's service account, nothing else is read
2. kubeconfig_data: inline kubeconfig (base64 or raw YAML)
3. kubeconfig_path: kubeconfig file on disk
"""

import base64
import binascii
import os
from typing import Any, Optional

import yaml
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from kube_fleet_mcp.cluster.types import ClusterConfig, ResolvedCredentials
from kube_fleet_mcp.errors import (
    InvalidConfig,
    MalformedCredential,
    NoAmbientIdentity,
)
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

OPERATION = "resolve credentials"


def resolve_credentials(
    cluster_config: ClusterConfig, cluster_id: Optional[str] = None
) -> ResolvedCredentials:
    """
    Build an authenticated transport for a cluster.

    This is a blocking call (it may read files and run exec credential
    plugins); async callers should run it in a worker thread.

    Args:
        cluster_config: Credential source
        cluster_id: Used only for error context

    Returns:
        ResolvedCredentials with a fresh ApiClient and its Configuration

    Raises:
        InvalidConfig: No credential source given
        MalformedCredential: Source present but unusable
        NoAmbientIdentity: in_cluster requested outside a pod
    """
    if not cluster_config.has_source:
        raise InvalidConfig(
            "must provide either kubeconfig_path, kubeconfig_data, or set in_cluster=true",
            cluster_id=cluster_id,
            operation=OPERATION,
        )

    configuration = client.Configuration()

    if cluster_config.in_cluster:
        _load_in_cluster(configuration, cluster_id)
    elif cluster_config.kubeconfig_data:
        _load_from_data(
            configuration,
            cluster_config.kubeconfig_data,
            cluster_config.context,
            cluster_id,
        )
    else:
        _load_from_file(
            configuration,
            cluster_config.kubeconfig_path,
            cluster_config.context,
            cluster_id,
        )

    return ResolvedCredentials(
        api_client=client.ApiClient(configuration),
        configuration=configuration,
    )


def decode_kubeconfig_data(data: str | bytes) -> dict[str, Any]:
    """
    Decode inline kubeconfig into a mapping.

    Base64 input is accepted when it decodes strictly to UTF-8 text;
    anything else is treated as the YAML document itself.

    Raises:
        ValueError: Not a YAML mapping
        yaml.YAMLError: Not YAML at all
    """
    raw = data.encode() if isinstance(data, str) else bytes(data)
    text: Optional[str] = None

    compact = b"".join(raw.split())
    if compact:
        try:
            text = base64.b64decode(compact, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            text = None

    if text is None:
        text = raw.decode("utf-8")

    document = yaml.safe_load(text)
    if not isinstance(document, dict):
        raise ValueError("kubeconfig is not a mapping")
    return document


def _load_in_cluster(
    configuration: client.Configuration, cluster_id: Optional[str]
) -> None:
    try:
        config.load_incluster_config(client_configuration=configuration)
    except ConfigException as e:
        raise NoAmbientIdentity(
            f"in-cluster identity unavailable: {e}",
            cluster_id=cluster_id,
            operation=OPERATION,
            cause=e,
        ) from e


def _load_from_data(
    configuration: client.Configuration,
    data: str | bytes,
    context: Optional[str],
    cluster_id: Optional[str],
) -> None:
    try:
        document = decode_kubeconfig_data(data)
    except (yaml.YAMLError, ValueError, UnicodeDecodeError) as e:
        raise MalformedCredential(
            f"kubeconfig_data could not be parsed: {e}",
            cluster_id=cluster_id,
            operation=OPERATION,
            cause=e,
        ) from e

    try:
        config.load_kube_config_from_dict(
            config_dict=document,
            context=context,
            client_configuration=configuration,
            persist_config=False,
        )
    except (ConfigException, KeyError, TypeError, ValueError) as e:
        raise MalformedCredential(
            f"kubeconfig_data is not a usable kubeconfig: {e}",
            cluster_id=cluster_id,
            operation=OPERATION,
            cause=e,
        ) from e


def _load_from_file(
    configuration: client.Configuration,
    path: Optional[str],
    context: Optional[str],
    cluster_id: Optional[str],
) -> None:
    config_file = os.path.expanduser(path or "")
    if not os.path.isfile(config_file):
        raise MalformedCredential(
            f"kubeconfig file not found: {path}",
            cluster_id=cluster_id,
            operation=OPERATION,
        )

    try:
        config.load_kube_config(
            config_file=config_file,
            context=context,
            client_configuration=configuration,
            persist_config=False,
        )
    except (ConfigException, yaml.YAMLError, OSError, KeyError, TypeError, ValueError) as e:
        raise MalformedCredential(
            f"kubeconfig file {path} is not usable: {e}",
            cluster_id=cluster_id,
            operation=OPERATION,
            cause=e,
        ) from e

    logger.debug(f"Loaded kubeconfig {config_file} (context={context or 'current'})")
