"""
Server-side apply of arbitrary manifests.

Decodes manifest text, resolves the kind through discovery and issues a
single apply patch owned by a field manager, with force semantics and
optional dry run.
"""

import asyncio
import json
from typing import Any, Optional

import urllib3
import yaml
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from kube_fleet_mcp.cluster.registry import ClusterRegistry
from kube_fleet_mcp.errors import (
    ClusterUnreachable,
    MalformedCredential,
    MalformedManifest,
    PatchRejected,
)
from kube_fleet_mcp.manifest.discovery import DiscoveryResolver
from kube_fleet_mcp.manifest.types import (
    ApplyResult,
    DiscoveryMapping,
    ManifestObject,
)
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

OPERATION = "apply"
DEFAULT_FIELD_MANAGER = "kube-fleet-mcp"
APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"


def decode_manifest(manifest_text: str) -> ManifestObject:
    """
    Decode manifest text into a single ManifestObject.

    Raises:
        MalformedManifest: Not YAML, not exactly one mapping, or missing
            apiVersion, kind or metadata.name
    """
    if not manifest_text or not manifest_text.strip():
        raise MalformedManifest("manifest is empty", operation=OPERATION)

    try:
        documents = [d for d in yaml.safe_load_all(manifest_text) if d is not None]
    except yaml.YAMLError as e:
        raise MalformedManifest(
            f"manifest is not valid YAML: {e}", operation=OPERATION, cause=e
        ) from e

    if len(documents) != 1:
        raise MalformedManifest(
            f"expected exactly one object, found {len(documents)}",
            operation=OPERATION,
        )

    body = documents[0]
    if not isinstance(body, dict):
        raise MalformedManifest("manifest is not a mapping", operation=OPERATION)

    api_version = body.get("apiVersion")
    kind = body.get("kind")
    metadata = body.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    name = metadata.get("name")

    missing = [
        field
        for field, value in (
            ("apiVersion", api_version),
            ("kind", kind),
            ("metadata.name", name),
        )
        if not isinstance(value, str) or not value
    ]
    if missing:
        raise MalformedManifest(
            f"manifest is missing {', '.join(missing)}", operation=OPERATION
        )

    namespace = metadata.get("namespace")
    return ManifestObject(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace if isinstance(namespace, str) and namespace else None,
        body=body,
    )


class ApplyEngine:
    """Applies manifests to registered clusters."""

    def __init__(
        self,
        registry: ClusterRegistry,
        resolver: DiscoveryResolver,
        request_timeout: float = 30.0,
        default_field_manager: str = DEFAULT_FIELD_MANAGER,
    ):
        self._registry = registry
        self._resolver = resolver
        self._request_timeout = request_timeout
        self._default_field_manager = default_field_manager

    async def apply(
        self,
        cluster_id: str,
        manifest_text: str,
        field_manager: Optional[str] = None,
        dry_run: bool = False,
    ) -> ApplyResult:
        """
        Apply a manifest with server-side apply.

        Re-applying the same manifest with the same field manager is a
        no-op at the API level.

        Args:
            cluster_id: Registered cluster
            manifest_text: A single YAML (or JSON) object
            field_manager: Owner of the applied fields
            dry_run: Validate server-side without persisting

        Raises:
            NotFound, MalformedManifest, UnknownResourceType,
            DiscoveryUnavailable, PatchRejected, ClusterUnreachable
        """
        manifest = decode_manifest(manifest_text)
        manager = field_manager or self._default_field_manager

        api_client = await self._registry.lookup(cluster_id)
        mapping = await self._resolver.resolve(
            cluster_id, api_client, manifest.group, manifest.version, manifest.kind
        )

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self._patch, api_client, mapping, manifest, manager, dry_run
                ),
                timeout=self._request_timeout + 1,
            )
        except ApiException as e:
            raise self._map_api_error(cluster_id, manifest, e) from e
        except asyncio.TimeoutError as e:
            raise ClusterUnreachable(
                f"apply timed out after {self._request_timeout}s",
                cluster_id=cluster_id,
                operation=OPERATION,
                cause=e,
            ) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise ClusterUnreachable(
                str(e), cluster_id=cluster_id, operation=OPERATION, cause=e
            ) from e

        result = _result_from_response(response, manifest, mapping, dry_run)
        logger.info(
            f"{'Dry-run applied' if dry_run else 'Applied'} {result.kind} "
            f"{result.namespace + '/' if result.namespace else ''}{result.name} "
            f"on {cluster_id} (field_manager={manager})"
        )
        return result

    def _patch(
        self,
        api_client: client.ApiClient,
        mapping: DiscoveryMapping,
        manifest: ManifestObject,
        field_manager: str,
        dry_run: bool,
    ) -> Any:
        """Issue the apply patch (blocking)."""
        query_params = [("fieldManager", field_manager), ("force", True)]
        if dry_run:
            query_params.append(("dryRun", "All"))

        request = api_client.param_serialize(
            method="PATCH",
            resource_path=mapping.path(manifest.name, manifest.namespace),
            query_params=query_params,
            header_params={
                "Accept": "application/json",
                "Content-Type": APPLY_PATCH_CONTENT_TYPE,
            },
            body=manifest.body,
            auth_settings=["BearerToken"],
        )
        method, url, header_params, body, post_params = request

        response = api_client.call_api(
            method,
            url,
            header_params=header_params,
            body=body,
            post_params=post_params,
            _request_timeout=self._request_timeout,
        )
        response.read()
        return api_client.response_deserialize(
            response_data=response,
            response_types_map={"200": "object", "201": "object"},
        ).data

    @staticmethod
    def _map_api_error(
        cluster_id: str, manifest: ManifestObject, error: ApiException
    ) -> Exception:
        status = error.status or 0
        if status == 0 or status >= 500:
            return ClusterUnreachable(
                f"API server error ({status} {error.reason})",
                cluster_id=cluster_id,
                operation=OPERATION,
                cause=error,
            )

        if status == 401:
            return MalformedCredential(
                "credentials rejected by the API server (401); re-register the cluster",
                cluster_id=cluster_id,
                operation=OPERATION,
                cause=error,
            )

        return PatchRejected(
            f"{manifest.kind} {manifest.name} rejected ({status}): "
            f"{_status_message(error)}",
            status=status,
            cluster_id=cluster_id,
            operation=OPERATION,
            cause=error,
        )


def _status_message(error: ApiException) -> str:
    """Extract the Status message from an API error body."""
    body = error.body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if body:
        try:
            status = json.loads(body)
        except ValueError:
            return str(body)
        if isinstance(status, dict) and status.get("message"):
            return status["message"]
    return str(error.reason)


def _result_from_response(
    response: Any,
    manifest: ManifestObject,
    mapping: DiscoveryMapping,
    dry_run: bool,
) -> ApplyResult:
    obj = response if isinstance(response, dict) else {}
    metadata = obj.get("metadata") or {}

    namespace = metadata.get("namespace") or manifest.namespace
    if not mapping.namespaced:
        namespace = None

    return ApplyResult(
        name=metadata.get("name") or manifest.name,
        namespace=namespace,
        kind=obj.get("kind") or manifest.kind,
        dry_run=dry_run,
        api_version=obj.get("apiVersion") or manifest.api_version,
        uid=metadata.get("uid"),
        resource_version=metadata.get("resourceVersion"),
    )
