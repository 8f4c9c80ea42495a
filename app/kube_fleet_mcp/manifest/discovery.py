"""
Dynamic resource resolution.

Maps an arbitrary group/version/kind to its REST collection and scope
using the cluster's live discovery document, so custom resources work
without a static table. Documents are cached per cluster and
group/version for a short TTL; a kind missing from a cached document
forces one refresh before giving up.
"""

import asyncio
import time
from dataclasses import dataclass
from functools import partial
from typing import Optional

import urllib3
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from kube_fleet_mcp.errors import DiscoveryUnavailable, UnknownResourceType
from kube_fleet_mcp.manifest.types import DiscoveryMapping, ResourceScope
from kube_fleet_mcp.utils.logging import get_logger

logger = get_logger(__name__)

OPERATION = "discovery"


@dataclass
class _CachedDocument:
    mappings: list[DiscoveryMapping]
    fetched_at: float


class DiscoveryResolver:
    """Discovery-backed kind to endpoint mapping with a short-lived cache."""

    def __init__(self, cache_ttl: float = 60.0, request_timeout: float = 30.0):
        """
        Initialize resolver.

        Args:
            cache_ttl: Seconds a discovery document is reused (0 disables)
            request_timeout: Seconds allowed for one discovery request
        """
        self._cache_ttl = cache_ttl
        self._request_timeout = request_timeout
        self._cache: dict[tuple[str, str, str], _CachedDocument] = {}

    async def resolve(
        self,
        cluster_id: str,
        api_client: client.ApiClient,
        group: str,
        version: str,
        kind: str,
    ) -> DiscoveryMapping:
        """
        Resolve a kind to its endpoint.

        Raises:
            UnknownResourceType: Group/version not served or kind not in it
            DiscoveryUnavailable: Discovery could not be fetched
        """
        mappings = await self._document(cluster_id, api_client, group, version)
        mapping = _match(mappings, kind)

        if mapping is None and self._cache_ttl > 0:
            # Cached document may predate a newly installed CRD
            mappings = await self._document(
                cluster_id, api_client, group, version, refresh=True
            )
            mapping = _match(mappings, kind)

        if mapping is None:
            gv = f"{group}/{version}" if group else version
            raise UnknownResourceType(
                f"no resource of kind {kind} is served under {gv}",
                cluster_id=cluster_id,
                operation=OPERATION,
            )
        return mapping

    def invalidate(self, cluster_id: Optional[str] = None) -> None:
        """Drop cached documents for one cluster, or all of them."""
        if cluster_id is None:
            self._cache.clear()
            return
        for key in [k for k in self._cache if k[0] == cluster_id]:
            del self._cache[key]

    async def _document(
        self,
        cluster_id: str,
        api_client: client.ApiClient,
        group: str,
        version: str,
        refresh: bool = False,
    ) -> list[DiscoveryMapping]:
        key = (cluster_id, group, version)
        cached = self._cache.get(key)
        if (
            not refresh
            and cached is not None
            and time.monotonic() - cached.fetched_at < self._cache_ttl
        ):
            return cached.mappings

        mappings = await self._fetch(cluster_id, api_client, group, version)
        if self._cache_ttl > 0:
            self._cache[key] = _CachedDocument(mappings, time.monotonic())
        return mappings

    async def _fetch(
        self,
        cluster_id: str,
        api_client: client.ApiClient,
        group: str,
        version: str,
    ) -> list[DiscoveryMapping]:
        if group:
            call = partial(
                client.CustomObjectsApi(api_client).get_api_resources,
                group,
                version,
                _request_timeout=self._request_timeout,
            )
        else:
            call = partial(
                client.CoreV1Api(api_client).get_api_resources,
                _request_timeout=self._request_timeout,
            )

        gv = f"{group}/{version}" if group else version
        try:
            resource_list = await asyncio.wait_for(
                asyncio.to_thread(call), timeout=self._request_timeout + 1
            )
        except ApiException as e:
            if e.status == 404:
                raise UnknownResourceType(
                    f"API group/version {gv} is not served by the cluster",
                    cluster_id=cluster_id,
                    operation=OPERATION,
                    cause=e,
                ) from e
            raise DiscoveryUnavailable(
                f"discovery of {gv} failed ({e.status} {e.reason})",
                cluster_id=cluster_id,
                operation=OPERATION,
                cause=e,
            ) from e
        except asyncio.TimeoutError as e:
            raise DiscoveryUnavailable(
                f"discovery of {gv} timed out after {self._request_timeout}s",
                cluster_id=cluster_id,
                operation=OPERATION,
                cause=e,
            ) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise DiscoveryUnavailable(
                f"discovery of {gv} failed: {e}",
                cluster_id=cluster_id,
                operation=OPERATION,
                cause=e,
            ) from e

        mappings = []
        for resource in resource_list.resources or []:
            # Skip subresources such as pods/log or deployments/scale
            if "/" in resource.name:
                continue
            mappings.append(
                DiscoveryMapping(
                    group=group,
                    version=version,
                    kind=resource.kind,
                    plural=resource.name,
                    scope=ResourceScope.NAMESPACED
                    if resource.namespaced
                    else ResourceScope.CLUSTER,
                )
            )

        logger.debug(f"Discovered {len(mappings)} resources in {gv} on {cluster_id}")
        return mappings


def _match(mappings: list[DiscoveryMapping], kind: str) -> Optional[DiscoveryMapping]:
    for mapping in mappings:
        if mapping.kind == kind:
            return mapping
    lowered = kind.lower()
    for mapping in mappings:
        if mapping.kind.lower() == lowered:
            return mapping
    return None
