# tests/unit/test_apply.py
"""
Unit tests for the apply engine.
Tests manifest decoding, request construction and error mapping.
"""

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

import pytest
import yaml
from kubernetes.client.exceptions import ApiException

from kube_fleet_mcp.cluster import ClusterConfig, ClusterRegistry
from kube_fleet_mcp.errors import (
    ClusterUnreachable,
    MalformedCredential,
    MalformedManifest,
    NotFound,
    PatchRejected,
    UnknownResourceType,
)
from kube_fleet_mcp.manifest import ApplyEngine, DiscoveryMapping, ResourceScope, decode_manifest

from fakes import make_kubeconfig

CONFIGMAP = """\
apiVersion: v1
kind: ConfigMap
metadata:
  name: app-settings
  namespace: team-a
data:
  LOG_LEVEL: debug
"""

CLUSTER_ROLE = """\
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: viewer
rules: []
"""

MAPPINGS = {
    ("", "v1", "ConfigMap"): DiscoveryMapping(
        "", "v1", "ConfigMap", "configmaps", ResourceScope.NAMESPACED
    ),
    ("rbac.authorization.k8s.io", "v1", "ClusterRole"): DiscoveryMapping(
        "rbac.authorization.k8s.io", "v1", "ClusterRole", "clusterroles", ResourceScope.CLUSTER
    ),
}


class StaticResolver:
    """Resolver answering from a fixed table."""

    def __init__(self):
        self.calls = []

    async def resolve(self, cluster_id, api_client, group, version, kind):
        self.calls.append((cluster_id, group, version, kind))
        try:
            return MAPPINGS[(group, version, kind)]
        except KeyError:
            raise UnknownResourceType(f"no resource of kind {kind}", cluster_id=cluster_id) from None

    def invalidate(self, cluster_id=None):
        pass


def wire_api_client(api_client, response_body=None):
    """Make the mock ApiClient echo requests and return response_body."""
    api_client.param_serialize.side_effect = lambda **kw: (
        kw["method"],
        "https://cluster" + kw["resource_path"],
        kw["header_params"],
        kw["body"],
        [],
    )
    api_client.response_deserialize.return_value.data = response_body or {}
    return api_client


@pytest.fixture
def resolver():
    return StaticResolver()


@pytest.fixture
async def engine(registry, inline_config, resolver):
    await registry.register("prod", inline_config)
    return ApplyEngine(registry, resolver, request_timeout=5, default_field_manager="kube-fleet-mcp")


@pytest.fixture
async def api_client(registry, engine):
    return wire_api_client(
        await registry.lookup("prod"),
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": "app-settings",
                "namespace": "team-a",
                "uid": "1234",
                "resourceVersion": "42",
            },
        },
    )


class TestDecodeManifest:
    """Tests for decode_manifest."""

    def test_single_document(self):
        manifest = decode_manifest(CONFIGMAP)

        assert manifest.kind == "ConfigMap"
        assert manifest.name == "app-settings"
        assert manifest.namespace == "team-a"
        assert manifest.group == ""
        assert manifest.version == "v1"
        assert manifest.body["data"] == {"LOG_LEVEL": "debug"}

    def test_group_version(self):
        manifest = decode_manifest(CLUSTER_ROLE)
        assert manifest.group == "rbac.authorization.k8s.io"
        assert manifest.namespace is None

    def test_json_is_yaml(self):
        """JSON manifests are accepted."""
        text = json.dumps({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "x"}})
        assert decode_manifest(text).kind == "Namespace"

    def test_leading_separator_allowed(self):
        """A single document after a leading --- is fine."""
        assert decode_manifest("---\n" + CONFIGMAP).name == "app-settings"

    @pytest.mark.parametrize(
        "text,match",
        [
            ("", "empty"),
            ("kind: [unclosed", "YAML"),
            (CONFIGMAP + "---\n" + CLUSTER_ROLE, "exactly one"),
            ("- a\n- b\n", "mapping"),
            ("kind: ConfigMap\nmetadata:\n  name: x\n", "apiVersion"),
            ("apiVersion: v1\nmetadata:\n  name: x\n", "kind"),
            ("apiVersion: v1\nkind: ConfigMap\nmetadata: {}\n", "metadata.name"),
        ],
    )
    def test_malformed(self, text, match):
        with pytest.raises(MalformedManifest, match=match):
            decode_manifest(text)


class TestApply:
    """Tests for ApplyEngine.apply."""

    async def test_apply_request(self, engine, api_client):
        """One PATCH with apply-patch content type, field manager and force."""
        result = await engine.apply("prod", CONFIGMAP, field_manager="ci-bot")

        api_client.param_serialize.assert_called_once()
        request = api_client.param_serialize.call_args.kwargs
        assert request["method"] == "PATCH"
        assert request["resource_path"] == "/api/v1/namespaces/team-a/configmaps/app-settings"
        assert ("fieldManager", "ci-bot") in request["query_params"]
        assert ("force", True) in request["query_params"]
        assert not any(name == "dryRun" for name, _ in request["query_params"])
        assert request["header_params"]["Content-Type"] == "application/apply-patch+yaml"
        assert request["body"]["data"] == {"LOG_LEVEL": "debug"}
        api_client.call_api.assert_called_once()

        assert result.name == "app-settings"
        assert result.namespace == "team-a"
        assert result.uid == "1234"
        assert result.dry_run is False
        assert result.summary() == "Applied ConfigMap: app-settings in namespace team-a"

    async def test_default_field_manager(self, engine, api_client):
        """Without a field manager the configured default is used."""
        await engine.apply("prod", CONFIGMAP)

        query = api_client.param_serialize.call_args.kwargs["query_params"]
        assert ("fieldManager", "kube-fleet-mcp") in query

    async def test_dry_run(self, engine, api_client):
        """Dry run adds dryRun=All to the single request."""
        result = await engine.apply("prod", CONFIGMAP, dry_run=True)

        assert api_client.call_api.call_count == 1
        query = api_client.param_serialize.call_args.kwargs["query_params"]
        assert ("dryRun", "All") in query
        assert result.dry_run is True
        assert result.summary().startswith("Validated (dry run")

    async def test_reapply_sends_identical_request(self, engine, api_client):
        """Applying the same manifest twice issues the same request."""
        first = await engine.apply("prod", CONFIGMAP)
        second = await engine.apply("prod", CONFIGMAP)

        calls = api_client.param_serialize.call_args_list
        assert calls[0].kwargs == calls[1].kwargs
        assert first.to_dict() == second.to_dict()

    async def test_cluster_scoped(self, engine, api_client):
        """Cluster-scoped kinds use the unscoped path and report no namespace."""
        api_client.response_deserialize.return_value.data = {
            "kind": "ClusterRole",
            "metadata": {"name": "viewer"},
        }
        result = await engine.apply("prod", CLUSTER_ROLE)

        path = api_client.param_serialize.call_args.kwargs["resource_path"]
        assert path == "/apis/rbac.authorization.k8s.io/v1/clusterroles/viewer"
        assert result.namespace is None

    async def test_unknown_cluster(self, engine):
        with pytest.raises(NotFound):
            await engine.apply("ghost", CONFIGMAP)

    async def test_malformed_manifest_issues_no_request(self, engine, api_client):
        with pytest.raises(MalformedManifest):
            await engine.apply("prod", "not: [valid")
        api_client.call_api.assert_not_called()

    async def test_unknown_kind(self, engine, api_client):
        text = "apiVersion: example.com/v1\nkind: Widget\nmetadata:\n  name: w\n"
        with pytest.raises(UnknownResourceType):
            await engine.apply("prod", text)
        api_client.call_api.assert_not_called()

    async def test_rejected_by_admission(self, engine, api_client):
        """4xx responses are PatchRejected carrying the Status message."""
        api_client.call_api.side_effect = ApiException(
            status=422,
            reason="Unprocessable Entity",
            body=json.dumps({"kind": "Status", "message": 'ConfigMap "app-settings" is invalid'}),
        )

        with pytest.raises(PatchRejected) as exc_info:
            await engine.apply("prod", CONFIGMAP)

        error = exc_info.value
        assert error.status == 422
        assert "is invalid" in str(error)
        assert error.cluster_id == "prod"
        assert isinstance(error.__cause__, ApiException)

    async def test_forbidden(self, engine, api_client):
        api_client.call_api.side_effect = ApiException(status=403, reason="Forbidden")
        with pytest.raises(PatchRejected, match="403"):
            await engine.apply("prod", CONFIGMAP)

    async def test_server_error_is_unreachable(self, engine, api_client):
        """5xx and transport errors are retryable ClusterUnreachable."""
        api_client.call_api.side_effect = ApiException(status=503, reason="Service Unavailable")
        with pytest.raises(ClusterUnreachable):
            await engine.apply("prod", CONFIGMAP)

    async def test_connection_error_is_unreachable(self, engine, api_client):
        api_client.call_api.side_effect = ConnectionRefusedError("connection refused")
        with pytest.raises(ClusterUnreachable) as exc_info:
            await engine.apply("prod", CONFIGMAP)
        assert exc_info.value.category == "retry"

    async def test_unauthorized_is_credentials_error(self, engine, api_client):
        """A rejected token points at the credentials, not the manifest."""
        api_client.call_api.side_effect = ApiException(status=401, reason="Unauthorized")

        with pytest.raises(MalformedCredential) as exc_info:
            await engine.apply("prod", CONFIGMAP)

        assert exc_info.value.category == "credentials"
        assert exc_info.value.cluster_id == "prod"
        assert "re-register" in str(exc_info.value)


@pytest.fixture
def api_server():
    """Local HTTP server standing in for the API server's PATCH endpoint."""
    requests = []

    class Handler(BaseHTTPRequestHandler):
        def do_PATCH(self):
            length = int(self.headers.get("Content-Length") or 0)
            requests.append(
                {
                    "path": self.path,
                    "content_type": self.headers.get("Content-Type"),
                    "authorization": self.headers.get("Authorization"),
                    "body": self.rfile.read(length),
                }
            )
            payload = json.dumps(
                {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "metadata": {
                        "name": "app-settings",
                        "namespace": "team-a",
                        "uid": "5678",
                        "resourceVersion": "7",
                    },
                }
            ).encode()
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}", requests
    server.shutdown()
    server.server_close()


class TestApplyOverHttp:
    """Apply through a real kubernetes ApiClient against a local server."""

    async def test_dry_run_patch_on_the_wire(self, api_server):
        url, requests = api_server
        registry = ClusterRegistry(probe_timeout=0.5)
        await registry.register(
            "local",
            ClusterConfig(kubeconfig_data=make_kubeconfig("local", server=url, token="t0k")),
        )
        engine = ApplyEngine(
            registry, StaticResolver(), request_timeout=5, default_field_manager="kube-fleet-mcp"
        )

        try:
            result = await engine.apply("local", CONFIGMAP, dry_run=True)
        finally:
            await registry.close_all()

        assert len(requests) == 1
        request = requests[0]
        parts = urlsplit(request["path"])
        assert parts.path == "/api/v1/namespaces/team-a/configmaps/app-settings"
        assert parse_qs(parts.query) == {
            "fieldManager": ["kube-fleet-mcp"],
            "force": ["true"],
            "dryRun": ["All"],
        }
        assert request["content_type"].startswith("application/apply-patch+yaml")
        assert request["authorization"] == "Bearer t0k"
        assert yaml.safe_load(request["body"])["data"] == {"LOG_LEVEL": "debug"}

        assert result.uid == "5678"
        assert result.resource_version == "7"
        assert result.dry_run is True
