"""
Kube Fleet MCP Server.

This MCP server gives LLMs a multi-cluster Kubernetes interface:
cluster registration, server-side apply of arbitrary manifests,
and port-forward tunnels into running pods.
"""

__version__ = "0.1.0"
