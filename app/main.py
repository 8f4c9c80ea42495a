#!/usr/bin/env python3
"""
Kube Fleet MCP Server - Entry Point

This is the main entry point for the MCP server.
Supports both stdio and streamable-http transports.
"""

import argparse
import signal
import sys
from pathlib import Path

import uvicorn

# Add app directory to path for imports when running directly
APP_DIR = Path(__file__).parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from kube_fleet_mcp import __version__
from kube_fleet_mcp.config import KubeFleetConfig, load_config, reload_config
from kube_fleet_mcp.server import create_server
from kube_fleet_mcp.utils.logging import get_logger, setup_logging

logger = get_logger("kube_fleet_mcp.main")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="MCP Server for managing a fleet of Kubernetes clusters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start with stdio transport (default for local dev)
  python main.py --transport stdio

  # Start with HTTP transport
  python main.py --transport streamable-http --port 8080

  # Use custom config directory
  python main.py --config-dir /path/to/config
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"kube-fleet-mcp {__version__}",
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        help="Configuration directory path (default: ~/.kubefleet/)",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "streamable-http"],
        help="Transport protocol (overrides config)",
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Host to bind to (for HTTP transport, overrides config)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to listen on (for HTTP transport, overrides config)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Logging level (overrides config)",
    )
    return parser.parse_args(argv)


def setup_signal_handlers(config: KubeFleetConfig, config_dir: str | None) -> None:
    """
    Setup signal handlers.

    SIGHUP re-reads configuration and applies the logging settings.
    Cluster, discovery and tunnel settings are bound when the server
    is built, so changing them still needs a restart.
    """
    state = {"config": config}

    def handle_sighup(signum, frame):
        current = state["config"]
        new_config = reload_config(current, config_dir)
        if new_config is current:
            return

        # CLI overrides outlive a reload
        new_config.server = current.server.model_copy(
            update={
                "log_level": new_config.server.log_level,
                "log_file": new_config.server.log_file,
            }
        )
        setup_logging(new_config.server.log_level, new_config.server.log_file)
        state["config"] = new_config
        logger.info("Configuration reloaded on SIGHUP (logging settings applied)")

    # Only setup SIGHUP on Unix systems
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, handle_sighup)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config_dir)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return 1

    # Apply CLI overrides
    if args.transport:
        config.server.transport = args.transport
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.log_level:
        config.server.log_level = args.log_level

    setup_logging(config.server.log_level, config.server.log_file)
    setup_signal_handlers(config, args.config_dir)

    try:
        bundle = create_server(config)

        logger.info(f"Starting Kube Fleet MCP Server v{__version__}")
        logger.info(f"Transport: {config.server.transport}")

        if config.server.transport == "stdio":
            bundle.server.run(transport="stdio")
        else:
            logger.info(f"Running on http://{config.server.host}:{config.server.port}")
            app = bundle.server.http_app(transport="streamable-http")
            uvicorn.run(
                app,
                host=config.server.host,
                port=config.server.port,
                log_level=config.server.log_level,
            )
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        return 0
    except Exception as e:
        logger.exception(f"Server error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
