"""figma-relay CLI.

Usage:
    figma-relay hub                        # Run the relay hub on localhost:3600
    figma-relay hub --port 3601            # Hub on a custom port
    figma-relay gateway                    # Gateway over stdio (default)
    figma-relay gateway --http             # Gateway as HTTP server on localhost:3700
    figma-relay bridge                     # stdio-to-HTTP bridge to a running gateway
    figma-relay health                     # Check a hub or gateway health endpoint
"""

from __future__ import annotations

import asyncio
import logging
import sys

import click
import httpx

from . import __version__
from .config import (
    DEFAULT_GATEWAY_HOST,
    DEFAULT_GATEWAY_PORT,
    DEFAULT_HUB_HOST,
    DEFAULT_HUB_PORT,
    GatewayConfig,
    HubConfig,
)

LOG_LEVELS = ["debug", "info", "warning", "error"]


def _configure_logging(level: str) -> None:
    # stdout carries protocol traffic in stdio modes
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@click.group()
@click.version_option(__version__, prog_name="figma-relay")
def main() -> None:
    """figma-relay - relay AI assistant tool calls to a Figma plugin."""


# =============================================================================
# Hub
# =============================================================================


@main.command()
@click.option("--host", envvar="WEBSOCKET_HOST", default=DEFAULT_HUB_HOST, show_default=True)
@click.option("--port", envvar="WEBSOCKET_PORT", default=DEFAULT_HUB_PORT, show_default=True, type=int)
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default="info", show_default=True)
def hub(host: str, port: int, log_level: str) -> None:
    """Run the relay hub (plugin and gateway both connect here)."""
    import uvicorn

    from .hub import create_hub_app

    _configure_logging(log_level)
    config = HubConfig(host=host, port=port)

    click.echo(f"Starting relay hub on ws://{config.host}:{config.port}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        create_hub_app(),
        host=config.host,
        port=config.port,
        log_level=log_level,
        ws_max_size=config.max_message_size,
    )


# =============================================================================
# Gateway
# =============================================================================


@main.command()
@click.option("--http", "http_mode", is_flag=True, help="Run as HTTP server instead of stdio")
@click.option("--host", envvar="MCP_HOST", default=DEFAULT_GATEWAY_HOST, show_default=True)
@click.option("--port", envvar="MCP_PORT", default=DEFAULT_GATEWAY_PORT, show_default=True, type=int)
@click.option(
    "--hub-url",
    envvar="FIGMA_RELAY_HUB_URL",
    default=f"ws://{DEFAULT_HUB_HOST}:{DEFAULT_HUB_PORT}",
    show_default=True,
    help="WebSocket URL of the relay hub",
)
@click.option(
    "--timeout",
    default=30.0,
    show_default=True,
    type=float,
    help="Seconds to wait for the plugin to answer a command",
)
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default="info", show_default=True)
def gateway(
    http_mode: bool,
    host: str,
    port: int,
    hub_url: str,
    timeout: float,
    log_level: str,
) -> None:
    """Run the JSON-RPC gateway.

    By default, speaks newline-delimited JSON-RPC on stdin/stdout.
    Use --http to serve POST /mcp and GET /sse instead.
    """
    _configure_logging(log_level)
    config = GatewayConfig(hub_url=hub_url, command_timeout=timeout, http_host=host, http_port=port)

    if http_mode:
        _run_http_gateway(config, log_level)
    else:
        _run_stdio_gateway(config)


def _run_http_gateway(config: GatewayConfig, log_level: str) -> None:
    import uvicorn

    from .gateway import create_gateway_app

    click.echo(f"Starting gateway on http://{config.http_host}:{config.http_port}", err=True)
    click.echo("  Endpoints: POST /mcp, GET /sse, GET /health", err=True)
    click.echo(f"  Hub: {config.hub_url}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        create_gateway_app(config=config),
        host=config.http_host,
        port=config.http_port,
        log_level=log_level,
    )


def _run_stdio_gateway(config: GatewayConfig) -> None:
    from .gateway import run_stdio_gateway

    click.echo(f"Starting gateway in stdio mode (hub: {config.hub_url})", err=True)

    try:
        asyncio.run(run_stdio_gateway(config))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


# =============================================================================
# Bridge
# =============================================================================


@main.command()
@click.option(
    "--url",
    envvar="FIGMA_SERVER_URL",
    default=f"http://{DEFAULT_GATEWAY_HOST}:{DEFAULT_GATEWAY_PORT}/mcp",
    show_default=True,
    help="Gateway JSON-RPC endpoint",
)
@click.option("--log-level", type=click.Choice(LOG_LEVELS), default="warning", show_default=True)
def bridge(url: str, log_level: str) -> None:
    """Bridge stdin/stdout JSON-RPC to a gateway running in HTTP mode."""
    from .bridge import StdioHttpBridge

    _configure_logging(log_level)
    click.echo(f"Bridging stdio to {url}", err=True)

    try:
        asyncio.run(StdioHttpBridge(url).run())
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


# =============================================================================
# Health
# =============================================================================


@main.command()
@click.option(
    "--url",
    default=f"http://{DEFAULT_HUB_HOST}:{DEFAULT_HUB_PORT}",
    show_default=True,
    help="Base URL of a hub or HTTP gateway",
)
def health(url: str) -> None:
    """Check server health and exit non-zero on failure."""
    _do_health_check(url)


def _do_health_check(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url.rstrip('/')}/health")
                if response.status_code == 200:
                    data = response.json()
                    click.echo(f"Server is healthy: {data}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
