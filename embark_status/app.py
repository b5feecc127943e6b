"""
Application composition root: standalone host for the plugin.

Outside Embark there is nobody to emit blockchain:ready or hand us the
network id, so this module does it: it polls the node's JSON-RPC
``net_version`` until the node answers, then feeds the plugin. It also serves
the service check on GET /status.

Depends on: everything (this IS the composition root)
"""

import asyncio
from typing import Any, Optional

import anyio
import httpx
import uvicorn
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, Router

from embark_status.config import (
    CONNECT_INTERVAL,
    DAPP_NAME,
    DAPP_PATH,
    DAPP_URL,
    DEVICE_IP,
    HTTP_HOST,
    HTTP_PORT,
    NODE_POLL_INTERVAL,
    NODE_POLL_TIMEOUT,
    RECONCILE_STRATEGY,
    REQUEST_TIMEOUT,
    RPC_HOST,
    RPC_PORT,
    RPC_PROXY,
    WEBSERVER_HOST,
    WEBSERVER_PORT,
)
from embark_status.plugin import EmbarkStatusPlugin
from embark_status.utils import build_url, default_log


# =============================================================================
# Blockchain readiness
# =============================================================================

async def resolve_network_id(rpc_url: str, timeout: float = NODE_POLL_TIMEOUT,
                             transport: Optional[httpx.AsyncBaseTransport] = None) -> Optional[int]:
    """Ask the node for its network id via ``net_version``. None if not ready."""
    payload = {"jsonrpc": "2.0", "id": 1, "method": "net_version", "params": []}
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(rpc_url, json=payload)
            if resp.status_code != 200:
                return None
            data = resp.json()
    except (httpx.HTTPError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("error"):
        return None
    result = data.get("result")
    try:
        if isinstance(result, str) and result.startswith("0x"):
            return int(result, 16)
        return int(result)
    except (TypeError, ValueError):
        return None


async def wait_for_blockchain(plugin: EmbarkStatusPlugin, rpc_url: str,
                              interval: float = NODE_POLL_INTERVAL,
                              transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """Poll the node until it answers, then signal ready + network id to the plugin."""
    announced = False
    while True:
        network_id = await resolve_network_id(rpc_url, transport=transport)
        if network_id is not None:
            default_log(f"Blockchain ready at {rpc_url} (network id {network_id})", "info")
            plugin.on_blockchain_ready()
            plugin.on_network_id(network_id)
            return network_id
        if not announced:
            default_log(f"Waiting for blockchain node at {rpc_url}...", "info")
            announced = True
        await asyncio.sleep(interval)


# =============================================================================
# App factory
# =============================================================================

def create_app(plugin: EmbarkStatusPlugin) -> Router:
    """Create the Starlette router exposing the service check."""

    async def handle_status(request: Request) -> JSONResponse:
        check = await plugin.service_check()
        attempt = plugin.scheduler.last_attempt
        return JSONResponse({
            **check,
            "connected": plugin.scheduler.done,
            "network_id": attempt.remote_network_id if attempt else None,
            "last_error": attempt.diagnostic if attempt and not attempt.succeeded else None,
            "dapp_opened": plugin.dapp_opened,
        })

    return Router(routes=[Route("/status", handle_status, methods=["GET"])])


def build_plugin_from_env() -> EmbarkStatusPlugin:
    """Build the plugin and hydrate its configs from EMBARK_STATUS_* variables."""
    plugin_config: dict[str, Any] = {"deviceIp": DEVICE_IP, "name": DAPP_NAME}
    if DAPP_URL:
        plugin_config["dappUrl"] = DAPP_URL
    plugin = EmbarkStatusPlugin(plugin_config, DAPP_PATH,
                                interval=CONNECT_INTERVAL, request_timeout=REQUEST_TIMEOUT,
                                strategy=RECONCILE_STRATEGY)
    plugin.on_webserver_config({"host": WEBSERVER_HOST, "port": WEBSERVER_PORT})
    plugin.on_blockchain_config({"rpcHost": RPC_HOST, "rpcPort": RPC_PORT, "proxy": RPC_PROXY})
    return plugin


def node_rpc_url(plugin: EmbarkStatusPlugin) -> str:
    """URL the runner itself uses to reach the node (never rewritten to the LAN ip)."""
    host = plugin.blockchain_config.get("rpcHost") or "localhost"
    if host == "0.0.0.0":
        host = "127.0.0.1"
    return build_url("http", host, plugin.node_port())


def print_startup_banner(plugin: EmbarkStatusPlugin) -> None:
    default_log(f"Status device: {plugin.device_ip}", "info")
    default_log(f"Allow CORS origins on your node: {', '.join(plugin.cors_origins())}", "info")
    default_log(f"Network ids stored in {plugin.store.directory}", "info")
    default_log(f"Service check on http://{HTTP_HOST}:{HTTP_PORT}/status", "info")


# =============================================================================
# Main entry point
# =============================================================================

async def run(plugin: EmbarkStatusPlugin) -> None:
    """Serve /status, wait for the node, and reconcile until connected."""
    config = uvicorn.Config(create_app(plugin), host=HTTP_HOST, port=HTTP_PORT, log_level="warning")
    server = uvicorn.Server(config)

    async with anyio.create_task_group() as tg:
        tg.start_soon(server.serve)
        tg.start_soon(plugin.service_check_loop)
        await wait_for_blockchain(plugin, node_rpc_url(plugin))
        await plugin.scheduler.wait()


def main() -> None:
    """Entry point: configure from the environment and run until interrupted."""
    if not DEVICE_IP:
        raise SystemExit("[EmbarkStatus] EMBARK_STATUS_DEVICE_IP is required (your phone's IP)")
    plugin = build_plugin_from_env()
    print_startup_banner(plugin)
    anyio.run(run, plugin)


if __name__ == "__main__":
    main()
