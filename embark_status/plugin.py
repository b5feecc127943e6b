"""
Embark Status plugin: connects a dApp's blockchain node to the Status app
and opens the dApp in the Status browser once connected.

The host (Embark, or the standalone runner in app.py) feeds configuration and
blockchain events in through the on_* methods. Reconciliation starts only when
the blockchain is ready AND its network id is known.

Depends on: config, api, store, reconcile, scheduler, models, utils
"""

import asyncio
import time
from typing import Any, Callable, Optional

from embark_status.api import StatusApi
from embark_status.config import (
    CHAIN_NAME,
    CONNECT_INTERVAL,
    DEFAULT_NETWORK_ID,
    DEVICE_PROTOCOL,
    NETWORK_NAME,
    OPEN_DAPP_WHEN_ALREADY_CONNECTED,
    PROXY_PORT_OFFSET,
    RECONCILE_STRATEGY,
    REQUEST_TIMEOUT,
    RESTART_POLL_INTERVAL,
    RESTART_WAIT_TIMEOUT,
    SERVICE_CHECK_INTERVAL,
    SERVICE_CHECK_NAME,
    SERVICE_CHECK_OFF,
    SERVICE_CHECK_ON,
)
from embark_status.errors import RemoteUnreachable, StatusError
from embark_status.models import NetworkSettings, ReconciliationAttempt
from embark_status.reconcile import Reconciler
from embark_status.scheduler import RetryScheduler
from embark_status.store import NetworkIdStore, default_store_dir
from embark_status.utils import Logger, build_url, default_log, get_lan_ip, routable_host


class EmbarkStatusPlugin:
    """Glue between host events, the reconciler and the Status app."""

    def __init__(self, plugin_config: dict[str, Any], dapp_path: str,
                 logger: Optional[Logger] = None,
                 api: Optional[StatusApi] = None,
                 store: Optional[NetworkIdStore] = None,
                 interval: float = CONNECT_INTERVAL,
                 request_timeout: float = REQUEST_TIMEOUT,
                 strategy: str = RECONCILE_STRATEGY,
                 lan_ip_fn: Callable[[], str] = get_lan_ip,
                 open_when_already_connected: bool = OPEN_DAPP_WHEN_ALREADY_CONNECTED,
                 restart_wait_timeout: float = RESTART_WAIT_TIMEOUT,
                 restart_poll_interval: float = RESTART_POLL_INTERVAL):
        self.device_ip = plugin_config.get("deviceIp")
        if not self.device_ip:
            raise ValueError("embark-status: plugin config 'deviceIp' is required")
        self.plugin_config = dict(plugin_config)
        self.name = self.plugin_config.get("name", "dapp")
        self.network_id = DEFAULT_NETWORK_ID
        self.webserver_config: dict[str, Any] = {}
        self.blockchain_config: dict[str, Any] = {}
        self._log = logger or default_log
        self._lan_ip = lan_ip_fn
        self.open_when_already_connected = open_when_already_connected
        self.restart_wait_timeout = restart_wait_timeout
        self.restart_poll_interval = restart_poll_interval

        # Requests must time out before the next tick is due
        self.request_timeout = min(request_timeout, max(0.5, interval - 1))
        self.api = api or StatusApi(self.device_ip, timeout=self.request_timeout, logger=self._log)
        self.store = store or NetworkIdStore(default_store_dir(dapp_path))
        self.reconciler = Reconciler(self.api, self.store, self.build_network_settings,
                                     strategy=strategy, logger=self._log)
        self.scheduler = RetryScheduler(self.reconciler.reconcile, interval=interval,
                                        on_success=self._on_connected, logger=self._log)

        self._blockchain_ready = False
        self._network_id_resolved = False
        self.service_status: Optional[str] = None
        self.dapp_opened = False

    # =========================================================================
    # Host events
    # =========================================================================

    def cors_origins(self) -> list[str]:
        """Origins the host should allow on its blockchain and storage clients."""
        return [build_url(DEVICE_PROTOCOL, self.device_ip)]

    def on_webserver_config(self, config: dict[str, Any]) -> None:
        self.webserver_config = dict(config)
        self.reconciler.invalidate()

    def on_blockchain_config(self, config: dict[str, Any]) -> None:
        self.blockchain_config = dict(config)
        self.reconciler.invalidate()

    def on_blockchain_ready(self) -> None:
        self._blockchain_ready = True
        self._maybe_start()

    def on_network_id(self, network_id: int) -> None:
        self.network_id = int(network_id)
        self._network_id_resolved = True
        self.reconciler.invalidate()
        self._maybe_start()

    def _maybe_start(self) -> None:
        if not (self._blockchain_ready and self._network_id_resolved):
            return
        if self.scheduler.running or self.scheduler.done:
            return
        self._log(f"Connecting Status app ({self.device_ip}) to network {self.network_id}, "
                  f"retrying every {self.scheduler.interval:g}s...", "info")
        self.scheduler.start()

    # =========================================================================
    # Settings
    # =========================================================================

    def node_port(self) -> Optional[int]:
        rpc_port = self.blockchain_config.get("rpcPort")
        if rpc_port is None:
            return None
        if self.blockchain_config.get("proxy"):
            return int(rpc_port) + PROXY_PORT_OFFSET
        return int(rpc_port)

    def build_network_settings(self) -> NetworkSettings:
        """Settings for the Status network pointing at this dApp's node."""
        host = routable_host(self.blockchain_config.get("rpcHost") or "localhost", self._lan_ip)
        return NetworkSettings(
            network_name=f"{NETWORK_NAME} ({self.name})",
            node_url=build_url("http", host, self.node_port()),
            chain_name=CHAIN_NAME,
            network_id=self.network_id,
            metadata=dict(self.plugin_config),
        )

    def dapp_url(self) -> str:
        if self.plugin_config.get("dappUrl"):
            return self.plugin_config["dappUrl"]
        host = routable_host(self.webserver_config.get("host") or "localhost", self._lan_ip)
        return build_url("http", host, self.webserver_config.get("port")) + "/"

    # =========================================================================
    # dApp follow-up
    # =========================================================================

    async def _on_connected(self, attempt: ReconciliationAttempt) -> None:
        if attempt.fresh:
            # The app reloads after switching networks; wait until it answers again
            await self._wait_for_restart()
        elif not self.open_when_already_connected:
            self._log(f"Status app already on this network, not reopening {self.name}.", "info")
            return
        await self.open_dapp()

    async def _wait_for_restart(self) -> bool:
        deadline = time.monotonic() + self.restart_wait_timeout
        while True:
            await asyncio.sleep(self.restart_poll_interval)
            if await self.api.ping():
                return True
            if time.monotonic() >= deadline:
                self._log("Status app did not come back after switching networks, "
                          "opening the dApp anyway.", "info")
                return False

    async def open_dapp(self) -> bool:
        """Open the dApp in the Status browser. Logs and returns False on failure."""
        url = self.dapp_url()
        self._log(f"Opening {self.name} ({url}) in the Status browser...", "info")
        try:
            await self.api.open_dapp(url)
        except RemoteUnreachable:
            self._log(f"Failed to open {self.name} in the Status app. Is the Status app open?", "error")
            return False
        except StatusError as e:
            self._log(f"Error opening {self.name} in the Status app: {e}.", "error")
            return False
        self.dapp_opened = True
        self._log(f"{self.name} opened successfully.", "info")
        return True

    # =========================================================================
    # Service check
    # =========================================================================

    @property
    def service_name(self) -> str:
        return f"{SERVICE_CHECK_NAME} ({self.device_ip})"

    async def service_check(self) -> dict[str, str]:
        """Ping the app and report on/off, logging when the state flips."""
        online = await self.api.ping()
        status = SERVICE_CHECK_ON if online else SERVICE_CHECK_OFF
        previous, self.service_status = self.service_status, status
        if status != previous:
            if online:
                self._log("------------------", "info")
                self._log("Connected to Status.im mobile app!", "info")
                self._log("------------------", "info")
            elif previous is not None:
                self._log("------------------", "error")
                self._log("Couldn't connect or lost connection to Status.im mobile app...", "error")
                self._log("------------------", "error")
        return {"name": self.service_name, "status": status}

    async def service_check_loop(self, interval: float = SERVICE_CHECK_INTERVAL) -> None:
        """Background task: keep the service status current."""
        while True:
            try:
                await self.service_check()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                return
            except Exception as e:
                self._log(f"Service check error: {e!r}", "error")
                await asyncio.sleep(interval)
