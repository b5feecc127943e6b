"""
Status app control API: JSON over HTTP to the phone on port 5561.

Each call is a single request/response exchange bounded by ``timeout``.
Transport failures surface as RemoteUnreachable, refusals as RemoteRejected.

Depends on: config, errors, models, utils
"""

import json
from typing import Any, Optional

import httpx

from embark_status.config import (
    DEVICE_PORT,
    DEVICE_PROTOCOL,
    REQUEST_TIMEOUT,
    UNKNOWN_NETWORK_MESSAGES,
)
from embark_status.errors import MalformedResponse, RemoteRejected, RemoteUnreachable
from embark_status.models import NetworkDescriptor
from embark_status.utils import Logger, build_url, default_log

PONG = "Pong!"
EMPTY_RESPONSE_MESSAGE = (
    "Empty response from the Status app. Is it possible your phone is in "
    "standby or the Status app is in the background?"
)


def _error_code(exc: httpx.TransportError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.ConnectError):
        return "ECONNREFUSED"
    return type(exc).__name__


def _is_unknown_network(message: str) -> bool:
    lowered = message.lower()
    return any(m in lowered for m in UNKNOWN_NETWORK_MESSAGES)


def parse_networks(payload: Any) -> dict[str, NetworkDescriptor]:
    """Parse the ``{"networks": {<id>: {...}}}`` table returned by the app."""
    if not isinstance(payload, dict) or not isinstance(payload.get("networks"), dict):
        raise MalformedResponse("Status app returned a bad response (no 'networks' table present).")

    networks = {}
    for network_id, entry in payload["networks"].items():
        if not isinstance(entry, dict):
            continue
        config = entry.get("config")
        if not isinstance(config, dict):
            config = {}
        upstream = config.get("UpstreamConfig")
        if not isinstance(upstream, dict):
            upstream = {}
        raw_chain_id = config.get("NetworkId")
        try:
            chain_id = int(raw_chain_id) if raw_chain_id is not None else None
        except (TypeError, ValueError):
            chain_id = None
        networks[network_id] = NetworkDescriptor(
            id=network_id,
            name=entry.get("name", ""),
            upstream_url=upstream.get("URL", ""),
            network_id=chain_id,
            active=bool(entry.get("active?", entry.get("active", False))),
        )
    return networks


class StatusApi:
    """Commands that can be run on the Status app."""

    def __init__(self, device_ip: str, port: int = DEVICE_PORT,
                 protocol: str = DEVICE_PROTOCOL, timeout: float = REQUEST_TIMEOUT,
                 logger: Optional[Logger] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.device_ip = device_ip
        self.url = build_url(protocol, device_ip, port)
        self.timeout = timeout
        self._log = logger or default_log
        self._transport = transport

    async def _request(self, endpoint: str, body: Optional[dict], method: str = "POST") -> Any:
        """Send a JSON request. Returns the decoded body, or None when empty."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.request(method, self.url + endpoint, json=body)
        except httpx.TransportError as e:
            self._log(f"REQUEST: {endpoint} {json.dumps(body)}\nERROR: {e!r}", "trace")
            raise RemoteUnreachable(str(e) or type(e).__name__, code=_error_code(e)) from e
        except httpx.HTTPError as e:
            # Undecodable body (bad Content-Encoding and the like)
            self._log(f"REQUEST: {endpoint} {json.dumps(body)}\nERROR: {e!r}", "trace")
            raise MalformedResponse(f"Status app returned an unreadable response: {e}") from e

        self._log(f"REQUEST: {endpoint} {json.dumps(body)}\nRESPONSE: {resp.status_code} {resp.text}", "trace")

        payload = None
        if resp.content:
            try:
                payload = resp.json()
            except ValueError as e:
                raise MalformedResponse(f"Status app returned invalid JSON: {resp.text[:200]}",
                                        status_code=resp.status_code) from e

        if resp.status_code >= 400:
            message = payload.get("message") if isinstance(payload, dict) else None
            message = message or f"HTTP {resp.status_code}"
            raise RemoteRejected(
                message,
                status_code=resp.status_code,
                unknown_network=resp.status_code == 404 or _is_unknown_network(message),
            )
        return payload

    async def ping(self) -> bool:
        """Ping the Status app. True only for ``{"message": "Pong!"}``; never raises."""
        try:
            response = await self._request("/ping", {}, "POST")
        except (RemoteUnreachable, RemoteRejected):
            return False
        return isinstance(response, dict) and response.get("message") == PONG

    async def open_dapp(self, url: str) -> dict:
        """Open ``url`` in the Status dApp browser."""
        response = await self._request("/dapp/open", {"url": url}, "POST")
        if response is None:
            raise RemoteRejected(EMPTY_RESPONSE_MESSAGE)
        return response

    async def list_networks(self) -> dict[str, NetworkDescriptor]:
        """Return every network configured in the app, keyed by Status network id."""
        response = await self._request("/networks", None, "GET")
        if response is None:
            raise RemoteRejected(EMPTY_RESPONSE_MESSAGE)
        return parse_networks(response)

    async def add_network(self, name: str, node_url: str, chain_name: str,
                          network_id: int) -> str:
        """Add a network. Returns the Status network id the app assigned.

        Example response (success):
            {"message": "Network has been added.", "network-id": "1535660846036b3c..."}
        Example response (fail):
            {"message": "Please, check the validity of network information."}
        """
        body = {"name": name, "url": node_url, "chain": chain_name, "network-id": network_id}
        response = await self._request("/network", body, "POST")
        if response is None:
            raise RemoteRejected(EMPTY_RESPONSE_MESSAGE)
        remote_id = response.get("network-id") if isinstance(response, dict) else None
        if not remote_id:
            raise MalformedResponse(
                "Status app returned a bad response (no 'network-id' present), could not connect."
            )
        return str(remote_id)

    async def connect(self, remote_network_id: str) -> dict:
        """Switch the app to an existing network.

        Example response (fail): {"message": "The network id you provided doesn't exist."}
        """
        response = await self._request("/network/connect", {"id": remote_network_id}, "POST")
        if response is None:
            raise RemoteRejected(EMPTY_RESPONSE_MESSAGE)
        if not isinstance(response, dict):
            raise MalformedResponse("Status app returned a bad response to connect.")
        message = response.get("message") or ""
        # The app answers 200 with only a message when it doesn't know the id
        if not response.get("network-id") and _is_unknown_network(message):
            raise RemoteRejected(message, unknown_network=True)
        return response

    async def remove_network(self, remote_network_id: str) -> dict:
        """Delete a network from the app. Not used by reconciliation."""
        response = await self._request("/network", {"id": remote_network_id}, "DELETE")
        if response is None:
            raise RemoteRejected(EMPTY_RESPONSE_MESSAGE)
        return response
