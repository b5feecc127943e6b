"""
In-process fake of the Status app's control API, for the test scripts.

Serves the same routes as the phone on port 5561 from a Starlette app and
records every call, so tests can assert on the exact command sequence.
Setting ``online = False`` makes every request fail with a refused connection.
"""

from typing import Callable, Optional

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from embark_status.api import StatusApi

DEVICE_IP = "10.0.0.5"


class _SwitchableTransport(httpx.AsyncBaseTransport):
    """ASGI transport that refuses connections while the fake app is offline."""

    def __init__(self, fake: "FakeStatusApp"):
        self.fake = fake
        self.inner = httpx.ASGITransport(app=fake.app)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if not self.fake.online:
            raise httpx.ConnectError("[Errno 111] Connection refused", request=request)
        return await self.inner.handle_async_request(request)


class FakeStatusApp:
    def __init__(self, online: bool = True, list_supported: bool = True):
        self.online = online
        self.list_supported = list_supported
        self.networks: dict[str, dict] = {}
        self.active_id: Optional[str] = None
        self.calls: list[str] = []
        self.opened_urls: list[str] = []
        self.add_override: Optional[Callable[[], Response]] = None
        self.next_ids: list[str] = []
        # Listed by /networks but unknown to connect, like an entry the app half-dropped
        self.forgotten: set[str] = set()
        self._counter = 0
        self.app = Starlette(routes=[
            Route("/ping", self._ping, methods=["POST"]),
            Route("/networks", self._list, methods=["GET"]),
            Route("/network", self._add, methods=["POST"]),
            Route("/network", self._remove, methods=["DELETE"]),
            Route("/network/connect", self._connect, methods=["POST"]),
            Route("/dapp/open", self._open, methods=["POST"]),
        ])

    # -- Helpers for tests --

    def transport(self) -> httpx.AsyncBaseTransport:
        return _SwitchableTransport(self)

    def api(self, logger=None) -> StatusApi:
        return StatusApi(DEVICE_IP, timeout=1.0, transport=self.transport(),
                         logger=logger or (lambda msg, level="info": None))

    def seed_network(self, network_id: str, name: str, url: str, chain_id: int,
                     active: bool = False) -> None:
        self.networks[network_id] = {"name": name, "url": url, "network-id": chain_id}
        if active:
            self.active_id = network_id

    def count(self, call: str) -> int:
        return self.calls.count(call)

    # -- Routes --

    async def _ping(self, request: Request) -> JSONResponse:
        self.calls.append("ping")
        return JSONResponse({"message": "Pong!"})

    async def _list(self, request: Request) -> JSONResponse:
        self.calls.append("list")
        if not self.list_supported:
            return JSONResponse({"message": "Unknown command."}, status_code=404)
        return JSONResponse({"networks": {
            nid: {
                "name": n["name"],
                "config": {"UpstreamConfig": {"URL": n["url"]}, "NetworkId": n["network-id"]},
                "active?": nid == self.active_id,
            }
            for nid, n in self.networks.items()
        }})

    async def _add(self, request: Request) -> Response:
        self.calls.append("add")
        body = await request.json()
        if self.add_override is not None:
            return self.add_override()
        if not body.get("name") or not body.get("url"):
            return JSONResponse({"message": "Please, check the validity of network information."},
                                status_code=400)
        if self.next_ids:
            network_id = self.next_ids.pop(0)
        else:
            self._counter += 1
            network_id = f"net{self._counter}"
        self.networks[network_id] = {
            "name": body["name"], "url": body["url"], "network-id": body["network-id"],
        }
        return JSONResponse({"message": "Network has been added.", "network-id": network_id})

    async def _remove(self, request: Request) -> JSONResponse:
        self.calls.append("remove")
        body = await request.json()
        if self.networks.pop(body.get("id"), None) is None:
            return JSONResponse({"message": "Cannot delete the provided network."}, status_code=400)
        return JSONResponse({"message": "Network has been deleted.", "network-id": body["id"]})

    async def _connect(self, request: Request) -> JSONResponse:
        self.calls.append("connect")
        body = await request.json()
        network_id = body.get("id")
        if network_id not in self.networks or network_id in self.forgotten:
            return JSONResponse({"message": "The network id you provided doesn't exist."})
        self.active_id = network_id
        return JSONResponse({"message": "Network has been connected.", "network-id": network_id})

    async def _open(self, request: Request) -> JSONResponse:
        self.calls.append("open")
        body = await request.json()
        self.opened_urls.append(body.get("url"))
        return JSONResponse({"message": "URL has been opened."})
