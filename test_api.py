#!/usr/bin/env python3
"""
Tests for the Status app control client (embark_status.api).

Standalone async script. No real phone; one test dials a closed local port.
Uses an in-process Starlette fake reached through httpx.ASGITransport.
"""

import asyncio
import json
import sys

import httpx

from embark_status.api import StatusApi, parse_networks
from embark_status.errors import MalformedResponse, RemoteRejected, RemoteUnreachable
from fake_status import DEVICE_IP, FakeStatusApp
from starlette.responses import JSONResponse, Response

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

GREEN = "\033[92m"
RED = "\033[91m"
BOLD = "\033[1m"
RESET = "\033[0m"

results: list[tuple[str, bool, str]] = []


def report(name: str, passed: bool, detail: str = "") -> None:
    mark = f"{GREEN}✓{RESET}" if passed else f"{RED}✗{RESET}"
    print(f"  {mark} {name}")
    if detail and not passed:
        print(f"      {detail}")
    results.append((name, passed, detail))
    assert passed, f"{name}: {detail}"


def api_with_handler(handler) -> StatusApi:
    """StatusApi whose requests are answered by ``handler(request)``."""
    return StatusApi(DEVICE_IP, timeout=1.0, transport=httpx.MockTransport(handler),
                     logger=lambda msg, level="info": None)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


async def test_ping() -> None:
    """ping is True for Pong!, False otherwise, and never raises."""
    print(f"\n{BOLD}Test: ping{RESET}")
    fake = FakeStatusApp()
    api = fake.api()
    report("ping true when app answers Pong!", await api.ping() is True)

    fake.online = False
    report("ping false when connection refused", await api.ping() is False)

    wrong = api_with_handler(lambda req: httpx.Response(200, json={"message": "Busy"}))
    report("ping false on unexpected payload", await wrong.ping() is False)

    garbage = api_with_handler(lambda req: httpx.Response(200, content=b"<html>"))
    report("ping false on non-JSON body", await garbage.ping() is False)

    def timeout(req):
        raise httpx.ReadTimeout("timed out", request=req)
    report("ping false on timeout", await api_with_handler(timeout).ping() is False)


async def test_request_targets_device() -> None:
    """Requests go to http://<device ip>:5561 with JSON bodies."""
    print(f"\n{BOLD}Test: request shape{RESET}")
    seen = []

    def handler(req: httpx.Request) -> httpx.Response:
        seen.append(req)
        return httpx.Response(200, json={"message": "Network has been added.", "network-id": "abc123"})

    api = api_with_handler(handler)
    remote_id = await api.add_network("Embark (demo)", "http://192.168.1.2:8545", "embark", 1337)

    report("add_network returns network-id", remote_id == "abc123", f"got {remote_id}")
    req = seen[0]
    report("posts to device url", str(req.url) == f"http://{DEVICE_IP}:5561/network", str(req.url))
    report("method POST", req.method == "POST")
    body = json.loads(req.content)
    report("body uses wire field names",
           body == {"name": "Embark (demo)", "url": "http://192.168.1.2:8545",
                    "chain": "embark", "network-id": 1337},
           str(body))


async def test_unreachable_mapping() -> None:
    """Refused and timed-out connections become RemoteUnreachable with a code."""
    print(f"\n{BOLD}Test: unreachable mapping{RESET}")
    fake = FakeStatusApp(online=False)
    try:
        await fake.api().connect("abc")
        report("refused raises RemoteUnreachable", False, "no exception")
    except RemoteUnreachable as e:
        report("refused raises RemoteUnreachable", True)
        report("refused code ECONNREFUSED", e.code == "ECONNREFUSED", e.code)

    def timeout(req):
        raise httpx.ConnectTimeout("timed out", request=req)
    try:
        await api_with_handler(timeout).add_network("n", "http://x:1", "embark", 1)
        report("timeout raises RemoteUnreachable", False, "no exception")
    except RemoteUnreachable as e:
        report("timeout code ETIMEDOUT", e.code == "ETIMEDOUT", e.code)


async def test_real_closed_port_is_unreachable() -> None:
    """A real socket with nothing listening maps to RemoteUnreachable."""
    print(f"\n{BOLD}Test: closed port{RESET}")
    api = StatusApi("127.0.0.1", port=1, timeout=1.0, logger=lambda msg, level="info": None)
    report("ping false against closed port", await api.ping() is False)
    try:
        await api.list_networks()
        report("list_networks raises RemoteUnreachable", False, "no exception")
    except RemoteUnreachable:
        report("list_networks raises RemoteUnreachable", True)


async def test_add_network_rejections() -> None:
    """Missing id is MalformedResponse, empty body and 4xx are RemoteRejected."""
    print(f"\n{BOLD}Test: add_network rejections{RESET}")
    fake = FakeStatusApp()
    api = fake.api()

    fake.add_override = lambda: JSONResponse({"message": "Network has been added."})
    try:
        await api.add_network("n", "http://x:1", "embark", 1)
        report("missing network-id raises MalformedResponse", False, "no exception")
    except MalformedResponse as e:
        report("missing network-id raises MalformedResponse", True)
        report("malformed is a RemoteRejected", isinstance(e, RemoteRejected))
        report("message mentions network-id", "network-id" in str(e), str(e))

    fake.add_override = lambda: JSONResponse({"message": "ok", "network-id": ""})
    try:
        await api.add_network("n", "http://x:1", "embark", 1)
        report("empty network-id raises MalformedResponse", False, "no exception")
    except MalformedResponse:
        report("empty network-id raises MalformedResponse", True)

    fake.add_override = lambda: Response(b"", status_code=200)
    try:
        await api.add_network("n", "http://x:1", "embark", 1)
        report("empty body raises RemoteRejected", False, "no exception")
    except MalformedResponse:
        report("empty body raises RemoteRejected", False, "got MalformedResponse")
    except RemoteRejected as e:
        report("empty body raises RemoteRejected", "standby" in str(e), str(e))

    fake.add_override = None
    try:
        await api.add_network("", "", "embark", 1)
        report("400 raises RemoteRejected", False, "no exception")
    except RemoteRejected as e:
        report("400 raises RemoteRejected", e.status_code == 400)
        report("carries app message", "validity of network information" in str(e), str(e))
        report("400 is not unknown_network", e.unknown_network is False)


async def test_connect_unknown_network() -> None:
    """Connecting to an id the app doesn't know flags unknown_network."""
    print(f"\n{BOLD}Test: connect unknown network{RESET}")
    fake = FakeStatusApp()
    api = fake.api()
    try:
        await api.connect("gone")
        report("unknown id raises RemoteRejected", False, "no exception")
    except RemoteRejected as e:
        report("unknown id raises RemoteRejected", True)
        report("unknown_network flag set", e.unknown_network is True)

    not_found = api_with_handler(lambda req: httpx.Response(404, json={"message": "nope"}))
    try:
        await not_found.connect("gone")
        report("404 flags unknown_network", False, "no exception")
    except RemoteRejected as e:
        report("404 flags unknown_network", e.unknown_network is True)

    fake.seed_network("abc123", "Embark (demo)", "http://192.168.1.2:8545", 1337)
    result = await api.connect("abc123")
    report("known id connects", result.get("network-id") == "abc123", str(result))
    report("app switched active network", fake.active_id == "abc123")


async def test_list_networks() -> None:
    """list_networks parses the network table including the active? flag."""
    print(f"\n{BOLD}Test: list_networks{RESET}")
    fake = FakeStatusApp()
    fake.seed_network("a1", "Embark (demo)", "http://192.168.1.2:8545", 1337, active=True)
    fake.seed_network("b2", "Mainnet", "https://mainnet.infura.io", 1)
    networks = await fake.api().list_networks()

    report("two networks parsed", set(networks) == {"a1", "b2"}, str(networks))
    a1 = networks["a1"]
    report("upstream url", a1.upstream_url == "http://192.168.1.2:8545")
    report("chain id is int", a1.network_id == 1337)
    report("active flag", a1.active is True and networks["b2"].active is False)

    parsed = parse_networks({"networks": {"x": {"name": "X", "config": {"NetworkId": "5"}, "active": True}}})
    report("string NetworkId coerced, plain active accepted",
           parsed["x"].network_id == 5 and parsed["x"].active is True)

    try:
        parse_networks({"message": "hi"})
        report("missing table is malformed", False, "no exception")
    except MalformedResponse:
        report("missing table is malformed", True)

    fake.list_supported = False
    try:
        await fake.api().list_networks()
        report("unsupported list raises RemoteRejected", False, "no exception")
    except RemoteRejected:
        report("unsupported list raises RemoteRejected", True)


async def test_undecodable_body() -> None:
    """A body httpx can't decode is malformed, and ping still just says False."""
    print(f"\n{BOLD}Test: undecodable body{RESET}")

    def bad_gzip(req):
        return httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=b"not gzip")

    api = api_with_handler(bad_gzip)
    report("ping false on bad Content-Encoding", await api.ping() is False)
    try:
        await api.connect("abc123")
        report("connect raises MalformedResponse", False, "no exception")
    except MalformedResponse as e:
        report("connect raises MalformedResponse", "unreadable" in str(e), str(e))


async def test_network_table_with_bad_config() -> None:
    """Non-dict config blocks parse as entries with nothing to match on."""
    print(f"\n{BOLD}Test: network table with bad config{RESET}")
    parsed = parse_networks({"networks": {
        "x": {"name": "n", "config": "oops"},
        "y": {"name": "m", "config": {"UpstreamConfig": ["oops"], "NetworkId": 1337}},
    }})
    report("string config tolerated", parsed["x"].upstream_url == "" and parsed["x"].network_id is None)
    report("list upstream tolerated", parsed["y"].upstream_url == "" and parsed["y"].network_id == 1337)

    api = api_with_handler(lambda req: httpx.Response(
        200, json={"networks": {"x": {"name": "n", "config": "oops", "active?": True}}}))
    networks = await api.list_networks()
    report("list_networks returns the entry", set(networks) == {"x"} and networks["x"].active)


async def test_open_and_remove() -> None:
    """open_dapp and remove_network hit their endpoints."""
    print(f"\n{BOLD}Test: open_dapp / remove_network{RESET}")
    fake = FakeStatusApp()
    api = fake.api()
    result = await api.open_dapp("http://192.168.1.2:8000/")
    report("open_dapp message", result.get("message") == "URL has been opened.")
    report("url delivered", fake.opened_urls == ["http://192.168.1.2:8000/"])

    fake.seed_network("abc123", "n", "http://x:1", 1)
    result = await api.remove_network("abc123")
    report("remove_network deletes", "abc123" not in fake.networks and fake.count("remove") == 1)
    try:
        await api.remove_network("abc123")
        report("removing twice rejected", False, "no exception")
    except RemoteRejected as e:
        report("removing twice rejected", "Cannot delete" in str(e), str(e))


async def test_trace_logging() -> None:
    """Every exchange is logged at trace level."""
    print(f"\n{BOLD}Test: trace logging{RESET}")
    lines = []
    fake = FakeStatusApp()
    api = fake.api(logger=lambda msg, level="info": lines.append((level, msg)))
    await api.ping()
    report("one trace line per request", len(lines) == 1 and lines[0][0] == "trace", str(lines))
    report("trace has request and response", "REQUEST: /ping" in lines[0][1] and "Pong!" in lines[0][1])


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

async def main() -> None:
    print(f"\n{BOLD}Embark Status API Tests{RESET}")
    print("=" * 50)

    for test in (
        test_ping,
        test_request_targets_device,
        test_unreachable_mapping,
        test_real_closed_port_is_unreachable,
        test_add_network_rejections,
        test_connect_unknown_network,
        test_list_networks,
        test_undecodable_body,
        test_network_table_with_bad_config,
        test_open_and_remove,
        test_trace_logging,
    ):
        try:
            await test()
        except AssertionError:
            pass
        except Exception as e:
            print(f"  {RED}✗{RESET} {test.__name__}: EXCEPTION: {e}")
            results.append((test.__name__, False, f"EXCEPTION: {e}"))

    passed = sum(1 for _, ok, _ in results if ok)
    failed = sum(1 for _, ok, _ in results if not ok)
    print(f"\n{'=' * 50}")
    print(f"{BOLD}Results: {GREEN}{passed} passed{RESET}, ", end="")
    if failed:
        print(f"{RED}{failed} failed{RESET}")
    else:
        print(f"{BOLD}0 failed{RESET}")

    if failed:
        print(f"\n{RED}Failed tests:{RESET}")
        for name, ok, detail in results:
            if not ok:
                print(f"  - {name}: {detail}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
