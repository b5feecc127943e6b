"""
Configuration constants, environment variables, and feature flags.

This is a leaf module with no internal dependencies.
"""

import os

# =============================================================================
# Status App (device)
# =============================================================================

DEVICE_PROTOCOL = "http"
DEVICE_PORT = 5561
DEVICE_IP = os.environ.get("EMBARK_STATUS_DEVICE_IP", "")

# =============================================================================
# Network
# =============================================================================

CHAIN_NAME = "embark"
NETWORK_NAME = "Embark"
DEFAULT_NETWORK_ID = 1337
PROXY_PORT_OFFSET = 10               # proxied node listens on rpcPort + 10

# Hosts the device can't reach; rewritten to the LAN address
LOCAL_HOSTS = ("0.0.0.0", "localhost")

# =============================================================================
# Reconciliation
# =============================================================================

CONNECT_INTERVAL = float(os.environ.get("EMBARK_STATUS_CONNECT_INTERVAL", "4"))
# A request must time out before the next tick fires
REQUEST_TIMEOUT = float(os.environ.get(
    "EMBARK_STATUS_REQUEST_TIMEOUT", str(max(0.5, CONNECT_INTERVAL - 1))
))

STRATEGY_DISCOVERY = "discovery"
STRATEGY_CACHE = "cache"
RECONCILE_STRATEGY = os.environ.get("EMBARK_STATUS_STRATEGY", STRATEGY_DISCOVERY).lower()

# Status replies with this message when asked to connect to an id it has dropped
UNKNOWN_NETWORK_MESSAGES = ("doesn't exist", "does not exist", "not found")

# =============================================================================
# Persistence
# =============================================================================

NETWORK_ID_DIRNAME = os.path.join(".embark", "embark-status")
NETWORK_ID_FILE_PREFIX = "networkId"

# =============================================================================
# dApp Follow-up
# =============================================================================

OPEN_DAPP_WHEN_ALREADY_CONNECTED = os.environ.get(
    "EMBARK_STATUS_OPEN_WHEN_CONNECTED", "true"
).lower() == "true"
RESTART_WAIT_TIMEOUT = float(os.environ.get("EMBARK_STATUS_RESTART_WAIT", "20"))
RESTART_POLL_INTERVAL = 1.0

# =============================================================================
# Service Check
# =============================================================================

SERVICE_CHECK_NAME = "Status.im"
SERVICE_CHECK_ON = "on"
SERVICE_CHECK_OFF = "off"
SERVICE_CHECK_INTERVAL = float(os.environ.get("EMBARK_STATUS_CHECK_INTERVAL", "5"))

# =============================================================================
# Standalone Runner
# =============================================================================

DAPP_NAME = os.environ.get("EMBARK_STATUS_DAPP_NAME", "dapp")
DAPP_URL = os.environ.get("EMBARK_STATUS_DAPP_URL")  # explicit URL, or None to build one
DAPP_PATH = os.environ.get("EMBARK_STATUS_DAPP_PATH", os.environ.get("DAPP_PATH", os.getcwd()))

RPC_HOST = os.environ.get("EMBARK_STATUS_RPC_HOST", "localhost")
RPC_PORT = int(os.environ.get("EMBARK_STATUS_RPC_PORT", "8545"))
RPC_PROXY = os.environ.get("EMBARK_STATUS_RPC_PROXY", "false").lower() == "true"

WEBSERVER_HOST = os.environ.get("EMBARK_STATUS_WEBSERVER_HOST", "localhost")
WEBSERVER_PORT = int(os.environ.get("EMBARK_STATUS_WEBSERVER_PORT", "8000"))

HTTP_HOST = os.environ.get("EMBARK_STATUS_HTTP_HOST", "127.0.0.1")
HTTP_PORT = int(os.environ.get("EMBARK_STATUS_HTTP_PORT", "8560"))

NODE_POLL_INTERVAL = 2.0             # seconds between net_version probes
NODE_POLL_TIMEOUT = 3.0

# =============================================================================
# Logging
# =============================================================================

LOG_PREFIX = "[EmbarkStatus]"
TRACE_ENABLED = os.environ.get("EMBARK_STATUS_TRACE", "false").lower() == "true"
