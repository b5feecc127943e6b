"""
Small helpers shared across the package: URLs, LAN address, logging.

Depends on: config
"""

import socket
import sys
from typing import Callable, Optional, Union

from embark_status.config import LOCAL_HOSTS, LOG_PREFIX, TRACE_ENABLED

# A host-supplied logger: logger(message, level) with level in {"trace", "info", "error"}
Logger = Callable[[str, str], None]


def default_log(message: str, level: str = "info") -> None:
    """Write a prefixed log line to stderr. Trace lines only when enabled."""
    if level == "trace" and not TRACE_ENABLED:
        return
    print(f"{LOG_PREFIX} {message}", file=sys.stderr)


def build_url(protocol: Optional[str], host: str, port: Union[int, str, None] = None,
              type: Optional[str] = None) -> str:
    """Build a URL from its parts.

    ``protocol`` falls back to ``ws`` or ``http`` depending on ``type``.
    ``host`` is required; ``port`` is omitted when empty.
    """
    if not host:
        raise ValueError("build_url: parameter 'host' is required")
    port_part = f":{port}" if port else ""
    if not protocol:
        protocol = "ws" if type == "ws" else "http"
    return f"{protocol}://{host}{port_part}"


def get_lan_ip() -> str:
    """Get LAN IP using UDP connect trick (no actual traffic sent)."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError as e:
        default_log(f"Warning: could not determine LAN address ({e}), falling back to 127.0.0.1. "
                    "The Status app will not be able to reach this machine.", "error")
        return "127.0.0.1"


def routable_host(host: str, lan_ip_fn: Callable[[], str] = get_lan_ip) -> str:
    """Rewrite local-only bind addresses to an address the phone can reach."""
    if host in LOCAL_HOSTS:
        return lan_ip_fn()
    return host
