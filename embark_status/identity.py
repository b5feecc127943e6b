"""
Network identity: deterministic fingerprint of the settings that define
"this network" in the Status app.

Depends on: models
"""

import hashlib
import json
from typing import Any

from embark_status.models import NetworkSettings

# Never hashed: a previously computed digest carried along in plugin config
_EXCLUDED_KEYS = frozenset({"hash"})


def fingerprint_payload(settings: NetworkSettings) -> dict[str, Any]:
    """Return exactly the fields covered by the fingerprint."""
    payload = {k: v for k, v in settings.metadata.items() if k not in _EXCLUDED_KEYS}
    payload.update({
        "networkName": settings.network_name,
        "nodeUrl": settings.node_url,
        "chainName": settings.chain_name,
        "networkId": int(settings.network_id),
    })
    return payload


def compute_fingerprint(settings: NetworkSettings) -> str:
    """SHA-256 over the canonical JSON encoding of the settings. Returns hex."""
    canonical = json.dumps(
        fingerprint_payload(settings),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
