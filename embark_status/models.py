"""
Data models: pure data classes with no business logic.

Depends on: config
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from embark_status.config import CHAIN_NAME, DEFAULT_NETWORK_ID


# =============================================================================
# Enums
# =============================================================================

class ReconcileState(str, Enum):
    IDLE = "idle"
    PROBING = "probing"
    CREATING = "creating"
    CONNECTING_CACHED = "connecting_cached"
    CONNECTING_DISCOVERED = "connecting_discovered"
    CONNECTED = "connected"
    FAILED = "failed"


class AttemptOutcome(str, Enum):
    CONNECTED = "connected"                  # switched (or created) this attempt
    ALREADY_CONNECTED = "already_connected"  # network was active before we asked
    FAILED = "failed"


class FailureKind(str, Enum):
    UNREACHABLE = "unreachable"
    REJECTED = "rejected"
    MALFORMED = "malformed"


# =============================================================================
# Network
# =============================================================================

@dataclass(frozen=True)
class NetworkSettings:
    """The local network to expose to the Status app."""
    network_name: str
    node_url: str
    chain_name: str = CHAIN_NAME
    network_id: int = DEFAULT_NETWORK_ID
    # Plugin config passed through from the host (dapp name, device ip, ...)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class NetworkDescriptor:
    """One entry of the Status app's network table."""
    id: str
    name: str = ""
    upstream_url: str = ""
    network_id: Optional[int] = None
    active: bool = False

    def matches(self, settings: NetworkSettings) -> bool:
        return (
            self.upstream_url == settings.node_url
            and self.network_id == int(settings.network_id)
            and self.name == settings.network_name
        )


# =============================================================================
# Reconciliation
# =============================================================================

@dataclass
class ReconciliationAttempt:
    """Outcome of one scheduler tick. Never persisted."""
    outcome: AttemptOutcome = AttemptOutcome.FAILED
    failure: Optional[FailureKind] = None
    diagnostic: str = ""
    remote_network_id: Optional[str] = None
    created: bool = False
    states: list[ReconcileState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome in (AttemptOutcome.CONNECTED, AttemptOutcome.ALREADY_CONNECTED)

    @property
    def fresh(self) -> bool:
        """True when the app switched networks during this attempt."""
        return self.outcome == AttemptOutcome.CONNECTED
