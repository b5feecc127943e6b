"""
Network reconciliation: make the Status app point at this dApp's node.

One call to Reconciler.reconcile() is one attempt:

    IDLE -> PROBING -> {CREATING, CONNECTING_CACHED, CONNECTING_DISCOVERED} -> CONNECTED

with FAILED reachable from every active state. FAILED is not terminal for the
process; the RetryScheduler simply tries again on its next tick.

Two lookup strategies are supported:

- discovery (default): list the app's networks and look for one whose URL,
  chain network id and name all match. Found-and-active ends the attempt
  without any connect call.
- cache: trust the fingerprint-keyed NetworkIdStore and connect to the id it
  holds.

In either case a connect rejected because the app no longer knows the id falls
back to adding the network again, at most once per attempt.

Depends on: config, errors, identity, models, store, api, utils
"""

from typing import Callable, Optional

from embark_status.api import StatusApi
from embark_status.config import RECONCILE_STRATEGY, STRATEGY_CACHE, STRATEGY_DISCOVERY
from embark_status.errors import (
    MalformedResponse,
    RemoteRejected,
    RemoteUnreachable,
    StatusError,
    StorageError,
)
from embark_status.identity import compute_fingerprint
from embark_status.models import (
    AttemptOutcome,
    FailureKind,
    NetworkDescriptor,
    NetworkSettings,
    ReconcileState,
    ReconciliationAttempt,
)
from embark_status.store import NetworkIdStore
from embark_status.utils import Logger, default_log


def find_matching_network(networks: dict[str, NetworkDescriptor],
                          settings: NetworkSettings) -> Optional[NetworkDescriptor]:
    """Return the app network matching ``settings``, preferring an active one."""
    matches = [n for n in networks.values() if n.matches(settings)]
    if not matches:
        return None
    for network in matches:
        if network.active:
            return network
    return matches[0]


def _failure_kind(err: StatusError) -> FailureKind:
    if isinstance(err, MalformedResponse):
        return FailureKind.MALFORMED
    if isinstance(err, RemoteRejected):
        return FailureKind.REJECTED
    return FailureKind.UNREACHABLE


class Reconciler:
    """Owns the cached network settings/fingerprint and runs attempts."""

    def __init__(self, api: StatusApi, store: NetworkIdStore,
                 settings_builder: Callable[[], NetworkSettings],
                 strategy: str = RECONCILE_STRATEGY,
                 logger: Optional[Logger] = None):
        if strategy not in (STRATEGY_DISCOVERY, STRATEGY_CACHE):
            raise ValueError(f"unknown reconcile strategy: {strategy!r}")
        self.api = api
        self.store = store
        self.strategy = strategy
        self.state = ReconcileState.IDLE
        self._build_settings = settings_builder
        self._settings: Optional[NetworkSettings] = None
        self._fingerprint: Optional[str] = None
        self._log = logger or default_log

    # -- Settings cache --

    @property
    def settings(self) -> NetworkSettings:
        if self._settings is None:
            settings = self._build_settings()
            self._fingerprint = compute_fingerprint(settings)
            self._settings = settings
        return self._settings

    @property
    def fingerprint(self) -> str:
        if self._fingerprint is None:
            _ = self.settings
        return self._fingerprint

    def invalidate(self) -> None:
        """Drop cached settings so the next attempt recomputes the fingerprint."""
        self._settings = None
        self._fingerprint = None

    # -- Attempt --

    async def reconcile(self) -> ReconciliationAttempt:
        """Run one attempt. Remote and storage errors end up in the result."""
        attempt = ReconciliationAttempt()
        self.state = ReconcileState.IDLE
        try:
            await self._run(attempt)
        except StatusError as e:
            self._fail(attempt, _failure_kind(e), f"Unexpected error talking to the Status app: {e}")
        return attempt

    async def _run(self, attempt: ReconciliationAttempt) -> None:
        self._enter(attempt, ReconcileState.PROBING)
        if not await self.api.ping():
            self._fail(attempt, FailureKind.UNREACHABLE,
                       f"Status app unreachable at {self.api.url}. Is the Status app open?")
            return

        settings = self.settings
        fingerprint = self.fingerprint
        target: Optional[str] = None
        target_state = ReconcileState.CONNECTING_CACHED

        if self.strategy == STRATEGY_DISCOVERY:
            try:
                networks = await self.api.list_networks()
            except RemoteUnreachable as e:
                self._fail(attempt, FailureKind.UNREACHABLE,
                           f"Failed to list networks in the Status app ({e}). Is the Status app open?")
                return
            except RemoteRejected as e:
                self._log(f"Status app could not list networks ({e}), using stored network id.", "info")
                target = self.store.get(fingerprint)
            else:
                match = find_matching_network(networks, settings)
                if match is not None:
                    self._remember(fingerprint, match.id)
                    if match.active:
                        self._log(f"Status app is already connected to network {settings.node_url}.", "info")
                        attempt.remote_network_id = match.id
                        self._succeed(attempt, AttemptOutcome.ALREADY_CONNECTED)
                        return
                    target = match.id
                    target_state = ReconcileState.CONNECTING_DISCOVERED
        else:
            target = self.store.get(fingerprint)

        if target is not None:
            self._enter(attempt, target_state)
            try:
                await self._connect(target)
            except RemoteRejected as e:
                if not e.unknown_network:
                    self._fail_connect(attempt, e)
                    return
                self._log(f"Status app no longer knows network {target}, adding it again.", "info")
            except RemoteUnreachable as e:
                self._fail_connect(attempt, e)
                return
            else:
                attempt.remote_network_id = target
                self._succeed(attempt, AttemptOutcome.CONNECTED)
                return

        await self._create_and_connect(attempt, settings, fingerprint)

    async def _create_and_connect(self, attempt: ReconciliationAttempt,
                                  settings: NetworkSettings, fingerprint: str) -> None:
        self._enter(attempt, ReconcileState.CREATING)
        self._log(f"Adding network '{settings.network_name}' to Status...", "info")
        try:
            remote_id = await self.api.add_network(
                settings.network_name, settings.node_url, settings.chain_name, settings.network_id
            )
        except RemoteUnreachable:
            self._fail(attempt, FailureKind.UNREACHABLE,
                       "Failed to add a network to the Status app. Is the Status app open?")
            return
        except MalformedResponse as e:
            self._fail(attempt, FailureKind.MALFORMED, str(e))
            return
        except RemoteRejected as e:
            self._fail(attempt, FailureKind.REJECTED,
                       f"Error while adding network {settings.node_url} (name: {settings.chain_name}, "
                       f"networkId: {settings.network_id}) to the Status App: {e}.")
            return

        self._log(f"Network '{settings.network_name}' added successfully.", "info")
        attempt.created = True
        # Persist before connecting; a failed write only costs a re-add next run
        self._remember(fingerprint, remote_id)

        try:
            await self._connect(remote_id)
        except StatusError as e:
            self._fail_connect(attempt, e)
            return
        attempt.remote_network_id = remote_id
        self._succeed(attempt, AttemptOutcome.CONNECTED)

    async def _connect(self, remote_id: str) -> None:
        node_url = self.settings.node_url
        self._log(f"Connecting Status app to network {node_url}...", "info")
        await self.api.connect(remote_id)
        self._log(f"Successfully connected to network {node_url}.", "info")

    def _remember(self, fingerprint: str, remote_id: str) -> None:
        if self.store.get(fingerprint) == remote_id:
            return
        try:
            self.store.put(fingerprint, remote_id)
        except StorageError as e:
            self._log(str(e), "error")

    # -- Transitions --

    def _enter(self, attempt: ReconciliationAttempt, state: ReconcileState) -> None:
        self.state = state
        attempt.states.append(state)

    def _succeed(self, attempt: ReconciliationAttempt, outcome: AttemptOutcome) -> None:
        self._enter(attempt, ReconcileState.CONNECTED)
        attempt.outcome = outcome
        attempt.failure = None
        attempt.diagnostic = ""

    def _fail(self, attempt: ReconciliationAttempt, kind: FailureKind, diagnostic: str) -> None:
        self._enter(attempt, ReconcileState.FAILED)
        attempt.outcome = AttemptOutcome.FAILED
        attempt.failure = kind
        attempt.diagnostic = diagnostic

    def _fail_connect(self, attempt: ReconciliationAttempt, err: StatusError) -> None:
        if isinstance(err, RemoteUnreachable):
            self._fail(attempt, FailureKind.UNREACHABLE,
                       "Failed to connect to the Status network. Is the Status app open?")
            return
        self._fail(attempt, _failure_kind(err),
                   f"Error while connecting to Status network {self.settings.node_url} "
                   f"in the Status app: {err}.")
