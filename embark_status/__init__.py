"""
Embark Status: keep the Status app pointed at a dApp's local blockchain node.
"""

from embark_status.api import StatusApi
from embark_status.plugin import EmbarkStatusPlugin
from embark_status.reconcile import Reconciler
from embark_status.scheduler import RetryScheduler
from embark_status.store import NetworkIdStore

__all__ = ["EmbarkStatusPlugin", "NetworkIdStore", "Reconciler", "RetryScheduler", "StatusApi"]
