"""
Network id persistence: one file per fingerprint in the dApp's .embark dir.

The store is the single writer of its directory. Reads never fail; writes
raise StorageError and the caller decides whether to care.

Depends on: config, errors
"""

import os
import threading
from typing import Optional

from embark_status.config import NETWORK_ID_DIRNAME, NETWORK_ID_FILE_PREFIX
from embark_status.errors import StorageError


def default_store_dir(dapp_path: str) -> str:
    """Return <dapp_path>/.embark/embark-status."""
    return os.path.join(dapp_path, NETWORK_ID_DIRNAME)


class NetworkIdStore:
    """Durable fingerprint -> Status network id mapping."""

    def __init__(self, directory: str, prefix: str = NETWORK_ID_FILE_PREFIX):
        self.directory = directory
        self.prefix = prefix
        self._cache: dict[str, str] = {}
        self._write_lock = threading.Lock()

    def path_for(self, fingerprint: str) -> str:
        return os.path.join(self.directory, f"{self.prefix}_{fingerprint}")

    def get(self, fingerprint: str) -> Optional[str]:
        """Return the stored network id for ``fingerprint``, or None."""
        cached = self._cache.get(fingerprint)
        if cached:
            return cached
        try:
            with open(self.path_for(fingerprint), "r") as f:
                network_id = f.read().strip()
        except (OSError, UnicodeDecodeError):
            return None
        if not network_id:
            return None
        self._cache[fingerprint] = network_id
        return network_id

    def put(self, fingerprint: str, network_id: str) -> None:
        """Persist ``network_id`` under ``fingerprint``. Raises StorageError."""
        path = self.path_for(fingerprint)
        tmp = path + ".tmp"
        try:
            # Several fingerprints may race to create the directory
            os.makedirs(self.directory, exist_ok=True)
            with self._write_lock:
                with open(tmp, "w") as f:
                    f.write(network_id)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Error storing networkId in embark: {e}") from e
        self._cache[fingerprint] = network_id
