from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Dict, Optional

from forwardauth.auth.models import CacheEntry, Identity

logger = logging.getLogger(__name__)

RETENTION_SECONDS = 3600
SWEEP_INTERVAL_SECONDS = 300


class IdentityCache:
    """
    Short-lived, in-memory identity store.

    Auth cookies only carry an identity id; the full profile lives here. Entries
    are evicted by a background sweep once older than `retention_seconds`, so a
    cookie outliving its entry (or issued before a restart) forces a new login.

    All reads and writes go through one lock (request handlers + sweeper thread).
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        retention_seconds: int = RETENTION_SECONDS,
        sweep_interval_seconds: int = SWEEP_INTERVAL_SECONDS,
        background: bool = True,
    ):
        """
        Args:
            clock: Returns wall-clock unix seconds (injectable for tests)
            retention_seconds: Entry lifetime before the sweep evicts it (default: 1h)
            sweep_interval_seconds: Pause between sweeps (default: 5 minutes)
            background: Start the sweeper thread on first `ensure` (default: True)
        """
        self._entries: Dict[uuid.UUID, CacheEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._retention = retention_seconds
        self._interval = sweep_interval_seconds
        self._background = background
        self._started = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def ensure(self, identity: Identity) -> None:
        """Insert identity unless its id is already cached (first sighting wins)."""
        if self._background:
            self.start()
        with self._lock:
            if identity.id not in self._entries:
                self._entries[identity.id] = CacheEntry(identity=identity, added_at=self._clock())

    def lookup(self, identity_id: uuid.UUID) -> Optional[Identity]:
        with self._lock:
            entry = self._entries.get(identity_id)
        return entry.identity if entry is not None else None

    def sweep(self) -> int:
        """Evict entries older than the retention window. Returns the number evicted."""
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._entries.items() if now - e.added_at > self._retention]
            for k in stale:
                del self._entries[k]
        if stale:
            logger.debug("Identity cache sweep evicted %d entries", len(stale))
        return len(stale)

    def start(self) -> None:
        """Start the sweeper thread (idempotent)."""
        with self._lock:
            if self._started:
                return
            self._started = True
        self._thread = threading.Thread(target=self._run, name="identity-cache-sweeper", daemon=True)
        self._thread.start()
        logger.info("Identity cache sweeper started (interval=%ds, retention=%ds)", self._interval, self._retention)

    def stop(self) -> None:
        self._stop.set()

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.sweep()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Global identity cache instance
_global_identity_cache: IdentityCache | None = None
_global_lock = threading.Lock()


def get_identity_cache() -> IdentityCache:
    """Get the process-wide identity cache instance."""
    global _global_identity_cache
    with _global_lock:
        if _global_identity_cache is None:
            _global_identity_cache = IdentityCache()
        return _global_identity_cache
