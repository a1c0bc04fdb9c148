from __future__ import annotations
import logging
import threading
import time
from typing import Callable, Dict, Optional

from .errors import TagTrackError
from .models import Tag

log = logging.getLogger("rfidtrack.cache")


class TagCache:
    """
    EPC -> Tag map with a fixed TTL, owned by whoever builds the repository.

    - get_all() refetches through `loader` once the TTL has lapsed.
    - A failed refetch serves the last good snapshot (stale beats down during
      a live event); with no snapshot at all the error propagates.
    - invalidate() drops the snapshot. A stale map is only ever served after
      TTL expiry, never after a write.
    - One lock serializes refreshes and invalidation across request threads.
    """
    def __init__(self, loader: Callable[[], Dict[str, Tag]], ttl_s: float = 120.0,
                 clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Tag]] = None
        self._loaded_at: Optional[float] = None
        self.refresh_count = 0

    @property
    def is_fresh(self) -> bool:
        with self._lock:
            if self._snapshot is None or self._loaded_at is None:
                return False
            return (self._clock() - self._loaded_at) < self.ttl_s

    def get_all(self) -> Dict[str, Tag]:
        with self._lock:
            if self.is_fresh:
                return dict(self._snapshot)  # type: ignore[arg-type]

            try:
                fresh = self._loader()
            except TagTrackError as e:
                if self._snapshot is not None:
                    log.warning("cache_refresh_failed_serving_stale",
                                extra={"err": e.message, "size": len(self._snapshot)})
                    return dict(self._snapshot)
                raise

            self._snapshot = fresh
            self._loaded_at = self._clock()
            self.refresh_count += 1
            log.info("cache_refreshed", extra={"size": len(fresh)})
            return dict(fresh)

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None
            self._loaded_at = None
