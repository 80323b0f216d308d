"""In-memory TTL cache over the application settings table."""

from __future__ import annotations

import threading
import time
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from core.logging import get_logger

logger = get_logger(__name__)

SettingsLoader = Callable[[], Mapping[str, str]]

_EMPTY: Mapping[str, str] = MappingProxyType({})


class SettingsCache:
    """Read-through settings cache with wholesale refresh.

    Readers always see a complete snapshot: a reload builds a new mapping and
    swaps the reference, and ``set``/``delete`` copy-on-write the current one.
    ``set``/``delete`` only touch memory; callers persist the change themselves.
    After a failed reload, reads keep the stale snapshot and do not call the
    loader again until ``retry_backoff_seconds`` have passed.
    """

    def __init__(
        self,
        loader: SettingsLoader,
        *,
        ttl_seconds: float = 300.0,
        retry_backoff_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = float(ttl_seconds)
        self._retry_backoff = max(float(retry_backoff_seconds), 0.0)
        self._clock = clock
        self._snapshot: Mapping[str, str] = _EMPTY
        self._loaded_at: Optional[float] = None
        self._retry_after: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def is_stale(self) -> bool:
        loaded_at = self._loaded_at
        if loaded_at is None:
            return True
        return (self._clock() - loaded_at) >= self._ttl

    def _should_reload(self) -> bool:
        if not self.is_stale():
            return False
        retry_after = self._retry_after
        return retry_after is None or self._clock() >= retry_after

    def reload(self) -> bool:
        """Replace the snapshot from the loader; returns False (and keeps stale data) on failure."""
        try:
            fresh: Dict[str, str] = {str(key): str(value) for key, value in dict(self._loader()).items()}
        except Exception as exc:
            logger.warning(
                "Settings reload failed; serving cached values, next attempt in %.1fs: %s", self._retry_backoff, exc
            )
            with self._lock:
                self._retry_after = self._clock() + self._retry_backoff
            return False
        with self._lock:
            self._snapshot = MappingProxyType(fresh)
            self._loaded_at = self._clock()
            self._retry_after = None
        logger.debug("Settings cache reloaded with %d keys.", len(fresh))
        return True

    def get(self, key: str, fallback: Optional[str] = None) -> Optional[str]:
        if self._should_reload():
            self.reload()
        return self._snapshot.get(key, fallback)

    def snapshot(self) -> Mapping[str, str]:
        if self._should_reload():
            self.reload()
        return self._snapshot

    def set(self, key: str, value: str) -> None:
        with self._lock:
            updated = dict(self._snapshot)
            updated[key] = str(value)
            self._snapshot = MappingProxyType(updated)

    def delete(self, key: str) -> None:
        with self._lock:
            if key not in self._snapshot:
                return
            updated = dict(self._snapshot)
            updated.pop(key, None)
            self._snapshot = MappingProxyType(updated)

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None
            self._retry_after = None


__all__ = ["SettingsCache", "SettingsLoader"]
