"""Per-identity record of the last accepted TOTP window.

Entries live in a single OrderedDict: key lookups go through the hash
table, and iteration order is expiry order (stalest first). An entry
whose expiry is earlier than the tail is moved ahead of the later
entries, so the front of the dict is always the next to expire.

Callers that pass ``now`` get expiries on the epoch clock, which lets
identities with different time offsets or origins share one cache.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass

from totp_code.core.errors import CacheAllocationError, MissingCacheKeyError
from totp_code.core.metrics import Metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CacheEntry:
    identity_key: bytes
    expires_at: int


def window_bounds(window_time: int, time_step: int, *, now: int | None = None) -> tuple[int, int]:
    """Return ``(cutoff, expires_at)`` for a time measured from the origin.

    `cutoff` is the start of the previous window; entries expiring before
    it have fully elapsed. `expires_at` is the last second before the
    current window starts. With `now` both values are shifted from the
    window grid onto the epoch clock.
    """
    if time_step <= 0:
        raise ValueError("time_step must be positive")
    cutoff = (window_time // time_step - 1) * time_step
    shift = 0 if now is None else now - window_time
    return cutoff + shift, cutoff + time_step - 1 + shift


class ReplayCache:
    def __init__(self, *, metrics: Metrics | None = None) -> None:
        self._lock = threading.Lock()
        self._entries: OrderedDict[bytes, CacheEntry] = OrderedDict()
        self._metrics = metrics

    def update(
        self,
        identity_key: bytes,
        window_time: int,
        time_step: int,
        *,
        now: int | None = None,
    ) -> None:
        """Insert or refresh the entry for `identity_key`.

        Expired entries are evicted first. A refresh is not a reuse signal;
        use `claim` to reject a second acceptance within a window.
        """
        key = _require_key(identity_key)
        cutoff, expires_at = window_bounds(window_time, time_step, now=now)
        with self._lock:
            self._cleanup(cutoff)
            self._upsert(key, expires_at)
            size = len(self._entries)
        self._observe_size(size)

    def claim(
        self,
        identity_key: bytes,
        window_time: int,
        time_step: int,
        *,
        now: int | None = None,
    ) -> bool:
        """Record an acceptance unless the identity already has one in this window."""
        key = _require_key(identity_key)
        cutoff, expires_at = window_bounds(window_time, time_step, now=now)
        with self._lock:
            self._cleanup(cutoff)
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at >= expires_at:
                return False
            self._upsert(key, expires_at)
            size = len(self._entries)
        self._observe_size(size)
        return True

    def get(self, identity_key: bytes) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(bytes(identity_key))
            if entry is None:
                return None
            return CacheEntry(identity_key=entry.identity_key, expires_at=entry.expires_at)

    def snapshot(self) -> list[CacheEntry]:
        with self._lock:
            return [
                CacheEntry(identity_key=entry.identity_key, expires_at=entry.expires_at)
                for entry in self._entries.values()
            ]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        self._observe_size(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _cleanup(self, cutoff: int) -> None:
        evicted = 0
        while self._entries:
            key, entry = next(iter(self._entries.items()))
            if entry.expires_at >= cutoff:
                break
            del self._entries[key]
            evicted += 1
        if evicted:
            logger.debug("replay_cache_evicted count=%s cutoff=%s", evicted, cutoff)
            if self._metrics is not None:
                self._metrics.observe_cache_evictions(evicted)

    def _upsert(self, key: bytes, expires_at: int) -> None:
        entry = self._entries.get(key)
        if entry is not None:
            entry.expires_at = expires_at
            self._entries.move_to_end(key)
        else:
            try:
                self._entries[key] = CacheEntry(identity_key=key, expires_at=expires_at)
            except MemoryError as exc:
                raise CacheAllocationError("unable to allocate replay cache entry") from exc
        self._restore_order(key, expires_at)

    def _restore_order(self, key: bytes, expires_at: int) -> None:
        # `key` sits at the tail; entries expiring after it move behind it.
        later: list[bytes] = []
        for other in reversed(self._entries):
            if other == key:
                continue
            if self._entries[other].expires_at <= expires_at:
                break
            later.append(other)
        for other in reversed(later):
            self._entries.move_to_end(other)

    def _observe_size(self, size: int) -> None:
        if self._metrics is not None:
            self._metrics.set_cache_entries(size)


def _require_key(identity_key: bytes | None) -> bytes:
    if not identity_key:
        raise MissingCacheKeyError("replay cache requires a non-empty identity key")
    return bytes(identity_key)
