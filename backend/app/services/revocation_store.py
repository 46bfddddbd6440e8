"""Revocation store - TTL-bounded set of revoked token identifiers.

Two backings share one interface:

* ``RedisRevocationStore`` relies on Redis key expiry, so entries clean
  themselves up and no sweep is needed.
* ``InMemoryRevocationStore`` is the degraded single-process fallback. It
  keeps a lock-guarded dict and runs a periodic sweep thread that drops
  entries past their expiry, or older than ``max_entry_age_seconds`` to
  guard against clock drift.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from redis import Redis
from redis.exceptions import RedisError

from app.core.exceptions import RevocationStoreUnavailableError

logger = logging.getLogger(__name__)


class RevocationStore(ABC):
    """Set of revoked token ids with per-entry expiry."""

    @abstractmethod
    def revoke(self, token_id: str, ttl_seconds: int) -> None:
        """Mark ``token_id`` revoked for ``ttl_seconds`` (clamped to at least 1)."""

    @abstractmethod
    def is_revoked(self, token_id: str) -> bool:
        """True while a revocation entry for ``token_id`` is live."""

    def close(self) -> None:
        return None


@dataclass
class _Entry:
    revoked_at: float
    expires_at: float


class InMemoryRevocationStore(RevocationStore):
    """Process-local revocation map with a background sweep."""

    def __init__(
        self,
        *,
        sweep_interval_seconds: int = 3600,
        max_entry_age_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
        also_purge: Optional[Callable[[], int]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._clock = clock
        self.sweep_interval_seconds = sweep_interval_seconds
        self.max_entry_age_seconds = max_entry_age_seconds
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        # Extra cleanup run on each sweep, e.g. the in-memory refresh index.
        self._also_purge = also_purge

    def revoke(self, token_id: str, ttl_seconds: int) -> None:
        now = self._clock()
        with self._lock:
            self._entries[token_id] = _Entry(revoked_at=now, expires_at=now + max(1, ttl_seconds))

    def is_revoked(self, token_id: str) -> bool:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(token_id)
        return entry is not None and entry.expires_at > now

    def purge_expired(self) -> int:
        """Drop entries past expiry or older than the max age. Returns the number removed."""
        now = self._clock()
        age_cutoff = now - self.max_entry_age_seconds
        with self._lock:
            stale = [
                token_id
                for token_id, entry in self._entries.items()
                if entry.expires_at <= now or entry.revoked_at <= age_cutoff
            ]
            for token_id in stale:
                del self._entries[token_id]
        if stale:
            logger.debug("Purged %d expired revocation entries", len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def start_sweeper(self) -> None:
        if self._sweeper and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="revocation-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.info("Revocation sweeper started (interval=%ss)", self.sweep_interval_seconds)

    def stop_sweeper(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._sweeper:
            self._sweeper.join(timeout=timeout)
            self._sweeper = None

    def is_sweeping(self) -> bool:
        return bool(self._sweeper and self._sweeper.is_alive())

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            try:
                self.purge_expired()
                if self._also_purge is not None:
                    self._also_purge()
            except Exception:
                logger.exception("Revocation sweep failed")

    def close(self) -> None:
        self.stop_sweeper()


class RedisRevocationStore(RevocationStore):
    """Redis-backed revocation set; entries expire natively."""

    KEY_PREFIX = "auth:revoked:"

    def __init__(self, client: Redis, *, fail_open: bool = True, max_retries: int = 1) -> None:
        self.client = client
        self.fail_open = fail_open
        self.max_retries = max(0, max_retries)

    def _key(self, token_id: str) -> str:
        return f"{self.KEY_PREFIX}{token_id}"

    def _call(self, op: Callable[[], object]) -> object:
        retries = self.max_retries
        while True:
            try:
                return op()
            except RedisError:
                if retries <= 0:
                    raise
                retries -= 1

    def revoke(self, token_id: str, ttl_seconds: int) -> None:
        key = self._key(token_id)
        try:
            self._call(lambda: self.client.set(key, str(int(time.time())), ex=max(1, ttl_seconds)))
        except RedisError as exc:
            logger.error("Failed to record revocation for token %s: %s", token_id, exc)
            raise RevocationStoreUnavailableError() from exc

    def is_revoked(self, token_id: str) -> bool:
        key = self._key(token_id)
        try:
            return bool(self._call(lambda: self.client.exists(key)))
        except RedisError as exc:
            if self.fail_open:
                logger.warning(
                    "SECURITY: revocation store unreachable, treating token %s as NOT revoked "
                    "(REVOCATION_FAIL_OPEN=true): %s",
                    token_id,
                    exc,
                )
                return False
            logger.error(
                "Revocation store unreachable, treating token %s as revoked: %s", token_id, exc
            )
            return True

    def close(self) -> None:
        self.client.close()
