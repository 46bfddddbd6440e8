"""Active refresh-token index.

Maps refresh-token jti -> (owning subject, expiry). A refresh token is only
usable while its entry is present; ``pop`` is atomic per key, which is what
lets exactly one of two racing rotations win.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from redis import Redis
from redis.exceptions import RedisError

from app.core.exceptions import RevocationStoreUnavailableError
from app.core.security import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefreshTokenRecord:
    subject: str
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())


class RefreshTokenIndex(ABC):
    """Index of live refresh tokens."""

    @abstractmethod
    def add(self, jti: str, subject: str, expires_at: datetime) -> None:
        ...

    @abstractmethod
    def get(self, jti: str) -> Optional[RefreshTokenRecord]:
        ...

    @abstractmethod
    def pop(self, jti: str) -> Optional[RefreshTokenRecord]:
        """Remove and return the entry. Only one concurrent caller receives it."""

    @abstractmethod
    def jtis_for_subject(self, subject: str) -> List[str]:
        ...

    def close(self) -> None:
        return None


class InMemoryRefreshTokenIndex(RefreshTokenIndex):
    """Lock-guarded dict for single-process deployments and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, RefreshTokenRecord] = {}

    def add(self, jti: str, subject: str, expires_at: datetime) -> None:
        with self._lock:
            self._records[jti] = RefreshTokenRecord(subject=subject, expires_at=expires_at)

    def get(self, jti: str) -> Optional[RefreshTokenRecord]:
        with self._lock:
            return self._records.get(jti)

    def pop(self, jti: str) -> Optional[RefreshTokenRecord]:
        with self._lock:
            return self._records.pop(jti, None)

    def jtis_for_subject(self, subject: str) -> List[str]:
        with self._lock:
            return [jti for jti, record in self._records.items() if record.subject == subject]

    def purge_expired(self) -> int:
        now = utcnow()
        with self._lock:
            stale = [jti for jti, record in self._records.items() if record.is_expired(now)]
            for jti in stale:
                del self._records[jti]
        if stale:
            logger.debug("Cleaned up %d expired refresh tokens", len(stale))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class RedisRefreshTokenIndex(RefreshTokenIndex):
    """
    Redis-backed index.

    Layout:
        auth:refresh:active:{jti}     hash {subject, exp} with TTL = remaining lifetime
        auth:refresh:subject:{sub}    set of jtis, used for mass revocation
    """

    RECORD_PREFIX = "auth:refresh:active:"
    SUBJECT_PREFIX = "auth:refresh:subject:"

    def __init__(self, client: Redis) -> None:
        self.client = client

    def _record_key(self, jti: str) -> str:
        return f"{self.RECORD_PREFIX}{jti}"

    def _subject_key(self, subject: str) -> str:
        return f"{self.SUBJECT_PREFIX}{subject}"

    @staticmethod
    def _to_record(data: Dict[str, str]) -> Optional[RefreshTokenRecord]:
        if not data or "subject" not in data or "exp" not in data:
            return None
        expires_at = datetime.fromtimestamp(int(data["exp"]), tz=timezone.utc)
        return RefreshTokenRecord(subject=data["subject"], expires_at=expires_at)

    def add(self, jti: str, subject: str, expires_at: datetime) -> None:
        ttl = max(1, int((expires_at - utcnow()).total_seconds()))
        record_key = self._record_key(jti)
        subject_key = self._subject_key(subject)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(record_key, mapping={"subject": subject, "exp": str(int(expires_at.timestamp()))})
            pipe.expire(record_key, ttl)
            pipe.sadd(subject_key, jti)
            # The subject set lives as long as its newest token.
            pipe.expire(subject_key, ttl)
            pipe.execute()
        except RedisError as exc:
            logger.error("Failed to index refresh token for subject %s: %s", subject, exc)
            raise RevocationStoreUnavailableError() from exc

    def get(self, jti: str) -> Optional[RefreshTokenRecord]:
        try:
            return self._to_record(self.client.hgetall(self._record_key(jti)))
        except RedisError as exc:
            raise RevocationStoreUnavailableError() from exc

    def pop(self, jti: str) -> Optional[RefreshTokenRecord]:
        record_key = self._record_key(jti)
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hgetall(record_key)
            pipe.delete(record_key)
            data, deleted = pipe.execute()
        except RedisError as exc:
            raise RevocationStoreUnavailableError() from exc

        if not deleted:
            return None
        record = self._to_record(data)
        if record is not None:
            try:
                self.client.srem(self._subject_key(record.subject), jti)
            except RedisError as exc:
                # Stale set members are skipped by pop() later.
                logger.warning("Failed to drop jti from subject set: %s", exc)
        return record

    def jtis_for_subject(self, subject: str) -> List[str]:
        try:
            return sorted(self.client.smembers(self._subject_key(subject)))
        except RedisError as exc:
            raise RevocationStoreUnavailableError() from exc

    def close(self) -> None:
        self.client.close()
