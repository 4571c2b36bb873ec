"""
Keyed storage for pending one-time passcodes.

Supports an in-process map for single-instance deployments and tests, and
a Redis-backed implementation so several API instances can share OTP state.
Both expire records explicitly instead of relying on timers.
"""

from __future__ import annotations

import json
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from bgaze.errors import UpstreamFailure


@dataclass
class OtpRecord:
    email: str
    code: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class OtpStore(Protocol):
    """At most one pending record per e-mail; put() overwrites."""

    def put(self, record: OtpRecord) -> None:
        ...

    def get(self, email: str, *, now: float) -> Optional[OtpRecord]:
        ...

    def delete(self, email: str) -> bool:
        ...

    def purge_expired(self, now: float | None = None) -> int:
        ...


@dataclass
class InMemoryOtpStore:
    """Process-local store. Expired records are dropped on read or by purge_expired()."""

    records: Dict[str, OtpRecord] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def put(self, record: OtpRecord) -> None:
        with self._lock:
            self.records[record.email] = record

    def get(self, email: str, *, now: float) -> Optional[OtpRecord]:
        with self._lock:
            record = self.records.get(email)
            if record is not None and record.is_expired(now):
                del self.records[email]
                return None
            return record

    def delete(self, email: str) -> bool:
        with self._lock:
            return self.records.pop(email, None) is not None

    def purge_expired(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        with self._lock:
            expired = [k for k, r in self.records.items() if r.is_expired(now)]
            for email in expired:
                del self.records[email]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self.records.clear()


@dataclass
class RedisOtpStore:
    """Redis-backed store; each record is a JSON string with a key TTL."""

    url: str
    key_prefix: str = "bgaze:otp:"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, email: str) -> str:
        return f"{self.key_prefix}{email}"

    def put(self, record: OtpRecord) -> None:
        ttl = max(1, math.ceil(record.expires_at - time.time()))
        payload = json.dumps({"code": record.code, "expires_at": record.expires_at})
        try:
            self.client.set(self._key(record.email), payload, ex=ttl)
        except redis_exceptions.RedisError as exc:
            raise UpstreamFailure("Failed to store OTP") from exc

    def get(self, email: str, *, now: float) -> Optional[OtpRecord]:
        try:
            raw = self.client.get(self._key(email))
        except redis_exceptions.RedisError as exc:
            raise UpstreamFailure("Failed to read OTP") from exc
        if raw is None:
            return None
        data = json.loads(raw)
        record = OtpRecord(email=email, code=data["code"], expires_at=data["expires_at"])
        if record.is_expired(now):
            self.delete(email)
            return None
        return record

    def delete(self, email: str) -> bool:
        try:
            return bool(self.client.delete(self._key(email)))
        except redis_exceptions.RedisError as exc:
            raise UpstreamFailure("Failed to delete OTP") from exc

    def purge_expired(self, now: float | None = None) -> int:
        # Keys carry their own TTL; Redis evicts them.
        return 0
