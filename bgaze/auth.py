"""
E-mail OTP issuance/verification and session token signing.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from bgaze.errors import DeliveryFailed, InvalidToken
from bgaze.mailer import Mailer, build_otp_message
from bgaze.otp_store import OtpRecord, OtpStore

logger = logging.getLogger(__name__)

COOKIE_NAME = "bgaze_token"


def generate_code() -> str:
    """Six-digit code drawn uniformly from [100000, 999999]."""
    return str(100000 + secrets.randbelow(900000))


@dataclass
class OtpService:
    """
    Issues one-time passcodes by e-mail and consumes them on verification.

    A pending code lives in `store` until it is verified, expires, or is
    rolled back because the e-mail could not be delivered.
    """

    store: OtpStore
    mailer: Mailer
    ttl_seconds: int = 5 * 60
    clock: Callable[[], float] = field(default=time.time)

    def issue(self, email: str) -> OtpRecord:
        record = OtpRecord(
            email=email,
            code=generate_code(),
            expires_at=self.clock() + self.ttl_seconds,
        )
        self.store.purge_expired(self.clock())
        self.store.put(record)
        try:
            self.mailer.send(build_otp_message(email, record.code, self.ttl_seconds))
        except DeliveryFailed:
            # An undeliverable code must not stay pending.
            self.store.delete(email)
            raise
        logger.info("Issued OTP for %s", email)
        return record

    def verify(self, email: str, code: str) -> bool:
        record = self.store.get(email, now=self.clock())
        if record is None:
            return False
        if record.is_expired(self.clock()):
            self.store.delete(email)
            return False
        if not secrets.compare_digest(record.code.encode(), code.encode()):
            return False
        # Only the caller whose delete removed the record wins.
        return self.store.delete(email)


@dataclass
class TokenSigner:
    """Signs and validates HS256 session tokens carrying an e-mail claim."""

    secret: str
    algorithm: str = "HS256"
    ttl: timedelta = timedelta(days=7)

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def issue(self, payload: dict, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        claims = dict(payload)
        claims["iat"] = issued_at
        claims["exp"] = issued_at + self.ttl
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def validate(self, token: str) -> dict:
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.InvalidTokenError as exc:
            raise InvalidToken() from exc
