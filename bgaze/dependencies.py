"""
Dependency wiring for the FastAPI app.

Each backend is built once per process from settings and reused by every
request. `reset_backends()` drops them so tests can start fresh.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Request

from bgaze.auth import COOKIE_NAME, OtpService, TokenSigner
from bgaze.config import get_settings
from bgaze.db import InMemoryProfileStore, ProfileStore, SqlProfileStore
from bgaze.errors import MissingToken
from bgaze.mailer import InMemoryMailer, Mailer, SmtpMailer
from bgaze.otp_store import InMemoryOtpStore, OtpStore, RedisOtpStore
from bgaze.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)

_profile_store: ProfileStore | None = None
_otp_store: OtpStore | None = None
_mailer: Mailer | None = None
_otp_service: OtpService | None = None
_token_signer: TokenSigner | None = None
_storage_client: StorageClient | None = None


def get_profile_store() -> ProfileStore:
    global _profile_store
    if _profile_store:
        return _profile_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _profile_store = InMemoryProfileStore()
    else:
        _profile_store = SqlProfileStore(settings.database_url)
    return _profile_store


def get_otp_store() -> OtpStore:
    global _otp_store
    if _otp_store:
        return _otp_store

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.redis_url:
        _otp_store = InMemoryOtpStore()
    else:
        _otp_store = RedisOtpStore(
            url=settings.redis_url, key_prefix=settings.otp_key_prefix
        )
    return _otp_store


def get_mailer() -> Mailer:
    global _mailer
    if _mailer:
        return _mailer

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.smtp_user:
        _mailer = InMemoryMailer()
    else:
        _mailer = SmtpMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.mail_from,
            use_ssl=settings.smtp_use_ssl,
        )
    return _mailer


def get_otp_service() -> OtpService:
    global _otp_service
    if _otp_service:
        return _otp_service

    settings = get_settings()
    _otp_service = OtpService(
        store=get_otp_store(),
        mailer=get_mailer(),
        ttl_seconds=settings.otp_ttl_seconds,
    )
    return _otp_service


def get_token_signer() -> TokenSigner:
    global _token_signer
    if _token_signer:
        return _token_signer

    settings = get_settings()
    secret = settings.jwt_secret
    if not secret:
        logger.warning(
            "JWT_SECRET is not set; using a random secret, sessions end on restart"
        )
        secret = secrets.token_urlsafe(32)
    _token_signer = TokenSigner(
        secret=secret,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(days=settings.token_ttl_days),
    )
    return _token_signer


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.aws_s3_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.aws_s3_bucket,
            region=settings.aws_region or "",
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            endpoint=settings.s3_endpoint_url,
            acl=settings.s3_object_acl,
        )
    return _storage_client


def init_backends() -> None:
    """Build every backend up front so configuration errors surface at startup."""
    get_profile_store()
    get_otp_service()
    get_token_signer()
    get_storage_client()


def reset_backends() -> None:
    global _profile_store, _otp_store, _mailer, _otp_service, _token_signer
    global _storage_client
    _profile_store = None
    _otp_store = None
    _mailer = None
    _otp_service = None
    _token_signer = None
    _storage_client = None


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_session(
    request: Request, signer: TokenSigner = Depends(get_token_signer)
) -> dict:
    """
    Resolve the session from `Authorization: Bearer` or the session cookie.

    The header wins when both are present. Returns the decoded claims.
    """
    token = _bearer_token(request) or request.cookies.get(COOKIE_NAME)
    if not token:
        raise MissingToken()
    return signer.validate(token)
