"""
HTTP routes for the BGaze backend API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from bgaze.auth import COOKIE_NAME, OtpService, TokenSigner
from bgaze.config import get_settings
from bgaze.db import SURVEY_FIELDS, ProfileRecord, ProfileStore
from bgaze.dependencies import (
    get_otp_service,
    get_profile_store,
    get_storage_client,
    get_token_signer,
    require_session,
)
from bgaze.errors import NotFound, PayloadTooLarge, ValidationError
from bgaze.schemas import (
    AutoLoginResponse,
    ExistsResponse,
    MeResponse,
    MessageResponse,
    PresignRequest,
    PresignResponse,
    ProfileCreate,
    ProfileUpdate,
    ProfileUpdateResponse,
    SendOtpRequest,
    SignUrlResponse,
    UploadResponse,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from bgaze.storage import StorageClient, presigned_upload_key, upload_key

logger = logging.getLogger(__name__)

profile_router = APIRouter(prefix="/userprofile", tags=["userprofile"])
auth_router = APIRouter(tags=["auth"])
storage_router = APIRouter(
    prefix="/s3", tags=["s3"], dependencies=[Depends(require_session)]
)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


@profile_router.post("", response_model=MessageResponse, status_code=201)
def create_profile(
    payload: ProfileCreate, store: ProfileStore = Depends(get_profile_store)
):
    data = payload.model_dump()
    record = ProfileRecord(
        id_name=data["idName"],
        email=data.get("email"),
        survey={name: data.get(name) for name in SURVEY_FIELDS},
    )
    store.create(record)
    return MessageResponse(message="Data saved successfully")


@profile_router.get("")
def list_profiles(store: ProfileStore = Depends(get_profile_store)):
    return [profile.as_dict() for profile in store.list_all()]


@profile_router.get("/search")
def search_profiles(
    q: str | None = Query(None), store: ProfileStore = Depends(get_profile_store)
):
    return [profile.as_dict() for profile in store.search(q or "")]


@profile_router.get("/exists", response_model=ExistsResponse)
def profile_exists(
    email: str | None = Query(None),
    withCount: str | None = Query(None),
    store: ProfileStore = Depends(get_profile_store),
):
    """
    Presence check by exact e-mail.

    Without `withCount` the answer is only the status code (204/404); with it,
    a JSON body carries the match count. The count query runs only on a hit.
    """
    if not email:
        raise ValidationError("Email query parameter is required")
    exists = store.exists_by_email(email)
    count_mode = bool(withCount) and withCount.strip().lower() not in ("false", "0")
    if not count_mode:
        return Response(status_code=204 if exists else 404)
    count = store.count_by_email(email) if exists else 0
    return JSONResponse(
        status_code=200 if exists else 404,
        content=ExistsResponse(exists=exists, count=count).model_dump(),
    )


@profile_router.get("/{id_name}")
def get_profile(id_name: str, store: ProfileStore = Depends(get_profile_store)):
    profile = store.get(id_name)
    if profile is None:
        raise NotFound("User profile not found")
    return profile.as_dict()


@profile_router.put("/{id_name}", response_model=ProfileUpdateResponse)
def update_profile(
    id_name: str,
    payload: ProfileUpdate,
    store: ProfileStore = Depends(get_profile_store),
):
    updated = store.rename(
        id_name, new_id_name=payload.newIdName, new_email=payload.newEmail
    )
    return ProfileUpdateResponse(
        message="User profile updated successfully", user=updated.as_dict()
    )


@profile_router.delete("/{id_name}", response_model=MessageResponse)
def delete_profile(id_name: str, store: ProfileStore = Depends(get_profile_store)):
    if not store.delete(id_name):
        raise NotFound("User not found")
    return MessageResponse(message="User profile deleted successfully")


# ---------------------------------------------------------------------------
# OTP sign-in and sessions
# ---------------------------------------------------------------------------


@auth_router.post("/send-email-otp", response_model=MessageResponse)
def send_email_otp(
    payload: SendOtpRequest, otp: OtpService = Depends(get_otp_service)
):
    if not payload.email:
        raise ValidationError("Email is required")
    otp.issue(payload.email)
    return MessageResponse(message="OTP sent to e-mail")


@auth_router.post(
    "/verify-email-otp",
    response_model=VerifyOtpResponse,
    response_model_exclude_none=True,
)
def verify_email_otp(
    payload: VerifyOtpRequest,
    response: Response,
    otp: OtpService = Depends(get_otp_service),
    signer: TokenSigner = Depends(get_token_signer),
):
    """
    Exchange a pending code for a session token.

    A wrong, missing or expired code is a normal 200 answer with
    `verified: false`; only a malformed request is an HTTP error.
    """
    if not payload.email or not payload.otp:
        return JSONResponse(
            status_code=400,
            content={"verified": False, "message": "Email and OTP required"},
        )
    if not otp.verify(payload.email, payload.otp):
        return VerifyOtpResponse(verified=False, message="Invalid or expired OTP")

    token = signer.issue({"email": payload.email})
    settings = get_settings()
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict" if settings.is_production else "lax",
        max_age=signer.ttl_seconds,
    )
    return VerifyOtpResponse(
        verified=True,
        message="OTP verified",
        token=token,
        expiresIn=signer.ttl_seconds,
    )


@auth_router.get("/auto-login", response_model=AutoLoginResponse)
def auto_login(
    session: dict = Depends(require_session),
    store: ProfileStore = Depends(get_profile_store),
):
    email = session.get("email") or ""
    profiles = [profile.as_dict() for profile in store.find_by_email(email)]
    return AutoLoginResponse(ok=True, email=email, profiles=profiles)


@auth_router.get("/auth/me", response_model=MeResponse)
def whoami(session: dict = Depends(require_session)):
    return MeResponse(ok=True, user=session)


# ---------------------------------------------------------------------------
# Object storage (session required)
# ---------------------------------------------------------------------------


@storage_router.post("/upload", response_model=UploadResponse)
async def upload_file(
    file: UploadFile | None = File(None),
    storage: StorageClient = Depends(get_storage_client),
):
    if file is None or not file.filename:
        raise ValidationError("No file received")
    limit = get_settings().upload_max_bytes
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise PayloadTooLarge(f"File exceeds the {limit} byte upload limit")

    key = upload_key(file.filename)
    content_type = file.content_type or "application/octet-stream"
    url = await run_in_threadpool(storage.upload_bytes, key, data, content_type)
    logger.info("Uploaded %s (%d bytes)", key, len(data))
    return UploadResponse(message="File uploaded", key=key, url=url)


@storage_router.get("/files")
def list_files(storage: StorageClient = Depends(get_storage_client)):
    return [obj.as_dict() for obj in storage.list_objects()]


@storage_router.get("/file/{key:path}", response_model=SignUrlResponse)
def download_url(key: str, storage: StorageClient = Depends(get_storage_client)):
    return SignUrlResponse(url=storage.presign_get(key))


@storage_router.delete("/file/{key:path}", response_model=MessageResponse)
def delete_file(key: str, storage: StorageClient = Depends(get_storage_client)):
    storage.delete(key)
    return MessageResponse(message="File deleted")


@storage_router.post("/presign", response_model=PresignResponse)
def presign_upload(
    payload: PresignRequest, storage: StorageClient = Depends(get_storage_client)
):
    if not payload.fileName or not payload.contentType:
        raise ValidationError("fileName & contentType required")
    key = presigned_upload_key(payload.fileName)
    url = storage.presign_put(key, payload.contentType)
    return PresignResponse(url=url, key=key)


router = APIRouter()
router.include_router(profile_router)
router.include_router(auth_router)
router.include_router(storage_router)
