"""
Pydantic schemas for the BGaze HTTP API.

Field names follow the JSON the study app already sends (camelCase).
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProfileCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    idName: str = Field(..., min_length=1)
    email: Optional[str] = None
    age: Optional[str] = None
    genderIdentity: Optional[str] = None
    adhdDiagnosisConfidence: Optional[str] = None
    adhdSymptomProfile: Optional[str] = None
    adhdMedicationStatus: Optional[str] = None
    autismDiagnosisConfidence: Optional[str] = None
    facialExpressionRecognition: Optional[str] = None
    eyeContactComfort: Optional[str] = None
    readingComprehensionChallenges: Optional[str] = None
    readingProficiency: Optional[str] = None
    dailyFunctionalChallenges: Optional[str] = None
    dyslexiaDiagnosis: Optional[str] = None
    dyslexiaManagement: Optional[str] = None
    visualFocusPatterns: Optional[str] = None
    geographicRegion: Optional[str] = None


class ProfileUpdate(BaseModel):
    newIdName: Optional[str] = None
    newEmail: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class ProfileUpdateResponse(BaseModel):
    message: str
    user: dict


class ExistsResponse(BaseModel):
    exists: bool
    count: int


class SendOtpRequest(BaseModel):
    email: Optional[str] = None


class VerifyOtpRequest(BaseModel):
    # Some clients post the code as a JSON number.
    model_config = ConfigDict(coerce_numbers_to_str=True)

    email: Optional[str] = None
    otp: Optional[str] = None


class VerifyOtpResponse(BaseModel):
    verified: bool
    message: str
    token: Optional[str] = None
    expiresIn: Optional[int] = None


class AutoLoginResponse(BaseModel):
    ok: bool
    email: str
    profiles: list[dict]


class MeResponse(BaseModel):
    ok: bool
    user: dict


class UploadResponse(BaseModel):
    message: str
    key: str
    url: str


class SignUrlResponse(BaseModel):
    url: str


class PresignRequest(BaseModel):
    fileName: Optional[str] = None
    contentType: Optional[str] = None


class PresignResponse(BaseModel):
    url: str
    key: str
