"""Customer auth request/response schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from storefront.services.verification.base import ChallengePurpose


class ChallengeRequest(BaseModel):
    """POST /v1/store/auth/otp/request request body."""

    contact: str = Field(..., min_length=3, max_length=320)
    purpose: ChallengePurpose = ChallengePurpose.LOGIN


class ChallengeResponse(BaseModel):
    """POST /v1/store/auth/otp/request response body."""

    provider: str
    contact: str
    purpose: ChallengePurpose
    expires_in_seconds: int | None = None
    client_config: dict[str, Any] = {}


class CodeLoginRequest(BaseModel):
    """POST /v1/store/auth/otp/verify request body."""

    contact: str = Field(..., min_length=3, max_length=320)
    code: str = Field(..., min_length=4, max_length=8)
    remember_me: bool = False
    name: str | None = Field(default=None, max_length=200)


class PhoneTokenLoginRequest(BaseModel):
    """POST /v1/store/auth/phone-token/verify request body."""

    id_token: str = Field(..., min_length=10)
    remember_me: bool = False
    name: str | None = Field(default=None, max_length=200)


class PasswordLoginRequest(BaseModel):
    """POST /v1/store/auth/login request body."""

    identifier: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1)
    remember_me: bool = False


class RegisterRequest(BaseModel):
    """POST /v1/store/auth/register request body."""

    contact: str = Field(..., min_length=3, max_length=320)
    code: str = Field(..., min_length=4, max_length=8)
    name: str = Field(..., min_length=1, max_length=200)
    password: str = Field(..., min_length=6)
    remember_me: bool = False


class PasswordResetRequest(BaseModel):
    """POST /v1/store/auth/password-reset request body."""

    contact: str = Field(..., min_length=3, max_length=320)
    code: str = Field(..., min_length=4, max_length=8)
    new_password: str = Field(..., min_length=6)


class CustomerSummary(BaseModel):
    """Customer fields safe to return to the customer."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    email: str | None = None
    phone: str | None = None
    email_verified: bool = False
    phone_verified: bool = False
    preferences: dict = {}
    created_at: datetime | None = None


class AuthResponse(BaseModel):
    """Successful login/registration response body."""

    token: str
    expires_at: datetime
    customer: CustomerSummary
    is_new: bool = False
