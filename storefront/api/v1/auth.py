"""Store customer authentication endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends

from storefront.api.deps import (
    CurrentCustomer,
    get_current_customer,
    get_customer_auth_service,
)
from storefront.schemas.auth import (
    AuthResponse,
    ChallengeRequest,
    ChallengeResponse,
    CodeLoginRequest,
    CustomerSummary,
    PasswordLoginRequest,
    PasswordResetRequest,
    PhoneTokenLoginRequest,
    RegisterRequest,
)
from storefront.services.customer_auth import AuthResult, CustomerAuthService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/store/auth", tags=["store-auth"])


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        token=result.token.token,
        expires_at=result.token.expires_at,
        customer=CustomerSummary.model_validate(result.customer),
        is_new=result.is_new,
    )


@router.post("/otp/request", response_model=ChallengeResponse)
async def request_otp(
    body: ChallengeRequest,
    auth: CustomerAuthService = Depends(get_customer_auth_service),
) -> ChallengeResponse:
    """Start verifying a phone number or email."""
    handle = await auth.request_challenge(body.contact, body.purpose)
    return ChallengeResponse(
        provider=handle.provider,
        contact=handle.contact,
        purpose=handle.purpose,
        expires_in_seconds=handle.expires_in_seconds,
        client_config=handle.client_config,
    )


@router.post("/otp/verify", response_model=AuthResponse)
async def verify_otp(
    body: CodeLoginRequest,
    auth: CustomerAuthService = Depends(get_customer_auth_service),
) -> AuthResponse:
    """Log in (or sign up) with a one-time code."""
    result = await auth.login_with_code(
        body.contact, body.code, remember_me=body.remember_me, name=body.name
    )
    return _auth_response(result)


@router.post("/phone-token/verify", response_model=AuthResponse)
async def verify_phone_token(
    body: PhoneTokenLoginRequest,
    auth: CustomerAuthService = Depends(get_customer_auth_service),
) -> AuthResponse:
    """Log in with a phone verification ID token obtained client-side."""
    result = await auth.login_with_external_token(
        body.id_token, remember_me=body.remember_me, name=body.name
    )
    return _auth_response(result)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: PasswordLoginRequest,
    auth: CustomerAuthService = Depends(get_customer_auth_service),
) -> AuthResponse:
    """Log in with email or phone plus password."""
    result = await auth.login_with_password(
        body.identifier, body.password, remember_me=body.remember_me
    )
    return _auth_response(result)


@router.post("/register", response_model=AuthResponse)
async def register(
    body: RegisterRequest,
    auth: CustomerAuthService = Depends(get_customer_auth_service),
) -> AuthResponse:
    result = await auth.register(
        body.contact,
        body.code,
        name=body.name,
        password=body.password,
        remember_me=body.remember_me,
    )
    return _auth_response(result)


@router.post("/password-reset", response_model=AuthResponse)
async def reset_password(
    body: PasswordResetRequest,
    auth: CustomerAuthService = Depends(get_customer_auth_service),
) -> AuthResponse:
    """Set a new password after verifying a password_reset code.

    Tokens issued before the reset stop working.
    """
    result = await auth.reset_password(body.contact, body.code, body.new_password)
    return _auth_response(result)


@router.get("/me", response_model=CustomerSummary)
async def me(
    current: CurrentCustomer = Depends(get_current_customer),
) -> CustomerSummary:
    return CustomerSummary.model_validate(current.customer)
