"""Verification gateway — one provider, chosen once at startup.

Priority (first configured wins, evaluated by build_verification_gateway):
  1. FirebasePhoneProvider  — Firebase project id + web api key present
  2. SmsOtpProvider         — MSG91 auth key present
  3. LocalDevProvider       — nothing configured and not production

Email contacts go to EmailOtpProvider whenever one is wired, so email
registration and password reset work under the Firebase phone flow too.
Outside production a LoggingEmailSender stands in for a real sender; in
production an unwired sender makes email challenges a ConfigurationError.

The gateway is created in the FastAPI lifespan and stored on app.state.
"""

from __future__ import annotations

import structlog

from storefront.core.config import Settings
from storefront.core.exceptions import ConfigurationError
from storefront.db.redis import RedisClient
from storefront.services.messaging.email import EmailSender, LoggingEmailSender
from storefront.services.messaging.msg91 import Msg91SmsSender, SmsSender
from storefront.services.verification.base import (
    ChallengeHandle,
    ChallengePurpose,
    ContactKind,
    VerificationProvider,
    VerificationResult,
    normalize_contact,
)
from storefront.services.verification.challenges import OTPChallengeStore
from storefront.services.verification.email_otp import EmailOtpProvider
from storefront.services.verification.firebase import FirebasePhoneProvider, KeyFetcher
from storefront.services.verification.local import LocalDevProvider
from storefront.services.verification.sms import SmsOtpProvider

logger = structlog.get_logger(__name__)


class VerificationGateway:
    """Single entry point for starting and verifying contact challenges."""

    def __init__(
        self,
        provider: VerificationProvider | None,
        external: FirebasePhoneProvider | None = None,
        email_provider: EmailOtpProvider | None = None,
    ) -> None:
        self._provider = provider
        self._external = external
        self._email_provider = email_provider
        logger.info(
            "verification_gateway_initialized",
            provider=provider.name if provider else None,
            external_tokens=external is not None,
            email_provider=email_provider is not None,
        )

    @property
    def provider_name(self) -> str | None:
        return self._provider.name if self._provider else None

    def _provider_for(self, contact: str) -> VerificationProvider:
        kind, _ = normalize_contact(contact)
        if kind is ContactKind.EMAIL and self._email_provider is not None:
            return self._email_provider
        return self._require_provider()

    def _require_provider(self) -> VerificationProvider:
        if self._provider is None:
            raise ConfigurationError("No verification provider is configured")
        return self._provider

    async def start_challenge(
        self,
        contact: str,
        purpose: ChallengePurpose,
        scope: str,
        store_name: str = "Store",
    ) -> ChallengeHandle:
        provider = self._provider_for(contact)
        return await provider.start_challenge(contact, purpose, scope, store_name)

    async def verify_challenge(
        self,
        contact: str,
        code: str,
        purpose: ChallengePurpose,
        scope: str,
    ) -> VerificationResult:
        provider = self._provider_for(contact)
        return await provider.verify(contact, code, purpose, scope)

    async def verify_external_token(self, token: str) -> VerificationResult:
        if self._external is None:
            raise ConfigurationError("Phone verification tokens are not enabled")
        return await self._external.verify_external_token(token)


def _challenge_store(settings: Settings, redis: RedisClient) -> OTPChallengeStore:
    return OTPChallengeStore(
        redis,
        ttl_seconds=settings.otp_ttl_minutes * 60,
        code_length=settings.otp_length,
        max_attempts=settings.otp_max_attempts,
        resend_cooldown_seconds=settings.otp_resend_cooldown_seconds,
    )


def build_verification_gateway(
    settings: Settings,
    redis: RedisClient,
    sms_sender: SmsSender | None = None,
    email_sender: EmailSender | None = None,
    key_fetcher: KeyFetcher | None = None,
) -> VerificationGateway:
    """Pick the active provider from configured credentials."""
    if email_sender is None:
        if settings.is_production:
            logger.warning("email_sender_missing", app_env=settings.app_env)
        else:
            email_sender = LoggingEmailSender()

    if settings.firebase_configured:
        firebase = FirebasePhoneProvider(
            project_id=settings.firebase_project_id,
            web_api_key=settings.firebase_web_api_key,
            auth_domain=settings.firebase_auth_domain,
            key_fetcher=key_fetcher,
        )
        return VerificationGateway(
            provider=firebase,
            external=firebase,
            email_provider=EmailOtpProvider(_challenge_store(settings, redis), email_sender),
        )

    if settings.sms_configured:
        sender = sms_sender or Msg91SmsSender(
            auth_key=settings.msg91_auth_key,
            sender_id=settings.msg91_sender_id,
            country_code=settings.msg91_country_code,
        )
        return VerificationGateway(
            provider=SmsOtpProvider(_challenge_store(settings, redis), sender, email_sender)
        )

    if settings.is_production:
        logger.error("verification_provider_missing", app_env=settings.app_env)
        return VerificationGateway(provider=None)

    logger.warning("verification_using_local_dev_provider")
    return VerificationGateway(
        provider=LocalDevProvider(
            code_length=settings.otp_length,
            ttl_seconds=settings.otp_ttl_minutes * 60,
        )
    )
