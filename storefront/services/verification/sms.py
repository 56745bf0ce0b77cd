"""SMS one-time-passcode provider.

Codes are generated locally, tracked in OTPChallengeStore and delivered
through the SmsSender collaborator (MSG91 in production). Email contacts are
handed to EmailOtpProvider over the same challenge store.
"""

from __future__ import annotations

import structlog

from storefront.core.exceptions import ConnectivityError
from storefront.services.messaging.email import EmailSender
from storefront.services.messaging.msg91 import SmsSender
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

logger = structlog.get_logger(__name__)

_SMS_LIMIT = 160


def build_otp_message(code: str, store_name: str, ttl_minutes: int) -> str:
    message = (
        f"Your OTP for {store_name}: {code}. Valid for {ttl_minutes} minutes. Do not share."
    )
    if len(message) > _SMS_LIMIT:
        message = f"OTP for {store_name}: {code}. Valid {ttl_minutes} min. Do not share."
    return message[:_SMS_LIMIT]


class SmsOtpProvider(VerificationProvider):
    """Tracked OTP challenges delivered by SMS (or email for email contacts)."""

    name = "sms_otp"

    def __init__(
        self,
        store: OTPChallengeStore,
        sms_sender: SmsSender,
        email_sender: EmailSender | None = None,
    ) -> None:
        self._store = store
        self._sms = sms_sender
        self._email = EmailOtpProvider(store, email_sender)

    async def start_challenge(
        self,
        contact: str,
        purpose: ChallengePurpose,
        scope: str,
        store_name: str = "Store",
    ) -> ChallengeHandle:
        kind, normalized = normalize_contact(contact)
        if kind is ContactKind.EMAIL:
            return await self._email.start_challenge(normalized, purpose, scope, store_name)

        challenge = await self._store.create(scope, purpose, normalized)
        message = build_otp_message(
            challenge.code, store_name, max(1, self._store.ttl_seconds // 60)
        )
        delivery = await self._sms.send(normalized, message)
        if not delivery.delivered:
            await self._store.discard(scope, purpose, normalized)
            logger.error("otp_delivery_failed", scope=scope, kind=kind.value)
            raise ConnectivityError("Could not deliver verification code")

        return ChallengeHandle(
            provider=self.name,
            contact=normalized,
            purpose=purpose,
            expires_in_seconds=self._store.ttl_seconds,
        )

    async def verify(
        self,
        contact: str,
        code: str,
        purpose: ChallengePurpose,
        scope: str,
    ) -> VerificationResult:
        kind, normalized = normalize_contact(contact)
        if kind is ContactKind.EMAIL:
            return await self._email.verify(normalized, code, purpose, scope)
        await self._store.verify(scope, purpose, normalized, code)
        return VerificationResult(contact=normalized, kind=kind, provider=self.name)
