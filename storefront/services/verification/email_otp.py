"""Email one-time-passcode provider.

Email contacts are verified the same way whichever phone provider is
active: a code tracked in OTPChallengeStore, delivered by the EmailSender
collaborator. Without a sender, email challenges raise ConfigurationError
rather than report a code that was never sent.
"""

from __future__ import annotations

import structlog

from storefront.core.exceptions import (
    ConfigurationError,
    ConnectivityError,
    VerificationFailedError,
)
from storefront.services.messaging.email import EmailSender
from storefront.services.verification.base import (
    ChallengeHandle,
    ChallengePurpose,
    ContactKind,
    VerificationProvider,
    VerificationResult,
    normalize_contact,
)
from storefront.services.verification.challenges import OTPChallengeStore

logger = structlog.get_logger(__name__)


class EmailOtpProvider(VerificationProvider):
    name = "email_otp"

    def __init__(self, store: OTPChallengeStore, email_sender: EmailSender | None) -> None:
        self._store = store
        self._email = email_sender

    def _email_contact(self, contact: str) -> str:
        kind, normalized = normalize_contact(contact)
        if kind is not ContactKind.EMAIL:
            raise VerificationFailedError(
                "Only email addresses can be verified by email", code="INVALID_CONTACT"
            )
        return normalized

    async def start_challenge(
        self,
        contact: str,
        purpose: ChallengePurpose,
        scope: str,
        store_name: str = "Store",
    ) -> ChallengeHandle:
        email = self._email_contact(contact)
        if self._email is None:
            logger.error("email_sender_missing", scope=scope, purpose=purpose.value)
            raise ConfigurationError("Email verification is not configured")

        challenge = await self._store.create(scope, purpose, email)
        delivered = await self._email.send_code(email, challenge.code, purpose.value, store_name)
        if not delivered:
            await self._store.discard(scope, purpose, email)
            logger.error("otp_delivery_failed", scope=scope, kind=ContactKind.EMAIL.value)
            raise ConnectivityError("Could not deliver verification code")

        return ChallengeHandle(
            provider=self.name,
            contact=email,
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
        email = self._email_contact(contact)
        await self._store.verify(scope, purpose, email, code)
        return VerificationResult(contact=email, kind=ContactKind.EMAIL, provider=self.name)
