"""Local development verification provider.

Never selected when a real provider is configured or in production.
The generated code is logged so a developer can complete the flow; at
verification time any well-formed 4–8 digit numeric code is accepted.
"""

import re

import structlog

from storefront.core.exceptions import VerificationFailedError
from storefront.core.security import generate_numeric_code
from storefront.services.verification.base import (
    ChallengeHandle,
    ChallengePurpose,
    VerificationProvider,
    VerificationResult,
    normalize_contact,
)

logger = structlog.get_logger(__name__)

_CODE_PATTERN = re.compile(r"^[0-9]{4,8}$")


class LocalDevProvider(VerificationProvider):
    name = "local_dev"

    def __init__(self, code_length: int = 6, ttl_seconds: int = 600) -> None:
        self._code_length = code_length
        self._ttl = ttl_seconds

    async def start_challenge(
        self,
        contact: str,
        purpose: ChallengePurpose,
        scope: str,
        store_name: str = "Store",
    ) -> ChallengeHandle:
        _, normalized = normalize_contact(contact)
        code = generate_numeric_code(self._code_length)
        logger.warning(
            "local_dev_otp_generated",
            contact=normalized,
            purpose=purpose.value,
            scope=scope,
            code=code,
        )
        return ChallengeHandle(
            provider=self.name,
            contact=normalized,
            purpose=purpose,
            expires_in_seconds=self._ttl,
        )

    async def verify(
        self,
        contact: str,
        code: str,
        purpose: ChallengePurpose,
        scope: str,
    ) -> VerificationResult:
        kind, normalized = normalize_contact(contact)
        if not _CODE_PATTERN.match((code or "").strip()):
            raise VerificationFailedError(
                "Code must be 4-8 digits", code="INVALID_CODE"
            )
        return VerificationResult(contact=normalized, kind=kind, provider=self.name)
