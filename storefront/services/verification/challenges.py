"""OTP challenge storage in Redis.

One challenge per (tenant, purpose, contact), keyed as
``otp:{scope}:{purpose}:{contact}`` with a Redis TTL equal to the remaining
lifetime, so abandoned challenges expire on their own.

verify() does exactly these things in order:
1. Missing challenge → CHALLENGE_NOT_FOUND
2. Already used → CHALLENGE_USED
3. Past expires_at → delete, CHALLENGE_EXPIRED
4. attempts ≥ max → delete, AttemptsExhaustedError
5. Mismatch → attempts + 1 persisted; reaching max deletes and reports exhaustion
6. Match → mark used (login/registration) or delete (password_reset)

Concurrent verification of the same key is assumed rare; there is at most
one writer per key.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Callable

import structlog

from storefront.core.exceptions import (
    AttemptsExhaustedError,
    ResendTooSoonError,
    VerificationFailedError,
)
from storefront.core.security import codes_match, generate_numeric_code
from storefront.db.redis import RedisClient
from storefront.services.verification.base import ChallengePurpose

logger = structlog.get_logger(__name__)


@dataclass
class OTPChallenge:
    contact: str
    purpose: str
    code: str
    attempts: int
    is_used: bool
    created_at: float
    expires_at: float


class OTPChallengeStore:
    """Creates and consumes OTP challenges."""

    def __init__(
        self,
        redis: RedisClient,
        ttl_seconds: int = 600,
        code_length: int = 6,
        max_attempts: int = 3,
        resend_cooldown_seconds: int = 60,
        clock: Callable[[], float] = time.time,
        code_factory: Callable[[int], str] = generate_numeric_code,
    ) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._code_length = code_length
        self._max_attempts = max_attempts
        self._cooldown = resend_cooldown_seconds
        self._clock = clock
        self._code_factory = code_factory

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def _key(self, scope: str, purpose: ChallengePurpose, contact: str) -> str:
        return f"otp:{scope}:{purpose.value}:{contact}"

    async def _save(self, key: str, challenge: OTPChallenge) -> None:
        remaining = max(1, int(challenge.expires_at - self._clock()))
        await self._redis.set_json(key, asdict(challenge), ttl_seconds=remaining)

    async def get(
        self, scope: str, purpose: ChallengePurpose, contact: str
    ) -> OTPChallenge | None:
        raw = await self._redis.get_json(self._key(scope, purpose, contact))
        if raw is None:
            return None
        return OTPChallenge(**raw)

    async def create(
        self, scope: str, purpose: ChallengePurpose, contact: str
    ) -> OTPChallenge:
        """Create a fresh challenge, replacing any previous one for the key.

        Raises:
            ResendTooSoonError: an unused challenge was issued within the cooldown.
        """
        key = self._key(scope, purpose, contact)
        now = self._clock()

        existing = await self.get(scope, purpose, contact)
        if (
            existing is not None
            and not existing.is_used
            and now - existing.created_at < self._cooldown
        ):
            raise ResendTooSoonError(
                f"Please wait {int(self._cooldown - (now - existing.created_at))} "
                "seconds before requesting a new code"
            )

        challenge = OTPChallenge(
            contact=contact,
            purpose=purpose.value,
            code=self._code_factory(self._code_length),
            attempts=0,
            is_used=False,
            created_at=now,
            expires_at=now + self._ttl,
        )
        await self._save(key, challenge)
        logger.info("otp_challenge_created", scope=scope, purpose=purpose.value)
        return challenge

    async def discard(self, scope: str, purpose: ChallengePurpose, contact: str) -> None:
        await self._redis.delete(self._key(scope, purpose, contact))

    async def verify(
        self, scope: str, purpose: ChallengePurpose, contact: str, code: str
    ) -> OTPChallenge:
        """Consume a challenge with the submitted code. See module docstring."""
        key = self._key(scope, purpose, contact)
        challenge = await self.get(scope, purpose, contact)

        if challenge is None:
            raise VerificationFailedError(
                "Invalid or expired code", code="CHALLENGE_NOT_FOUND"
            )
        if challenge.is_used:
            raise VerificationFailedError(
                "Code has already been used", code="CHALLENGE_USED"
            )
        if self._clock() >= challenge.expires_at:
            await self._redis.delete(key)
            raise VerificationFailedError("Code has expired", code="CHALLENGE_EXPIRED")
        if challenge.attempts >= self._max_attempts:
            await self._redis.delete(key)
            raise AttemptsExhaustedError()

        if not codes_match(challenge.code, code.strip()):
            challenge.attempts += 1
            if challenge.attempts >= self._max_attempts:
                await self._redis.delete(key)
                logger.warning("otp_attempts_exhausted", scope=scope, purpose=purpose.value)
                raise AttemptsExhaustedError()
            await self._save(key, challenge)
            remaining = self._max_attempts - challenge.attempts
            raise VerificationFailedError(
                f"Invalid code. {remaining} attempts remaining.", code="INVALID_CODE"
            )

        if purpose is ChallengePurpose.PASSWORD_RESET:
            await self._redis.delete(key)
        else:
            challenge.is_used = True
            await self._save(key, challenge)
        logger.info("otp_challenge_verified", scope=scope, purpose=purpose.value)
        return challenge
