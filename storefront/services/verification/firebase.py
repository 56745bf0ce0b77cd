"""Firebase phone-verification-token provider.

The phone number is verified client-side by the Firebase JS SDK.
start_challenge only hands the client its connection parameters; the real
verification happens when the client submits the resulting ID token to
verify_external_token().

Token checks (any failure is a VerificationFailedError, never retried):
  - RS256 signature against Google's securetoken certificates
  - aud == Firebase project id               → AUDIENCE_MISMATCH
  - iss == https://securetoken.google.com/<project id> → ISSUER_MISMATCH
  - non-empty phone_number claim              → MISSING_PHONE
"""

from __future__ import annotations

import re
import time
from typing import Awaitable, Callable

import httpx
import structlog
from jose import ExpiredSignatureError, JWTError, jwt

from storefront.core.exceptions import ConnectivityError, VerificationFailedError
from storefront.services.verification.base import (
    ChallengeHandle,
    ChallengePurpose,
    ContactKind,
    VerificationProvider,
    VerificationResult,
    normalize_contact,
)

logger = structlog.get_logger(__name__)

_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/"
    "securetoken@system.gserviceaccount.com"
)
_ISSUER_PREFIX = "https://securetoken.google.com/"
_TIMEOUT_SECONDS = 10.0
_DEFAULT_CERT_TTL = 3600
_MAX_AGE = re.compile(r"max-age=(\d+)")

KeyFetcher = Callable[[], Awaitable[dict[str, str]]]


class GoogleCertificateCache:
    """Fetches and caches the securetoken signing certificates (kid → PEM).

    Cached for the Cache-Control max-age Google returns.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._clock = clock
        self._certs: dict[str, str] = {}
        self._expires_at = 0.0

    async def _fetch(self) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(_CERTS_URL, timeout=_TIMEOUT_SECONDS)
        async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
            return await client.get(_CERTS_URL)

    async def __call__(self) -> dict[str, str]:
        if self._certs and self._clock() < self._expires_at:
            return self._certs
        try:
            response = await self._fetch()
            response.raise_for_status()
            certs = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("firebase_cert_fetch_failed", error=str(e))
            raise ConnectivityError() from e

        match = _MAX_AGE.search(response.headers.get("cache-control", ""))
        max_age = int(match.group(1)) if match else _DEFAULT_CERT_TTL
        self._certs = dict(certs)
        self._expires_at = self._clock() + max_age
        logger.debug("firebase_certs_refreshed", count=len(self._certs), max_age=max_age)
        return self._certs


class FirebasePhoneProvider(VerificationProvider):
    """Client-side phone verification with server-side ID token checks."""

    name = "firebase"

    def __init__(
        self,
        project_id: str,
        web_api_key: str,
        auth_domain: str = "",
        key_fetcher: KeyFetcher | None = None,
    ) -> None:
        self._project_id = project_id
        self._web_api_key = web_api_key
        self._auth_domain = auth_domain or f"{project_id}.firebaseapp.com"
        self._fetch_keys = key_fetcher or GoogleCertificateCache()

    @property
    def expected_issuer(self) -> str:
        return _ISSUER_PREFIX + self._project_id

    async def start_challenge(
        self,
        contact: str,
        purpose: ChallengePurpose,
        scope: str,
        store_name: str = "Store",
    ) -> ChallengeHandle:
        kind, normalized = normalize_contact(contact)
        if kind is not ContactKind.PHONE:
            raise VerificationFailedError(
                "Only phone numbers can be verified with phone verification",
                code="INVALID_CONTACT",
            )
        return ChallengeHandle(
            provider=self.name,
            contact=normalized,
            purpose=purpose,
            client_config={
                "project_id": self._project_id,
                "api_key": self._web_api_key,
                "auth_domain": self._auth_domain,
            },
        )

    async def verify(
        self,
        contact: str,
        code: str,
        purpose: ChallengePurpose,
        scope: str,
    ) -> VerificationResult:
        raise VerificationFailedError(
            "Submit the phone verification token instead of a code",
            code="EXTERNAL_VERIFICATION_REQUIRED",
        )

    async def verify_external_token(self, id_token: str) -> VerificationResult:
        """Verify a Firebase ID token and return the verified phone.

        Raises:
            VerificationFailedError: with a reason-specific code.
            ConnectivityError: signing certificates could not be fetched.
        """
        try:
            header = jwt.get_unverified_header(id_token)
        except JWTError as e:
            raise VerificationFailedError(
                "Malformed verification token", code="INVALID_SIGNATURE"
            ) from e
        if header.get("alg") != "RS256":
            raise VerificationFailedError(
                "Unexpected token algorithm", code="INVALID_SIGNATURE"
            )

        keys = await self._fetch_keys()
        key = keys.get(header.get("kid", ""))
        if key is None:
            raise VerificationFailedError(
                "Unknown token signing key", code="INVALID_SIGNATURE"
            )

        try:
            claims = jwt.decode(
                id_token,
                key,
                algorithms=["RS256"],
                options={"verify_aud": False, "verify_iss": False},
            )
        except ExpiredSignatureError as e:
            raise VerificationFailedError(
                "Verification token has expired", code="CHALLENGE_EXPIRED"
            ) from e
        except JWTError as e:
            raise VerificationFailedError(
                "Invalid verification token signature", code="INVALID_SIGNATURE"
            ) from e

        if claims.get("aud") != self._project_id:
            logger.warning("firebase_audience_mismatch", audience=claims.get("aud"))
            raise VerificationFailedError(
                "Token was issued for a different application", code="AUDIENCE_MISMATCH"
            )
        if claims.get("iss") != self.expected_issuer:
            logger.warning("firebase_issuer_mismatch", issuer=claims.get("iss"))
            raise VerificationFailedError(
                "Token issuer is not trusted", code="ISSUER_MISMATCH"
            )
        if not claims.get("sub"):
            raise VerificationFailedError("Token has no subject")

        phone_claim = claims.get("phone_number")
        if not phone_claim:
            raise VerificationFailedError(
                "Token does not carry a verified phone number", code="MISSING_PHONE"
            )
        _, phone = normalize_contact(phone_claim)

        # Only a provider-verified email may be merged into a customer record.
        email = claims.get("email") if claims.get("email_verified") else None
        logger.info("firebase_token_verified", uid=claims["sub"])
        return VerificationResult(
            contact=phone,
            kind=ContactKind.PHONE,
            provider=self.name,
            display_name=claims.get("name"),
            email=email.lower() if email else None,
            external_uid=claims["sub"],
        )
