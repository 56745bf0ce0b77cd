"""Unit tests for FirebasePhoneProvider token verification.

Tests:
  - a valid token yields the verified phone and subject uid
  - aud / iss / phone_number failures carry distinct codes
  - unknown kid, foreign signature and non-RS256 tokens are INVALID_SIGNATURE
  - expired tokens are CHALLENGE_EXPIRED
  - unverified emails are dropped
  - start_challenge returns client config for phones and rejects emails
  - verify() requires the token flow
  - GoogleCertificateCache honours Cache-Control max-age
"""

from __future__ import annotations

import time
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt

from storefront.core.exceptions import ConnectivityError, VerificationFailedError
from storefront.services.verification.base import ChallengePurpose, ContactKind
from storefront.services.verification.firebase import (
    FirebasePhoneProvider,
    GoogleCertificateCache,
)

PROJECT_ID = "acme-storefront"
KID = "test-key-1"


def _rsa_keypair() -> tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


PRIVATE_PEM, PUBLIC_PEM = _rsa_keypair()


def _claims(**overrides: Any) -> dict[str, Any]:
    now = int(time.time())
    claims = {
        "iss": f"https://securetoken.google.com/{PROJECT_ID}",
        "aud": PROJECT_ID,
        "sub": "firebase-uid-123",
        "iat": now,
        "exp": now + 3600,
        "auth_time": now,
        "phone_number": "+15551234567",
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


def _sign(claims: dict[str, Any], kid: str = KID, private_pem: str = PRIVATE_PEM) -> str:
    return jwt.encode(claims, private_pem, algorithm="RS256", headers={"kid": kid})


def _provider() -> FirebasePhoneProvider:
    async def fetch_keys() -> dict[str, str]:
        return {KID: PUBLIC_PEM}

    return FirebasePhoneProvider(
        project_id=PROJECT_ID, web_api_key="web-key", key_fetcher=fetch_keys
    )


async def _failure_code(token: str) -> str:
    with pytest.raises(VerificationFailedError) as exc_info:
        await _provider().verify_external_token(token)
    return exc_info.value.code


class TestVerifyExternalToken:
    """Tests for FirebasePhoneProvider.verify_external_token()."""

    @pytest.mark.asyncio
    async def test_valid_token(self) -> None:
        result = await _provider().verify_external_token(_sign(_claims(name="Asha")))

        assert result.kind is ContactKind.PHONE
        assert result.phone == "+15551234567"
        assert result.external_uid == "firebase-uid-123"
        assert result.display_name == "Asha"
        assert result.provider == "firebase"

    @pytest.mark.asyncio
    async def test_audience_mismatch(self) -> None:
        assert await _failure_code(_sign(_claims(aud="other-project"))) == "AUDIENCE_MISMATCH"

    @pytest.mark.asyncio
    async def test_issuer_mismatch(self) -> None:
        token = _sign(_claims(iss="https://securetoken.google.com/other-project"))
        assert await _failure_code(token) == "ISSUER_MISMATCH"

    @pytest.mark.asyncio
    async def test_missing_phone(self) -> None:
        token = _sign(_claims(phone_number=None, email="a@b.test", email_verified=True))
        assert await _failure_code(token) == "MISSING_PHONE"

    @pytest.mark.asyncio
    async def test_unknown_kid(self) -> None:
        assert await _failure_code(_sign(_claims(), kid="rotated")) == "INVALID_SIGNATURE"

    @pytest.mark.asyncio
    async def test_foreign_signature(self) -> None:
        other_private, _ = _rsa_keypair()
        token = _sign(_claims(), private_pem=other_private)
        assert await _failure_code(token) == "INVALID_SIGNATURE"

    @pytest.mark.asyncio
    async def test_hs256_rejected(self) -> None:
        token = jwt.encode(_claims(), "shared", algorithm="HS256", headers={"kid": KID})
        assert await _failure_code(token) == "INVALID_SIGNATURE"

    @pytest.mark.asyncio
    async def test_expired(self) -> None:
        now = int(time.time())
        token = _sign(_claims(iat=now - 7200, exp=now - 3600))
        assert await _failure_code(token) == "CHALLENGE_EXPIRED"

    @pytest.mark.asyncio
    async def test_email_kept_only_when_verified(self) -> None:
        provider = _provider()
        unverified = await provider.verify_external_token(
            _sign(_claims(email="Asha@Example.test", email_verified=False))
        )
        verified = await provider.verify_external_token(
            _sign(_claims(email="Asha@Example.test", email_verified=True))
        )
        assert unverified.verified_email is None
        assert verified.verified_email == "asha@example.test"


class TestChallengeFlow:
    @pytest.mark.asyncio
    async def test_start_challenge_returns_client_config(self) -> None:
        handle = await _provider().start_challenge(
            "+1 555 123 4567", ChallengePurpose.LOGIN, scope="tenant_acme"
        )
        assert handle.provider == "firebase"
        assert handle.contact == "+15551234567"
        assert handle.client_config == {
            "project_id": PROJECT_ID,
            "api_key": "web-key",
            "auth_domain": f"{PROJECT_ID}.firebaseapp.com",
        }

    @pytest.mark.asyncio
    async def test_email_contact_rejected(self) -> None:
        with pytest.raises(VerificationFailedError) as exc_info:
            await _provider().start_challenge(
                "user@example.com", ChallengePurpose.PASSWORD_RESET, scope="tenant_acme"
            )
        assert exc_info.value.code == "INVALID_CONTACT"

    @pytest.mark.asyncio
    async def test_code_verification_not_supported(self) -> None:
        with pytest.raises(VerificationFailedError) as exc_info:
            await _provider().verify(
                "+15551234567", "123456", ChallengePurpose.LOGIN, scope="tenant_acme"
            )
        assert exc_info.value.code == "EXTERNAL_VERIFICATION_REQUIRED"


class TestGoogleCertificateCache:
    @pytest.mark.asyncio
    async def test_cached_for_max_age(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(
                200,
                json={KID: PUBLIC_PEM},
                headers={"Cache-Control": "public, max-age=300, must-revalidate"},
            )

        now = [1000.0]
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        cache = GoogleCertificateCache(client=client, clock=lambda: now[0])

        assert await cache() == {KID: PUBLIC_PEM}
        now[0] += 299
        await cache()
        assert len(calls) == 1

        now[0] += 2
        await cache()
        assert len(calls) == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_fetch_failure_is_connectivity_error(self) -> None:
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )
        cache = GoogleCertificateCache(client=client)
        with pytest.raises(ConnectivityError):
            await cache()
        await client.aclose()
