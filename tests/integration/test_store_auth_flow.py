"""Integration tests for the storefront HTTP surface.

Runs the real FastAPI app over httpx.ASGITransport with:
  - an in-memory SQLite platform directory (get_db overridden)
  - one SQLite file per tenant opened through the real registry/opener
  - the SMS OTP provider over an in-memory Redis double and fake SMS sender

Tests:
  - OTP login: request → SMS carries code → verify → token scoped to store
  - /me accepts the token on its store and rejects it on another store
  - unknown store, inactive store and the main-app host are 404s
  - wrong code, then attempt exhaustion, through the API error envelope
  - health reports the provider and open tenant connections
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.api.deps import get_db
from storefront.db.postgres import Base
from storefront.db.tenant import TenantConnectionRegistry, make_engine_opener
from storefront.main import app
from storefront.services.session_tokens import SessionTokenIssuer
from storefront.services.verification.challenges import OTPChallengeStore
from storefront.services.verification.gateway import VerificationGateway
from storefront.services.verification.sms import SmsOtpProvider
from tests.conftest import (
    TEST_SECRET,
    FakeSmsSender,
    MockRedisClient,
    seed_store,
    seed_tenant,
    sqlite_engine,
)

CONTACT = "+15551234567"
CODE = "482913"


class StorefrontHarness:
    def __init__(self, client: httpx.AsyncClient, sms: FakeSmsSender) -> None:
        self.client = client
        self.sms = sms

    async def post(self, path: str, body: dict, host: str = "acme.shop.example") -> httpx.Response:
        return await self.client.post(path, json=body, headers={"host": host})

    async def get(
        self, path: str, host: str = "acme.shop.example", token: str | None = None
    ) -> httpx.Response:
        headers = {"host": host}
        if token:
            headers["authorization"] = f"Bearer {token}"
        return await self.client.get(path, headers=headers)

    async def login(self, host: str = "acme.shop.example") -> dict:
        response = await self.post("/v1/store/auth/otp/request", {"contact": CONTACT}, host)
        assert response.status_code == 200, response.text
        response = await self.post(
            "/v1/store/auth/otp/verify", {"contact": CONTACT, "code": CODE}, host
        )
        assert response.status_code == 200, response.text
        return response.json()


@pytest_asyncio.fixture
async def harness(tmp_path: Path) -> AsyncIterator[StorefrontHarness]:
    directory_engine = sqlite_engine()
    async with directory_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    directory_factory = async_sessionmaker(
        directory_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with directory_factory() as session:
        await seed_store(session, store_id="acme", tenant_id="tenant_acme", name="Acme Goods")
        await seed_store(session, store_id="beta", tenant_id="tenant_beta", name="Beta Mart")
        await seed_store(
            session, store_id="closed", tenant_id="tenant_closed", name="Closed", is_active=False
        )

    registry = TenantConnectionRegistry(
        f"sqlite+aiosqlite:///{tmp_path}/{{tenant_id}}.db", opener=make_engine_opener()
    )
    for tenant_id in ("tenant_acme", "tenant_beta"):
        connection = await registry.get_connection(tenant_id)
        async with connection.session() as session:
            await seed_tenant(session, owner_email=f"owner@{tenant_id}.test")

    sms = FakeSmsSender()
    store = OTPChallengeStore(
        MockRedisClient(),  # type: ignore[arg-type]
        code_factory=lambda length: CODE,
    )

    async def _directory_session() -> AsyncIterator[AsyncSession]:
        async with directory_factory() as session:
            yield session

    app.state.tenant_registry = registry
    app.state.verification_gateway = VerificationGateway(provider=SmsOtpProvider(store, sms))
    app.state.token_issuer = SessionTokenIssuer(secret_key=TEST_SECRET)
    app.dependency_overrides[get_db] = _directory_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://acme.shop.example") as client:
        yield StorefrontHarness(client, sms)

    app.dependency_overrides.clear()
    await registry.close_all()
    await directory_engine.dispose()


class TestOtpLoginScenario:
    @pytest.mark.asyncio
    async def test_login_issues_store_scoped_token(self, harness: StorefrontHarness) -> None:
        body = await harness.login()

        [(to, message)] = harness.sms.sent
        assert to == CONTACT
        assert CODE in message

        assert body["is_new"] is True
        assert body["customer"]["phone"] == CONTACT
        assert body["customer"]["phone_verified"] is True
        claims = jwt.decode(body["token"], TEST_SECRET, algorithms=["HS256"])
        assert claims["type"] == "customer"
        assert claims["store_id"] == "acme"
        assert claims["tenant_id"] == "tenant_acme"
        assert claims["customer_id"] == body["customer"]["id"]

    @pytest.mark.asyncio
    async def test_me_on_own_store(self, harness: StorefrontHarness) -> None:
        body = await harness.login()

        response = await harness.get("/v1/store/auth/me", token=body["token"])

        assert response.status_code == 200
        assert response.json()["id"] == body["customer"]["id"]
        assert "X-Refreshed-Token" not in response.headers

    @pytest.mark.asyncio
    async def test_token_rejected_on_other_store(self, harness: StorefrontHarness) -> None:
        body = await harness.login()

        response = await harness.get(
            "/v1/store/auth/me", host="beta.shop.example", token=body["token"]
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_STORE_MISMATCH"

    @pytest.mark.asyncio
    async def test_me_requires_token(self, harness: StorefrontHarness) -> None:
        response = await harness.get("/v1/store/auth/me")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_INVALID"

    @pytest.mark.asyncio
    async def test_same_contact_on_two_stores_is_two_customers(
        self, harness: StorefrontHarness
    ) -> None:
        acme = await harness.login()
        beta = await harness.login(host="beta.shop.example")

        assert beta["is_new"] is True
        assert beta["customer"]["id"] != acme["customer"]["id"]


class TestCodeFailures:
    @pytest.mark.asyncio
    async def test_wrong_code_then_exhaustion(self, harness: StorefrontHarness) -> None:
        await harness.post("/v1/store/auth/otp/request", {"contact": CONTACT})

        codes = []
        for _ in range(3):
            response = await harness.post(
                "/v1/store/auth/otp/verify", {"contact": CONTACT, "code": "000000"}
            )
            codes.append((response.status_code, response.json()["error"]["code"]))

        assert codes == [
            (400, "INVALID_CODE"),
            (400, "INVALID_CODE"),
            (429, "ATTEMPTS_EXHAUSTED"),
        ]

        response = await harness.post(
            "/v1/store/auth/otp/verify", {"contact": CONTACT, "code": CODE}
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CHALLENGE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_resend_too_soon(self, harness: StorefrontHarness) -> None:
        await harness.post("/v1/store/auth/otp/request", {"contact": CONTACT})
        response = await harness.post("/v1/store/auth/otp/request", {"contact": CONTACT})
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RESEND_TOO_SOON"


class TestStoreResolution:
    @pytest.mark.asyncio
    async def test_store_summary(self, harness: StorefrontHarness) -> None:
        response = await harness.get("/v1/store")
        assert response.status_code == 200
        body = response.json()
        assert body["store_id"] == "acme"
        assert body["name"] == "Acme Goods"
        assert "razorpay_key_secret" not in body["settings"]["payment"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "host, code",
        [
            ("ghost.shop.example", "STORE_NOT_FOUND"),
            ("closed.shop.example", "STORE_INACTIVE"),
            ("shop.example", "STORE_NOT_FOUND"),
            ("www.shop.example", "STORE_NOT_FOUND"),
        ],
    )
    async def test_unresolvable_hosts(
        self, harness: StorefrontHarness, host: str, code: str
    ) -> None:
        response = await harness.get("/v1/store", host=host)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == code

    @pytest.mark.asyncio
    async def test_health(self, harness: StorefrontHarness) -> None:
        response = await harness.get("/v1/health", host="shop.example")
        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "verification_provider": "sms_otp",
            "tenant_connections": 2,
        }
