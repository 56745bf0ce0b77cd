"""Customer authentication flows for one store.

Every flow ends the same way: a verified identity is resolved to a single
Customer and a session token scoped to {tenant, customer, store} is issued.

Flows:
  - request_challenge          start OTP / phone verification
  - login_with_code            OTP login (creates the customer on first login)
  - login_with_external_token  phone-verification-token login
  - login_with_password        password login with lockout
  - register                   verified registration with a password
  - reset_password             verified password reset (revokes older tokens)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import (
    AccountLockedError,
    CustomerExistsError,
    CustomerNotFoundError,
    InvalidCredentialsError,
    VerificationFailedError,
)
from storefront.core.security import hash_password, verify_password
from storefront.models.customer import Customer
from storefront.services.identity import CustomerIdentityResolver, VerifiedContact
from storefront.services.session_tokens import IssuedToken, SessionTokenIssuer
from storefront.services.verification.base import (
    ChallengeHandle,
    ChallengePurpose,
    ContactKind,
    normalize_contact,
)
from storefront.services.verification.gateway import VerificationGateway
from storefront.tenancy.context import StoreContext

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AuthResult:
    token: IssuedToken
    customer: Customer
    is_new: bool = False


def _split_contact(contact: str) -> tuple[str | None, str | None]:
    kind, value = normalize_contact(contact)
    if kind is ContactKind.PHONE:
        return value, None
    return None, value


class CustomerAuthService:
    """Authenticates customers of the store in ``context``."""

    def __init__(
        self,
        context: StoreContext,
        session: AsyncSession,
        gateway: VerificationGateway,
        issuer: SessionTokenIssuer,
        max_login_attempts: int = 5,
        lockout: timedelta = timedelta(minutes=120),
    ) -> None:
        self._context = context
        self._session = session
        self._gateway = gateway
        self._issuer = issuer
        self._resolver = CustomerIdentityResolver(session)
        self._max_login_attempts = max_login_attempts
        self._lockout = lockout

    def _issue(self, customer: Customer, remember_me: bool) -> IssuedToken:
        return self._issuer.issue(
            customer.id,
            store_id=self._context.store_id,
            tenant_id=self._context.tenant_id,
            remember_me=remember_me,
        )

    async def request_challenge(
        self, contact: str, purpose: ChallengePurpose
    ) -> ChallengeHandle:
        phone, email = _split_contact(contact)
        existing = await self._resolver.find_by_contact(phone, email)

        if purpose is ChallengePurpose.REGISTRATION and existing and existing.password_hash:
            raise CustomerExistsError()
        if purpose is ChallengePurpose.PASSWORD_RESET and existing is None:
            raise CustomerNotFoundError()

        return await self._gateway.start_challenge(
            contact,
            purpose,
            scope=self._context.tenant_id,
            store_name=self._context.store_name,
        )

    async def _complete_login(
        self, contact: VerifiedContact, remember_me: bool
    ) -> AuthResult:
        existed = await self._resolver.find_by_contact(contact.phone, contact.email)
        customer = await self._resolver.resolve_or_create(contact)
        await self._session.commit()
        logger.info(
            "customer_login",
            customer_id=str(customer.id),
            tenant_id=self._context.tenant_id,
        )
        return AuthResult(
            token=self._issue(customer, remember_me),
            customer=customer,
            is_new=existed is None,
        )

    async def login_with_code(
        self,
        contact: str,
        code: str,
        remember_me: bool = False,
        name: str | None = None,
    ) -> AuthResult:
        result = await self._gateway.verify_challenge(
            contact, code, ChallengePurpose.LOGIN, scope=self._context.tenant_id
        )
        return await self._complete_login(
            VerifiedContact.from_result(result, display_name=name), remember_me
        )

    async def login_with_external_token(
        self, id_token: str, remember_me: bool = False, name: str | None = None
    ) -> AuthResult:
        result = await self._gateway.verify_external_token(id_token)
        return await self._complete_login(
            VerifiedContact.from_result(result, display_name=name), remember_me
        )

    async def login_with_password(
        self, identifier: str, password: str, remember_me: bool = False
    ) -> AuthResult:
        try:
            phone, email = _split_contact(identifier)
        except VerificationFailedError as e:
            raise InvalidCredentialsError() from e

        customer = await self._resolver.find_by_contact(phone, email)
        if customer is None or not customer.is_active:
            raise InvalidCredentialsError()

        now = datetime.now(timezone.utc)
        if customer.is_locked(now):
            raise AccountLockedError()

        if not verify_password(password, customer.password_hash):
            await self._record_failed_login(customer, now)
            raise InvalidCredentialsError()

        customer.login_attempts = 0
        customer.lock_until = None
        customer.last_login_at = now
        await self._session.commit()
        return AuthResult(token=self._issue(customer, remember_me), customer=customer)

    async def _record_failed_login(self, customer: Customer, now: datetime) -> None:
        if customer.lock_until is not None:
            # Previous lock has lapsed; start counting again.
            customer.login_attempts = 0
            customer.lock_until = None
        customer.login_attempts = (customer.login_attempts or 0) + 1
        if customer.login_attempts >= self._max_login_attempts:
            customer.lock_until = now + self._lockout
            logger.warning(
                "customer_locked_out",
                customer_id=str(customer.id),
                tenant_id=self._context.tenant_id,
            )
        # Persist even though the caller is about to raise.
        await self._session.commit()

    async def register(
        self,
        contact: str,
        code: str,
        name: str,
        password: str,
        remember_me: bool = False,
    ) -> AuthResult:
        result = await self._gateway.verify_challenge(
            contact, code, ChallengePurpose.REGISTRATION, scope=self._context.tenant_id
        )
        verified = VerifiedContact.from_result(result, display_name=name)

        existing = await self._resolver.find_by_contact(verified.phone, verified.email)
        if existing is not None and existing.password_hash:
            raise CustomerExistsError()

        customer = await self._resolver.resolve_or_create(verified)
        customer.name = name
        customer.password_hash = hash_password(password)
        await self._session.commit()
        logger.info("customer_registered", customer_id=str(customer.id))
        return AuthResult(
            token=self._issue(customer, remember_me),
            customer=customer,
            is_new=existing is None,
        )

    async def reset_password(
        self, contact: str, code: str, new_password: str
    ) -> AuthResult:
        result = await self._gateway.verify_challenge(
            contact, code, ChallengePurpose.PASSWORD_RESET, scope=self._context.tenant_id
        )
        customer = await self._resolver.find_by_contact(result.phone, result.verified_email)
        if customer is None:
            raise CustomerNotFoundError()

        now = datetime.now(timezone.utc)
        customer.password_hash = hash_password(new_password)
        customer.password_changed_at = now
        customer.login_attempts = 0
        customer.lock_until = None
        if result.phone:
            customer.phone_verified = True
        else:
            customer.email_verified = True
        await self._session.commit()
        logger.info("customer_password_reset", customer_id=str(customer.id))
        return AuthResult(token=self._issue(customer, remember_me=False), customer=customer)
