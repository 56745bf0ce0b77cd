"""Customer identity resolution within one tenant partition.

resolve_or_create() maps a verified contact to exactly one Customer:
  1. Look up by phone (if present).
  2. Otherwise look up by email (if present).
  3. Found → attach any newly verified field it lacks, mark that channel
     verified, touch last_login_at.
  4. Not found → create with the verified channel(s) marked true.

An email already owned by a different phone-bearing customer is never
merged: the verification proceeds without it and a
``customer_identity_conflict`` warning is logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import InvalidCredentialsError
from storefront.models.customer import Customer
from storefront.services.verification.base import VerificationResult

logger = structlog.get_logger(__name__)

DEFAULT_CUSTOMER_NAME = "Customer"


@dataclass(frozen=True)
class VerifiedContact:
    """Contacts proven by a verification provider. Every set field is verified."""

    phone: str | None = None
    email: str | None = None
    display_name: str | None = None
    external_uid: str | None = None

    @classmethod
    def from_result(
        cls, result: VerificationResult, display_name: str | None = None
    ) -> "VerifiedContact":
        return cls(
            phone=result.phone,
            email=result.verified_email,
            display_name=display_name or result.display_name,
            external_uid=result.external_uid,
        )


class CustomerIdentityResolver:
    """Finds or creates the unique Customer for a verified contact."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _find_by(self, column: Any, value: str | None) -> Customer | None:
        if not value:
            return None
        result = await self._session.execute(select(Customer).where(column == value))
        return result.scalar_one_or_none()

    async def find_by_phone(self, phone: str | None) -> Customer | None:
        return await self._find_by(Customer.phone, phone)

    async def find_by_email(self, email: str | None) -> Customer | None:
        return await self._find_by(Customer.email, email)

    async def find_by_contact(
        self, phone: str | None = None, email: str | None = None
    ) -> Customer | None:
        return await self.find_by_phone(phone) or await self.find_by_email(email)

    async def resolve_or_create(self, contact: VerifiedContact) -> Customer:
        if not contact.phone and not contact.email:
            raise ValueError("A verified phone or email is required")

        customer = await self.find_by_phone(contact.phone)
        email_available = True

        if customer is None and contact.email:
            by_email = await self.find_by_email(contact.email)
            if by_email is not None and self._is_conflict(by_email, contact):
                email_available = False
            else:
                customer = by_email

        if customer is not None:
            if not customer.is_active:
                raise InvalidCredentialsError("Account is disabled")
            await self._merge(customer, contact)
            customer.last_login_at = datetime.now(timezone.utc)
            await self._session.flush()
            return customer

        return await self._create(contact, email_available)

    def _is_conflict(self, existing: Customer, contact: VerifiedContact) -> bool:
        conflict = bool(
            contact.phone and existing.phone and existing.phone != contact.phone
        )
        if conflict:
            logger.warning(
                "customer_identity_conflict",
                existing_customer_id=str(existing.id),
                reason="email_owned_by_other_phone",
            )
        return conflict

    async def _merge(self, customer: Customer, contact: VerifiedContact) -> None:
        if contact.phone:
            if customer.phone is None:
                customer.phone = contact.phone
                logger.info("customer_phone_attached", customer_id=str(customer.id))
            if customer.phone == contact.phone:
                customer.phone_verified = True

        if contact.email:
            if customer.email is None:
                owner = await self.find_by_email(contact.email)
                if owner is not None and owner.id != customer.id:
                    logger.warning(
                        "customer_identity_conflict",
                        existing_customer_id=str(owner.id),
                        customer_id=str(customer.id),
                        reason="email_owned_by_other_customer",
                    )
                else:
                    customer.email = contact.email
                    logger.info("customer_email_attached", customer_id=str(customer.id))
            if customer.email == contact.email:
                customer.email_verified = True

        if contact.external_uid and customer.external_uid is None:
            owner = await self._find_by(Customer.external_uid, contact.external_uid)
            if owner is None:
                customer.external_uid = contact.external_uid

    async def _create(self, contact: VerifiedContact, email_available: bool) -> Customer:
        email = contact.email if email_available else None
        now = datetime.now(timezone.utc)
        customer = Customer(
            name=contact.display_name or DEFAULT_CUSTOMER_NAME,
            phone=contact.phone,
            email=email,
            external_uid=contact.external_uid,
            phone_verified=bool(contact.phone),
            email_verified=bool(email),
            preferences={"notifications": True, "marketing": False},
            total_spent=Decimal("0"),
            order_count=0,
            login_attempts=0,
            is_active=True,
            last_login_at=now,
        )
        self._session.add(customer)
        try:
            await self._session.flush()
        except IntegrityError:
            # A concurrent request created the same identity first.
            await self._session.rollback()
            existing = await self.find_by_contact(contact.phone, email)
            if existing is None:
                raise
            logger.info("customer_create_raced", customer_id=str(existing.id))
            return existing

        logger.info(
            "customer_created",
            customer_id=str(customer.id),
            via_phone=bool(contact.phone),
            via_email=bool(email),
        )
        return customer
