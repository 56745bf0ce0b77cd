"""Abstract verification provider interface.

All one-time-passcode / phone-verification implementations inherit from
VerificationProvider. Business logic never imports a concrete provider
directly: the gateway picks exactly one at startup (see gateway.py) and is
injected everywhere via Depends().
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from storefront.core.exceptions import VerificationFailedError

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_PATTERN = re.compile(r"^\+?[0-9]{7,15}$")


class ChallengePurpose(str, Enum):
    LOGIN = "login"
    REGISTRATION = "registration"
    PASSWORD_RESET = "password_reset"


class ContactKind(str, Enum):
    PHONE = "phone"
    EMAIL = "email"


def normalize_contact(contact: str) -> tuple[ContactKind, str]:
    """Classify and normalise a contact string.

    Emails are lower-cased; phones keep digits with a leading ``+``.

    Raises:
        VerificationFailedError: contact is neither a phone nor an email.
    """
    value = (contact or "").strip()
    if "@" in value:
        value = value.lower()
        if _EMAIL_PATTERN.match(value):
            return ContactKind.EMAIL, value
    else:
        digits = re.sub(r"[\s\-().]", "", value)
        if _PHONE_PATTERN.match(digits):
            return ContactKind.PHONE, "+" + digits.lstrip("+")
    raise VerificationFailedError("Invalid phone number or email", code="INVALID_CONTACT")


@dataclass(frozen=True)
class ChallengeHandle:
    """Returned by start_challenge. client_config is set for external flows."""

    provider: str
    contact: str
    purpose: ChallengePurpose
    expires_in_seconds: int | None = None
    client_config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    """A contact proven to belong to the caller."""

    contact: str
    kind: ContactKind
    provider: str
    display_name: str | None = None
    email: str | None = None
    external_uid: str | None = None

    @property
    def phone(self) -> str | None:
        return self.contact if self.kind is ContactKind.PHONE else None

    @property
    def verified_email(self) -> str | None:
        return self.contact if self.kind is ContactKind.EMAIL else self.email


class VerificationProvider(ABC):
    """Abstract base class for verification providers."""

    name: str = "abstract"

    @abstractmethod
    async def start_challenge(
        self,
        contact: str,
        purpose: ChallengePurpose,
        scope: str,
        store_name: str = "Store",
    ) -> ChallengeHandle:
        """Begin verifying a contact.

        Args:
            contact: Phone number or email, already normalised.
            purpose: Why the caller is verifying.
            scope: Tenant id; challenges never cross tenants.
            store_name: Used in the outgoing message.

        Returns:
            ChallengeHandle describing how the caller should continue.
        """
        ...

    @abstractmethod
    async def verify(
        self,
        contact: str,
        code: str,
        purpose: ChallengePurpose,
        scope: str,
    ) -> VerificationResult:
        """Check a submitted code.

        Raises:
            VerificationFailedError: wrong, expired or already used code.
            AttemptsExhaustedError: the challenge hit its attempt limit.
        """
        ...
