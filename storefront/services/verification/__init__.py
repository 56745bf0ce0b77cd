"""Contact verification: provider interface, implementations and gateway."""

from storefront.services.verification.base import (
    ChallengeHandle,
    ChallengePurpose,
    ContactKind,
    VerificationProvider,
    VerificationResult,
    normalize_contact,
)
from storefront.services.verification.gateway import (
    VerificationGateway,
    build_verification_gateway,
)

__all__ = [
    "ChallengeHandle",
    "ChallengePurpose",
    "ContactKind",
    "VerificationProvider",
    "VerificationResult",
    "normalize_contact",
    "VerificationGateway",
    "build_verification_gateway",
]
