"""Custom exception classes for structured error handling.

Every error carries a stable machine-readable ``code`` so clients can tell
a wrong OTP from an exhausted challenge, or an expired session from a
revoked one.
"""

from typing import Any


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    def __init__(self, code: str, message: str, status_code: int = 500) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class ConfigurationError(StorefrontError):
    def __init__(self, message: str = "Required configuration is missing") -> None:
        super().__init__(code="CONFIGURATION_ERROR", message=message, status_code=500)


class TenantNotFoundError(StorefrontError):
    def __init__(self, message: str = "Store not found") -> None:
        super().__init__(code="STORE_NOT_FOUND", message=message, status_code=404)


class StoreInactiveError(TenantNotFoundError):
    def __init__(self, message: str = "Store is not active") -> None:
        super().__init__(message=message)
        self.code = "STORE_INACTIVE"


class ConnectivityError(StorefrontError):
    """Underlying store is unreachable. Detail is logged, never returned."""

    def __init__(self, message: str = "Service temporarily unavailable") -> None:
        super().__init__(code="SERVICE_UNAVAILABLE", message=message, status_code=503)


class VerificationFailedError(StorefrontError):
    def __init__(
        self,
        message: str = "Verification failed",
        code: str = "VERIFICATION_FAILED",
    ) -> None:
        super().__init__(code=code, message=message, status_code=400)


class AttemptsExhaustedError(StorefrontError):
    def __init__(
        self, message: str = "Too many failed attempts. Please request a new code."
    ) -> None:
        super().__init__(code="ATTEMPTS_EXHAUSTED", message=message, status_code=429)


class ResendTooSoonError(StorefrontError):
    def __init__(self, message: str = "Please wait before requesting a new code") -> None:
        super().__init__(code="RESEND_TOO_SOON", message=message, status_code=429)


class TokenInvalidError(StorefrontError):
    def __init__(
        self, message: str = "Invalid session token", code: str = "TOKEN_INVALID"
    ) -> None:
        super().__init__(code=code, message=message, status_code=401)


class TokenExpiredError(StorefrontError):
    def __init__(self, message: str = "Session expired. Please login again.") -> None:
        super().__init__(code="TOKEN_EXPIRED", message=message, status_code=401)


class InvalidCredentialsError(StorefrontError):
    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(code="INVALID_CREDENTIALS", message=message, status_code=401)


class AccountLockedError(StorefrontError):
    def __init__(self, message: str = "Account temporarily locked") -> None:
        super().__init__(code="ACCOUNT_LOCKED", message=message, status_code=423)


class CustomerExistsError(StorefrontError):
    def __init__(self, message: str = "An account already exists for this contact") -> None:
        super().__init__(code="CUSTOMER_EXISTS", message=message, status_code=409)


class CustomerNotFoundError(StorefrontError):
    def __init__(self, message: str = "No account found for this contact") -> None:
        super().__init__(code="CUSTOMER_NOT_FOUND", message=message, status_code=404)
