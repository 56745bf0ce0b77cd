"""Customer session tokens (signed JWT, not persisted).

Claims: customer_id, tenant_id, store_id, type="customer", iat, iat_ms,
exp, remember_me. TTL is remember_me_ttl_days when remember_me is set,
session_ttl_days otherwise.

iat_ms is the issue time in epoch milliseconds. Revocation compares it with
password_changed_at, so a password change later in the same second still
revokes the token.

A token is rejected when:
  - the signature or format is invalid            → TOKEN_INVALID
  - it has expired                                → TOKEN_EXPIRED
  - type != "customer"                            → TOKEN_INVALID
  - store_id differs from the request's store     → TOKEN_STORE_MISMATCH
  - iat predates the customer's password change   → TOKEN_REVOKED
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog
from jose import ExpiredSignatureError, JWTError, jwt

from storefront.core.config import Settings
from storefront.core.exceptions import (
    ConfigurationError,
    TokenExpiredError,
    TokenInvalidError,
)

logger = structlog.get_logger(__name__)

TOKEN_TYPE = "customer"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionClaims:
    customer_id: str
    tenant_id: str
    store_id: str
    issued_at: int
    expires_at: int
    remember_me: bool = False
    issued_at_ms: int | None = None

    @property
    def issued_at_millis(self) -> int:
        if self.issued_at_ms is not None:
            return self.issued_at_ms
        return self.issued_at * 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_millis(moment: datetime) -> int:
    """Whole milliseconds since the epoch. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


class SessionTokenIssuer:
    """Mints, validates and refreshes customer session tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(days=90),
        remember_me_ttl: timedelta = timedelta(days=365),
        refresh_window: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret = secret_key
        self._algorithm = algorithm
        self._ttl = ttl
        self._remember_ttl = remember_me_ttl
        self._refresh_window = refresh_window
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionTokenIssuer":
        return cls(
            secret_key=settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
            ttl=timedelta(days=settings.session_ttl_days),
            remember_me_ttl=timedelta(days=settings.remember_me_ttl_days),
            refresh_window=timedelta(days=settings.session_refresh_window_days),
        )

    def _require_secret(self) -> str:
        if not self._secret:
            raise ConfigurationError("jwt_secret_key is not configured")
        return self._secret

    def issue(
        self,
        customer_id: Any,
        store_id: str,
        tenant_id: str,
        remember_me: bool = False,
    ) -> IssuedToken:
        """Create a signed token for a customer of one store."""
        secret = self._require_secret()
        now = self._clock()
        expires_at = now + (self._remember_ttl if remember_me else self._ttl)
        claims = {
            "customer_id": str(customer_id),
            "tenant_id": tenant_id,
            "store_id": store_id,
            "type": TOKEN_TYPE,
            "remember_me": remember_me,
            "iat": int(now.timestamp()),
            "iat_ms": epoch_millis(now),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(claims, secret, algorithm=self._algorithm)
        return IssuedToken(token=token, expires_at=expires_at)

    def validate(self, token: str, expected_store_id: str) -> SessionClaims:
        """Verify signature, type and store scope of a token.

        Raises:
            TokenExpiredError: token is past its exp claim.
            TokenInvalidError: anything else.
        """
        secret = self._require_secret()
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self._algorithm],
            )
        except ExpiredSignatureError as e:
            raise TokenExpiredError() from e
        except JWTError as e:
            raise TokenInvalidError("Invalid token format.") from e

        if payload.get("type") != TOKEN_TYPE:
            raise TokenInvalidError("Token is not a customer session")

        try:
            claims = SessionClaims(
                customer_id=str(payload["customer_id"]),
                tenant_id=str(payload["tenant_id"]),
                store_id=str(payload["store_id"]),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
                remember_me=bool(payload.get("remember_me", False)),
                issued_at_ms=(
                    int(payload["iat_ms"]) if payload.get("iat_ms") is not None else None
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise TokenInvalidError("Token is missing required claims") from e

        if claims.store_id.lower() != expected_store_id.lower():
            logger.warning(
                "session_token_store_mismatch",
                token_store_id=claims.store_id,
                request_store_id=expected_store_id,
            )
            raise TokenInvalidError(
                "Token is not valid for this store", code="TOKEN_STORE_MISMATCH"
            )
        return claims

    def ensure_not_revoked(
        self, claims: SessionClaims, password_changed_at: datetime | None
    ) -> None:
        """Reject tokens issued before the customer's last password change."""
        if password_changed_at is None:
            return
        if claims.issued_at_millis < epoch_millis(password_changed_at):
            raise TokenInvalidError(
                "Password changed. Please login again.", code="TOKEN_REVOKED"
            )

    def refresh_if_needed(self, claims: SessionClaims) -> IssuedToken | None:
        """New token when the current one expires within the refresh window."""
        remaining = claims.expires_at - int(self._clock().timestamp())
        if remaining > self._refresh_window.total_seconds():
            return None
        logger.info("session_token_refreshed", customer_id=claims.customer_id)
        return self.issue(
            claims.customer_id,
            store_id=claims.store_id,
            tenant_id=claims.tenant_id,
            remember_me=claims.remember_me,
        )
