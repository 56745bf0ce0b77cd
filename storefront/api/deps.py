"""Shared FastAPI dependencies — tenant context, database sessions, auth.

The TenantConnectionRegistry, VerificationGateway and SessionTokenIssuer are
created once during the FastAPI lifespan and stored on app.state. All
downstream code retrieves them via Depends() — never by direct import.
"""

import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import timedelta

import structlog
from fastapi import Depends, Header, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.exceptions import ConnectivityError, TokenInvalidError
from storefront.db.postgres import get_async_session
from storefront.db.tenant import TenantConnectionRegistry
from storefront.models.customer import Customer
from storefront.services.customer_auth import CustomerAuthService
from storefront.services.session_tokens import SessionClaims, SessionTokenIssuer
from storefront.services.verification.gateway import VerificationGateway
from storefront.tenancy.context import StoreContext, StoreContextLoader
from storefront.tenancy.resolver import get_store_label

logger = structlog.get_logger(__name__)

REFRESHED_TOKEN_HEADER = "X-Refreshed-Token"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

async def get_db(
    session: AsyncSession = Depends(get_async_session),
) -> AsyncSession:
    """Yield a platform directory session."""
    return session


# ---------------------------------------------------------------------------
# Singletons — retrieved from app.state (set during lifespan)
# ---------------------------------------------------------------------------

def get_registry(request: Request) -> TenantConnectionRegistry:
    return request.app.state.tenant_registry


def get_verification_gateway(request: Request) -> VerificationGateway:
    return request.app.state.verification_gateway


def get_token_issuer(request: Request) -> SessionTokenIssuer:
    return request.app.state.token_issuer


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------

async def get_store_context(
    request: Request,
    store_label: str | None = Depends(get_store_label),
    db: AsyncSession = Depends(get_db),
    registry: TenantConnectionRegistry = Depends(get_registry),
) -> StoreContext:
    """Resolve the request host to a loaded StoreContext (once per request)."""
    loader = StoreContextLoader(directory=db, registry=registry)
    return await loader.load_for_request(request, store_label)


async def get_tenant_session(
    context: StoreContext = Depends(get_store_context),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session on the current tenant's partition.

    Commits on success, rolls back on exception, always closes.
    """
    async with context.connection.session() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(
                "tenant_session_error", tenant_id=context.tenant_id, error=str(e)
            )
            raise ConnectivityError() from e
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

async def get_customer_auth_service(
    context: StoreContext = Depends(get_store_context),
    session: AsyncSession = Depends(get_tenant_session),
    gateway: VerificationGateway = Depends(get_verification_gateway),
    issuer: SessionTokenIssuer = Depends(get_token_issuer),
) -> CustomerAuthService:
    return CustomerAuthService(
        context=context,
        session=session,
        gateway=gateway,
        issuer=issuer,
        max_login_attempts=settings.max_login_attempts,
        lockout=timedelta(minutes=settings.lockout_minutes),
    )


# ---------------------------------------------------------------------------
# Customer auth
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CurrentCustomer:
    customer: Customer
    claims: SessionClaims


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise TokenInvalidError("Access denied. Please login.")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise TokenInvalidError("Invalid token format.")
    return token.strip()


async def get_current_customer(
    response: Response,
    authorization: str | None = Header(default=None),
    context: StoreContext = Depends(get_store_context),
    session: AsyncSession = Depends(get_tenant_session),
    issuer: SessionTokenIssuer = Depends(get_token_issuer),
) -> CurrentCustomer:
    """Authenticate the bearer token against the current store.

    A valid token close to expiry yields a fresh one in the
    X-Refreshed-Token response header.
    """
    claims = issuer.validate(_bearer_token(authorization), context.store_id)
    if claims.tenant_id != context.tenant_id:
        raise TokenInvalidError(
            "Token is not valid for this store", code="TOKEN_STORE_MISMATCH"
        )

    try:
        customer_id = uuid.UUID(claims.customer_id)
    except ValueError as e:
        raise TokenInvalidError() from e

    customer = await session.get(Customer, customer_id)
    if customer is None or not customer.is_active:
        raise TokenInvalidError("Invalid token - customer not found.")

    issuer.ensure_not_revoked(claims, customer.password_changed_at)

    refreshed = issuer.refresh_if_needed(claims)
    if refreshed is not None:
        response.headers[REFRESHED_TOKEN_HEADER] = refreshed.token

    return CurrentCustomer(customer=customer, claims=claims)
