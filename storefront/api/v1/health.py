"""Liveness endpoint."""

from fastapi import APIRouter, Depends

from storefront.api.deps import get_registry, get_verification_gateway
from storefront.db.tenant import TenantConnectionRegistry
from storefront.schemas.store import HealthResponse
from storefront.services.verification.gateway import VerificationGateway

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(
    registry: TenantConnectionRegistry = Depends(get_registry),
    gateway: VerificationGateway = Depends(get_verification_gateway),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        verification_provider=gateway.provider_name,
        tenant_connections=len(registry),
    )
