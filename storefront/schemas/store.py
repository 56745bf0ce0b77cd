"""Store and health response schemas."""

from typing import Any

from pydantic import BaseModel


class StoreResponse(BaseModel):
    """GET /v1/store response body."""

    store_id: str
    name: str
    settings: dict[str, Any] = {}


class HealthResponse(BaseModel):
    """GET /v1/health response body."""

    status: str
    verification_provider: str | None = None
    tenant_connections: int = 0
