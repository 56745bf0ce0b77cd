"""Per-request store context.

StoreContext is established once per request, before any tenant-specific
database operation, and attached to ``request.state.store_context`` so
downstream dependencies reuse it instead of touching the registry again.

Resolution order:
  1. Directory lookup: public store label → canonical tenant id.
  2. Tenant connection from the registry (opened on first use).
  3. Operator record and settings snapshot from the tenant partition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from storefront.core.exceptions import (
    ConnectivityError,
    StoreInactiveError,
    TenantNotFoundError,
)
from storefront.db.tenant import TenantConnection, TenantConnectionRegistry
from storefront.models.settings import StoreSettings, TenantUser
from storefront.models.store import Store

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StoreContext:
    """
    Immutable context representing the current tenant for a request.

    Attributes:
        tenant_id: Internal partition key (may differ from store_id)
        store_id: Public subdomain label the customer sees
        store_name: Human-readable store name
        connection: Open connection to the tenant partition
        settings: Snapshot of the store settings record
        owner: Operator summary (name, email)
    """

    tenant_id: str
    store_id: str
    store_name: str
    connection: TenantConnection
    settings: dict[str, Any] = field(default_factory=dict)
    owner: dict[str, Any] = field(default_factory=dict)


def _settings_snapshot(row: StoreSettings) -> dict[str, Any]:
    # Payment secrets never leave the tenant partition.
    payment = {
        k: v for k, v in (row.payment or {}).items() if "secret" not in k.lower()
    }
    return {
        "general": dict(row.general or {}),
        "payment": payment,
        "social": dict(row.social or {}),
        "shipping": dict(row.shipping or {}),
    }


class StoreContextLoader:
    """Builds a StoreContext from a store label."""

    def __init__(
        self, directory: AsyncSession, registry: TenantConnectionRegistry
    ) -> None:
        self._directory = directory
        self._registry = registry

    async def _lookup_store(self, store_label: str) -> Store:
        try:
            result = await self._directory.execute(
                select(Store).where(func.lower(Store.store_id) == store_label.lower())
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error("directory_lookup_failed", store_id=store_label, error=str(e))
            raise ConnectivityError() from e
        store = result.scalar_one_or_none()
        if store is None:
            raise TenantNotFoundError()
        if not store.is_active:
            raise StoreInactiveError()
        return store

    async def load(self, store_label: str) -> StoreContext:
        """Resolve a store label into a fully loaded StoreContext.

        Raises:
            TenantNotFoundError: unknown store, or a required record is absent.
            StoreInactiveError: store exists but is disabled.
            ConnectivityError: directory or tenant partition unreachable.
        """
        store = await self._lookup_store(store_label)
        connection = await self._registry.get_connection(store.tenant_id)

        try:
            async with connection.session() as session:
                owner = (
                    await session.execute(
                        select(TenantUser)
                        .where(TenantUser.role == "owner")
                        .order_by(TenantUser.created_at.asc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
                settings_row = (
                    await session.execute(select(StoreSettings).limit(1))
                ).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "tenant_context_load_failed", tenant_id=store.tenant_id, error=str(e)
            )
            raise ConnectivityError() from e

        if owner is None or settings_row is None:
            logger.warning(
                "store_not_configured",
                store_id=store.store_id,
                tenant_id=store.tenant_id,
                has_owner=owner is not None,
                has_settings=settings_row is not None,
            )
            raise TenantNotFoundError("Store not found or not configured")

        return StoreContext(
            tenant_id=store.tenant_id,
            store_id=store.store_id,
            store_name=store.name,
            connection=connection,
            settings=_settings_snapshot(settings_row),
            owner={"name": owner.name, "email": owner.email},
        )

    async def load_for_request(
        self, request: Request, store_label: str | None
    ) -> StoreContext:
        """Load once per request; later calls return the attached context."""
        attached = getattr(request.state, "store_context", None)
        if attached is not None:
            return attached
        if store_label is None:
            raise TenantNotFoundError()
        context = await self.load(store_label)
        request.state.store_context = context
        return context
