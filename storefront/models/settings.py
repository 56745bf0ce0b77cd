"""Tenant operator and store settings ORM models (tenant partition)."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storefront.db.tenant import TenantBase


class TenantUser(TenantBase):
    """Store operator account."""

    __tablename__ = "tenant_users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(Text, default="owner")  # 'owner' | 'admin' | 'staff'
    store_info: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )


class StoreSettings(TenantBase):
    """One row per tenant partition."""

    __tablename__ = "store_settings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    general: Mapped[dict] = mapped_column(JSON, default=dict)
    payment: Mapped[dict] = mapped_column(JSON, default=dict)
    social: Mapped[dict] = mapped_column(JSON, default=dict)
    shipping: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
