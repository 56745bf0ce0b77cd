"""Per-tenant storage connections.

Every tenant owns an isolated database whose address is computed from
``settings.tenant_database_url_template`` by substituting the tenant id.
All tenants share ONE static schema (``TenantBase.metadata``); a
TenantConnection is the only per-tenant object, and models are bound to a
tenant simply by using that connection's sessions.

TenantConnectionRegistry is the single process-scoped, concurrently mutated
object in the service. It is created in the FastAPI lifespan, stored on
app.state and injected via Depends(). Creation is single-flight per tenant
id: concurrent first callers wait on the same asyncio.Lock and share the
connection opened by whichever caller got the lock first. A failed open is
never cached, so the next call retries.
"""

from __future__ import annotations

import asyncio
import re
from typing import Awaitable, Callable

import structlog
from sqlalchemy import MetaData, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from storefront.core.config import TENANT_PLACEHOLDER
from storefront.core.exceptions import ConfigurationError, ConnectivityError

logger = structlog.get_logger(__name__)

_TENANT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class TenantBase(DeclarativeBase):
    """Base class for models stored inside a tenant partition."""
    pass


class TenantConnection:
    """Exclusive handle to one tenant's data partition."""

    def __init__(self, tenant_id: str, engine: AsyncEngine) -> None:
        self.tenant_id = tenant_id
        self.engine = engine
        self._sessionmaker = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def session(self) -> AsyncSession:
        """New AsyncSession bound to this tenant. Use as an async context manager."""
        return self._sessionmaker()

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self.engine.dispose()

    def __repr__(self) -> str:
        return f"TenantConnection(tenant_id={self.tenant_id!r})"


ConnectionOpener = Callable[[str, str], Awaitable[TenantConnection]]


def build_tenant_url(template: str, tenant_id: str) -> str:
    """Substitute a tenant id into the data-source template.

    Raises:
        ConfigurationError: template missing or without a placeholder.
        ValueError: tenant id contains characters unsafe for a URL/db name.
    """
    if not template or TENANT_PLACEHOLDER not in template:
        raise ConfigurationError(
            f"tenant_database_url_template must contain {TENANT_PLACEHOLDER}"
        )
    if not _TENANT_ID_PATTERN.match(tenant_id):
        raise ValueError(f"Invalid tenant id: {tenant_id!r}")
    return template.replace(TENANT_PLACEHOLDER, tenant_id)


def make_engine_opener(
    metadata: MetaData | None = None,
    create_schema: bool = True,
    connect_timeout: float = 5.0,
    pool_size: int = 5,
) -> ConnectionOpener:
    """Default opener: engine + connectivity check + optional schema creation."""

    async def _open(tenant_id: str, url: str) -> TenantConnection:
        engine_kwargs: dict = {"echo": False, "pool_pre_ping": True}
        if url.startswith("postgresql"):
            engine_kwargs["pool_size"] = pool_size
        engine = create_async_engine(url, **engine_kwargs)
        connection = TenantConnection(tenant_id, engine)
        try:
            await asyncio.wait_for(connection.ping(), timeout=connect_timeout)
            if create_schema:
                schema = metadata if metadata is not None else TenantBase.metadata
                async with engine.begin() as conn:
                    await conn.run_sync(schema.create_all)
        except BaseException:
            await engine.dispose()
            raise
        return connection

    return _open


class TenantConnectionRegistry:
    """Maps tenant id → TenantConnection, opening each at most once.

    Lifecycle: init-on-first-use, process-scoped. Entries are only removed by
    ``evict_unhealthy()`` or ``close_all()``.
    """

    def __init__(
        self,
        url_template: str,
        opener: ConnectionOpener | None = None,
    ) -> None:
        self._url_template = url_template
        self._opener = opener or make_engine_opener()
        self._connections: dict[str, TenantConnection] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._connections

    async def get_connection(self, tenant_id: str) -> TenantConnection:
        """Return the tenant's connection, opening it on first use.

        Raises:
            ConfigurationError: template is unusable.
            ConnectivityError: the tenant store could not be reached.
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")

        connection = self._connections.get(tenant_id)
        if connection is not None:
            return connection

        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        async with lock:
            # Another caller may have finished opening while we waited.
            connection = self._connections.get(tenant_id)
            if connection is not None:
                return connection

            url = build_tenant_url(self._url_template, tenant_id)
            logger.info("tenant_connection_opening", tenant_id=tenant_id)
            try:
                connection = await self._opener(tenant_id, url)
            except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
                logger.error(
                    "tenant_connection_failed",
                    tenant_id=tenant_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise ConnectivityError() from e

            self._connections[tenant_id] = connection
            logger.info("tenant_connection_ready", tenant_id=tenant_id)
            return connection

    def _drop_idle_lock(self, tenant_id: str) -> None:
        # A held lock still guards an open in progress.
        lock = self._locks.get(tenant_id)
        if lock is not None and not lock.locked():
            del self._locks[tenant_id]

    async def evict_unhealthy(self) -> list[str]:
        """Ping every cached connection and drop those that fail.

        Returns the evicted tenant ids. Evicted tenants reconnect on next use.
        """
        evicted: list[str] = []
        for tenant_id, connection in list(self._connections.items()):
            try:
                await connection.ping()
            except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
                logger.warning(
                    "tenant_connection_evicted", tenant_id=tenant_id, error=str(e)
                )
                if self._connections.get(tenant_id) is connection:
                    del self._connections[tenant_id]
                    self._drop_idle_lock(tenant_id)
                await connection.close()
                evicted.append(tenant_id)
        return evicted

    async def close_all(self) -> None:
        """Dispose every cached connection. Used on shutdown."""
        logger.info("tenant_connections_closing", count=len(self._connections))
        connections = list(self._connections.values())
        self._connections.clear()
        for tenant_id in list(self._locks):
            self._drop_idle_lock(tenant_id)
        for connection in connections:
            try:
                await connection.close()
            except (SQLAlchemyError, OSError) as e:
                logger.error(
                    "tenant_connection_close_failed",
                    tenant_id=connection.tenant_id,
                    error=str(e),
                )
