"""SQLAlchemy ORM models.

Individual models should be imported explicitly:
    from storefront.models.customer import Customer

Directory models use ``storefront.db.postgres.Base``; tenant partition models
use ``storefront.db.tenant.TenantBase``. All tenant models are imported here
so the registry's schema creation sees every table.
"""

from storefront.models.customer import Customer
from storefront.models.settings import StoreSettings, TenantUser
from storefront.models.store import Store

__all__ = [
    "Store",
    "Customer",
    "StoreSettings",
    "TenantUser",
]
