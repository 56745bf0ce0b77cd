"""Database clients and connections.

Imports are intentionally NOT eagerly loaded here so that importing one
client does not create engines for the others.
Use explicit imports: ``from storefront.db.tenant import TenantConnectionRegistry``, etc.
"""
