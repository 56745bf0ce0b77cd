"""Multi-tenant storefront backend: tenant routing and customer identity."""
