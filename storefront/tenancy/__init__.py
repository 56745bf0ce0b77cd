"""Tenant resolution and per-request store context."""
