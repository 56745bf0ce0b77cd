"""Host → tenant resolution.

Tenants are identified solely by the first subdomain label:

    acme.shop.example   → "acme"
    shop.example        → None   (main application)
    www.shop.example    → None
    203.0.113.5         → None

The base domain is always taken to be the last two labels. Hosts under
multi-label public suffixes (``acme.shop.co.uk``) therefore resolve to the
wrong label; this is a known limitation.
"""

import ipaddress

from fastapi import Request

MAIN_APP_PREFIXES = frozenset({"www"})


def _strip_port(host: str) -> str:
    host = host.strip()
    if host.startswith("["):
        # [::1]:8000
        return host[1:].split("]", 1)[0]
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


def resolve_tenant_id(host: str | None) -> str | None:
    """Return the tenant label for a request host, or None for the main app."""
    if not host:
        return None
    host = _strip_port(host).rstrip(".").lower()
    if not host or _is_ip_literal(host):
        return None

    labels = host.split(".")
    if len(labels) == 1:
        return None

    prefix = labels[:-2]
    if not prefix or ".".join(prefix) in MAIN_APP_PREFIXES:
        return None
    return prefix[0]


def get_store_label(request: Request) -> str | None:
    """FastAPI dependency: tenant label from the Host header."""
    return resolve_tenant_id(request.headers.get("host"))
