"""Permission scope catalogue for integration API keys."""

from collections.abc import Iterable

WILDCARD_SCOPE = "*"

PRODUCTS_READ = "products:read"
PRODUCTS_WRITE = "products:write"
STOCK_READ = "stock:read"
STOCK_WRITE = "stock:write"
PRICES_READ = "prices:read"
PRICES_WRITE = "prices:write"
CUSTOMERS_READ = "customers:read"
CUSTOMERS_WRITE = "customers:write"
ORDERS_READ = "orders:read"
ORDERS_WRITE = "orders:write"
INVOICES_READ = "invoices:read"
INVOICES_WRITE = "invoices:write"
WEBHOOKS_MANAGE = "webhooks:manage"

READ_SCOPES = frozenset(
    {
        PRODUCTS_READ,
        STOCK_READ,
        PRICES_READ,
        CUSTOMERS_READ,
        ORDERS_READ,
        INVOICES_READ,
    }
)

WRITE_SCOPES = frozenset(
    {
        PRODUCTS_WRITE,
        STOCK_WRITE,
        PRICES_WRITE,
        CUSTOMERS_WRITE,
        ORDERS_WRITE,
        INVOICES_WRITE,
        WEBHOOKS_MANAGE,
    }
)

RESOURCE_WILDCARD_SCOPES = frozenset(
    {
        "products:*",
        "stock:*",
        "prices:*",
        "customers:*",
        "orders:*",
        "invoices:*",
    }
)

_ALL_SCOPES = READ_SCOPES | WRITE_SCOPES | RESOURCE_WILDCARD_SCOPES | {WILDCARD_SCOPE}


def normalize_scope(scope: str) -> str:
    """Normalize a scope string for storage and comparison."""
    return scope.strip().lower()


def is_valid_scope(scope: str) -> bool:
    """Check whether a scope is a member of the catalogue (case-insensitive)."""
    return normalize_scope(scope) in _ALL_SCOPES


def all_scopes() -> set[str]:
    """Get every valid scope, including wildcards."""
    return set(_ALL_SCOPES)


def find_invalid_scopes(scopes: Iterable[str]) -> list[str]:
    """Return the scopes that are not in the catalogue, in input order."""
    return [scope for scope in scopes if not is_valid_scope(scope)]


def scope_grants(granted: Iterable[str], required: str) -> bool:
    """Check whether a granted scope set covers a required scope.

    ``*`` covers everything and ``resource:*`` covers every
    ``resource:<action>``. Scopes compose by union.

    Args:
        granted: Scopes attached to a key
        required: Scope needed by the caller

    Returns:
        True if any granted scope covers the required one
    """
    required = normalize_scope(required)
    resource_wildcard = None
    if ":" in required:
        resource_wildcard = f"{required.split(':', 1)[0]}:*"

    for scope in granted:
        scope = normalize_scope(scope)
        if scope in (WILDCARD_SCOPE, required):
            return True
        if resource_wildcard is not None and scope == resource_wildcard:
            return True
    return False
