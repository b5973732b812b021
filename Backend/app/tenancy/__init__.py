"""
Multi-tenancy package.

This package provides tenant isolation primitives for the platform.

Modules:
    context: TenantContext resolution and FastAPI dependencies
    queries: Tenant-scoped query helpers
"""

from .context import (
    TenantContext,
    TenantResolutionSource,
    extract_slug_from_path,
    get_active_storefront_tenant,
    get_tenant_context_from_slug,
    normalize_host,
    resolve_tenant_from_domain,
    resolve_tenant_from_slug,
)

from .queries import (
    # Composable helpers
    scoped_select,
    tenant_filter,
    require_owned,
    # Tenant queries
    get_tenant_by_id,
    get_tenant_by_slug,
    # Catalog queries
    get_products_by_ids,
    list_categories,
    # Orders, customers, coupons
    get_order_by_number,
    get_customer_by_email,
    get_coupon_by_code,
)

__all__ = [
    # Context
    "TenantContext",
    "TenantResolutionSource",
    "extract_slug_from_path",
    "get_active_storefront_tenant",
    "get_tenant_context_from_slug",
    "normalize_host",
    "resolve_tenant_from_domain",
    "resolve_tenant_from_slug",
    # Query helpers
    "scoped_select",
    "tenant_filter",
    "require_owned",
    "get_tenant_by_id",
    "get_tenant_by_slug",
    "get_products_by_ids",
    "list_categories",
    "get_order_by_number",
    "get_customer_by_email",
    "get_coupon_by_code",
]
