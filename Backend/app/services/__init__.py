"""
Tenant-scoped domain services.

Every service function takes the tenant id explicitly and filters on it;
routes resolve the tenant from the URL and pass it in.

Modules:
    catalog: storefront product search and admin catalog writes
    cart: cookie cart lines and pricing
    coupons: coupon CRUD, validation, discounts and analytics
    inventory: stock movements and low-stock alerts
    orders: order creation, listing and status changes
    checkout: storefront checkout on top of orders
    customers: admin customer list and maintenance
    dashboard: admin dashboard statistics
"""
