"""Admin dashboard statistics."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..currency import to_decimal
from ..models import Customer, Order, OrderStatus, Product, ProductStatus
from ..tenancy import scoped_select
from .inventory import low_stock_products

logger = logging.getLogger(__name__)

# Orders in these statuses do not count towards revenue
NON_REVENUE_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)

RECENT_ORDER_COUNT = 5


async def _count(session: AsyncSession, model, tenant_id: int, *conditions) -> int:
    stmt = select(func.count()).select_from(model).where(model.tenant_id == tenant_id, *conditions)
    return (await session.execute(stmt)).scalar_one()


async def get_dashboard_stats(session: AsyncSession, tenant_id: int) -> dict:
    revenue = (
        await session.execute(
            select(func.coalesce(func.sum(Order.total), 0)).where(
                Order.tenant_id == tenant_id, Order.status.not_in(NON_REVENUE_STATUSES)
            )
        )
    ).scalar_one()

    by_status = dict(
        (
            await session.execute(
                select(Order.status, func.count(Order.id))
                .where(Order.tenant_id == tenant_id)
                .group_by(Order.status)
            )
        ).all()
    )

    recent = (
        await session.execute(
            scoped_select(Order, tenant_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .limit(RECENT_ORDER_COUNT)
        )
    ).scalars().all()

    low_stock = await low_stock_products(session, tenant_id, limit=1000)

    return {
        "total_orders": sum(by_status.values()),
        "orders_by_status": {OrderStatus(s).value: n for s, n in by_status.items()},
        "pending_orders": by_status.get(OrderStatus.PENDING, 0),
        "total_revenue": float(to_decimal(revenue or 0)),
        "total_products": await _count(session, Product, tenant_id),
        "active_products": await _count(session, Product, tenant_id, Product.status == ProductStatus.ACTIVE),
        "total_customers": await _count(session, Customer, tenant_id),
        "low_stock_count": len(low_stock),
        "recent_orders": [
            {
                "id": o.id,
                "order_number": o.order_number,
                "status": OrderStatus(o.status).value,
                "total": float(o.total),
                "currency": o.currency,
            }
            for o in recent
        ],
    }
