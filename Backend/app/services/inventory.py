"""
Inventory service: stock movements and low-stock alerts.

Stock only changes through ``record_stock_movement`` so that every change
leaves a movement row behind. Products with ``track_inventory`` off still get
the movement row, but their stock level is left alone.
"""

import logging
from datetime import timedelta
from typing import Iterable, Optional, Sequence

from fastapi import status
from pydantic import BaseModel, Field
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.responses import ApiError
from ..currency import to_decimal
from ..models import (
    AlertSeverity,
    AlertType,
    InventoryAlert,
    MovementType,
    Product,
    StockMovement,
    ensure_aware,
    utc_now,
)
from ..tenancy import require_owned, scoped_select

logger = logging.getLogger(__name__)

SEVERITY_RANK = {
    AlertSeverity.CRITICAL: 4,
    AlertSeverity.HIGH: 3,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 1,
}

RECENT_MOVEMENT_DAYS = 7


class StockMovementCreate(BaseModel):
    product_id: int
    type: MovementType
    quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=100)


def threshold_for(product: Product) -> int:
    if product.low_stock_threshold is not None:
        return product.low_stock_threshold
    return get_settings().low_stock_threshold


def classify_stock(stock: int, threshold: int) -> Optional[tuple[AlertType, AlertSeverity]]:
    """
    Map a stock level to an alert, or None when stock is healthy.

    Examples:
        classify_stock(0, 5)  -> (OUT_OF_STOCK, CRITICAL)
        classify_stock(2, 5)  -> (LOW_STOCK, HIGH)
        classify_stock(4, 5)  -> (LOW_STOCK, MEDIUM)
        classify_stock(6, 5)  -> None
    """
    if stock <= 0:
        return AlertType.OUT_OF_STOCK, AlertSeverity.CRITICAL
    if stock <= threshold:
        severity = AlertSeverity.HIGH if stock <= threshold / 2 else AlertSeverity.MEDIUM
        return AlertType.LOW_STOCK, severity
    return None


def apply_movement(current: int, movement_type: MovementType, quantity: int) -> int:
    """New stock level after a movement, never below zero."""
    if movement_type in (MovementType.IN, MovementType.RETURN):
        new_stock = current + quantity
    elif movement_type == MovementType.OUT:
        new_stock = current - quantity
    else:
        new_stock = quantity
    return max(0, new_stock)


# ============================================================================
# MOVEMENTS
# ============================================================================

async def record_stock_movement(
    session: AsyncSession,
    tenant_id: int,
    product_id: int,
    movement_type: MovementType,
    quantity: int,
    reason: str,
    created_by: str,
    reference: Optional[str] = None,
) -> StockMovement:
    """
    Record a movement and update the product's stock.

    Raises:
        ApiError 400: If the quantity is invalid for the movement type
        ApiError 404: If the product does not belong to the tenant
    """
    movement_type = MovementType(movement_type)
    if quantity < 0 or (quantity == 0 and movement_type != MovementType.ADJUSTMENT):
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            "INVALID_QUANTITY",
            "Quantity must be greater than 0",
            {"quantity": quantity, "type": movement_type.value},
        )

    product = await require_owned(session, Product, product_id, tenant_id)
    if not product:
        raise ApiError.not_found("Product")

    movement = StockMovement(
        tenant_id=tenant_id,
        product_id=product.id,
        type=movement_type,
        quantity=quantity,
        reason=reason,
        reference=reference,
        created_by=created_by,
    )
    session.add(movement)

    if product.track_inventory:
        previous = product.stock_quantity
        product.stock_quantity = apply_movement(previous, movement_type, quantity)
        logger.info(
            f"Stock {movement_type.value} for product {product.id} (tenant {tenant_id}): "
            f"{previous} -> {product.stock_quantity}"
        )

    await session.flush()

    if product.track_inventory:
        await check_low_stock_alerts(session, tenant_id, [product.id])

    return movement


async def list_stock_movements(
    session: AsyncSession,
    tenant_id: int,
    product_id: Optional[int] = None,
    limit: int = 50,
) -> Sequence[StockMovement]:
    stmt = scoped_select(StockMovement, tenant_id)
    if product_id is not None:
        stmt = stmt.where(StockMovement.product_id == product_id)
    stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()


# ============================================================================
# ALERTS
# ============================================================================

async def check_low_stock_alerts(
    session: AsyncSession,
    tenant_id: int,
    product_ids: Optional[Iterable[int]] = None,
) -> list[InventoryAlert]:
    """
    Create alerts for tracked products at or below their threshold.

    An unacknowledged alert of the same type for the same product is not
    duplicated. Returns the alerts created by this call.
    """
    stmt = scoped_select(Product, tenant_id).where(Product.track_inventory.is_(True))
    if product_ids is not None:
        stmt = stmt.where(Product.id.in_(list(product_ids)))
    products = (await session.execute(stmt)).scalars().all()
    if not products:
        return []

    open_alerts = await session.execute(
        select(InventoryAlert.product_id, InventoryAlert.type).where(
            InventoryAlert.tenant_id == tenant_id,
            InventoryAlert.acknowledged.is_(False),
            InventoryAlert.product_id.in_([p.id for p in products]),
        )
    )
    existing = {(row.product_id, AlertType(row.type)) for row in open_alerts}

    created: list[InventoryAlert] = []
    for product in products:
        threshold = threshold_for(product)
        classification = classify_stock(product.stock_quantity, threshold)
        if classification is None:
            continue
        alert_type, severity = classification
        if (product.id, alert_type) in existing:
            continue

        alert = InventoryAlert(
            tenant_id=tenant_id,
            product_id=product.id,
            type=alert_type,
            severity=severity,
            current_stock=product.stock_quantity,
            threshold=threshold,
        )
        session.add(alert)
        created.append(alert)

    if created:
        await session.flush()
        logger.info(f"Created {len(created)} inventory alerts for tenant {tenant_id}")
    return created


async def list_inventory_alerts(
    session: AsyncSession,
    tenant_id: int,
    acknowledged: Optional[bool] = None,
) -> Sequence[InventoryAlert]:
    """Alerts ordered by severity (critical first), then newest first."""
    rank = case(
        *[(InventoryAlert.severity == severity, value) for severity, value in SEVERITY_RANK.items()],
        else_=0,
    )
    stmt = scoped_select(InventoryAlert, tenant_id)
    if acknowledged is not None:
        stmt = stmt.where(InventoryAlert.acknowledged.is_(acknowledged))
    stmt = stmt.order_by(rank.desc(), InventoryAlert.created_at.desc(), InventoryAlert.id.desc())
    result = await session.execute(stmt)
    return result.scalars().all()


async def acknowledge_alert(
    session: AsyncSession,
    tenant_id: int,
    alert_id: int,
    user_id: str,
) -> InventoryAlert:
    alert = await require_owned(session, InventoryAlert, alert_id, tenant_id)
    if not alert:
        raise ApiError.not_found("Alert")

    alert.acknowledged = True
    alert.acknowledged_by = user_id
    alert.acknowledged_at = utc_now()
    await session.flush()
    logger.info(f"Alert {alert.id} acknowledged by {user_id} (tenant {tenant_id})")
    return alert


# ============================================================================
# SUMMARIES
# ============================================================================

async def get_inventory_summary(session: AsyncSession, tenant_id: int) -> dict:
    tracked = (
        await session.execute(
            scoped_select(Product, tenant_id).where(Product.track_inventory.is_(True))
        )
    ).scalars().all()

    low_stock = 0
    out_of_stock = 0
    total_value = to_decimal(0)
    for product in tracked:
        if product.stock_quantity <= 0:
            out_of_stock += 1
        elif product.stock_quantity <= threshold_for(product):
            low_stock += 1
        total_value += to_decimal(product.price) * product.stock_quantity

    since = utc_now() - timedelta(days=RECENT_MOVEMENT_DAYS)
    recent_movements = (
        await session.execute(
            select(func.count()).select_from(StockMovement).where(
                StockMovement.tenant_id == tenant_id,
                StockMovement.created_at >= since,
            )
        )
    ).scalar_one()

    return {
        "total_products": len(tracked),
        "low_stock_count": low_stock,
        "out_of_stock_count": out_of_stock,
        "total_value": float(total_value),
        "recent_movements": recent_movements,
    }


async def low_stock_products(session: AsyncSession, tenant_id: int, limit: int = 10) -> list[Product]:
    """Tracked products at or below their threshold, lowest stock first."""
    tracked = (
        await session.execute(
            scoped_select(Product, tenant_id)
            .where(Product.track_inventory.is_(True))
            .order_by(Product.stock_quantity, Product.name)
        )
    ).scalars().all()
    return [p for p in tracked if p.stock_quantity <= threshold_for(p)][:limit]


# ============================================================================
# SERIALIZATION
# ============================================================================

def movement_to_dict(movement: StockMovement) -> dict:
    return {
        "id": movement.id,
        "product_id": movement.product_id,
        "type": MovementType(movement.type).value,
        "quantity": movement.quantity,
        "reason": movement.reason,
        "reference": movement.reference,
        "created_by": movement.created_by,
        "created_at": ensure_aware(movement.created_at).isoformat(),
    }


def alert_to_dict(alert: InventoryAlert) -> dict:
    return {
        "id": alert.id,
        "product_id": alert.product_id,
        "type": AlertType(alert.type).value,
        "severity": AlertSeverity(alert.severity).value,
        "current_stock": alert.current_stock,
        "threshold": alert.threshold,
        "acknowledged": alert.acknowledged,
        "acknowledged_by": alert.acknowledged_by,
        "acknowledged_at": ensure_aware(alert.acknowledged_at).isoformat() if alert.acknowledged_at else None,
        "created_at": ensure_aware(alert.created_at).isoformat(),
    }
