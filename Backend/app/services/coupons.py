"""
Coupon service.

Coupons are per-tenant discount codes of three kinds: a percentage of the
subtotal (optionally capped), a fixed amount, or free shipping.

Functions:
    create_coupon / update_coupon / deactivate_coupon - admin CRUD
    validate_coupon - ordered eligibility checks plus the discount amount
    apply_coupon_to_order - discount applied to subtotal and shipping
    record_coupon_usage - bump used_count and store a CouponUsage row
    get_coupon_analytics - usage totals and top coupons
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from fastapi import status
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.responses import ApiError, ErrorCodes
from ..currency import Number, currency_decimals, format_currency, quantize_places, to_decimal
from ..models import Coupon, CouponType, CouponUsage, ensure_aware, utc_now
from ..tenancy import get_coupon_by_code, require_owned, scoped_select

logger = logging.getLogger(__name__)

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]+$")


# ============================================================================
# REQUEST MODELS
# ============================================================================

class CouponCreate(BaseModel):
    """Request body for creating a coupon."""

    code: str = Field(..., min_length=3, max_length=20, description="Case-insensitive, stored upper-case")
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: CouponType
    value: Decimal = Field(..., gt=0, description="Percent for percentage coupons, amount otherwise")
    minimum_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    maximum_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    valid_from: datetime
    valid_until: Optional[datetime] = None
    is_active: bool = True
    applicable_products: list[int] = Field(default_factory=list)
    applicable_categories: list[int] = Field(default_factory=list)
    customer_ids: list[int] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not COUPON_CODE_PATTERN.match(v):
            raise ValueError("Code may only contain letters, digits, '-' and '_'")
        return v

    @field_validator("valid_from", "valid_until")
    @classmethod
    def ensure_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive datetimes are taken as UTC."""
        return ensure_aware(v)

    @model_validator(mode="after")
    def check_consistency(self) -> "CouponCreate":
        if self.type == CouponType.PERCENTAGE and self.value > 100:
            raise ValueError("Percentage value cannot exceed 100")
        if self.valid_until is not None and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        if self.maximum_discount_amount is not None and self.type != CouponType.PERCENTAGE:
            raise ValueError("maximum_discount_amount only applies to percentage coupons")
        return self


class CouponUpdate(BaseModel):
    """Partial update; the merged coupon is re-validated with the create rules."""

    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[CouponType] = None
    value: Optional[Decimal] = None
    minimum_order_amount: Optional[Decimal] = None
    maximum_discount_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None
    applicable_products: Optional[list[int]] = None
    applicable_categories: Optional[list[int]] = None
    customer_ids: Optional[list[int]] = None


class CouponValidateRequest(BaseModel):
    """Storefront request body for checking a code against a cart."""

    code: str = Field(..., min_length=1, max_length=20)
    subtotal: Decimal = Field(..., ge=0)
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    customer_id: Optional[int] = None
    product_ids: list[int] = Field(default_factory=list)
    category_ids: list[int] = Field(default_factory=list)


_EDITABLE_FIELDS = tuple(CouponCreate.model_fields)


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class CouponValidation:
    """Outcome of ``validate_coupon``."""

    valid: bool
    coupon: Optional[Coupon] = None
    discount_amount: Decimal = Decimal("0")
    error: Optional[str] = None
    code: Optional[str] = None

    @classmethod
    def reject(cls, code: str, error: str, coupon: Optional[Coupon] = None) -> "CouponValidation":
        return cls(valid=False, coupon=coupon, error=error, code=code)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"valid": self.valid}
        if self.valid and self.coupon is not None:
            data["coupon"] = coupon_to_dict(self.coupon)
            data["discount_amount"] = float(self.discount_amount)
        else:
            data["error"] = self.error
            data["code"] = self.code
        return data


@dataclass(frozen=True)
class OrderDiscount:
    coupon_id: int
    coupon_code: str
    discount_type: CouponType
    discount_amount: Decimal
    original_amount: Decimal
    final_amount: Decimal
    free_shipping: bool

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "coupon_id": self.coupon_id,
            "coupon_code": self.coupon_code,
            "discount_type": self.discount_type.value,
            "discount_amount": float(self.discount_amount),
            "original_amount": float(self.original_amount),
            "final_amount": float(self.final_amount),
            "free_shipping": self.free_shipping,
        }


def coupon_to_dict(coupon: Coupon) -> dict:
    def money(value: Optional[Decimal]) -> Optional[float]:
        return float(value) if value is not None else None

    return {
        "id": coupon.id,
        "code": coupon.code,
        "name": coupon.name,
        "description": coupon.description,
        "type": CouponType(coupon.type).value,
        "value": float(coupon.value),
        "minimum_order_amount": money(coupon.minimum_order_amount),
        "maximum_discount_amount": money(coupon.maximum_discount_amount),
        "usage_limit": coupon.usage_limit,
        "used_count": coupon.used_count,
        "valid_from": ensure_aware(coupon.valid_from).isoformat(),
        "valid_until": ensure_aware(coupon.valid_until).isoformat() if coupon.valid_until else None,
        "is_active": coupon.is_active,
        "applicable_products": list(coupon.applicable_products or []),
        "applicable_categories": list(coupon.applicable_categories or []),
        "customer_ids": list(coupon.customer_ids or []),
    }


# ============================================================================
# CRUD
# ============================================================================

async def _code_taken(
    session: AsyncSession, tenant_id: int, code: str, exclude_id: Optional[int] = None
) -> bool:
    stmt = select(Coupon.id).where(
        Coupon.tenant_id == tenant_id, func.upper(Coupon.code) == code.upper()
    )
    if exclude_id is not None:
        stmt = stmt.where(Coupon.id != exclude_id)
    return (await session.execute(stmt)).first() is not None


def _duplicate_code(code: str) -> ApiError:
    return ApiError(
        status.HTTP_409_CONFLICT,
        "DUPLICATE_CODE",
        f"Coupon code '{code}' already exists",
        {"code": code},
    )


async def create_coupon(
    session: AsyncSession,
    tenant_id: int,
    data: CouponCreate,
    created_by: Optional[str] = None,
) -> Coupon:
    if await _code_taken(session, tenant_id, data.code):
        raise _duplicate_code(data.code)

    coupon = Coupon(tenant_id=tenant_id, created_by=created_by, used_count=0, **data.model_dump())
    session.add(coupon)
    await session.flush()
    logger.info(f"Created coupon {coupon.code} (id={coupon.id}) for tenant {tenant_id}")
    return coupon


async def get_coupon(session: AsyncSession, tenant_id: int, coupon_id: int) -> Coupon:
    coupon = await require_owned(session, Coupon, coupon_id, tenant_id)
    if not coupon:
        raise ApiError.not_found("Coupon")
    return coupon


async def list_coupons(
    session: AsyncSession,
    tenant_id: int,
    is_active: Optional[bool] = None,
    coupon_type: Optional[CouponType] = None,
) -> Sequence[Coupon]:
    stmt = scoped_select(Coupon, tenant_id)
    if is_active is not None:
        stmt = stmt.where(Coupon.is_active.is_(is_active))
    if coupon_type is not None:
        stmt = stmt.where(Coupon.type == coupon_type)
    result = await session.execute(stmt.order_by(Coupon.created_at.desc(), Coupon.id.desc()))
    return result.scalars().all()


async def update_coupon(
    session: AsyncSession,
    tenant_id: int,
    coupon_id: int,
    updates: CouponUpdate,
) -> Coupon:
    coupon = await get_coupon(session, tenant_id, coupon_id)
    changes = updates.model_dump(exclude_unset=True)

    merged = {name: getattr(coupon, name) for name in _EDITABLE_FIELDS}
    merged.update(changes)
    try:
        validated = CouponCreate.model_validate(merged)
    except ValidationError as e:
        raise ApiError(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            ErrorCodes.VALIDATION_ERROR,
            "Coupon validation failed",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    if validated.code != coupon.code and await _code_taken(session, tenant_id, validated.code, coupon.id):
        raise _duplicate_code(validated.code)

    for name in changes:
        setattr(coupon, name, getattr(validated, name))
    await session.flush()
    logger.info(f"Updated coupon {coupon.id} for tenant {tenant_id}: {sorted(changes)}")
    return coupon


async def deactivate_coupon(session: AsyncSession, tenant_id: int, coupon_id: int) -> Coupon:
    """Soft delete: the coupon stays for usage history but can no longer be redeemed."""
    coupon = await get_coupon(session, tenant_id, coupon_id)
    coupon.is_active = False
    await session.flush()
    logger.info(f"Deactivated coupon {coupon.code} for tenant {tenant_id}")
    return coupon


# ============================================================================
# VALIDATION AND DISCOUNTS
# ============================================================================

def calculate_discount(coupon: Coupon, subtotal: Number, places: int = 2) -> Decimal:
    """Discount for ``subtotal``; free-shipping coupons discount nothing here."""
    subtotal = to_decimal(subtotal)
    value = to_decimal(coupon.value)
    coupon_type = CouponType(coupon.type)

    if coupon_type == CouponType.PERCENTAGE:
        discount = subtotal * value / 100
        if coupon.maximum_discount_amount is not None:
            discount = min(discount, to_decimal(coupon.maximum_discount_amount))
    elif coupon_type == CouponType.FIXED_AMOUNT:
        discount = min(value, subtotal)
    else:
        discount = Decimal("0")

    return quantize_places(discount, places)


def _overlaps(allowed: Optional[list], requested: Iterable[int]) -> bool:
    return bool(set(allowed or []) & set(requested))


async def validate_coupon(
    session: AsyncSession,
    tenant_id: int,
    code: str,
    subtotal: Number,
    customer_id: Optional[int] = None,
    product_ids: Iterable[int] = (),
    category_ids: Iterable[int] = (),
    now: Optional[datetime] = None,
    places: int = 2,
    currency: Optional[str] = None,
) -> CouponValidation:
    """
    Check whether ``code`` can be redeemed for an order.

    Checks run in a fixed order and the first failure wins: existence,
    start date, expiry, usage limit, minimum order, customer, products,
    categories.

    When ``currency`` is given it sets the rounding places and amounts in
    error messages are formatted in it ("20.000 KWD").
    """
    if currency:
        places = currency_decimals(currency)
    now = ensure_aware(now) or datetime.now(timezone.utc)
    subtotal = to_decimal(subtotal)
    product_ids = list(product_ids)
    category_ids = list(category_ids)

    coupon = await get_coupon_by_code(session, tenant_id, code, active_only=True)
    if coupon is None:
        return CouponValidation.reject("INVALID_CODE", "Invalid coupon code")

    if ensure_aware(coupon.valid_from) > now:
        return CouponValidation.reject("NOT_YET_VALID", "Coupon is not yet valid", coupon)

    if coupon.valid_until is not None and ensure_aware(coupon.valid_until) < now:
        return CouponValidation.reject("EXPIRED", "Coupon has expired", coupon)

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        return CouponValidation.reject("USAGE_LIMIT_EXCEEDED", "Coupon usage limit reached", coupon)

    if coupon.minimum_order_amount is not None and subtotal < to_decimal(coupon.minimum_order_amount):
        if currency:
            minimum = format_currency(coupon.minimum_order_amount, currency)
        else:
            minimum = quantize_places(coupon.minimum_order_amount, places)
        return CouponValidation.reject(
            "MINIMUM_ORDER_NOT_MET",
            f"Minimum order amount of {minimum} required",
            coupon,
        )

    if coupon.customer_ids and (customer_id is None or customer_id not in coupon.customer_ids):
        return CouponValidation.reject(
            "CUSTOMER_RESTRICTED", "Coupon is not valid for this customer", coupon
        )

    if coupon.applicable_products and not _overlaps(coupon.applicable_products, product_ids):
        return CouponValidation.reject(
            "PRODUCT_RESTRICTED", "Coupon is not valid for these products", coupon
        )

    if coupon.applicable_categories and not _overlaps(coupon.applicable_categories, category_ids):
        return CouponValidation.reject(
            "CATEGORY_RESTRICTED", "Coupon is not valid for these categories", coupon
        )

    return CouponValidation(
        valid=True,
        coupon=coupon,
        discount_amount=calculate_discount(coupon, subtotal, places),
    )


async def apply_coupon_to_order(
    session: AsyncSession,
    tenant_id: int,
    code: str,
    subtotal: Number,
    shipping_cost: Number = 0,
    customer_id: Optional[int] = None,
    product_ids: Iterable[int] = (),
    category_ids: Iterable[int] = (),
    places: int = 2,
    currency: Optional[str] = None,
) -> OrderDiscount:
    """
    Validate ``code`` and compute the order-level discount.

    Raises:
        ApiError 400: If the coupon cannot be used for this order
    """
    validation = await validate_coupon(
        session,
        tenant_id,
        code,
        subtotal,
        customer_id=customer_id,
        product_ids=product_ids,
        category_ids=category_ids,
        places=places,
        currency=currency,
    )
    if not validation.valid or validation.coupon is None:
        status_code = status.HTTP_409_CONFLICT if validation.code == "USAGE_LIMIT_EXCEEDED" else status.HTTP_400_BAD_REQUEST
        raise ApiError(status_code, validation.code or "INVALID_CODE", validation.error or "Invalid coupon")

    coupon = validation.coupon
    subtotal = to_decimal(subtotal)
    shipping_cost = to_decimal(shipping_cost)
    discount = validation.discount_amount
    free_shipping = CouponType(coupon.type) == CouponType.FREE_SHIPPING
    if free_shipping:
        discount = shipping_cost

    original = subtotal + shipping_cost
    return OrderDiscount(
        coupon_id=coupon.id,
        coupon_code=coupon.code,
        discount_type=CouponType(coupon.type),
        discount_amount=discount,
        original_amount=original,
        final_amount=max(Decimal("0"), original - discount),
        free_shipping=free_shipping,
    )


async def record_coupon_usage(
    session: AsyncSession,
    tenant_id: int,
    coupon_id: int,
    order_id: int,
    discount_amount: Number,
    customer_id: Optional[int] = None,
) -> CouponUsage:
    coupon = await get_coupon(session, tenant_id, coupon_id)
    coupon.used_count = (coupon.used_count or 0) + 1

    usage = CouponUsage(
        coupon_id=coupon.id,
        tenant_id=tenant_id,
        order_id=order_id,
        customer_id=customer_id,
        discount_amount=to_decimal(discount_amount),
        used_at=utc_now(),
    )
    session.add(usage)
    await session.flush()
    logger.info(f"Coupon {coupon.code} used on order {order_id} (tenant {tenant_id})")
    return usage


# ============================================================================
# ANALYTICS
# ============================================================================

async def get_coupon_analytics(session: AsyncSession, tenant_id: int) -> dict:
    total_coupons = (
        await session.execute(
            select(func.count()).select_from(Coupon).where(Coupon.tenant_id == tenant_id)
        )
    ).scalar_one()
    active_coupons = (
        await session.execute(
            select(func.count()).select_from(Coupon).where(
                Coupon.tenant_id == tenant_id, Coupon.is_active.is_(True)
            )
        )
    ).scalar_one()
    total_usage = (
        await session.execute(
            select(func.coalesce(func.sum(Coupon.used_count), 0)).where(Coupon.tenant_id == tenant_id)
        )
    ).scalar_one()
    total_discount = (
        await session.execute(
            select(func.coalesce(func.sum(CouponUsage.discount_amount), 0)).where(
                CouponUsage.tenant_id == tenant_id
            )
        )
    ).scalar_one()

    top = await session.execute(
        scoped_select(Coupon, tenant_id)
        .where(Coupon.used_count > 0)
        .order_by(Coupon.used_count.desc(), Coupon.id)
        .limit(5)
    )

    return {
        "total_coupons": total_coupons,
        "active_coupons": active_coupons,
        "total_usage": int(total_usage or 0),
        "total_discount_given": float(to_decimal(total_discount or 0)),
        "top_coupons": [
            {"id": c.id, "code": c.code, "name": c.name, "used_count": c.used_count}
            for c in top.scalars().all()
        ],
    }
