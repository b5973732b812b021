"""
Custom domains for storefronts.

A store can attach hostnames up to its plan's ``max_domains``. A hostname only
routes traffic (see ``resolve_tenant_from_domain``) once the platform has
marked it verified.
"""

import logging
import re
from typing import Sequence

from fastapi import status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.responses import ApiError, ErrorCodes
from ..limits import enforce_tenant_limit
from ..models import Domain, Tenant, ensure_aware
from ..tenancy import normalize_host, require_owned, scoped_select

logger = logging.getLogger(__name__)

HOSTNAME_PATTERN = re.compile(r"^(?=.{4,255}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")


class DomainCreate(BaseModel):
    hostname: str = Field(..., min_length=4, max_length=255)

    @field_validator("hostname")
    @classmethod
    def normalize_hostname(cls, value: str) -> str:
        hostname = normalize_host(value)
        if not HOSTNAME_PATTERN.match(hostname):
            raise ValueError("hostname must be a fully qualified domain name")
        return hostname


def domain_to_dict(domain: Domain) -> dict:
    return {
        "id": domain.id,
        "hostname": domain.hostname,
        "verified": domain.verified,
        "created_at": ensure_aware(domain.created_at).isoformat(),
    }


async def list_domains(session: AsyncSession, tenant_id: int) -> Sequence[Domain]:
    result = await session.execute(scoped_select(Domain, tenant_id).order_by(Domain.hostname))
    return result.scalars().all()


async def add_domain(session: AsyncSession, tenant: Tenant, hostname: str) -> Domain:
    await enforce_tenant_limit(session, tenant, "domains")

    # Hostnames are unique across the platform, not per tenant
    existing = await session.execute(select(Domain.id).where(Domain.hostname == hostname))
    if existing.scalar_one_or_none() is not None:
        raise ApiError(
            status.HTTP_409_CONFLICT,
            ErrorCodes.CONFLICT,
            f"Domain {hostname} is already in use",
            {"hostname": hostname},
        )

    domain = Domain(tenant_id=tenant.id, hostname=hostname, verified=False)
    session.add(domain)
    await session.flush()
    logger.info(f"Domain {hostname} added to tenant {tenant.id} (pending verification)")
    return domain


async def remove_domain(session: AsyncSession, tenant_id: int, domain_id: int) -> Domain:
    domain = await require_owned(session, Domain, domain_id, tenant_id)
    if not domain:
        raise ApiError.not_found("Domain")
    await session.delete(domain)
    await session.flush()
    logger.info(f"Domain {domain.hostname} removed from tenant {tenant_id}")
    return domain


async def verify_domain(session: AsyncSession, domain_id: int) -> Domain:
    domain = await session.get(Domain, domain_id)
    if not domain:
        raise ApiError.not_found("Domain")
    domain.verified = True
    await session.flush()
    logger.info(f"Domain {domain.hostname} verified for tenant {domain.tenant_id}")
    return domain
