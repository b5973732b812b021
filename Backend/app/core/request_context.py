"""
Request Context Resolution Module

This module is the single place where identity is resolved. All API routes
use it for authentication and tenant authorization.

ARCHITECTURE:
    1. resolve_request_context() extracts identity from the request
    2. It verifies the Bearer JWT (see app.jwt_auth)
    3. It preloads tenant memberships and the platform role
    4. All authorization checks use the resulting RequestContext

AUTH METHODS:
    - JWT Bearer token (always)
    - X-User-Id header, only when DISABLE_AUTH_CHECKS is set (local development)
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from fastapi import Depends, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..jwt_auth import verify_access_token
from ..models import PlatformRole, PlatformUser, TenantRole, TenantUser
from .config import get_settings
from .db import get_session
from .responses import ApiError, ErrorCodes

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """
    Resolved request context containing identity and access information.
    """
    user_id: str

    # 'jwt', 'header' or 'none'
    auth_method: str
    is_authenticated: bool = True

    accessible_tenant_ids: list[int] = field(default_factory=list)
    roles_by_tenant: dict[int, str] = field(default_factory=dict)
    platform_role: Optional[str] = None

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_super_admin(self) -> bool:
        return self.platform_role == PlatformRole.SUPER_ADMIN.value


def _role_values(roles: Iterable) -> list[str]:
    return [r.value if hasattr(r, "value") else str(r).upper() for r in roles]


async def resolve_request_context(
    request: Request,
    session: AsyncSession,
    require_auth: bool = True,
) -> RequestContext:
    """
    Resolve the identity and context from a request.

    Raises:
        ApiError 401: If require_auth=True and no valid identity found
    """
    settings = get_settings()
    user_id: Optional[str] = None
    auth_method = "none"

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        payload = verify_access_token(auth_header[7:])
        user_id = payload.get("sub")
        auth_method = "jwt"
    elif settings.disable_auth_checks:
        header_user = request.headers.get("X-User-Id", "").strip()
        if header_user:
            logger.warning(f"Dev mode: using X-User-Id header: {header_user}")
            user_id = header_user
            auth_method = "header"

    if not user_id:
        if require_auth:
            logger.info(f"Authentication required for {request.method} {request.url.path}")
            raise ApiError(
                status.HTTP_401_UNAUTHORIZED,
                ErrorCodes.AUTHENTICATION_REQUIRED,
                "Authentication required. Please sign in.",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return RequestContext(user_id="", auth_method="none", is_authenticated=False)

    ctx = RequestContext(
        user_id=user_id,
        auth_method=auth_method,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    await _populate_access_info(ctx, session)
    return ctx


async def _populate_access_info(ctx: RequestContext, session: AsyncSession) -> None:
    """Load tenant memberships and platform role for the user."""
    result = await session.execute(select(TenantUser).where(TenantUser.user_id == ctx.user_id))
    memberships = result.scalars().all()

    ctx.accessible_tenant_ids = [m.tenant_id for m in memberships]
    ctx.roles_by_tenant = {m.tenant_id: m.role.upper() for m in memberships}

    platform = await session.execute(select(PlatformUser).where(PlatformUser.user_id == ctx.user_id))
    platform_user = platform.scalar_one_or_none()
    ctx.platform_role = platform_user.role.upper() if platform_user else None

    logger.debug(
        f"User {ctx.user_id} has access to {len(ctx.accessible_tenant_ids)} tenants, "
        f"platform_role={ctx.platform_role}"
    )


def require_tenant_access(
    ctx: RequestContext,
    tenant_id: int,
    allowed_roles: Optional[Iterable[TenantRole]] = None,
) -> str:
    """
    Check that the user may act on a tenant.

    - Platform SUPER_ADMINs may access every tenant
    - Otherwise the user must be a member of the tenant
    - If allowed_roles is given, the member's role must be one of them

    Returns:
        The user's role in the tenant (or SUPER_ADMIN)

    Raises:
        ApiError 403: If the user doesn't have access
    """
    if ctx.is_super_admin:
        return PlatformRole.SUPER_ADMIN.value

    if tenant_id not in ctx.accessible_tenant_ids:
        logger.warning(f"Authorization failed: User {ctx.user_id} is not a member of tenant {tenant_id}")
        raise ApiError(
            status.HTTP_403_FORBIDDEN,
            ErrorCodes.NOT_TENANT_MEMBER,
            "Access denied. You are not a member of this store.",
        )

    user_role = ctx.roles_by_tenant.get(tenant_id, "")

    if allowed_roles:
        allowed_values = _role_values(allowed_roles)
        if user_role not in allowed_values:
            logger.warning(
                f"Authorization failed: User {ctx.user_id} has role {user_role}, "
                f"needs one of {allowed_values} for tenant {tenant_id}"
            )
            raise ApiError(
                status.HTTP_403_FORBIDDEN,
                ErrorCodes.AUTHORIZATION_DENIED,
                f"Access denied. Required role: {', '.join(allowed_values)}. Your role: {user_role}.",
            )

    return user_role


def require_platform_role(ctx: RequestContext, allowed_roles: Iterable[PlatformRole]) -> str:
    allowed_values = _role_values(allowed_roles)
    if ctx.platform_role not in allowed_values:
        logger.warning(
            f"Platform authorization failed: User {ctx.user_id} has role {ctx.platform_role}, "
            f"needs one of {allowed_values}"
        )
        raise ApiError(
            status.HTTP_403_FORBIDDEN,
            ErrorCodes.AUTHORIZATION_DENIED,
            "Access denied. Platform administrator role required.",
        )
    return ctx.platform_role


async def get_request_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> RequestContext:
    """
    FastAPI dependency for getting request context.

        @router.get("/something")
        async def handler(ctx: RequestContext = Depends(get_request_context)):
            ...
    """
    return await resolve_request_context(request, session, require_auth=True)

