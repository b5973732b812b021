"""
Rate Limiting

In-memory sliding-window limits, keyed by client IP and limiter name.

Named limiters:
- auth:      5 requests per 15 minutes
- api:       100 requests per 15 minutes (merchant admin API)
- public:    1000 requests per 15 minutes (storefront)
- sensitive: 10 requests per hour (checkout, coupon validation)

Usage:
    from .rate_limiter import rate_limit

    @router.post("/checkout", dependencies=[Depends(rate_limit("sensitive"))])
    async def checkout(...):
        ...
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware

from .core.config import get_settings
from .core.responses import ApiError, ErrorCodes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


RATE_LIMITS: dict[str, RateLimitRule] = {
    "auth": RateLimitRule(max_requests=5, window_seconds=15 * 60),
    "api": RateLimitRule(max_requests=100, window_seconds=15 * 60),
    "public": RateLimitRule(max_requests=1000, window_seconds=15 * 60),
    "sensitive": RateLimitRule(max_requests=10, window_seconds=60 * 60),
}


def get_client_ip(request: Request) -> str:
    """
    Extract client IP from request.

    Proxy headers are checked in order (X-Forwarded-For, X-Real-IP,
    CF-Connecting-IP) before falling back to the socket peer.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, take the first one
        return forwarded.split(",")[0].strip()

    for header in ("X-Real-IP", "CF-Connecting-IP"):
        value = request.headers.get(header)
        if value:
            return value.strip()

    if request.client:
        return request.client.host

    return "unknown"


# ────────────────────────────────────────────────────────────────
# In-Memory Rate Limiter
# ────────────────────────────────────────────────────────────────

class RateLimiter:
    """
    Sliding-window rate limiter.

    Single process only; counters are lost on restart.
    """

    def __init__(self):
        # {client_ip: [(timestamp, limiter_name), ...]}
        self.requests: Dict[str, list] = defaultdict(list)
        self.cleanup_interval = 300
        self.last_cleanup = time.time()

    def _cleanup_old_requests(self):
        """Drop entries older than the longest window."""
        current_time = time.time()
        if current_time - self.last_cleanup < self.cleanup_interval:
            return

        cutoff = current_time - max(rule.window_seconds for rule in RATE_LIMITS.values())
        for ip in list(self.requests.keys()):
            self.requests[ip] = [(ts, name) for ts, name in self.requests[ip] if ts > cutoff]
            if not self.requests[ip]:
                del self.requests[ip]

        self.last_cleanup = current_time
        logger.debug(f"Rate limiter cleanup: {len(self.requests)} IPs tracked")

    def check(
        self,
        client_ip: str,
        name: str,
        rule: RateLimitRule,
        now: Optional[float] = None,
    ) -> Tuple[bool, dict]:
        """
        Check and record one request.

        Returns:
            (is_allowed, metadata); metadata has limit, remaining, reset_time
        """
        self._cleanup_old_requests()

        current_time = now if now is not None else time.time()
        window_start = current_time - rule.window_seconds
        recent = [ts for ts, n in self.requests[client_ip] if n == name and ts > window_start]

        is_allowed = len(recent) < rule.max_requests
        if is_allowed:
            self.requests[client_ip].append((current_time, name))
            recent.append(current_time)

        reset_time = min(recent) + rule.window_seconds if recent else current_time + rule.window_seconds
        metadata = {
            "limit": rule.max_requests,
            "remaining": max(0, rule.max_requests - len(recent)),
            "reset_time": int(reset_time),
            "total_requests": len(recent),
            "window_seconds": rule.window_seconds,
        }
        return is_allowed, metadata


_rate_limiter = RateLimiter()


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

def rate_limit(name: str):
    """
    Create a rate limit dependency for one of the named limiters.

    Raises:
        ApiError 429: When the client is over the limit
    """
    rule = RATE_LIMITS[name]

    async def dependency(request: Request) -> None:
        if not get_settings().rate_limit_enabled:
            return None

        client_ip = get_client_ip(request)
        is_allowed, metadata = _rate_limiter.check(client_ip, name, rule)

        headers = {
            "X-RateLimit-Limit": str(metadata["limit"]),
            "X-RateLimit-Remaining": str(metadata["remaining"]),
            "X-RateLimit-Reset": str(metadata["reset_time"]),
        }

        if not is_allowed:
            retry_after = max(0, metadata["reset_time"] - int(time.time()))
            logger.warning(
                f"[RATE_LIMIT] Blocked {name} request from {client_ip} to {request.url.path}: "
                f"{metadata['total_requests']}/{metadata['limit']} in {metadata['window_seconds']}s window"
            )
            raise ApiError(
                status.HTTP_429_TOO_MANY_REQUESTS,
                ErrorCodes.RATE_LIMIT_EXCEEDED,
                "Too many requests. Please try again later.",
                {"retry_after": retry_after, "limit": metadata["limit"], "window_seconds": metadata["window_seconds"]},
                headers={"Retry-After": str(retry_after), **headers},
            )

        # Picked up by RateLimitHeadersMiddleware
        request.state.rate_limit_headers = headers
        return None

    return dependency


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """Copy the headers stored by ``rate_limit`` onto the response."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        if hasattr(request.state, "rate_limit_headers"):
            for header, value in request.state.rate_limit_headers.items():
                response.headers[header] = value

        return response


# ────────────────────────────────────────────────────────────────
# Utility Functions
# ────────────────────────────────────────────────────────────────

def get_rate_limit_stats() -> dict:
    total_requests = sum(len(reqs) for reqs in _rate_limiter.requests.values())
    top_ips = sorted(_rate_limiter.requests.items(), key=lambda x: len(x[1]), reverse=True)[:10]

    return {
        "total_tracked_ips": len(_rate_limiter.requests),
        "total_tracked_requests": total_requests,
        "top_ips": [{"ip": ip, "request_count": len(reqs)} for ip, reqs in top_ips],
    }


def clear_rate_limits(ip_address: Optional[str] = None):
    """Clear rate limits for a specific IP or all IPs."""
    if ip_address:
        if ip_address in _rate_limiter.requests:
            del _rate_limiter.requests[ip_address]
            logger.info(f"Cleared rate limits for IP: {ip_address}")
    else:
        _rate_limiter.requests.clear()
        logger.info("Cleared all rate limits")
