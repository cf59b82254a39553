"""Rate limiting built on slowapi / limits.

``limiter`` is the slowapi decorator-style limiter for the API-key endpoints.
``TieredRateLimiter`` applies the composed global / per-IP / strict tiers the
subscription endpoints need and reports the window state for response headers.
"""

import logging
import time
from dataclasses import dataclass

from limits import RateLimitItem, parse
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter
from slowapi import Limiter
from starlette.requests import Request

from app.core.config import settings
from app.core.exceptions import RateLimitError
from app.core.logging_config import log_security_event

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Extract the real client IP behind Cloudflare / reverse proxy.

    ``CF-Connecting-IP`` is set by the edge and overwrites any client value,
    so it takes precedence over the proxy-appended headers.
    """
    return (
        request.headers.get("CF-Connecting-IP")
        or request.headers.get("X-Real-IP")
        or request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        or (request.client.host if request.client else "unknown")
    )


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.rate_limit_enabled,
    storage_uri=settings.rate_limit_storage_uri,
)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a single tier check."""

    success: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds when the window resets

    def headers(self, retry_after: int | None = None) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after)
        return headers


class TieredRateLimiter:
    """Fixed-window counters keyed by client IP or a global key.

    Counters live in a ``limits`` storage; ``memory://`` keeps them in-process,
    a ``redis://`` URI shares them between instances. With the memory storage
    the increment and the comparison happen in one synchronous call.
    """

    def __init__(
        self,
        storage_uri: str = "memory://",
        *,
        enabled: bool = True,
        global_limit: str = "1000/minute",
        per_ip_limit: str = "5/minute",
        strict_limit: str = "1/15minutes",
        unsubscribe_limit: str = "5/minute",
    ) -> None:
        self.enabled = enabled
        self.storage: Storage = storage_from_string(storage_uri)
        self.strategy = FixedWindowRateLimiter(self.storage)
        self.global_item = parse(global_limit)
        self.per_ip_item = parse(per_ip_limit)
        self.strict_item = parse(strict_limit)
        self.unsubscribe_item = parse(unsubscribe_limit)

    def check(self, item: RateLimitItem, key: str, namespace: str = "newsletter") -> RateLimitResult | None:
        """Count one hit against ``item`` for ``key``.

        Returns ``None`` when the limiter cannot produce a result (disabled or
        storage failure); callers treat that as "allow".
        """
        if not self.enabled:
            return None
        try:
            allowed = self.strategy.hit(item, namespace, key)
            reset_time, remaining = self.strategy.get_window_stats(item, namespace, key)
        except Exception:
            logger.exception("Rate limit storage failure for %s", namespace)
            return None
        return RateLimitResult(
            success=allowed,
            limit=item.amount,
            remaining=max(0, remaining),
            reset=int(reset_time),
        )

    def reset(self) -> None:
        self.storage.reset()

    # --- Composed policies ---

    def enforce_subscribe(self, client_ip: str, user_agent: str | None = None) -> RateLimitResult | None:
        """Apply global → per-IP → strict tiers for the subscribe endpoint.

        Raises :class:`RateLimitError` on violation. Returns the per-IP result
        (or ``None`` when limiting is unavailable).
        """
        global_result = self.check(self.global_item, "global")
        if global_result is not None and not global_result.success:
            log_security_event(
                "GLOBAL_RATE_LIMIT_EXCEEDED", ip=client_ip, userAgent=user_agent
            )
            raise RateLimitError(
                "Service temporarily unavailable. Please try again later.",
                error="SERVICE_UNAVAILABLE",
                status_code=503,
                headers=global_result.headers(retry_after=_seconds_until(global_result.reset)),
            )

        result = self.check(self.per_ip_item, client_ip)
        if result is None:
            logger.warning("Rate limit check returned no result, skipping rate limiting")
            return None
        if result.success:
            return result

        strict = self.check(self.strict_item, client_ip, namespace="newsletter-strict")
        if strict is not None and not strict.success:
            log_security_event(
                "STRICT_RATE_LIMIT_EXCEEDED", ip=client_ip, userAgent=user_agent
            )
            raise RateLimitError(
                "Too many requests from your IP. Please try again in 15 minutes.",
                error="IP_BLOCKED",
                headers=strict.headers(retry_after=int(self.strict_item.get_expiry())),
            )

        log_security_event("RATE_LIMIT_EXCEEDED", ip=client_ip, userAgent=user_agent)
        raise RateLimitError(
            headers=result.headers(retry_after=int(self.per_ip_item.get_expiry())),
        )

    def enforce_unsubscribe(self, client_ip: str) -> RateLimitResult | None:
        result = self.check(self.unsubscribe_item, client_ip, namespace="unsubscribe")
        if result is None:
            logger.warning("Rate limit check returned no result, skipping rate limiting")
            return None
        if not result.success:
            logger.warning("Rate limit exceeded for unsubscribe request from IP: %s", client_ip)
            raise RateLimitError(
                headers=result.headers(retry_after=int(self.unsubscribe_item.get_expiry())),
            )
        return result


def _seconds_until(epoch_seconds: int) -> int:
    return max(1, epoch_seconds - int(time.time()))


_rate_limiter: TieredRateLimiter | None = None


def get_rate_limiter() -> TieredRateLimiter:
    """Process-wide tiered limiter built from settings."""
    global _rate_limiter  # noqa: PLW0603
    if _rate_limiter is None:
        _rate_limiter = TieredRateLimiter(
            settings.rate_limit_storage_uri,
            enabled=settings.rate_limit_enabled,
            global_limit=settings.rate_limit_global,
            per_ip_limit=settings.rate_limit_per_ip,
            strict_limit=settings.rate_limit_strict,
            unsubscribe_limit=settings.rate_limit_unsubscribe,
        )
    return _rate_limiter
