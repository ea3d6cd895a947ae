"""
Fixed window rate limiting.

Each route class has a limit string such as "100/min". Time is divided into
windows of the configured length, identified by
``floor(epoch_seconds / window_seconds)``. Counting is delegated to the
store's atomic conditional increment, so concurrent handlers never admit more
than ``limit`` requests per actor, route class and window.
"""

import logging
import math
from datetime import datetime

from .config.schema import RateLimitsConfig
from .exceptions import RateLimitError
from .store import AdminStore
from .types import RateLimitResult
from .utils import actor_key_for, parse_limit_string

logger = logging.getLogger(__name__)

DEFAULT_ROUTE_CLASS = "default"


class RateLimiter:
    """Per-actor fixed window rate limiter backed by an AdminStore."""

    def __init__(self, store: AdminStore, config: RateLimitsConfig | None = None):
        """
        Initialize the rate limiter.

        Args:
            store: Store providing atomic conditional increments
            config: Limits per route class and the actor key strategy
        """
        self.store = store
        self.config = config or RateLimitsConfig()
        self._limits = {
            route_class: parse_limit_string(limit_str)
            for route_class, limit_str in self.config.route_classes.items()
        }

    def limit_for(self, route_class: str) -> tuple[str, int, int]:
        """
        Look up the limit of a route class.

        Unknown route classes fall back to the default class.

        Returns:
            Tuple of (effective route class, limit, window seconds)
        """
        if route_class not in self._limits:
            route_class = DEFAULT_ROUTE_CLASS
        limit, window_seconds = self._limits[route_class]
        return route_class, limit, window_seconds

    def actor_key(self, identity_id: str | None, ip: str) -> str:
        return actor_key_for(identity_id, ip, self.config.actor_key_strategy)

    async def allow(
        self, actor_key: str, now: datetime, route_class: str = DEFAULT_ROUTE_CLASS
    ) -> RateLimitResult:
        """
        Count one request for ``actor_key`` and report whether it is admitted.

        Args:
            actor_key: Identity or IP derived key, see ``actor_key_for``
            now: Instant of the request
            route_class: Rate limit tier of the requested action

        Returns:
            Result with remaining quota, the window reset time and, when the
            request is denied, the time until the window ends
        """
        route_class, limit, window_seconds = self.limit_for(route_class)

        window_id = math.floor(now.timestamp() / window_seconds)
        reset_at = datetime.fromtimestamp((window_id + 1) * window_seconds, now.tzinfo)

        allowed, count = await self.store.conditional_increment(
            f"rate:{route_class}:{actor_key}", limit, window_id, reset_at
        )

        if not allowed:
            logger.debug(
                f"Rate limit reached for {actor_key} on {route_class} ({limit}/{window_seconds}s)"
            )

        return RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            route_class=route_class,
            retry_after=None if allowed else reset_at - now,
        )

    async def enforce(
        self, actor_key: str, now: datetime, route_class: str = DEFAULT_ROUTE_CLASS
    ) -> RateLimitResult:
        """Like ``allow`` but raises RateLimitError when the request is denied."""
        result = await self.allow(actor_key, now, route_class)
        if not result.allowed:
            raise RateLimitError(
                result.retry_after,
                {"route_class": result.route_class, "limit": result.limit},
            )
        return result
