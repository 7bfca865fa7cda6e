"""
Rate source.

Supplies the current annual supply rate of a token in basis points.
The live rate comes from an HTTP feed; any failure of the feed falls
back to a fixed default so that accrual never halts.
"""

import asyncio
import math
import time
from decimal import ROUND_FLOOR, Decimal, InvalidOperation

import aiohttp
from loguru import logger

from app.config.business_constants import (
    BPS_DENOMINATOR,
    DEFAULT_FALLBACK_RATE_BPS,
    MAX_BPS,
)
from app.config.operational_constants import (
    RATE_CACHE_TTL_SECONDS,
    RATE_FEED_TIMEOUT_SECONDS,
)
from app.utils.exceptions import RateFeedUnavailableError


class FixedRateSource:
    """Rate source that always returns the same rate."""

    def __init__(self, rate_bps: int = DEFAULT_FALLBACK_RATE_BPS) -> None:
        self.rate_bps = rate_bps

    async def get_current_rate(self, token: str) -> int:
        """Return the fixed rate for any token."""
        return self.rate_bps

    async def close(self) -> None:
        """Nothing to release."""


class RateSource:
    """
    HTTP rate feed client with fallback-on-failure.

    The feed is queried with GET on feed_url_template formatted with the
    token symbol and must answer {"supplyRate": <fraction>}, e.g. 0.0425
    for 4.25%. Successful quotes are cached per token; fallback values
    are never cached so the next call retries the feed.
    """

    def __init__(
        self,
        feed_url_template: str,
        timeout_seconds: float = RATE_FEED_TIMEOUT_SECONDS,
        fallback_rate_bps: int = DEFAULT_FALLBACK_RATE_BPS,
        cache_ttl_seconds: int = RATE_CACHE_TTL_SECONDS,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize rate source.

        Args:
            feed_url_template: Feed URL containing a {token} placeholder
            timeout_seconds: Upper bound on one feed call
            fallback_rate_bps: Rate used whenever the feed fails
            cache_ttl_seconds: Lifetime of a cached quote, 0 disables caching
            session: Optional shared aiohttp session (not closed by close())
        """
        self.feed_url_template = feed_url_template
        self.timeout_seconds = timeout_seconds
        self.fallback_rate_bps = fallback_rate_bps
        self.cache_ttl_seconds = cache_ttl_seconds
        self._session = session
        self._owns_session = session is None
        self._cache: dict[str, tuple[int, float]] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session if this instance created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_cached(self, token: str) -> int | None:
        if self.cache_ttl_seconds <= 0:
            return None

        cached = self._cache.get(token)
        if cached is None:
            return None

        rate_bps, expires_at = cached
        if time.monotonic() >= expires_at:
            del self._cache[token]
            return None
        return rate_bps

    def _store(self, token: str, rate_bps: int) -> None:
        if self.cache_ttl_seconds > 0:
            self._cache[token] = (rate_bps, time.monotonic() + self.cache_ttl_seconds)

    @staticmethod
    def parse_rate(payload: object) -> int:
        """
        Convert a feed payload into basis points.

        Args:
            payload: Decoded JSON body

        Returns:
            floor(supplyRate * 10000)

        Raises:
            RateFeedUnavailableError: If the payload is malformed
        """
        if not isinstance(payload, dict) or "supplyRate" not in payload:
            raise RateFeedUnavailableError("Rate feed payload has no supplyRate")

        raw = payload["supplyRate"]
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
            raise RateFeedUnavailableError(f"supplyRate is not numeric: {raw!r}")
        if isinstance(raw, float) and not math.isfinite(raw):
            raise RateFeedUnavailableError(f"supplyRate is not finite: {raw!r}")

        try:
            rate = Decimal(str(raw))
        except InvalidOperation as e:
            raise RateFeedUnavailableError(f"supplyRate is not numeric: {raw!r}") from e

        if not rate.is_finite():
            raise RateFeedUnavailableError(f"supplyRate is not finite: {raw!r}")

        rate_bps = int((rate * BPS_DENOMINATOR).to_integral_value(rounding=ROUND_FLOOR))
        if rate_bps < 0 or rate_bps > MAX_BPS:
            raise RateFeedUnavailableError(f"supplyRate out of range: {raw!r}")

        return rate_bps

    async def fetch_rate(self, token: str) -> int:
        """
        Query the feed for one token without any fallback.

        Args:
            token: Token symbol

        Returns:
            Annual rate in basis points

        Raises:
            RateFeedUnavailableError: On network error, timeout, non-200
                status, malformed payload or unusable URL template
        """
        try:
            url = self.feed_url_template.format(token=token)
        except (KeyError, IndexError, ValueError) as e:
            raise RateFeedUnavailableError(
                f"Rate feed URL template is invalid: {self.feed_url_template!r}"
            ) from e

        session = await self._get_session()

        try:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status != 200:
                    raise RateFeedUnavailableError(
                        f"Rate feed returned HTTP {response.status}"
                    )
                payload = await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            raise RateFeedUnavailableError(f"Rate feed request failed: {e}") from e

        return self.parse_rate(payload)

    async def get_current_rate(self, token: str) -> int:
        """
        Get current annual rate for a token.

        Never raises for feed problems: the fallback rate is returned
        instead and a warning is logged.

        Args:
            token: Token symbol

        Returns:
            Annual rate in basis points
        """
        token = token.upper()

        cached = self._get_cached(token)
        if cached is not None:
            return cached

        if not self.feed_url_template:
            return self.fallback_rate_bps

        try:
            rate_bps = await asyncio.wait_for(
                self.fetch_rate(token), timeout=self.timeout_seconds
            )
        except TimeoutError:
            logger.warning(
                f"Rate feed timed out after {self.timeout_seconds}s for {token}, "
                f"using fallback {self.fallback_rate_bps} bps"
            )
            return self.fallback_rate_bps
        except RateFeedUnavailableError as e:
            logger.warning(
                f"Rate feed unavailable for {token}: {e}, "
                f"using fallback {self.fallback_rate_bps} bps"
            )
            return self.fallback_rate_bps

        self._store(token, rate_bps)
        logger.debug(f"Rate feed quote for {token}: {rate_bps} bps")
        return rate_bps
