"""Tests for RateSource and FixedRateSource."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from app.services.accrual.rate_source import FixedRateSource, RateSource
from app.utils.exceptions import RateFeedUnavailableError

FEED_URL = "http://rates.invalid/rates/{token}"


class TestParseRate:
    """Tests for payload parsing."""

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"supplyRate": 0.0425}, 425),
            ({"supplyRate": "0.1"}, 1000),
            ({"supplyRate": 0}, 0),
            ({"supplyRate": 1}, 10_000),
            ({"supplyRate": 0.04259}, 425),
        ],
    )
    def test_valid_payloads(self, payload, expected):
        """Fractions are converted to floored basis points."""
        assert RateSource.parse_rate(payload) == expected

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            {},
            {"rate": 0.05},
            {"supplyRate": None},
            {"supplyRate": True},
            {"supplyRate": "abc"},
            {"supplyRate": float("nan")},
            {"supplyRate": float("inf")},
            {"supplyRate": -0.01},
            {"supplyRate": 1.5},
        ],
    )
    def test_malformed_payloads(self, payload):
        """Malformed or out-of-range payloads are feed failures."""
        with pytest.raises(RateFeedUnavailableError):
            RateSource.parse_rate(payload)


class TestGetCurrentRate:
    """Tests for the fallback and cache behaviour."""

    @pytest.mark.asyncio
    async def test_feed_value_used(self):
        """A healthy feed value is returned."""
        source = RateSource(FEED_URL)
        with patch.object(source, "fetch_rate", AsyncMock(return_value=425)) as fetch:
            assert await source.get_current_rate("usdc") == 425
        fetch.assert_awaited_once_with("USDC")

    @pytest.mark.asyncio
    async def test_fallback_on_feed_error(self):
        """Feed errors fall back to the default rate."""
        source = RateSource(FEED_URL, fallback_rate_bps=1000)
        failing = AsyncMock(side_effect=RateFeedUnavailableError("HTTP 500"))
        with patch.object(source, "fetch_rate", failing):
            assert await source.get_current_rate("USDC") == 1000

    @pytest.mark.asyncio
    async def test_fallback_on_timeout(self):
        """A feed slower than the timeout falls back."""
        source = RateSource(FEED_URL, timeout_seconds=0.01, fallback_rate_bps=1000)

        async def slow_fetch(token):
            await asyncio.sleep(1)
            return 425

        with patch.object(source, "fetch_rate", slow_fetch):
            assert await source.get_current_rate("USDC") == 1000

    @pytest.mark.asyncio
    async def test_empty_url_uses_fallback(self):
        """Without a feed URL the fallback is returned without a request."""
        source = RateSource("", fallback_rate_bps=800)
        fetch = AsyncMock(return_value=425)
        with patch.object(source, "fetch_rate", fetch):
            assert await source.get_current_rate("USDC") == 800
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_template_field_raises(self):
        """A template field other than {token} is a feed failure."""
        source = RateSource("http://rates.invalid/{token}?chain={chain}")

        with pytest.raises(RateFeedUnavailableError):
            await source.fetch_rate("USDC")
        assert source._session is None

    @pytest.mark.asyncio
    async def test_unknown_template_field_falls_back(self):
        """A broken template never escapes get_current_rate."""
        source = RateSource("http://rates.invalid/{token}/{0}", fallback_rate_bps=700)

        assert await source.get_current_rate("USDC") == 700
        assert source._session is None

    @pytest.mark.asyncio
    async def test_cache_hit(self):
        """A cached quote is served without another request."""
        source = RateSource(FEED_URL, cache_ttl_seconds=60)
        fetch = AsyncMock(return_value=425)
        with patch.object(source, "fetch_rate", fetch):
            await source.get_current_rate("USDC")
            assert await source.get_current_rate("usdc") == 425
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_cache_disabled(self):
        """TTL 0 queries the feed every time."""
        source = RateSource(FEED_URL, cache_ttl_seconds=0)
        fetch = AsyncMock(side_effect=[425, 430])
        with patch.object(source, "fetch_rate", fetch):
            assert await source.get_current_rate("USDC") == 425
            assert await source.get_current_rate("USDC") == 430

    @pytest.mark.asyncio
    async def test_cache_expiry(self):
        """Expired quotes are fetched again."""
        source = RateSource(FEED_URL, cache_ttl_seconds=60)
        fetch = AsyncMock(side_effect=[425, 430])
        with patch.object(source, "fetch_rate", fetch):
            assert await source.get_current_rate("USDC") == 425
            rate_bps, _ = source._cache["USDC"]
            source._cache["USDC"] = (rate_bps, 0.0)
            assert await source.get_current_rate("USDC") == 430

    @pytest.mark.asyncio
    async def test_fallback_not_cached(self):
        """After a failure the next call retries the feed."""
        source = RateSource(FEED_URL, cache_ttl_seconds=60, fallback_rate_bps=1000)
        fetch = AsyncMock(side_effect=[RateFeedUnavailableError("down"), 425])
        with patch.object(source, "fetch_rate", fetch):
            assert await source.get_current_rate("USDC") == 1000
            assert await source.get_current_rate("USDC") == 425

    @pytest.mark.asyncio
    async def test_close_without_session(self):
        """Closing an unused source is a no-op."""
        source = RateSource(FEED_URL)
        await source.close()


class TestFixedRateSource:
    """Tests for FixedRateSource."""

    @pytest.mark.asyncio
    async def test_returns_fixed_rate(self):
        """Every token gets the configured rate."""
        source = FixedRateSource(750)
        assert await source.get_current_rate("USDC") == 750
        assert await source.get_current_rate("DAI") == 750
        await source.close()
