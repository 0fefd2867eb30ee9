"""
Valuation service.

Resolves an asset's current price in SOL through a cache chain:

    in-process cache (~3s) -> Redis ``price:<asset>`` (~10s) -> authoritative fetch

The authoritative source is the pump.fun bonding curve account, read from a
primary RPC endpoint with a fixed-delay retry budget and then once from a
fallback endpoint. Once a curve reports ``complete`` the asset is remembered as
graduated and later lookups go to the DEX price API instead, falling back to
the position's entry price while the DEX has no price indexed.

DEX quotes far away from the last reserve-ratio baseline are flagged
``anomalous`` and still returned: the exit engine prefers a suspicious price
to none at all.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Optional, Protocol

from redis.exceptions import RedisError

from pumpbot.config import RpcConfig, ValuationConfig
from pumpbot.constants import GRADUATED_KEY, PRICE_CACHE_KEY
from pumpbot.core.bonding_curve import BondingCurveState
from pumpbot.core.dex_price_client import JupiterPriceClient
from pumpbot.core.models import PriceQuote, PriceSource, ValueQuote
from pumpbot.core.price_cache import PriceCache
from pumpbot.exceptions import NetworkException, ValuationException
from pumpbot.utils.retry import retry_call

EntryPriceLookup = Callable[[str], Awaitable[Optional[float]]]

RETRYABLE = (NetworkException, ValuationException)


class CurveAccountSource(Protocol):
    name: str

    async def fetch_account(self, mint: str) -> bytes: ...

    async def close(self) -> None: ...


def is_anomalous(price: float, baseline: float, factor: float = 100.0) -> bool:
    """True when ``price`` lies outside [baseline / factor, baseline * factor]."""
    if baseline <= 0:
        return False
    return price > baseline * factor or price < baseline / factor


class ValuationService:
    def __init__(
        self,
        config: ValuationConfig,
        rpc: RpcConfig,
        primary: CurveAccountSource,
        fallback: CurveAccountSource | None = None,
        dex: JupiterPriceClient | None = None,
        redis=None,
        entry_price_lookup: EntryPriceLookup | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.rpc = rpc
        self.primary = primary
        self.fallback = fallback
        self.dex = dex
        self.redis = redis
        self.entry_price_lookup = entry_price_lookup
        self.logger = logging.getLogger("pumpbot.valuation")
        self._cache = PriceCache(ttl=config.memory_ttl_sec, clock=clock)
        self._graduated: set[str] = set()
        self._baselines: dict[str, float] = {}

    async def get_price(self, asset: str, force_fresh: bool = False) -> PriceQuote | None:
        """
        Current price quote for ``asset``.

        Returns None when no source could produce a price; callers must treat
        that as "no valuation available", never as zero.
        """
        if not force_fresh:
            cached = await self._get_cached(asset)
            if cached is not None:
                return cached

        if await self.is_graduated(asset):
            quote = await self._graduated_quote(asset)
        else:
            quote = await self._curve_quote(asset)

        # Entry-price fallbacks and the final curve read of a graduating token
        # are not market data worth sharing
        if quote is not None and (quote.source == PriceSource.DEX or not quote.graduated):
            await self._set_cached(quote)
        return quote

    async def calculate_value(self, asset: str, token_amount: float, force_fresh: bool = False) -> ValueQuote | None:
        quote = await self.get_price(asset, force_fresh=force_fresh)
        if quote is None:
            return None
        return ValueQuote(
            sol_value=token_amount * quote.price,
            price=quote.price,
            source=quote.source,
            graduated=quote.graduated,
            anomalous=quote.anomalous,
        )

    async def is_graduated(self, asset: str) -> bool:
        if asset in self._graduated:
            return True
        if self.redis is None:
            return False
        try:
            flagged = await self.redis.exists(GRADUATED_KEY.format(asset=asset))
        except RedisError as e:
            self.logger.debug("Graduation lookup failed for %s: %s", asset[:8], e)
            return False
        if flagged:
            self._graduated.add(asset)
        return bool(flagged)

    async def mark_graduated(self, asset: str) -> None:
        if asset not in self._graduated:
            self.logger.info("🎓 GRADUATED %s - switching to DEX pricing", asset[:8])
        self._graduated.add(asset)
        self._cache.invalidate(asset)
        if self.redis is None:
            return
        try:
            await self.redis.set(GRADUATED_KEY.format(asset=asset), "1", ex=self.config.graduated_ttl_sec)
        except RedisError as e:
            self.logger.warning("Could not persist graduation flag for %s: %s", asset[:8], e)

    def get_stats(self) -> dict:
        self._cache.cleanup_expired()
        stats = self._cache.get_stats()
        stats["graduated"] = len(self._graduated)
        return stats

    async def close(self) -> None:
        await self.primary.close()
        if self.fallback is not None:
            await self.fallback.close()
        if self.dex is not None:
            await self.dex.close()

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def _curve_quote(self, asset: str) -> PriceQuote | None:
        state = await self._fetch_curve(asset)
        if state is None:
            return None

        # The reserve ratio is both the price and the baseline, so curve quotes
        # are never anomalous; the baseline is kept to check later DEX quotes
        price = state.reserve_price
        self._baselines[asset] = price

        if state.complete:
            await self.mark_graduated(asset)

        return PriceQuote(
            asset=asset,
            price=price,
            source=PriceSource.CURVE,
            graduated=state.complete,
            anomalous=False,
            baseline=price,
        )

    async def _fetch_curve(self, asset: str) -> BondingCurveState | None:
        try:
            return await retry_call(
                self._read_state, self.primary, asset,
                max_attempts=self.rpc.max_retries,
                delay=self.rpc.retry_delay_sec,
                backoff=1.0,
                exceptions=RETRYABLE,
            )
        except RETRYABLE as e:
            self.logger.warning("Primary RPC exhausted for %s: %s", asset[:8], e)

        if self.fallback is None:
            return None

        try:
            state = await self._read_state(self.fallback, asset)
        except RETRYABLE as e:
            self.logger.error("❌ No valuation for %s, fallback RPC failed: %s", asset[:8], e)
            return None

        self.logger.info("Price for %s served by fallback RPC", asset[:8])
        return state

    async def _read_state(self, source: CurveAccountSource, asset: str) -> BondingCurveState:
        data = await source.fetch_account(asset)
        return BondingCurveState.from_bytes(data)

    async def _graduated_quote(self, asset: str) -> PriceQuote | None:
        price = await self.dex.get_price_in_sol(asset) if self.dex is not None else None
        if price is not None and price > 0:
            baseline = self._baselines.get(asset)
            anomalous = baseline is not None and is_anomalous(price, baseline, self.config.anomaly_factor)
            if anomalous:
                self.logger.warning(
                    "⚠️ Anomalous DEX price for %s: %.12f (last curve %.12f)", asset[:8], price, baseline
                )
            return PriceQuote(
                asset=asset,
                price=price,
                source=PriceSource.DEX,
                graduated=True,
                anomalous=anomalous,
                baseline=baseline,
            )

        entry_price = await self.entry_price_lookup(asset) if self.entry_price_lookup else None
        if entry_price:
            self.logger.warning("No DEX price for graduated %s, using entry price", asset[:8])
            return PriceQuote(asset=asset, price=entry_price, source=PriceSource.FALLBACK_ENTRY, graduated=True)

        self.logger.warning("No price source available for graduated %s", asset[:8])
        return None

    # ------------------------------------------------------------------
    # Cache chain
    # ------------------------------------------------------------------

    async def _get_cached(self, asset: str) -> PriceQuote | None:
        quote = self._cache.get(asset)
        if quote is not None:
            return quote
        if self.redis is None:
            return None

        try:
            raw = await self.redis.get(PRICE_CACHE_KEY.format(asset=asset))
        except RedisError as e:
            self.logger.debug("Shared price cache unavailable: %s", e)
            return None
        if not raw:
            return None

        try:
            quote = PriceQuote.from_json(raw)
        except (ValueError, KeyError, TypeError):
            self.logger.debug("Discarding malformed cached price for %s", asset[:8])
            return None

        self._cache.set(asset, quote)
        return quote

    async def _set_cached(self, quote: PriceQuote) -> None:
        self._cache.set(quote.asset, quote)
        if self.redis is None:
            return
        try:
            await self.redis.set(
                PRICE_CACHE_KEY.format(asset=quote.asset),
                quote.to_json(),
                ex=self.config.shared_ttl_sec,
            )
        except RedisError as e:
            self.logger.debug("Could not write shared price cache: %s", e)
