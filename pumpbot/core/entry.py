"""
Entry gating.

Watchers push candidate entries as JSON onto ``sniper_signals`` and
``copy_signals``. Each queue is drained by its own loop so a sniper signal
waiting out its momentum window never delays a copy entry.

A sniper signal first passes the static gates, then the asset is priced
across a sampling window (launch price, analysis delay, a few evenly spaced
samples) and only bought on strong multi-window momentum. Copy signals skip
the momentum gate. Rejected sniper signals drop their price history.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from pumpbot.config import EntryConfig
from pumpbot.constants import COPY_SIGNALS_KEY, SNIPER_SIGNALS_KEY
from pumpbot.core.analytics import TradeAnalytics
from pumpbot.core.execution import ExecutionClient
from pumpbot.core.models import Position, Strategy, now_ms
from pumpbot.core.momentum import MomentumAnalyzer
from pumpbot.core.notifier import TelegramNotifier
from pumpbot.core.position_store import PositionStore
from pumpbot.core.signals import ForceExitChannel
from pumpbot.core.valuation import ValuationService
from pumpbot.exceptions import ExecutionException, StateException

SIGNAL_QUEUES = {
    Strategy.SNIPER: SNIPER_SIGNALS_KEY,
    Strategy.COPY: COPY_SIGNALS_KEY,
}


@dataclass
class EntrySignal:
    asset: str
    strategy: Strategy
    symbol: str = ""
    source_wallet: str | None = None
    sol_amount: float | None = None  # Overrides the configured buy size
    twitter: str = ""
    bundle_sol: float = 0.0          # Creator bundle at launch (sniper)
    upvotes: int = 1                 # Tracked wallets buying (copy)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict, strategy: Strategy) -> "EntrySignal":
        """Parse a queued signal. Watchers may write camelCase or snake_case keys."""
        if not isinstance(data, dict):
            raise ValueError("signal must be a JSON object")

        def pick(*names, default=None):
            for name in names:
                if data.get(name) not in (None, ""):
                    return data[name]
            return default

        amount = pick("sol_amount", "copyAmount")
        return cls(
            asset=str(pick("asset", "mint", default="")),
            strategy=strategy,
            symbol=str(pick("symbol", default="")),
            source_wallet=pick("source_wallet", "walletAddress"),
            sol_amount=float(amount) if amount is not None else None,
            twitter=str(pick("twitter", default="")),
            bundle_sol=float(pick("bundle_sol", "bundleAmount", default=0.0)),
            upvotes=int(pick("upvotes", default=1)),
            metadata=data,
        )


@dataclass
class EntryCheck:
    ok: bool
    reason: str


class EntryService:
    """Gates entry signals, buys, and records the resulting position."""

    def __init__(
        self,
        config: EntryConfig,
        store: PositionStore,
        executor: ExecutionClient,
        valuation: ValuationService,
        momentum: MomentumAnalyzer,
        notifier: TelegramNotifier | None = None,
        force_exits: ForceExitChannel | None = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.executor = executor
        self.valuation = valuation
        self.momentum = momentum
        self.notifier = notifier
        self.force_exits = force_exits
        self.analytics = TradeAnalytics(store.redis, clock=clock)
        self._clock = clock
        self._sleep = sleep or self._wait
        self._stop = asyncio.Event()
        self.logger = logging.getLogger("pumpbot.entry")

    # ------------------------------------------------------------------
    # Queue consumers
    # ------------------------------------------------------------------

    async def run(self) -> None:
        self.logger.info("🚀 Entry consumers started (auto-trading %s)", "on" if self.config.enabled else "off")
        await asyncio.gather(self._consume(Strategy.SNIPER), self._consume(Strategy.COPY))
        self.logger.info("🛑 Entry consumers stopped")

    def stop(self) -> None:
        self._stop.set()

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _consume(self, strategy: Strategy) -> None:
        while not self._stop.is_set():
            try:
                handled = await self.poll_once(strategy)
            except Exception:
                self.logger.exception("%s signal processing failed", strategy.value)
                handled = False
            if not handled:
                await self._wait(self.config.poll_interval_sec)

    async def poll_once(self, strategy: Strategy) -> bool:
        """Pop and process one queued signal. False when the queue was empty."""
        raw = await self.store.redis.lpop(SIGNAL_QUEUES[strategy])
        if raw is None:
            return False
        try:
            signal = EntrySignal.from_dict(json.loads(raw), strategy)
        except (ValueError, TypeError) as e:
            self.logger.warning("Dropping malformed %s signal: %s", strategy.value, e)
            return True

        self.logger.info("🔥 Processing %s signal: %s %s", strategy.value, signal.asset[:8], signal.symbol)
        await self.enter(signal)
        return True

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    def _max_positions(self, strategy: Strategy) -> int:
        if strategy == Strategy.COPY:
            return self.config.copy_max_positions
        return self.config.sniper_max_positions

    def _buy_size(self, signal: EntrySignal) -> float:
        if signal.sol_amount:
            return signal.sol_amount
        if signal.strategy == Strategy.COPY:
            return self.config.copy_buy_sol
        return self.config.sniper_buy_sol

    async def check(self, signal: EntrySignal) -> EntryCheck:
        """Gates that need no price sampling, cheapest first."""
        if not self.config.enabled:
            return EntryCheck(False, "auto_trading_disabled")
        if not signal.asset or (signal.strategy == Strategy.COPY and not signal.source_wallet):
            return EntryCheck(False, "invalid_signal")

        if signal.strategy == Strategy.SNIPER:
            if self.config.require_twitter and "x.com" not in signal.twitter:
                return EntryCheck(False, "no_twitter")
            if signal.bundle_sol < self.config.min_bundle_sol:
                return EntryCheck(False, "bundle_too_low")
        elif signal.upvotes < self.config.min_wallets_to_buy:
            return EntryCheck(False, "not_enough_upvotes")

        if await self.store.in_cooldown(signal.asset):
            return EntryCheck(False, "cooldown_active")
        if await self.store.is_open(signal.asset):
            return EntryCheck(False, "already_in_position")
        if len(await self.store.get_open(signal.strategy)) >= self._max_positions(signal.strategy):
            return EntryCheck(False, "max_positions_reached")
        if signal.strategy == Strategy.COPY and self.force_exits is not None:
            if await self.force_exits.peek(signal.asset):
                return EntryCheck(False, "recent_force_exit")

        if self.config.max_daily_loss_sol > 0:
            realized = (await self.analytics.daily_stats()).total_pnl
            if realized < -self.config.max_daily_loss_sol:
                return EntryCheck(False, "max_daily_loss")

        return EntryCheck(True, "filters_passed")

    async def sample_window(self, asset: str) -> None:
        """Record the launch price, wait out the analysis delay, then sample at a fixed interval."""
        await self._sample(asset)
        await self._sleep(self.config.candle_analysis_delay_sec)
        for _ in range(self.config.momentum_samples):
            await self._sample(asset)
            await self._sleep(self.config.sample_interval_sec)

    async def _sample(self, asset: str) -> None:
        quote = await self.valuation.get_price(asset, force_fresh=True)
        if quote is not None:
            await self.momentum.record_sample(asset, quote.price)

    async def _judge_momentum(self, asset: str) -> EntryCheck:
        await self.sample_window(asset)
        if self._stop.is_set():
            return EntryCheck(False, "shutting_down")
        decision = await self.momentum.check_momentum(asset, self.valuation)
        return EntryCheck(decision.should_snipe, decision.reason)

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def enter(self, signal: EntrySignal) -> Position | None:
        verdict = await self.check(signal)
        if verdict.ok and signal.strategy == Strategy.SNIPER:
            verdict = await self._judge_momentum(signal.asset)
        if not verdict.ok:
            self.logger.info("❌ Entry rejected for %s: %s", signal.asset[:8], verdict.reason)
            if signal.strategy == Strategy.SNIPER:
                await self.momentum.clear(signal.asset)
            return None

        sol_amount = self._buy_size(signal)
        try:
            result = await self.executor.buy(signal.asset, sol_amount)
        except ExecutionException as e:
            self.logger.error("❌ BUY failed for %s: %s", signal.asset[:8], e)
            return None
        if not result.success or not result.tokens_received:
            self.logger.error("❌ BUY failed for %s: %s", signal.asset[:8], result.error)
            return None

        position = Position(
            asset=signal.asset,
            strategy=signal.strategy,
            entry_price=sol_amount / result.tokens_received,
            sol_amount=sol_amount,
            token_amount=result.tokens_received,
            entry_time=self._clock(),
            symbol=signal.symbol,
            source_wallet=signal.source_wallet,
            entry_tx=result.tx_ref,
        )
        try:
            recorded = await self.store.open(position)
        except StateException as e:
            self.logger.error("Could not record %s: %s", signal.asset[:8], e)
            recorded = False
        if not recorded:
            # Tokens are held but untracked; needs a manual look
            self.logger.critical("BUY filled for %s but the position could not be recorded", signal.asset[:8])
            return None

        await self.momentum.clear(signal.asset)
        if self.notifier is not None:
            await self.notifier.send_position_opened(position)
        return position
