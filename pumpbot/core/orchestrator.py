"""
Exit orchestrator.

One polling loop per strategy. Every tick walks the strategy's open positions
and, for each one:

1. refreshes the valuation (no price -> skip, never exit on missing data)
2. raises the stored high-water mark before any rule reads it
3. honours an external force-exit flag (priority 1, unconditional)
4. copy only: applies the wallet-exit phases
5. applies the strategy's exit policy

A positive decision triggers a sell. Only a successful sell commits the close;
a failed one leaves the position open for the next tick. A force-exit flag is
only consumed once the close is recorded, and a sold position whose close
could not be recorded is retried without selling again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from pumpbot.config import OrchestratorConfig
from pumpbot.core.execution import ExecutionClient
from pumpbot.core.exit_policy import ExitPolicy, WalletExitPhases
from pumpbot.core.models import (
    PRIORITY_FORCE,
    ClosedTrade,
    ExecutionResult,
    ExitDecision,
    Position,
    PriceQuote,
    Strategy,
    now_ms,
)
from pumpbot.core.momentum import MomentumAnalyzer
from pumpbot.core.notifier import TelegramNotifier
from pumpbot.core.position_store import PositionStore
from pumpbot.core.signals import ForceExitChannel, WalletActivityTracker
from pumpbot.core.valuation import ValuationService
from pumpbot.exceptions import ConfigurationException, ExecutionException, StateException

GRADUATION_EXIT_REASON = "graduation_auto_exit"


class ExitOrchestrator:
    def __init__(
        self,
        strategy: Strategy,
        config: OrchestratorConfig,
        store: PositionStore,
        valuation: ValuationService,
        policy: ExitPolicy,
        executor: ExecutionClient,
        force_exits: ForceExitChannel,
        momentum: MomentumAnalyzer | None = None,
        wallet_phases: WalletExitPhases | None = None,
        wallets: WalletActivityTracker | None = None,
        notifier: TelegramNotifier | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if policy.strategy != strategy:
            raise ConfigurationException("Exit policy does not match strategy", strategy=strategy.value)
        if strategy == Strategy.COPY and (wallet_phases is None or wallets is None):
            raise ConfigurationException("Copy orchestrator needs wallet phases and a wallet tracker")

        self.strategy = strategy
        self.config = config
        self.store = store
        self.valuation = valuation
        self.policy = policy
        self.executor = executor
        self.force_exits = force_exits
        self.momentum = momentum
        self.wallet_phases = wallet_phases
        self.wallets = wallets
        self.notifier = notifier
        self._clock = clock
        self.logger = logging.getLogger(f"pumpbot.exits.{strategy.value}")

        self._stop = asyncio.Event()
        self._closing: set[str] = set()
        self._last_update: dict[str, int] = {}
        self._last_stats = 0
        self._pending: set[asyncio.Task] = set()
        # Sold but not yet recorded: asset -> (exit price, decision, sell result)
        self._unrecorded: dict[str, tuple[float, ExitDecision, ExecutionResult]] = {}

    # ------------------------------------------------------------------
    # Loop control
    # ------------------------------------------------------------------

    async def run(self) -> None:
        self.logger.info(
            "🚀 %s exit monitor started (tick %.1fs)", self.strategy.value.upper(), self.config.tick_interval_sec
        )
        while not self._stop.is_set():
            try:
                await self.tick()
                await self._maybe_log_stats()
            except Exception:
                self.logger.exception("Exit tick failed")

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.config.tick_interval_sec)
            except asyncio.TimeoutError:
                pass

        await self.drain_notifications()
        self.logger.info("🛑 %s exit monitor stopped", self.strategy.value.upper())

    def stop(self) -> None:
        """Ask the loop to finish its current sweep and exit."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def tick(self) -> list[ClosedTrade]:
        """One sweep over the open positions of this strategy."""
        positions = await self.store.get_open(self.strategy)
        closed: list[ClosedTrade] = []
        for position in positions:
            if self._stop.is_set():
                break
            try:
                trade = await self.check_position(position)
            except Exception:
                self.logger.exception("Error checking %s", position.asset[:8])
                continue
            if trade is not None:
                closed.append(trade)
        return closed

    # ------------------------------------------------------------------
    # Per-position evaluation
    # ------------------------------------------------------------------

    async def check_position(self, position: Position) -> ClosedTrade | None:
        asset = position.asset
        if asset in self._closing:
            return None
        if asset in self._unrecorded:
            return await self._record_close(position)

        quote = await self.valuation.get_price(asset, force_fresh=self.config.force_fresh_prices)
        if quote is None:
            self.logger.warning("⏭️ No price for %s, skipping this tick", asset[:8])
            return None
        if quote.anomalous:
            self.logger.warning("⚠️ Evaluating %s on an anomalous %s quote", asset[:8], quote.source.value)

        price = quote.price
        now = self._clock()

        if price > position.max_price:
            await self.store.update_max_price(asset, price)
            position.max_price = price

        if quote.graduated and not position.graduated:
            await self._on_graduated(position)

        decision = await self.decide(position, quote, now)
        self._maybe_send_update(position, price, now, decision)
        if not decision.should_exit:
            return None

        return await self._close(position, price, decision)

    async def decide(self, position: Position, quote: PriceQuote, now: int) -> ExitDecision:
        forced = await self.force_exits.peek(position.asset)
        if forced:
            return ExitDecision.exit(forced, "External force exit", PRIORITY_FORCE)

        if self.strategy == Strategy.COPY and position.source_wallet:
            sold_at = await self.wallets.last_sell(position.source_wallet, position.asset)
            phase = self.wallet_phases.evaluate(position, quote.price, sold_at, now)
            if phase.should_exit:
                return phase

        return self.policy.should_exit(position, quote.price, now)

    async def _on_graduated(self, position: Position) -> None:
        position.graduated = True
        await self.store.mark_graduated(position.asset)
        if self.config.exit_on_graduation:
            await self.force_exits.request(position.asset, GRADUATION_EXIT_REASON)

    async def _close(self, position: Position, price: float, decision: ExitDecision) -> ClosedTrade | None:
        asset = position.asset
        self._closing.add(asset)
        try:
            self.logger.info(
                "🔔 EXIT signal %s: %s (priority %s) %s",
                asset[:8], decision.reason, decision.priority, decision.description,
            )
            try:
                result = await self.executor.sell(asset, position.token_amount)
            except ExecutionException as e:
                result = ExecutionResult(success=False, error=str(e))

            if not result.success:
                self.logger.error("❌ SELL failed for %s: %s - position stays open", asset[:8], result.error)
                if decision.priority == PRIORITY_FORCE:
                    # Refresh the flag's TTL so retries outlive it
                    await self.force_exits.request(asset, decision.reason)
                return None

            self._unrecorded[asset] = (price, decision, result)
            return await self._record_close(position)
        finally:
            self._closing.discard(asset)

    async def _record_close(self, position: Position) -> ClosedTrade | None:
        asset = position.asset
        price, decision, result = self._unrecorded[asset]
        try:
            trade = await self.store.close(
                asset,
                exit_price=price,
                reason=decision.reason,
                tx_ref=result.tx_ref,
                sol_received=result.sol_received,
            )
        except StateException as e:
            self.logger.error("Sold %s but could not record the close: %s - retrying next tick", asset[:8], e)
            return None
        del self._unrecorded[asset]

        await self._cleanup(position)
        if trade is None:
            self.logger.warning("Sold %s but the position was already closed", asset[:8])
            return None

        self._notify(self.notifier.send_position_closed if self.notifier else None, trade)
        return trade

    async def _cleanup(self, position: Position) -> None:
        await self.force_exits.consume(position.asset)
        self._last_update.pop(position.asset, None)
        if self.momentum is not None:
            await self.momentum.clear(position.asset)
        if self.wallets is not None and position.source_wallet:
            await self.wallets.clear(position.source_wallet, position.asset)

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    def _maybe_send_update(self, position: Position, price: float, now: int, decision: ExitDecision) -> None:
        interval_ms = self.config.live_update_interval_sec * 1000
        if self.notifier is None or interval_ms <= 0 or decision.should_exit:
            return
        if now - self._last_update.get(position.asset, 0) < interval_ms:
            return
        self._last_update[position.asset] = now
        self._notify(self.notifier.send_pnl_update, position, price)

    def _notify(self, send, *args) -> None:
        if send is None or not self.notifier.enabled:
            return
        task = asyncio.create_task(send(*args))
        self._pending.add(task)
        task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.debug("Notification failed: %s", task.exception())

    async def drain_notifications(self, timeout: float = 5.0) -> None:
        if not self._pending:
            return
        await asyncio.wait(list(self._pending), timeout=timeout)

    async def _maybe_log_stats(self) -> None:
        now = self._clock()
        if now - self._last_stats < self.config.stats_interval_sec * 1000:
            return
        self._last_stats = now
        open_count = len(await self.store.get_open(self.strategy))
        cache = self.valuation.get_stats()
        self.logger.info(
            "📊 %s: %d open | price cache hit rate %.1f%%",
            self.strategy.value, open_count, cache["hit_rate_pct"],
        )
