"""
Exit policies.

Pure decision functions: given a position snapshot and the current price they
return an ``ExitDecision``. Checks run in a fixed order and the first match
wins, so each decision carries exactly one reason:

    take profit -> trailing stop (from peak) -> stop loss -> max hold time

A disabled check, or one whose threshold is 0, never fires.
"""

from __future__ import annotations

import math
from typing import Optional

from pumpbot.config import CopyPhaseConfig, ExitRulesConfig
from pumpbot.core.models import (
    PRIORITY_LOSS,
    PRIORITY_PROFIT,
    PRIORITY_TIME,
    PRIORITY_WALLET,
    ExitDecision,
    ExitReason,
    Position,
    Strategy,
    now_ms,
)


class ExitPolicy:
    strategy: Strategy

    def __init__(self, rules: ExitRulesConfig) -> None:
        self.rules = rules

    def should_exit(self, position: Position, current_price: float, now: Optional[int] = None) -> ExitDecision:
        if position is None or not position.asset:
            return ExitDecision.hold("invalid_position")
        if current_price is None or not math.isfinite(current_price) or current_price <= 0:
            return ExitDecision.hold("invalid_price")
        if position.strategy != self.strategy:
            return ExitDecision.hold(f"not_{self.strategy.value}_strategy")
        if not position.entry_price or position.entry_price <= 0:
            return ExitDecision.hold("no_entry_price")

        now = now_ms() if now is None else now
        rules = self.rules
        pnl_pct = position.pnl_percent_at(current_price)

        if rules.take_profit_enabled and rules.take_profit_pct > 0 and pnl_pct >= rules.take_profit_pct:
            return ExitDecision.exit(
                ExitReason.TAKE_PROFIT,
                f"Take profit hit: {pnl_pct:+.2f}% >= {rules.take_profit_pct:.0f}%",
                PRIORITY_PROFIT,
            )

        peak = max(position.max_price, position.entry_price)
        if rules.trailing_stop_enabled and rules.trailing_stop_pct > 0:
            drawdown = (current_price - peak) / peak * 100
            if drawdown <= -rules.trailing_stop_pct:
                return ExitDecision.exit(
                    ExitReason.TRAILING_STOP,
                    f"Trailing stop: {drawdown:.2f}% from peak {peak:.10f} (limit -{rules.trailing_stop_pct:.0f}%)",
                    PRIORITY_PROFIT,
                )

        if rules.stop_loss_enabled and rules.stop_loss_pct > 0 and pnl_pct <= -rules.stop_loss_pct:
            return ExitDecision.exit(
                ExitReason.STOP_LOSS,
                f"Stop loss hit: {pnl_pct:.2f}% <= -{rules.stop_loss_pct:.0f}%",
                PRIORITY_LOSS,
            )

        if rules.max_hold_enabled and rules.max_hold_minutes > 0:
            held_min = position.hold_seconds(now) / 60
            if held_min >= rules.max_hold_minutes:
                return ExitDecision.exit(
                    ExitReason.MAX_HOLD_TIME,
                    f"Max hold time reached: {held_min:.1f} min >= {rules.max_hold_minutes:.0f} min",
                    PRIORITY_TIME,
                )

        return ExitDecision.hold("hold", f"PnL {pnl_pct:+.2f}%")


class SniperExitPolicy(ExitPolicy):
    strategy = Strategy.SNIPER


class CopyExitPolicy(ExitPolicy):
    strategy = Strategy.COPY


def policy_for(strategy: Strategy, rules: ExitRulesConfig) -> ExitPolicy:
    if strategy == Strategy.COPY:
        return CopyExitPolicy(rules)
    return SniperExitPolicy(rules)


class WalletExitPhases:
    """
    Copy-trade override driven by the tracked wallet's behaviour.

    Phase 1 (< early window): mirror any wallet sell.
    Phase 2 (< loss-protection window): mirror only while the position is losing.
    Phase 3: ignore the wallet; the generic policy governs.
    """

    def __init__(self, config: CopyPhaseConfig) -> None:
        self.config = config

    def evaluate(
        self,
        position: Position,
        current_price: float,
        wallet_sold_at: Optional[int],
        now: Optional[int] = None,
    ) -> ExitDecision:
        if wallet_sold_at is None:
            return ExitDecision.hold("wallet_holding")
        if wallet_sold_at < position.entry_time:
            # Sell predates our entry, not a reaction to it
            return ExitDecision.hold("wallet_sold_before_entry")

        now = now_ms() if now is None else now
        held = position.hold_seconds(now)
        since_sell = max(0.0, (now - wallet_sold_at) / 1000)

        if held < self.config.early_window_sec:
            return ExitDecision.exit(
                ExitReason.WALLET_EXIT_EARLY,
                f"Tracked wallet sold {since_sell:.0f}s ago, {held:.0f}s into the position",
                PRIORITY_WALLET,
            )

        if held < self.config.loss_protection_window_sec:
            pnl_pct = value_pnl_percent(position, current_price)
            if pnl_pct < 0:
                return ExitDecision.exit(
                    ExitReason.WALLET_EXIT_LOSS_PROTECTION,
                    f"Wallet sold and position is negative ({pnl_pct:.2f}%)",
                    PRIORITY_WALLET,
                )
            return ExitDecision.hold("phase2_holding", f"Wallet sold but position is up {pnl_pct:+.2f}%")

        return ExitDecision.hold("phase3_independent")


def value_pnl_percent(position: Position, current_price: float) -> float:
    """PnL of the position's current value against the SOL spent."""
    if position.sol_amount <= 0 or position.token_amount <= 0:
        return position.pnl_percent_at(current_price)
    value = position.token_amount * current_price
    return (value - position.sol_amount) / position.sol_amount * 100
