"""
Trade analytics over the daily journal lists (``trades:YYYY-MM-DD``).
"""

from __future__ import annotations

import csv
import io
import json
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Iterable

from pumpbot.constants import TRADES_KEY
from pumpbot.core.models import ClosedTrade, now_ms

if TYPE_CHECKING:
    from pumpbot.core.position_store import PositionStore
    from pumpbot.core.valuation import ValuationService

CSV_FIELDS = [
    "date", "asset", "symbol", "strategy", "entry_time", "closed_at", "entry_price", "exit_price",
    "sol_amount", "exit_value", "pnl", "pnl_percent", "reason", "hold_seconds",
]


@dataclass
class TradeStats:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    total_pnl: float = 0.0
    avg_return_pct: float = 0.0
    profit_factor: float = 0.0  # inf when there are wins and no losses
    biggest_win: float = 0.0
    biggest_loss: float = 0.0
    avg_hold_sec: float = 0.0

    @property
    def win_rate(self) -> float:
        return self.wins / self.total_trades * 100 if self.total_trades else 0.0

    @classmethod
    def from_trades(cls, trades: Iterable[ClosedTrade]) -> "TradeStats":
        trades = list(trades)
        stats = cls(total_trades=len(trades))
        if not trades:
            return stats

        gross_win = 0.0
        gross_loss = 0.0
        hold_total = 0.0
        hold_count = 0
        for t in trades:
            stats.total_pnl += t.pnl
            stats.avg_return_pct += t.pnl_percent
            if t.pnl > 0:
                stats.wins += 1
                gross_win += t.pnl
                stats.biggest_win = max(stats.biggest_win, t.pnl)
            elif t.pnl < 0:
                stats.losses += 1
                gross_loss += t.pnl
                stats.biggest_loss = min(stats.biggest_loss, t.pnl)
            if t.entry_time and t.closed_at > t.entry_time:
                hold_total += t.hold_seconds
                hold_count += 1

        stats.avg_return_pct /= len(trades)
        stats.avg_hold_sec = hold_total / hold_count if hold_count else 0.0
        if gross_loss < 0:
            stats.profit_factor = gross_win / abs(gross_loss)
        elif gross_win > 0:
            stats.profit_factor = math.inf
        return stats

    def to_dict(self) -> dict:
        return {
            "total_trades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": round(self.win_rate, 2),
            "total_pnl": round(self.total_pnl, 6),
            "avg_return_pct": round(self.avg_return_pct, 2),
            "profit_factor": self.profit_factor if math.isinf(self.profit_factor) else round(self.profit_factor, 2),
            "biggest_win": round(self.biggest_win, 6),
            "biggest_loss": round(self.biggest_loss, 6),
            "avg_hold_sec": round(self.avg_hold_sec),
        }


def _utc_day(ts_ms: int) -> date:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).date()


class TradeAnalytics:
    def __init__(self, redis, clock: Callable[[], int] = now_ms) -> None:
        self.redis = redis
        self._clock = clock
        self.logger = logging.getLogger("pumpbot.analytics")

    def _today(self) -> date:
        return _utc_day(self._clock())

    async def get_trades(
        self,
        start: date,
        end: date | None = None,
        strategy: str | Iterable[str] | None = None,
    ) -> list[ClosedTrade]:
        """Journal entries between ``start`` and ``end`` (inclusive), oldest close first."""
        end = end or self._today()
        if isinstance(strategy, str):
            strategies = {strategy}
        else:
            strategies = set(strategy) if strategy else None

        trades: list[ClosedTrade] = []
        day = start
        while day <= end:
            rows = await self.redis.lrange(TRADES_KEY.format(day=day.isoformat()), 0, -1)
            for raw in rows:
                try:
                    trade = ClosedTrade.from_dict(json.loads(raw))
                except (ValueError, KeyError, TypeError):
                    self.logger.debug("Skipping corrupt journal entry on %s", day)
                    continue
                if strategies and trade.strategy not in strategies:
                    continue
                trades.append(trade)
            day += timedelta(days=1)

        trades.sort(key=lambda t: t.closed_at)
        return trades

    async def _recent(self, days: int, strategy: str | None = None) -> list[ClosedTrade]:
        today = self._today()
        return await self.get_trades(today - timedelta(days=days), today, strategy)

    async def daily_stats(self, day: date | None = None, strategy: str | None = None) -> TradeStats:
        day = day or self._today()
        return TradeStats.from_trades(await self.get_trades(day, day, strategy))

    async def overall_stats(self, days: int = 30, strategy: str | None = None) -> TradeStats:
        return TradeStats.from_trades(await self._recent(days, strategy))

    async def daily_summary(self, days: int = 30, strategy: str | None = None) -> dict[str, TradeStats]:
        grouped: dict[str, list[ClosedTrade]] = defaultdict(list)
        for trade in await self._recent(days, strategy):
            grouped[_utc_day(trade.closed_at).isoformat()].append(trade)
        return {day: TradeStats.from_trades(grouped[day]) for day in sorted(grouped)}

    async def by_strategy(self, days: int = 30) -> dict[str, TradeStats]:
        return self._group(await self._recent(days), lambda t: t.strategy)

    async def by_exit_reason(self, days: int = 30, strategy: str | None = None) -> dict[str, TradeStats]:
        return self._group(await self._recent(days, strategy), lambda t: t.reason)

    async def by_token(self, days: int = 30, strategy: str | None = None) -> dict[str, TradeStats]:
        return self._group(await self._recent(days, strategy), lambda t: t.asset)

    async def equity_curve(self, days: int = 30, strategy: str | None = None) -> list[tuple[int, float]]:
        """Cumulative realized P&L after each close, as ``(closed_at, equity)`` pairs."""
        equity = 0.0
        points = []
        for t in await self._recent(days, strategy):
            equity += t.pnl
            points.append((t.closed_at, round(equity, 6)))
        return points

    @staticmethod
    def _group(trades: list[ClosedTrade], key: Callable[[ClosedTrade], str]) -> dict[str, TradeStats]:
        grouped: dict[str, list[ClosedTrade]] = defaultdict(list)
        for trade in trades:
            grouped[key(trade)].append(trade)
        stats = {name: TradeStats.from_trades(items) for name, items in grouped.items()}
        return dict(sorted(stats.items(), key=lambda item: item[1].total_pnl, reverse=True))

    async def export_csv(self, days: int = 30, strategy: str | None = None) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for t in await self._recent(days, strategy):
            writer.writerow({
                "date": _utc_day(t.closed_at).isoformat(),
                "asset": t.asset,
                "symbol": t.symbol,
                "strategy": t.strategy,
                "entry_time": t.entry_time,
                "closed_at": t.closed_at,
                "entry_price": t.entry_price,
                "exit_price": t.exit_price,
                "sol_amount": t.sol_amount,
                "exit_value": t.exit_value,
                "pnl": t.pnl,
                "pnl_percent": t.pnl_percent,
                "reason": t.reason,
                "hold_seconds": round(t.hold_seconds),
            })
        return buffer.getvalue()

    async def open_pnl(self, store: "PositionStore", valuation: "ValuationService") -> dict:
        """Unrealized P&L across open positions, valued at current prices."""
        positions = await store.get_open()
        invested = 0.0
        current = 0.0
        unpriced = 0
        for position in positions:
            value = await valuation.calculate_value(position.asset, position.token_amount)
            if value is None:
                unpriced += 1
                continue
            invested += position.sol_amount
            current += value.sol_value

        pnl = current - invested
        return {
            "open_positions": len(positions),
            "unpriced": unpriced,
            "invested_sol": invested,
            "current_value_sol": current,
            "unrealized_pnl_sol": pnl,
            "unrealized_pnl_pct": pnl / invested * 100 if invested else 0.0,
        }
