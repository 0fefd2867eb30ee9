"""
Tests for journal-based trade analytics.
"""

import csv
import io
import math
from datetime import date

import pytest

from pumpbot.config import StoreConfig
from pumpbot.constants import TRADES_KEY
from pumpbot.core.analytics import TradeAnalytics, TradeStats
from pumpbot.core.models import ClosedTrade, Strategy
from pumpbot.core.position_store import PositionStore
from pumpbot.tests.fakes import T0, FakeClock, ScriptedValuation, make_position, make_redis, run

DAY_ONE = date(2023, 11, 14)
DAY_TWO = date(2023, 11, 15)


async def trade(store, clock, asset, exit_price, reason, strategy=Strategy.SNIPER, hold_sec=60):
    await store.open(make_position(asset=asset, strategy=strategy, entry_time=clock.now))
    clock.advance(hold_sec)
    return await store.close(asset, exit_price, reason)


async def seeded():
    """Three closes on 2023-11-14: +1.0, -0.5 (sniper) and +2.0 (copy)."""
    redis = make_redis()
    clock = FakeClock()
    store = PositionStore(redis, StoreConfig(sniper_cooldown_sec=0, copy_cooldown_sec=0), clock=clock)
    await trade(store, clock, "A", 2.0, "take_profit")
    await trade(store, clock, "B", 0.5, "stop_loss", hold_sec=120)
    await trade(store, clock, "C", 3.0, "wallet_exit_early", strategy=Strategy.COPY)
    return redis, clock, store, TradeAnalytics(redis, clock=clock)


class TestTradeStats:
    """Aggregates"""

    def test_empty(self):
        stats = TradeStats.from_trades([])
        assert stats.total_trades == 0
        assert stats.win_rate == 0.0
        assert stats.profit_factor == 0.0

    def test_all_winners_profit_factor(self):
        winner = ClosedTrade.from_dict({"asset": "A", "pnl": 0.2, "pnl_percent": 20, "entry_time": 1, "closed_at": 2})
        stats = TradeStats.from_trades([winner])
        assert math.isinf(stats.profit_factor)
        assert stats.to_dict()["profit_factor"] == math.inf


class TestTradeAnalytics:
    """Queries over the journal"""

    def test_daily_stats(self):
        async def scenario():
            _, _, _, analytics = await seeded()
            stats = await analytics.daily_stats(DAY_ONE)
            assert stats.total_trades == 3
            assert stats.wins == 2
            assert stats.losses == 1
            assert stats.total_pnl == pytest.approx(2.5)
            assert stats.profit_factor == pytest.approx(6.0)
            assert stats.biggest_win == pytest.approx(2.0)
            assert stats.biggest_loss == pytest.approx(-0.5)
            assert stats.avg_hold_sec == pytest.approx(80)
            assert round(stats.win_rate, 2) == 66.67

        run(scenario())

    def test_strategy_filter(self):
        async def scenario():
            _, _, _, analytics = await seeded()
            trades = await analytics.get_trades(DAY_ONE, DAY_ONE, strategy="sniper")
            assert [t.asset for t in trades] == ["A", "B"]

        run(scenario())

    def test_grouping_sorted_by_pnl(self):
        async def scenario():
            _, _, _, analytics = await seeded()
            by_strategy = await analytics.by_strategy(days=1)
            assert list(by_strategy) == ["copy", "sniper"]
            by_reason = await analytics.by_exit_reason(days=1)
            assert list(by_reason) == ["wallet_exit_early", "take_profit", "stop_loss"]

        run(scenario())

    def test_by_token(self):
        async def scenario():
            _, _, _, analytics = await seeded()
            by_token = await analytics.by_token(days=1)
            assert list(by_token) == ["C", "A", "B"]
            assert by_token["B"].losses == 1
            assert list(await analytics.by_token(days=1, strategy="sniper")) == ["A", "B"]

        run(scenario())

    def test_equity_curve(self):
        async def scenario():
            _, _, _, analytics = await seeded()
            curve = await analytics.equity_curve(days=1)
            assert curve == [(T0 + 60_000, 1.0), (T0 + 180_000, 0.5), (T0 + 240_000, 2.5)]

        run(scenario())

    def test_corrupt_rows_skipped(self):
        async def scenario():
            redis, _, _, analytics = await seeded()
            key = TRADES_KEY.format(day=DAY_ONE.isoformat())
            await redis.rpush(key, "not json", '{"no_asset": 1}')
            assert len(await analytics.get_trades(DAY_ONE, DAY_ONE)) == 3

        run(scenario())

    def test_multi_day_summary(self):
        async def scenario():
            _, clock, store, analytics = await seeded()
            clock.advance(2 * 60 * 60)
            await trade(store, clock, "D", 1.5, "max_hold_time")

            summary = await analytics.daily_summary(days=7)
            assert list(summary) == [DAY_ONE.isoformat(), DAY_TWO.isoformat()]
            assert summary[DAY_TWO.isoformat()].total_trades == 1
            assert (await analytics.overall_stats(days=7)).total_trades == 4
            assert (await analytics.daily_stats()).total_trades == 1

        run(scenario())

    def test_export_csv(self):
        async def scenario():
            _, _, _, analytics = await seeded()
            rows = list(csv.DictReader(io.StringIO(await analytics.export_csv(days=1))))
            assert [row["asset"] for row in rows] == ["A", "B", "C"]
            assert rows[1]["reason"] == "stop_loss"
            assert rows[0]["date"] == DAY_ONE.isoformat()
            assert rows[0]["hold_seconds"] == "60"

        run(scenario())

    def test_open_pnl(self):
        async def scenario():
            redis = make_redis()
            store = PositionStore(redis, clock=FakeClock())
            await store.open(make_position(asset="A", sol_amount=1.0, token_amount=10.0))
            await store.open(make_position(asset="B", sol_amount=1.0, token_amount=10.0))
            valuation = ScriptedValuation({"A": 0.15})

            report = await TradeAnalytics(redis).open_pnl(store, valuation)
            assert report["open_positions"] == 2
            assert report["unpriced"] == 1
            assert report["invested_sol"] == 1.0
            assert report["unrealized_pnl_sol"] == pytest.approx(0.5)
            assert report["unrealized_pnl_pct"] == pytest.approx(50.0)

        run(scenario())
