"""
Tests for multi-window momentum detection.
"""

from pumpbot.config import MomentumConfig
from pumpbot.constants import PRICE_HISTORY_KEY
from pumpbot.core.momentum import MomentumAnalyzer
from pumpbot.tests.fakes import FakeClock, ScriptedValuation, make_redis, run


async def feed(analyzer: MomentumAnalyzer, clock: FakeClock, asset: str, points: list[tuple[int, float]]) -> None:
    """Record (seconds_ago, price) pairs relative to the clock's current time."""
    for seconds_ago, price in points:
        await analyzer.record_sample(asset, price, timestamp=clock.now - seconds_ago * 1000)


class TestEvaluateEntry:
    """Entry gate decisions"""

    def test_no_price_data(self):
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
        assert analyzer.evaluate_entry("A").reason == "no_price_data"

        async def one_sample():
            await analyzer.record_sample("A", 1.0)

        run(one_sample())
        assert analyzer.evaluate_entry("A").reason == "no_price_data"

    def test_single_window_spike_is_not_enough(self):
        """Only the 5m window clears its threshold"""
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
        run(feed(analyzer, clock, "A", [(250, 1.0), (100, 1.9), (10, 2.05), (0, 2.05)]))

        decision = analyzer.evaluate_entry("A")
        assert not decision.should_snipe
        assert decision.reason == "insufficient_momentum_intervals"
        assert decision.report.qualifying == ["5m"]

    def test_strong_momentum(self):
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
        run(feed(analyzer, clock, "A", [(50, 1.0), (20, 1.2), (10, 1.3), (0, 1.5)]))

        decision = analyzer.evaluate_entry("A")
        assert decision.should_snipe
        assert decision.reason == "strong_momentum"
        assert {"15s", "30s", "1m"} <= set(decision.report.qualifying)

    def test_flat_price_has_no_momentum(self):
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
        run(feed(analyzer, clock, "A", [(200, 1.0), (60, 1.0), (5, 1.01)]))
        assert analyzer.evaluate_entry("A").reason == "no_momentum"

    def test_window_needs_two_samples(self):
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
        run(feed(analyzer, clock, "A", [(100, 1.0), (5, 3.0)]))
        report = analyzer.analyze("A")
        assert report.windows["15s"].gain_pct is None
        assert report.windows["2m"].gain_pct == 200.0
        assert "15s=n/a" in report.summary()

    def test_custom_requirement(self):
        clock = FakeClock()
        config = MomentumConfig(min_qualifying_windows=1)
        analyzer = MomentumAnalyzer(config, clock=clock)
        run(feed(analyzer, clock, "A", [(250, 1.0), (100, 1.9), (10, 2.05), (0, 2.05)]))
        assert analyzer.evaluate_entry("A").should_snipe


class TestHistory:
    """Sample retention and persistence"""

    def test_old_samples_pruned(self):
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(retention_sec=600), clock=clock)
        run(feed(analyzer, clock, "A", [(700, 1.0), (300, 2.0), (0, 2.5)]))
        assert [s.price for s in analyzer.samples("A")] == [2.0, 2.5]

    def test_non_positive_price_ignored(self):
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
        run(feed(analyzer, clock, "A", [(10, 0.0), (5, -1.0)]))
        assert analyzer.samples("A") == []

    def test_out_of_order_samples_sorted(self):
        clock = FakeClock()
        analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
        run(feed(analyzer, clock, "A", [(0, 3.0), (30, 1.0), (10, 2.0)]))
        assert [s.price for s in analyzer.samples("A")] == [1.0, 2.0, 3.0]

    def test_history_survives_restart(self):
        async def scenario():
            redis = make_redis()
            clock = FakeClock()
            first = MomentumAnalyzer(MomentumConfig(), redis=redis, clock=clock)
            await feed(first, clock, "A", [(50, 1.0), (20, 1.2), (0, 1.5)])

            second = MomentumAnalyzer(MomentumConfig(), redis=redis, clock=clock)
            assert await second.load_history("A") == 3
            assert second.samples("A") == first.samples("A")

        run(scenario())

    def test_clear_drops_memory_and_redis(self):
        async def scenario():
            redis = make_redis()
            clock = FakeClock()
            analyzer = MomentumAnalyzer(MomentumConfig(), redis=redis, clock=clock)
            await feed(analyzer, clock, "A", [(10, 1.0), (0, 1.1)])
            assert await redis.exists(PRICE_HISTORY_KEY.format(asset="A"))
            await analyzer.clear("A")
            assert analyzer.samples("A") == []
            assert not await redis.exists(PRICE_HISTORY_KEY.format(asset="A"))

        run(scenario())


class TestCheckMomentum:
    """Sampling through the valuation service"""

    def test_samples_fresh_price(self):
        async def scenario():
            clock = FakeClock()
            analyzer = MomentumAnalyzer(MomentumConfig(), clock=clock)
            valuation = ScriptedValuation({"A": 1.0})
            first = await analyzer.check_momentum("A", valuation)
            assert first.reason == "no_price_data"
            assert valuation.calls == [("A", True)]
            assert len(analyzer.samples("A")) == 1

        run(scenario())

    def test_no_quote(self):
        async def scenario():
            analyzer = MomentumAnalyzer(MomentumConfig(), clock=FakeClock())
            decision = await analyzer.check_momentum("A", ScriptedValuation())
            assert decision.reason == "no_price_data"

        run(scenario())

    def test_restarted_process_resumes_history(self):
        async def scenario():
            redis = make_redis()
            clock = FakeClock()
            before = MomentumAnalyzer(MomentumConfig(), redis=redis, clock=clock)
            await feed(before, clock, "A", [(50, 1.0), (20, 1.2), (10, 1.3)])

            after = MomentumAnalyzer(MomentumConfig(), redis=redis, clock=clock)
            decision = await after.check_momentum("A", ScriptedValuation({"A": 1.5}))
            assert decision.reason == "strong_momentum"
            assert len(after.samples("A")) == 4

        run(scenario())
