"""
Unit tests for exit policies and copy wallet-exit phases.
"""

from pumpbot.config import CopyPhaseConfig, ExitRulesConfig
from pumpbot.core.exit_policy import (
    CopyExitPolicy,
    SniperExitPolicy,
    WalletExitPhases,
    policy_for,
    value_pnl_percent,
)
from pumpbot.core.models import Strategy
from pumpbot.tests.fakes import T0, make_position


def rules(**overrides) -> ExitRulesConfig:
    base = ExitRulesConfig.sniper_defaults()
    for key, value in overrides.items():
        setattr(base, key, value)
    return base


class TestGuards:
    """Guard clauses never exit"""

    def test_invalid_price(self):
        policy = SniperExitPolicy(rules())
        decision = policy.should_exit(make_position(), 0.0, now=T0)
        assert not decision.should_exit
        assert decision.reason == "invalid_price"

    def test_strategy_mismatch(self):
        policy = CopyExitPolicy(ExitRulesConfig.copy_defaults())
        decision = policy.should_exit(make_position(strategy=Strategy.SNIPER), 5.0, now=T0)
        assert not decision.should_exit
        assert decision.reason == "not_copy_strategy"

    def test_no_entry_price(self):
        position = make_position()
        position.entry_price = 0.0
        decision = SniperExitPolicy(rules()).should_exit(position, 1.0, now=T0)
        assert decision.reason == "no_entry_price"

    def test_missing_position(self):
        decision = SniperExitPolicy(rules()).should_exit(None, 1.0, now=T0)
        assert decision.reason == "invalid_position"


class TestSniperExitPolicy:
    """Ordered exit checks"""

    def test_take_profit_scenario(self):
        """+150% with a 150% target exits on take profit"""
        position = make_position(asset="X", entry_price=0.00001, sol_amount=0.05, token_amount=5_000_000)
        decision = SniperExitPolicy(rules(take_profit_pct=150.0)).should_exit(position, 0.000025, now=T0 + 1000)
        assert decision.should_exit
        assert decision.reason == "take_profit"
        assert decision.priority == 3

    def test_take_profit_checked_before_trailing_stop(self):
        """Both thresholds met: take profit wins because it is evaluated first"""
        position = make_position(entry_price=1.0, max_price=5.0)
        decision = SniperExitPolicy(rules(take_profit_pct=100.0, trailing_stop_pct=30.0)).should_exit(
            position, 2.5, now=T0
        )
        assert decision.reason == "take_profit"

    def test_stop_loss_checked_before_max_hold(self):
        position = make_position(entry_price=1.0)
        decision = SniperExitPolicy(rules(trailing_stop_enabled=False)).should_exit(
            position, 0.5, now=T0 + 2 * 60 * 60 * 1000
        )
        assert decision.reason == "stop_loss"
        assert decision.priority == 4

    def test_trailing_stop_uses_peak_not_entry(self):
        """Up 150% from entry but 16.7% off the peak -> trailing stop"""
        position = make_position(entry_price=1.0, max_price=3.0)
        decision = SniperExitPolicy(rules(take_profit_pct=500.0, trailing_stop_pct=15.0)).should_exit(
            position, 2.5, now=T0
        )
        assert decision.should_exit
        assert decision.reason == "trailing_stop"
        assert decision.priority == 3
        assert position.pnl_percent_at(2.5) > 100

    def test_max_hold_time(self):
        position = make_position(entry_price=1.0)
        decision = SniperExitPolicy(rules()).should_exit(position, 1.01, now=T0 + 60 * 60 * 1000)
        assert decision.reason == "max_hold_time"
        assert decision.priority == 5

    def test_hold_within_limits(self):
        position = make_position(entry_price=1.0)
        decision = SniperExitPolicy(rules()).should_exit(position, 1.1, now=T0 + 5_000)
        assert not decision.should_exit
        assert decision.reason == "hold"

    def test_disabled_checks_never_fire(self):
        position = make_position(entry_price=1.0, max_price=10.0)
        policy = SniperExitPolicy(rules(
            take_profit_enabled=False,
            trailing_stop_pct=0.0,
            stop_loss_enabled=False,
            max_hold_minutes=0.0,
        ))
        for price in (0.01, 1.0, 50.0):
            assert not policy.should_exit(position, price, now=T0 + 10**9).should_exit


class TestCopyExitPolicy:
    """Copy defaults are looser than sniper defaults"""

    def test_policy_for_selects_variant(self):
        assert isinstance(policy_for(Strategy.COPY, ExitRulesConfig.copy_defaults()), CopyExitPolicy)
        assert isinstance(policy_for(Strategy.SNIPER, ExitRulesConfig()), SniperExitPolicy)

    def test_copy_stop_loss_threshold(self):
        policy = CopyExitPolicy(ExitRulesConfig.copy_defaults())
        position = make_position(strategy=Strategy.COPY, entry_price=1.0)
        assert not policy.should_exit(position, 0.78, now=T0).should_exit
        assert policy.should_exit(position, 0.75, now=T0).reason == "stop_loss"


class TestWalletExitPhases:
    """Phased wallet-exit override for copy positions"""

    def setup_method(self):
        self.phases = WalletExitPhases(CopyPhaseConfig())
        self.position = make_position(strategy=Strategy.COPY, entry_price=1.0, sol_amount=1.0, token_amount=1.0)

    def test_early_wallet_exit_regardless_of_pnl(self):
        """Hold 90s, wallet sold 20s after entry -> mirror exit"""
        now = T0 + 90_000
        for price in (0.5, 3.0):
            decision = self.phases.evaluate(self.position, price, T0 + 20_000, now)
            assert decision.should_exit
            assert decision.reason == "wallet_exit_early"
            assert decision.priority == 2

    def test_sell_before_entry_is_ignored(self):
        decision = self.phases.evaluate(self.position, 0.5, T0 - 5_000, T0 + 30_000)
        assert not decision.should_exit

    def test_no_wallet_sell(self):
        assert not self.phases.evaluate(self.position, 0.5, None, T0 + 30_000).should_exit

    def test_loss_protection_window(self):
        now = T0 + 5 * 60 * 1000
        decision = self.phases.evaluate(self.position, 0.9, T0 + 4 * 60 * 1000, now)
        assert decision.should_exit
        assert decision.reason == "wallet_exit_loss_protection"
        assert decision.priority == 2

    def test_profitable_position_keeps_running(self):
        now = T0 + 5 * 60 * 1000
        decision = self.phases.evaluate(self.position, 1.2, T0 + 4 * 60 * 1000, now)
        assert not decision.should_exit
        assert decision.reason == "phase2_holding"

    def test_independent_after_ten_minutes(self):
        now = T0 + 11 * 60 * 1000
        decision = self.phases.evaluate(self.position, 0.5, T0 + 10 * 60 * 1000, now)
        assert not decision.should_exit
        assert decision.reason == "phase3_independent"

    def test_value_pnl_uses_sol_spent(self):
        position = make_position(strategy=Strategy.COPY, entry_price=1.0, sol_amount=2.0, token_amount=1.5)
        # Price flat vs entry, but 1.5 tokens are worth less than the 2 SOL paid
        assert value_pnl_percent(position, 1.0) == -25.0
