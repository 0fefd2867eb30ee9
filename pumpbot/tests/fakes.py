"""Test doubles shared by the test modules."""

from __future__ import annotations

import asyncio

import fakeredis

from pumpbot.core.bonding_curve import BondingCurveState
from pumpbot.core.models import ExecutionResult, Position, PriceQuote, PriceSource, Strategy, ValueQuote
from pumpbot.exceptions import NetworkException

T0 = 1_700_000_000_000  # 2023-11-14T22:13:20Z
WALLET = "9wRuFPJZFviuHv9q4hsaxUUADDphX6oSjcMA3RuxTFRG"


def run(coro):
    return asyncio.run(coro)


def make_redis():
    """Isolated in-memory Redis; must be created inside the running loop."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


class FakeClock:
    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


def make_position(
    asset: str = "MintX",
    strategy: Strategy = Strategy.SNIPER,
    entry_price: float = 1.0,
    sol_amount: float = 1.0,
    token_amount: float = 1.0,
    entry_time: int = T0,
    **kwargs,
) -> Position:
    if strategy == Strategy.COPY:
        kwargs.setdefault("source_wallet", WALLET)
    return Position(
        asset=asset,
        strategy=strategy,
        entry_price=entry_price,
        sol_amount=sol_amount,
        token_amount=token_amount,
        entry_time=entry_time,
        **kwargs,
    )


class ScriptedValuation:
    """Returns whatever price the test set for an asset (None = no quote)."""

    def __init__(self, prices: dict[str, float] | None = None) -> None:
        self.prices: dict[str, float | None] = dict(prices or {})
        self.graduated: set[str] = set()
        self.anomalous: set[str] = set()
        self.calls: list[tuple[str, bool]] = []

    async def get_price(self, asset: str, force_fresh: bool = False) -> PriceQuote | None:
        self.calls.append((asset, force_fresh))
        price = self.prices.get(asset)
        if price is None:
            return None
        return PriceQuote(
            asset=asset,
            price=price,
            source=PriceSource.DEX if asset in self.graduated else PriceSource.CURVE,
            graduated=asset in self.graduated,
            anomalous=asset in self.anomalous,
        )

    async def calculate_value(self, asset: str, token_amount: float, force_fresh: bool = False):
        quote = await self.get_price(asset, force_fresh)
        if quote is None:
            return None
        return ValueQuote(sol_value=token_amount * quote.price, price=quote.price, source=quote.source)

    def get_stats(self) -> dict:
        return {"hit_rate_pct": 0.0}


class FakeExecutor:
    def __init__(self, succeed: bool = True, sol_received: float | None = None, tokens_per_sol: float = 1.0) -> None:
        self.succeed = succeed
        self.sol_received = sol_received
        self.tokens_per_sol = tokens_per_sol
        self.buys: list[tuple[str, float]] = []
        self.sells: list[tuple[str, float]] = []
        self.sell_error: Exception | None = None  # Raised once by the next sell

    async def buy(self, asset: str, sol_amount: float) -> ExecutionResult:
        self.buys.append((asset, sol_amount))
        if not self.succeed:
            return ExecutionResult(success=False, error="slippage exceeded")
        return ExecutionResult(success=True, tx_ref="tx-buy", tokens_received=sol_amount * self.tokens_per_sol)

    async def sell(self, asset: str, token_amount: float) -> ExecutionResult:
        self.sells.append((asset, token_amount))
        if self.sell_error is not None:
            error, self.sell_error = self.sell_error, None
            raise error
        if not self.succeed:
            return ExecutionResult(success=False, error="rpc timeout")
        return ExecutionResult(success=True, tx_ref="tx-sell", sol_received=self.sol_received)


class FakeCurveSource:
    """Serves a fixed account buffer, failing the first ``failures`` calls."""

    def __init__(self, name: str, data: bytes | None = None, failures: int = 0, error: Exception | None = None) -> None:
        self.name = name
        self.data = data
        self.failures = failures
        self.error = error
        self.calls = 0
        self.closed = False

    async def fetch_account(self, mint: str) -> bytes:
        self.calls += 1
        if self.calls <= self.failures or self.data is None:
            raise self.error or NetworkException("rpc down", endpoint=self.name)
        return self.data

    async def close(self) -> None:
        self.closed = True


class FakeDex:
    def __init__(self, price: float | None = None) -> None:
        self.price = price
        self.calls = 0

    async def get_price_in_sol(self, mint: str) -> float | None:
        self.calls += 1
        return self.price

    async def close(self) -> None:
        pass


def make_curve_state(
    vsol: int = 30_000_000_000,
    vtoken: int = 1_000_000_000_000,
    complete: bool = False,
) -> BondingCurveState:
    """30 SOL against 1M whole tokens: 3e-5 SOL per token."""
    return BondingCurveState(
        virtual_token_reserves=vtoken,
        virtual_sol_reserves=vsol,
        real_token_reserves=vtoken // 2,
        real_sol_reserves=vsol // 3,
        token_total_supply=1_000_000_000_000_000,
        complete=complete,
    )
