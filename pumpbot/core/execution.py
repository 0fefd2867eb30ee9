from __future__ import annotations

import logging
import random
import uuid
from typing import TYPE_CHECKING, Protocol

from pumpbot.config import ExecutionConfig
from pumpbot.core.models import ExecutionResult

if TYPE_CHECKING:
    from pumpbot.core.valuation import ValuationService


class ExecutionClient(Protocol):
    """Order submission capability. Implementations own their retry budget."""

    async def buy(self, asset: str, sol_amount: float) -> ExecutionResult: ...

    async def sell(self, asset: str, token_amount: float) -> ExecutionResult: ...


class PaperExecutor:
    """Simulated fills at the current valuation with random slippage and a fee."""

    def __init__(self, config: ExecutionConfig, valuation: "ValuationService", seed: int | None = None) -> None:
        self.config = config
        self.valuation = valuation
        self.rng = random.Random(seed)
        self.logger = logging.getLogger("pumpbot.paper")

    def _fill_price(self, price: float, side: str) -> float:
        slippage = self.rng.uniform(0, self.config.slippage_pct) / 100
        fee_pct = min(0.5, self.config.fee_bps / 10000.0)
        if side == "BUY":
            return price * (1 + slippage) * (1 + fee_pct)
        return price * (1 - slippage) * (1 - fee_pct)

    async def buy(self, asset: str, sol_amount: float) -> ExecutionResult:
        quote = await self.valuation.get_price(asset, force_fresh=True)
        if quote is None:
            return ExecutionResult(success=False, error="no price available")
        fill = self._fill_price(quote.price, "BUY")
        tokens = sol_amount / fill
        self.logger.info("📝 PAPER BUY %s %.4f SOL -> %.2f tokens @ %.10f", asset[:8], sol_amount, tokens, fill)
        return ExecutionResult(
            success=True,
            tx_ref=f"paper-{uuid.uuid4().hex[:16]}",
            tokens_received=tokens,
            price=fill,
        )

    async def sell(self, asset: str, token_amount: float) -> ExecutionResult:
        quote = await self.valuation.get_price(asset)
        if quote is None:
            return ExecutionResult(success=False, error="no price available")
        fill = self._fill_price(quote.price, "SELL")
        proceeds = token_amount * fill
        self.logger.info("📝 PAPER SELL %s %.2f tokens -> %.4f SOL @ %.10f", asset[:8], token_amount, proceeds, fill)
        return ExecutionResult(
            success=True,
            tx_ref=f"paper-{uuid.uuid4().hex[:16]}",
            sol_received=proceeds,
            price=fill,
        )
