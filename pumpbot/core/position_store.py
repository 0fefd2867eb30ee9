"""
Position store.

Redis-backed single source of truth for position state:

- ``position:<asset>``  hash with the full record (kept after close as history)
- ``open_positions``    set of assets with an open record
- ``trades:<day>``      append-only journal of closed trades (JSON)
- ``cooldown:<asset>``  short-lived flag set on close

Open and close are optimistic transactions (WATCH/MULTI/EXEC): readers can
never observe an index entry without its record, and a close that loses a race
re-reads the record, sees it already closed and returns None.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from redis.exceptions import WatchError

from pumpbot.config import StoreConfig
from pumpbot.constants import COOLDOWN_KEY, OPEN_POSITIONS_KEY, POSITION_KEY, TRADES_KEY
from pumpbot.core.models import ClosedTrade, Position, PositionStatus, Strategy, now_ms
from pumpbot.exceptions import PositionValidationException, StateException

MAX_TX_ATTEMPTS = 5


def journal_day(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


class PositionStore:
    def __init__(self, redis, config: StoreConfig | None = None, clock: Callable[[], int] = now_ms) -> None:
        self.redis = redis
        self.config = config or StoreConfig()
        self._clock = clock
        self.logger = logging.getLogger("pumpbot.positions")

    def _cooldown_for(self, strategy: Strategy) -> int:
        if strategy == Strategy.COPY:
            return self.config.copy_cooldown_sec
        return self.config.sniper_cooldown_sec

    async def open(self, position: Position) -> bool:
        """
        Insert a new open position.

        Returns False (and logs) when the record is invalid, the asset already
        has an open position, or the asset is cooling down after a close.
        """
        try:
            position.validate()
        except PositionValidationException as e:
            self.logger.warning("🚫 REJECT open: %s", e)
            return False

        asset = position.asset
        position.status = PositionStatus.OPEN
        position.max_price = max(position.max_price, position.entry_price)
        position.last_update = self._clock()
        key = POSITION_KEY.format(asset=asset)

        for _ in range(MAX_TX_ATTEMPTS):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(OPEN_POSITIONS_KEY, key)
                    if await pipe.sismember(OPEN_POSITIONS_KEY, asset):
                        self.logger.warning("🚫 REJECT open %s: position already open", asset[:8])
                        return False
                    if await pipe.exists(COOLDOWN_KEY.format(asset=asset)):
                        self.logger.warning("🚫 REJECT open %s: asset in cooldown", asset[:8])
                        return False
                    pipe.multi()
                    # Drop any closed record left from an earlier trade on this asset
                    pipe.delete(key)
                    pipe.hset(key, mapping=position.to_hash())
                    pipe.sadd(OPEN_POSITIONS_KEY, asset)
                    await pipe.execute()
            except WatchError:
                continue

            self.logger.info(
                "🟢 OPEN %s [%s] entry=%.10f sol=%.4f tokens=%.2f",
                asset[:8], position.strategy.value, position.entry_price, position.sol_amount, position.token_amount,
            )
            return True

        raise StateException("Could not open position after concurrent updates", asset=asset)

    async def update_max_price(self, asset: str, price: float) -> bool:
        """Raise the high-water mark. No-op (False) unless ``price`` beats the stored max."""
        key = POSITION_KEY.format(asset=asset)

        for _ in range(MAX_TX_ATTEMPTS):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    status, stored = await pipe.hmget(key, "status", "max_price")
                    if status != PositionStatus.OPEN.value:
                        return False
                    if stored is not None and price <= float(stored):
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping={"max_price": repr(float(price)), "last_update": str(self._clock())})
                    await pipe.execute()
                    return True
            except WatchError:
                continue

        self.logger.debug("Gave up raising max price for %s after concurrent updates", asset[:8])
        return False

    async def close(
        self,
        asset: str,
        exit_price: float,
        reason: str,
        tx_ref: str = "",
        sol_received: float | None = None,
    ) -> ClosedTrade | None:
        """
        Close the open position for ``asset``.

        This is the commit point of an exit: a non-None result means the
        position is closed and journaled. Closing an absent or already-closed
        asset returns None and changes nothing.
        """
        key = POSITION_KEY.format(asset=asset)

        for _ in range(MAX_TX_ATTEMPTS):
            try:
                async with self.redis.pipeline(transaction=True) as pipe:
                    await pipe.watch(OPEN_POSITIONS_KEY, key)
                    raw = await pipe.hgetall(key)
                    is_indexed = await pipe.sismember(OPEN_POSITIONS_KEY, asset)
                    if not raw or raw.get("status") != PositionStatus.OPEN.value or not is_indexed:
                        self.logger.info("Close skipped for %s: no open position", asset[:8])
                        return None

                    position = Position.from_hash(raw)
                    closed_at = self._clock()
                    trade = self._build_trade(position, exit_price, reason, tx_ref, sol_received, closed_at)

                    pipe.multi()
                    pipe.hset(key, mapping={
                        "status": PositionStatus.CLOSED.value,
                        "exit_price": repr(trade.exit_price),
                        "exit_value": repr(trade.exit_value),
                        "pnl": repr(trade.pnl),
                        "pnl_percent": repr(trade.pnl_percent),
                        "close_reason": reason,
                        "exit_tx": tx_ref,
                        "closed_at": str(closed_at),
                        "last_update": str(closed_at),
                    })
                    pipe.srem(OPEN_POSITIONS_KEY, asset)
                    pipe.rpush(TRADES_KEY.format(day=journal_day(closed_at)), trade.to_json())
                    cooldown = self._cooldown_for(position.strategy)
                    if cooldown > 0:
                        pipe.set(COOLDOWN_KEY.format(asset=asset), reason, ex=cooldown)
                    await pipe.execute()
            except WatchError:
                continue

            emoji = "💰" if trade.pnl >= 0 else "🔻"
            self.logger.info(
                "%s EXIT %s [%s] reason=%s pnl=%+.4f SOL (%+.2f%%)",
                emoji, asset[:8], trade.strategy, reason, trade.pnl, trade.pnl_percent,
            )
            return trade

        raise StateException("Could not close position after concurrent updates", asset=asset)

    @staticmethod
    def _build_trade(
        position: Position,
        exit_price: float,
        reason: str,
        tx_ref: str,
        sol_received: float | None,
        closed_at: int,
    ) -> ClosedTrade:
        if sol_received is not None and sol_received >= 0:
            exit_value = sol_received
        else:
            exit_value = position.token_amount * exit_price
        return ClosedTrade(
            asset=position.asset,
            strategy=position.strategy.value,
            entry_price=position.entry_price,
            exit_price=exit_price,
            sol_amount=position.sol_amount,
            token_amount=position.token_amount,
            exit_value=exit_value,
            pnl=exit_value - position.sol_amount,
            pnl_percent=position.pnl_percent_at(exit_price),
            entry_time=position.entry_time,
            closed_at=closed_at,
            reason=reason,
            symbol=position.symbol,
            source_wallet=position.source_wallet,
            entry_tx=position.entry_tx,
            exit_tx=tx_ref,
        )

    async def get(self, asset: str) -> Position | None:
        raw = await self.redis.hgetall(POSITION_KEY.format(asset=asset))
        if not raw:
            return None
        return Position.from_hash(raw)

    async def get_open(self, strategy: Strategy | None = None) -> list[Position]:
        """Snapshot of open positions; a position may close right after this returns."""
        assets = await self.redis.smembers(OPEN_POSITIONS_KEY)
        if not assets:
            return []

        ordered = sorted(assets)
        async with self.redis.pipeline(transaction=False) as pipe:
            for asset in ordered:
                pipe.hgetall(POSITION_KEY.format(asset=asset))
            rows = await pipe.execute()

        positions = []
        for asset, raw in zip(ordered, rows):
            if not raw:
                self.logger.warning("Open index lists %s without a record", asset[:8])
                continue
            position = Position.from_hash(raw)
            if not position.is_open:
                continue
            if strategy is not None and position.strategy != strategy:
                continue
            positions.append(position)
        return positions

    async def is_open(self, asset: str) -> bool:
        return bool(await self.redis.sismember(OPEN_POSITIONS_KEY, asset))

    async def count_open(self) -> int:
        return await self.redis.scard(OPEN_POSITIONS_KEY)

    async def in_cooldown(self, asset: str) -> bool:
        return bool(await self.redis.exists(COOLDOWN_KEY.format(asset=asset)))

    async def get_entry_price(self, asset: str) -> float | None:
        raw = await self.redis.hget(POSITION_KEY.format(asset=asset), "entry_price")
        if raw is None:
            return None
        try:
            price = float(raw)
        except ValueError:
            return None
        return price if price > 0 else None

    async def mark_graduated(self, asset: str) -> bool:
        """Tag an open position as graduated (informational)."""
        key = POSITION_KEY.format(asset=asset)
        if await self.redis.hget(key, "status") != PositionStatus.OPEN.value:
            return False
        await self.redis.hset(key, mapping={"graduated": "1", "last_update": str(self._clock())})
        return True
