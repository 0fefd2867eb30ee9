"""Key-value signal channels written by external watchers and read by the exit loop."""

from __future__ import annotations

import logging
import time

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey
from solders.signature import Signature

from pumpbot.constants import FORCE_EXIT_KEY, WALLET_CHECKED_KEY, WALLET_SOLD_KEY


class ForceExitChannel:
    """``force_exit:<asset> = reason`` flags, consumed exactly once."""

    def __init__(self, redis, default_ttl: int = 60) -> None:
        self.redis = redis
        self.default_ttl = default_ttl
        self.logger = logging.getLogger("pumpbot.signals")

    async def request(self, asset: str, reason: str, ttl: int | None = None) -> None:
        await self.redis.set(FORCE_EXIT_KEY.format(asset=asset), reason, ex=ttl or self.default_ttl)
        self.logger.info("⚡ Force exit requested for %s: %s", asset[:8], reason)

    async def peek(self, asset: str) -> str | None:
        return await self.redis.get(FORCE_EXIT_KEY.format(asset=asset))

    async def consume(self, asset: str) -> str | None:
        """Return and clear the pending reason, if any."""
        return await self.redis.getdel(FORCE_EXIT_KEY.format(asset=asset))


class WalletActivityTracker:
    """
    Detects when a copied wallet sold the asset we hold.

    Sell timestamps (epoch ms) are cached under ``wallet_sold:<wallet>:<asset>``;
    an external wallet watcher may write them directly. With an RPC client the
    tracker also scans the wallet's recent transactions for a decrease of its
    token balance. A scan that finds no sell is remembered for ``recheck_sec``
    under ``wallet_checked:<wallet>:<asset>`` so every exit tick does not cost
    a round of RPC calls.
    """

    def __init__(
        self,
        redis,
        ttl: int = 600,
        rpc: AsyncClient | None = None,
        lookback_sec: int = 300,
        signature_limit: int = 20,
        recheck_sec: int = 15,
    ) -> None:
        self.redis = redis
        self.ttl = ttl
        self.rpc = rpc
        self.lookback_sec = lookback_sec
        self.signature_limit = signature_limit
        self.recheck_sec = recheck_sec
        self.logger = logging.getLogger("pumpbot.wallets")

    async def record_sell(self, wallet: str, asset: str, sold_at: int) -> None:
        await self.redis.set(WALLET_SOLD_KEY.format(wallet=wallet, asset=asset), str(int(sold_at)), ex=self.ttl)

    async def last_sell(self, wallet: str, asset: str) -> int | None:
        """Timestamp of the wallet's sell of ``asset``, or None if it still holds."""
        raw = await self.redis.get(WALLET_SOLD_KEY.format(wallet=wallet, asset=asset))
        if raw is not None:
            try:
                return int(float(raw))
            except ValueError:
                self.logger.debug("Ignoring malformed wallet sell marker for %s", asset[:8])

        if self.rpc is None:
            return None
        checked_key = WALLET_CHECKED_KEY.format(wallet=wallet, asset=asset)
        if await self.redis.exists(checked_key):
            return None

        try:
            sold_at = await self._scan_chain(wallet, asset)
        except (SolanaRpcException, httpx.HTTPError, OSError, ValueError) as e:
            self.logger.warning("Wallet sell check failed for %s: %s", wallet[:8], e)
            return None

        if sold_at is None:
            if self.recheck_sec > 0:
                await self.redis.set(checked_key, "1", ex=self.recheck_sec)
            return None

        await self.record_sell(wallet, asset, sold_at)
        self.logger.info("👀 Tracked wallet %s sold %s", wallet[:8], asset[:8])
        return sold_at

    async def clear(self, wallet: str, asset: str) -> None:
        await self.redis.delete(
            WALLET_SOLD_KEY.format(wallet=wallet, asset=asset),
            WALLET_CHECKED_KEY.format(wallet=wallet, asset=asset),
        )

    async def _scan_chain(self, wallet: str, asset: str) -> int | None:
        resp = await self.rpc.get_signatures_for_address(Pubkey.from_string(wallet), limit=self.signature_limit)

        cutoff = time.time() - self.lookback_sec
        for status in resp.value or []:
            if status.block_time is None or status.block_time < cutoff:
                break
            if status.err is not None:
                continue
            try:
                if await self._is_sell(status.signature, wallet, asset):
                    return status.block_time * 1000
            except (SolanaRpcException, httpx.HTTPError, OSError) as e:
                self.logger.debug("Skipping tx %s: %s", str(status.signature)[:8], e)
        return None

    async def _is_sell(self, signature: Signature, wallet: str, asset: str) -> bool:
        """Did this transaction lower the wallet's balance of ``asset``?"""
        resp = await self.rpc.get_transaction(
            signature, encoding="jsonParsed", max_supported_transaction_version=0
        )
        tx = resp.value
        meta = tx.transaction.meta if tx is not None else None
        if meta is None or meta.err is not None:
            return False

        # A full sell closes the token account, leaving no post balance entry
        post = {b.account_index: b for b in meta.post_token_balances or []}
        for before in meta.pre_token_balances or []:
            if str(before.mint) != asset or str(before.owner) != wallet:
                continue
            after = post.get(before.account_index)
            remaining = int(after.ui_token_amount.amount) if after is not None else 0
            if remaining < int(before.ui_token_amount.amount):
                return True
        return False
