"""
Tests for the force-exit channel and copied-wallet sell detection.
"""

import time
from types import SimpleNamespace

from solders.pubkey import Pubkey

from pumpbot.constants import WALLET_CHECKED_KEY, WALLET_SOLD_KEY
from pumpbot.core.signals import ForceExitChannel, WalletActivityTracker
from pumpbot.tests.fakes import make_redis, run

TRADER = str(Pubkey.new_unique())
POOL = str(Pubkey.new_unique())
MINT = "MintX"


def balance(index, owner, amount, mint=MINT):
    return SimpleNamespace(
        account_index=index,
        mint=mint,
        owner=owner,
        ui_token_amount=SimpleNamespace(amount=str(amount)),
    )


class FakeWalletRpc:
    """Serves one signature per scripted (pre, post) balance pair, newest first."""

    def __init__(self, transactions):
        self.transactions = transactions
        self.block_time = int(time.time())
        self.signature_calls = 0
        self.transaction_calls = 0

    async def get_signatures_for_address(self, address, limit=20):
        self.signature_calls += 1
        return SimpleNamespace(value=[
            SimpleNamespace(signature=f"sig{i}", block_time=self.block_time - i, err=None)
            for i in range(len(self.transactions))
        ])

    async def get_transaction(self, signature, encoding=None, max_supported_transaction_version=None):
        self.transaction_calls += 1
        pre, post = self.transactions[int(signature[3:])]
        meta = SimpleNamespace(err=None, pre_token_balances=pre, post_token_balances=post)
        return SimpleNamespace(value=SimpleNamespace(transaction=SimpleNamespace(meta=meta)))


class TestForceExitChannel:
    """One-shot exit flags"""

    def test_consumed_once(self):
        async def scenario():
            channel = ForceExitChannel(make_redis())
            await channel.request("X", "manual_exit")
            assert await channel.peek("X") == "manual_exit"
            assert await channel.consume("X") == "manual_exit"
            assert await channel.consume("X") is None

        run(scenario())


class TestWalletActivityTracker:
    """On-chain sell detection"""

    def test_full_sell_without_post_balance(self):
        async def scenario():
            redis = make_redis()
            rpc = FakeWalletRpc([([balance(1, TRADER, 5_000_000)], [])])
            tracker = WalletActivityTracker(redis, rpc=rpc)

            sold_at = await tracker.last_sell(TRADER, MINT)
            assert sold_at == rpc.block_time * 1000
            assert await redis.get(WALLET_SOLD_KEY.format(wallet=TRADER, asset=MINT)) == str(sold_at)

        run(scenario())

    def test_partial_sell(self):
        async def scenario():
            rpc = FakeWalletRpc([([balance(1, TRADER, 5_000_000)], [balance(1, TRADER, 1_000_000)])])
            tracker = WalletActivityTracker(make_redis(), rpc=rpc)
            assert await tracker.last_sell(TRADER, MINT) == rpc.block_time * 1000

        run(scenario())

    def test_other_owners_and_mints_ignored(self):
        async def scenario():
            rpc = FakeWalletRpc([
                # A buy: the pool's balance drops, the wallet's rises
                ([balance(1, TRADER, 0), balance(2, POOL, 9_000)], [balance(1, TRADER, 500), balance(2, POOL, 8_500)]),
                # The wallet sold some other token
                ([balance(1, TRADER, 700, mint="Other")], []),
            ])
            tracker = WalletActivityTracker(make_redis(), rpc=rpc)
            assert await tracker.last_sell(TRADER, MINT) is None
            assert rpc.transaction_calls == 2

        run(scenario())

    def test_no_sell_answer_reused_until_recheck(self):
        async def scenario():
            redis = make_redis()
            rpc = FakeWalletRpc([([balance(1, TRADER, 0)], [balance(1, TRADER, 500)])])
            tracker = WalletActivityTracker(redis, rpc=rpc, recheck_sec=15)

            assert await tracker.last_sell(TRADER, MINT) is None
            assert await tracker.last_sell(TRADER, MINT) is None
            assert rpc.signature_calls == 1
            assert 0 < await redis.ttl(WALLET_CHECKED_KEY.format(wallet=TRADER, asset=MINT)) <= 15

            await tracker.clear(TRADER, MINT)
            assert await tracker.last_sell(TRADER, MINT) is None
            assert rpc.signature_calls == 2

        run(scenario())

    def test_recorded_sell_skips_chain(self):
        async def scenario():
            rpc = FakeWalletRpc([])
            tracker = WalletActivityTracker(make_redis(), rpc=rpc)
            await tracker.record_sell(TRADER, MINT, 1_700_000_020_000)
            assert await tracker.last_sell(TRADER, MINT) == 1_700_000_020_000
            assert rpc.signature_calls == 0

        run(scenario())
