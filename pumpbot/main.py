"""
Entry point: ``python -m pumpbot.main [--config config.yaml]``

Runs the entry signal consumers and the sniper and copy exit monitors until
SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import platform
import signal
import sys
from dataclasses import dataclass

from pumpbot.config import BotConfig, load_config
from pumpbot.core.bonding_curve import BondingCurveReader
from pumpbot.core.dex_price_client import JupiterPriceClient
from pumpbot.core.entry import EntryService
from pumpbot.core.execution import ExecutionClient, PaperExecutor
from pumpbot.core.exit_policy import WalletExitPhases, policy_for
from pumpbot.core.models import Strategy
from pumpbot.core.momentum import MomentumAnalyzer
from pumpbot.core.notifier import TelegramNotifier
from pumpbot.core.orchestrator import ExitOrchestrator
from pumpbot.core.position_store import PositionStore
from pumpbot.core.signals import ForceExitChannel, WalletActivityTracker
from pumpbot.core.store import connect_store
from pumpbot.core.valuation import ValuationService
from pumpbot.exceptions import BotException, ConfigurationException
from pumpbot.utils.logging import setup_logging

logger = logging.getLogger("pumpbot.main")


@dataclass
class Services:
    store: PositionStore
    valuation: ValuationService
    momentum: MomentumAnalyzer
    executor: ExecutionClient
    notifier: TelegramNotifier
    force_exits: ForceExitChannel
    wallets: WalletActivityTracker
    entry: EntryService
    orchestrators: list[ExitOrchestrator]

    async def close(self) -> None:
        await self.valuation.close()
        await self.notifier.close()


def build_services(config: BotConfig, redis, executor: ExecutionClient | None = None) -> Services:
    """Wire every component from an already-connected Redis client."""
    store = PositionStore(redis, config.store)

    rpc = config.rpc
    primary = BondingCurveReader(rpc.primary_url, "primary", rpc.commitment, rpc.timeout_sec)
    fallback = None
    if rpc.fallback_url:
        fallback = BondingCurveReader(rpc.fallback_url, "fallback", rpc.commitment, rpc.timeout_sec)
    dex = JupiterPriceClient(config.valuation.dex_price_url, config.valuation.dex_timeout_sec)
    valuation = ValuationService(
        config.valuation,
        rpc,
        primary,
        fallback=fallback,
        dex=dex,
        redis=redis,
        entry_price_lookup=store.get_entry_price,
    )

    if executor is None:
        if not config.execution.dry_run:
            raise ConfigurationException("Live trading requires an execution client; set DRY_RUN=true for paper mode")
        executor = PaperExecutor(config.execution, valuation)

    momentum = MomentumAnalyzer(config.momentum, redis)
    notifier = TelegramNotifier(config.telegram)
    force_exits = ForceExitChannel(redis, config.store.force_exit_ttl_sec)
    wallets = WalletActivityTracker(
        redis,
        config.copy_phases.wallet_signal_ttl_sec,
        rpc=primary.client,
        recheck_sec=config.copy_phases.wallet_recheck_sec,
    )
    entry = EntryService(config.entry, store, executor, valuation, momentum, notifier, force_exits=force_exits)

    orchestrators = [
        ExitOrchestrator(
            Strategy.SNIPER,
            config.orchestrator,
            store,
            valuation,
            policy_for(Strategy.SNIPER, config.sniper_exit),
            executor,
            force_exits,
            momentum=momentum,
            notifier=notifier,
        ),
        ExitOrchestrator(
            Strategy.COPY,
            config.orchestrator,
            store,
            valuation,
            policy_for(Strategy.COPY, config.copy_exit),
            executor,
            force_exits,
            momentum=momentum,
            wallet_phases=WalletExitPhases(config.copy_phases),
            wallets=wallets,
            notifier=notifier,
        ),
    ]

    return Services(
        store=store,
        valuation=valuation,
        momentum=momentum,
        executor=executor,
        notifier=notifier,
        force_exits=force_exits,
        wallets=wallets,
        entry=entry,
        orchestrators=orchestrators,
    )


async def run(config: BotConfig) -> None:
    if not config.execution.dry_run:
        raise ConfigurationException("Live trading requires an execution client; set DRY_RUN=true for paper mode")

    redis = await connect_store(config.store.redis_url)
    services = build_services(config, redis)
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig) -> None:
        logger.info("🛑 [SHUTDOWN] Received signal %s", sig)
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_shutdown, sig)

    mode = "PAPER" if config.execution.dry_run else "LIVE"
    open_count = await services.store.count_open()
    logger.info("✅ Bot up (%s mode, %d open positions)", mode, open_count)

    tasks = [asyncio.create_task(o.run()) for o in services.orchestrators]
    tasks.append(asyncio.create_task(services.entry.run()))
    try:
        await shutdown_event.wait()
    finally:
        logger.info("Initiating graceful shutdown...")
        services.entry.stop()
        for orchestrator in services.orchestrators:
            orchestrator.stop()
        # In-flight sells finish; loops exit at the end of their sweep
        await asyncio.gather(*tasks, return_exceptions=True)
        await services.close()
        await redis.aclose()
        logger.info("Shutdown complete")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="pump.fun position exit engine")
    parser.add_argument("--config", help="YAML config file (env vars override it)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigurationException as e:
        print(f"🔥 Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.logging.level, config.logging.log_dir)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("👋 Bot stopped by user.")
    except BotException as e:
        logger.critical("🔥 Fatal: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
