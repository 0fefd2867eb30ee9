from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from redis.exceptions import RedisError

from pumpbot.config import MOMENTUM_WINDOWS, MomentumConfig
from pumpbot.constants import PRICE_HISTORY_KEY
from pumpbot.core.models import now_ms

if TYPE_CHECKING:
    from pumpbot.core.valuation import ValuationService


@dataclass(frozen=True, order=True)
class MomentumSample:
    timestamp: int  # epoch ms
    price: float


@dataclass
class WindowMomentum:
    label: str
    seconds: int
    threshold: float
    samples: int
    gain_pct: float | None = None  # None = fewer than 2 samples in window

    @property
    def has_momentum(self) -> bool:
        return self.gain_pct is not None and self.gain_pct >= self.threshold


@dataclass
class MomentumReport:
    asset: str
    samples: int
    required_windows: int
    windows: dict[str, WindowMomentum] = field(default_factory=dict)

    @property
    def qualifying(self) -> list[str]:
        return [label for label, window in self.windows.items() if window.has_momentum]

    @property
    def has_momentum(self) -> bool:
        return bool(self.qualifying)

    @property
    def is_strong(self) -> bool:
        return len(self.qualifying) >= self.required_windows

    def summary(self) -> str:
        parts = []
        for label, window in self.windows.items():
            if window.gain_pct is None:
                parts.append(f"{label}=n/a")
            else:
                mark = "✓" if window.has_momentum else "✗"
                parts.append(f"{label}={window.gain_pct:+.1f}%{mark}")
        return " ".join(parts)


@dataclass
class MomentumDecision:
    should_snipe: bool
    reason: str
    report: MomentumReport | None = None


class MomentumAnalyzer:
    """
    Rolling per-asset price history with multi-window gain detection.

    A window shows momentum when its gain reaches the configured threshold;
    an asset only counts as strong when at least ``min_qualifying_windows``
    windows agree, so a single spike is not enough.
    """

    def __init__(self, config: MomentumConfig, redis=None, clock: Callable[[], int] = now_ms) -> None:
        self.config = config
        self.redis = redis
        self._clock = clock
        self._samples: dict[str, list[MomentumSample]] = {}
        self.logger = logging.getLogger("pumpbot.momentum")

    def samples(self, asset: str) -> list[MomentumSample]:
        return list(self._samples.get(asset, []))

    async def record_sample(self, asset: str, price: float, timestamp: int | None = None) -> None:
        if price is None or price <= 0:
            self.logger.debug("Ignoring non-positive price for %s", asset[:8])
            return

        sample = MomentumSample(timestamp=self._clock() if timestamp is None else int(timestamp), price=float(price))
        history = self._samples.setdefault(asset, [])
        bisect.insort(history, sample)
        cutoff = self._prune(asset)

        if self.redis is None:
            return
        key = PRICE_HISTORY_KEY.format(asset=asset)
        try:
            async with self.redis.pipeline(transaction=False) as pipe:
                pipe.zadd(key, {f"{sample.timestamp}:{sample.price!r}": sample.timestamp})
                pipe.zremrangebyscore(key, "-inf", f"({cutoff}")
                pipe.expire(key, self.config.persist_ttl_sec)
                await pipe.execute()
        except RedisError as e:
            self.logger.debug("Could not persist price sample for %s: %s", asset[:8], e)

    async def load_history(self, asset: str) -> int:
        """Reload samples persisted by an earlier process. Returns samples loaded."""
        if self.redis is None:
            return 0
        cutoff = self._clock() - self.config.retention_sec * 1000
        try:
            rows = await self.redis.zrangebyscore(PRICE_HISTORY_KEY.format(asset=asset), cutoff, "+inf")
        except RedisError as e:
            self.logger.warning("Could not load price history for %s: %s", asset[:8], e)
            return 0

        loaded = []
        for member in rows:
            ts, _, price = member.partition(":")
            try:
                loaded.append(MomentumSample(timestamp=int(ts), price=float(price)))
            except ValueError:
                continue
        history = sorted(set(self._samples.get(asset, [])) | set(loaded))
        if history:
            self._samples[asset] = history
        return len(loaded)

    def analyze(self, asset: str) -> MomentumReport:
        history = self._samples.get(asset, [])
        now = self._clock()
        report = MomentumReport(
            asset=asset,
            samples=len(history),
            required_windows=self.config.min_qualifying_windows,
        )

        for label, seconds in MOMENTUM_WINDOWS.items():
            threshold = self.config.thresholds.get(label)
            if threshold is None:
                continue
            start = now - seconds * 1000
            in_window = [s for s in history if s.timestamp >= start]
            window = WindowMomentum(label=label, seconds=seconds, threshold=threshold, samples=len(in_window))
            if len(in_window) >= 2:
                first, last = in_window[0], in_window[-1]
                window.gain_pct = (last.price - first.price) / first.price * 100
            report.windows[label] = window

        return report

    def evaluate_entry(self, asset: str) -> MomentumDecision:
        """Entry gate for the sniper: does this asset show strong momentum right now?"""
        if len(self._samples.get(asset, [])) < 2:
            return MomentumDecision(False, "no_price_data")

        report = self.analyze(asset)
        if not report.has_momentum:
            return MomentumDecision(False, "no_momentum", report)
        if not report.is_strong:
            self.logger.info(
                "🔇 Single-window spike on %s (%s), need %d windows",
                asset[:8], report.summary(), report.required_windows,
            )
            return MomentumDecision(False, "insufficient_momentum_intervals", report)

        self.logger.info("🚀 Strong momentum on %s: %s", asset[:8], report.summary())
        return MomentumDecision(True, "strong_momentum", report)

    async def check_momentum(self, asset: str, valuation: "ValuationService") -> MomentumDecision:
        """Sample a fresh price for ``asset`` and evaluate it."""
        if asset not in self._samples:
            await self.load_history(asset)
        quote = await valuation.get_price(asset, force_fresh=True)
        if quote is None:
            return MomentumDecision(False, "no_price_data")
        await self.record_sample(asset, quote.price)
        return self.evaluate_entry(asset)

    async def clear(self, asset: str) -> None:
        self._samples.pop(asset, None)
        if self.redis is None:
            return
        try:
            await self.redis.delete(PRICE_HISTORY_KEY.format(asset=asset))
        except RedisError as e:
            self.logger.debug("Could not clear price history for %s: %s", asset[:8], e)

    def _prune(self, asset: str) -> int:
        cutoff = self._clock() - self.config.retention_sec * 1000
        history = self._samples.get(asset, [])
        keep_from = bisect.bisect_left(history, MomentumSample(timestamp=cutoff, price=float("-inf")))
        if keep_from:
            del history[:keep_from]
        if not history:
            self._samples.pop(asset, None)
        return cutoff
