from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from pumpbot.exceptions import PositionValidationException


def now_ms() -> int:
    return int(time.time() * 1000)


class Strategy(str, Enum):
    SNIPER = "sniper"
    COPY = "copy"


class PositionStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class PriceSource(str, Enum):
    CURVE = "curve"
    DEX = "dex"
    FALLBACK_ENTRY = "fallback_entry"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    TRAILING_STOP = "trailing_stop"
    STOP_LOSS = "stop_loss"
    MAX_HOLD_TIME = "max_hold_time"
    WALLET_EXIT_EARLY = "wallet_exit_early"
    WALLET_EXIT_LOSS_PROTECTION = "wallet_exit_loss_protection"
    FORCE_EXIT = "force_exit"


# Advisory priorities attached to exit decisions (1 = most urgent)
PRIORITY_FORCE = 1
PRIORITY_WALLET = 2
PRIORITY_PROFIT = 3
PRIORITY_LOSS = 4
PRIORITY_TIME = 5


def _float(raw: dict[str, str], key: str, default: float | None = 0.0) -> float | None:
    value = raw.get(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class Position:
    asset: str
    strategy: Strategy
    entry_price: float
    sol_amount: float
    token_amount: float
    entry_time: int  # epoch ms
    max_price: float = 0.0
    status: PositionStatus = PositionStatus.OPEN
    symbol: str = ""
    source_wallet: str | None = None  # Tracked wallet for copy positions
    entry_tx: str = ""
    graduated: bool = False
    last_update: int = 0
    exit_price: float | None = None
    exit_value: float | None = None
    pnl: float | None = None
    pnl_percent: float | None = None
    close_reason: str | None = None
    exit_tx: str | None = None
    closed_at: int | None = None

    def __post_init__(self) -> None:
        self.strategy = Strategy(self.strategy)
        self.status = PositionStatus(self.status)
        # High-water mark never starts below entry
        if self.entry_price > 0:
            self.max_price = max(self.max_price or 0.0, self.entry_price)
        if not self.last_update:
            self.last_update = self.entry_time

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def validate(self) -> None:
        """Raise PositionValidationException unless the record can be opened."""
        if not self.asset:
            raise PositionValidationException("Position has no asset")
        for attr in ("entry_price", "sol_amount", "token_amount"):
            value = getattr(self, attr)
            if not value or value <= 0:
                raise PositionValidationException(f"{attr} must be > 0", asset=self.asset, value=value)
        if self.entry_time <= 0:
            raise PositionValidationException("entry_time must be set", asset=self.asset)
        if self.strategy == Strategy.COPY and not self.source_wallet:
            raise PositionValidationException("Copy position requires source_wallet", asset=self.asset)

    def hold_seconds(self, now: int | None = None) -> float:
        now = now_ms() if now is None else now
        return max(0.0, (now - self.entry_time) / 1000.0)

    def pnl_percent_at(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (price - self.entry_price) / self.entry_price * 100

    def to_hash(self) -> dict[str, str]:
        data: dict[str, str] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, bool):
                value = "1" if value else "0"
            data[key] = str(value)
        return data

    @classmethod
    def from_hash(cls, raw: dict[str, str]) -> "Position":
        """Rebuild from a store hash. Missing numeric fields read as 0 so guards can reject them."""
        strategy = raw.get("strategy", Strategy.SNIPER.value)
        status = raw.get("status", PositionStatus.OPEN.value)
        return cls(
            asset=raw.get("asset", ""),
            strategy=Strategy(strategy) if strategy in Strategy._value2member_map_ else Strategy.SNIPER,
            entry_price=_float(raw, "entry_price"),
            sol_amount=_float(raw, "sol_amount"),
            token_amount=_float(raw, "token_amount"),
            entry_time=int(_float(raw, "entry_time")),
            max_price=_float(raw, "max_price"),
            status=PositionStatus(status) if status in PositionStatus._value2member_map_ else PositionStatus.OPEN,
            symbol=raw.get("symbol", ""),
            source_wallet=raw.get("source_wallet") or None,
            entry_tx=raw.get("entry_tx", ""),
            graduated=raw.get("graduated") == "1",
            last_update=int(_float(raw, "last_update")),
            exit_price=_float(raw, "exit_price", None),
            exit_value=_float(raw, "exit_value", None),
            pnl=_float(raw, "pnl", None),
            pnl_percent=_float(raw, "pnl_percent", None),
            close_reason=raw.get("close_reason"),
            exit_tx=raw.get("exit_tx"),
            closed_at=int(_float(raw, "closed_at")) if raw.get("closed_at") else None,
        )


@dataclass
class PriceQuote:
    asset: str
    price: float  # SOL per whole token
    source: PriceSource
    graduated: bool = False
    fetched_at: int = field(default_factory=now_ms)
    anomalous: bool = False
    baseline: float | None = None  # Reserve-ratio price used by the anomaly guard

    def to_json(self) -> str:
        data = asdict(self)
        data["source"] = self.source.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "PriceQuote":
        data = json.loads(raw)
        data["source"] = PriceSource(data["source"])
        return cls(**data)


@dataclass
class ValueQuote:
    sol_value: float
    price: float
    source: PriceSource
    graduated: bool = False
    anomalous: bool = False


@dataclass
class ExitDecision:
    should_exit: bool
    reason: str
    description: str = ""
    priority: int | None = None

    def __post_init__(self) -> None:
        if isinstance(self.reason, Enum):
            self.reason = self.reason.value

    @classmethod
    def hold(cls, reason: str = "hold", description: str = "") -> "ExitDecision":
        return cls(False, reason, description)

    @classmethod
    def exit(cls, reason: str, description: str, priority: int) -> "ExitDecision":
        return cls(True, reason, description, priority)


@dataclass
class ClosedTrade:
    """Journal record written once per close."""
    asset: str
    strategy: str
    entry_price: float
    exit_price: float
    sol_amount: float
    token_amount: float
    exit_value: float
    pnl: float
    pnl_percent: float
    entry_time: int
    closed_at: int
    reason: str
    symbol: str = ""
    source_wallet: str | None = None
    entry_tx: str = ""
    exit_tx: str = ""

    @property
    def hold_seconds(self) -> float:
        return max(0.0, (self.closed_at - self.entry_time) / 1000.0)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClosedTrade":
        return cls(
            asset=data["asset"],
            strategy=data.get("strategy") or "unknown",
            entry_price=float(data.get("entry_price") or 0.0),
            exit_price=float(data.get("exit_price") or 0.0),
            sol_amount=float(data.get("sol_amount") or 0.0),
            token_amount=float(data.get("token_amount") or 0.0),
            exit_value=float(data.get("exit_value") or 0.0),
            pnl=float(data.get("pnl") or 0.0),
            pnl_percent=float(data.get("pnl_percent") or 0.0),
            entry_time=int(data.get("entry_time") or 0),
            closed_at=int(data.get("closed_at") or 0),
            reason=data.get("reason") or "unknown",
            symbol=data.get("symbol") or "",
            source_wallet=data.get("source_wallet"),
            entry_tx=data.get("entry_tx") or "",
            exit_tx=data.get("exit_tx") or "",
        )


@dataclass
class ExecutionResult:
    success: bool
    tx_ref: str = ""
    sol_received: float | None = None
    tokens_received: float | None = None
    price: float | None = None
    error: str | None = None
