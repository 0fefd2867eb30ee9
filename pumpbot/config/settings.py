"""
Bot configuration.

Typed, validated settings for every component, parsed once at startup from an
optional YAML file and the process environment (see ``load_config``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ..constants import JUPITER_PRICE_API
from ..exceptions import ConfigurationException

logger = logging.getLogger(__name__)

# Lookback windows in seconds, keyed by the label used in thresholds and reports
MOMENTUM_WINDOWS: Dict[str, int] = {
    "15s": 15,
    "30s": 30,
    "1m": 60,
    "2m": 120,
    "5m": 300,
}


def _require(condition: bool, message: str, **context) -> None:
    if not condition:
        raise ConfigurationException(message, **context)


@dataclass
class RpcConfig:
    """Solana RPC endpoints"""
    primary_url: str = "https://api.mainnet-beta.solana.com"
    fallback_url: Optional[str] = None
    commitment: str = "confirmed"
    timeout_sec: float = 10.0
    max_retries: int = 3          # Attempts against the primary endpoint
    retry_delay_sec: float = 0.5  # Fixed delay between attempts

    def validate(self) -> None:
        _require(bool(self.primary_url), "rpc.primary_url is required")
        _require(self.max_retries >= 1, "rpc.max_retries must be >= 1", value=self.max_retries)
        _require(self.retry_delay_sec >= 0, "rpc.retry_delay_sec must be >= 0", value=self.retry_delay_sec)
        _require(self.timeout_sec > 0, "rpc.timeout_sec must be > 0", value=self.timeout_sec)


@dataclass
class ValuationConfig:
    """Price cache and anomaly guard"""
    memory_ttl_sec: float = 3.0       # In-process cache
    shared_ttl_sec: int = 10          # Redis cache
    anomaly_factor: float = 100.0     # Quotes outside [baseline/f, baseline*f] are flagged
    graduated_ttl_sec: int = 86400    # How long a graduation flag is remembered
    dex_price_url: str = JUPITER_PRICE_API
    dex_timeout_sec: float = 5.0

    def validate(self) -> None:
        _require(self.memory_ttl_sec > 0, "valuation.memory_ttl_sec must be > 0")
        _require(self.shared_ttl_sec > 0, "valuation.shared_ttl_sec must be > 0")
        _require(self.anomaly_factor > 1, "valuation.anomaly_factor must be > 1", value=self.anomaly_factor)
        _require(self.graduated_ttl_sec > 0, "valuation.graduated_ttl_sec must be > 0")


@dataclass
class MomentumConfig:
    """Pre-entry momentum detection"""
    retention_sec: int = 600
    thresholds: Dict[str, float] = field(default_factory=lambda: {
        "15s": 10.0,
        "30s": 20.0,
        "1m": 30.0,
        "2m": 50.0,
        "5m": 100.0,
    })
    min_qualifying_windows: int = 2
    persist_ttl_sec: int = 3600

    def validate(self) -> None:
        unknown = set(self.thresholds) - set(MOMENTUM_WINDOWS)
        _require(not unknown, "momentum.thresholds has unknown windows", windows=sorted(unknown))
        _require(self.min_qualifying_windows >= 1, "momentum.min_qualifying_windows must be >= 1")
        _require(
            self.retention_sec >= max(MOMENTUM_WINDOWS.values()),
            "momentum.retention_sec must cover the longest window",
            value=self.retention_sec,
        )


@dataclass
class ExitRulesConfig:
    """Exit thresholds for one strategy (percentages, minutes)"""
    take_profit_enabled: bool = True
    take_profit_pct: float = 150.0
    trailing_stop_enabled: bool = True
    trailing_stop_pct: float = 30.0   # Drawdown from peak
    stop_loss_enabled: bool = True
    stop_loss_pct: float = 20.0
    max_hold_enabled: bool = True
    max_hold_minutes: float = 60.0

    @classmethod
    def sniper_defaults(cls) -> "ExitRulesConfig":
        return cls()

    @classmethod
    def copy_defaults(cls) -> "ExitRulesConfig":
        return cls(
            take_profit_pct=200.0,
            trailing_stop_pct=35.0,
            stop_loss_pct=25.0,
            max_hold_minutes=90.0,
        )

    def validate(self, name: str) -> None:
        for attr in ("take_profit_pct", "trailing_stop_pct", "stop_loss_pct", "max_hold_minutes"):
            value = getattr(self, attr)
            _require(value >= 0, f"{name}.{attr} must be >= 0", value=value)


@dataclass
class CopyPhaseConfig:
    """Wallet-exit mirroring windows for copy positions"""
    early_window_sec: int = 180            # Mirror any wallet sell
    loss_protection_window_sec: int = 600  # Mirror only while losing
    wallet_signal_ttl_sec: int = 600
    wallet_recheck_sec: int = 15           # Quiet period after an on-chain scan finds no sell

    def validate(self) -> None:
        _require(self.early_window_sec > 0, "copy_phases.early_window_sec must be > 0")
        _require(
            self.loss_protection_window_sec > self.early_window_sec,
            "copy_phases.loss_protection_window_sec must exceed early_window_sec",
        )
        _require(self.wallet_recheck_sec >= 0, "copy_phases.wallet_recheck_sec must be >= 0")


@dataclass
class OrchestratorConfig:
    """Exit polling loop"""
    tick_interval_sec: float = 2.0
    force_fresh_prices: bool = True
    live_update_interval_sec: float = 10.0  # 0 disables periodic P&L messages
    stats_interval_sec: float = 60.0
    exit_on_graduation: bool = False       # Force-close positions whose curve completes

    def validate(self) -> None:
        _require(self.tick_interval_sec > 0, "orchestrator.tick_interval_sec must be > 0")
        _require(self.live_update_interval_sec >= 0, "orchestrator.live_update_interval_sec must be >= 0")


@dataclass
class StoreConfig:
    """Redis connection and position bookkeeping"""
    redis_url: str = "redis://localhost:6379/0"
    sniper_cooldown_sec: int = 300
    copy_cooldown_sec: int = 60
    force_exit_ttl_sec: int = 60

    def validate(self) -> None:
        _require(bool(self.redis_url), "store.redis_url is required")
        _require(self.sniper_cooldown_sec >= 0, "store.sniper_cooldown_sec must be >= 0")
        _require(self.copy_cooldown_sec >= 0, "store.copy_cooldown_sec must be >= 0")


@dataclass
class TelegramConfig:
    """Telegram notification config"""
    enabled: bool = True
    bot_token: str = ""
    chat_id: str = ""
    timeout_sec: float = 10.0

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.bot_token and self.chat_id)


@dataclass
class ExecutionConfig:
    """Order execution"""
    dry_run: bool = True        # Simulate fills instead of sending orders
    slippage_pct: float = 1.0   # Max random slippage for simulated fills
    fee_bps: float = 100.0

    def validate(self) -> None:
        _require(0 <= self.slippage_pct < 100, "execution.slippage_pct must be in [0, 100)")
        _require(self.fee_bps >= 0, "execution.fee_bps must be >= 0")


@dataclass
class EntryConfig:
    """Entry gating for incoming signals"""
    enabled: bool = True            # Auto-trading switch
    sniper_buy_sol: float = 0.05
    copy_buy_sol: float = 0.05
    sniper_max_positions: int = 3
    copy_max_positions: int = 2
    require_twitter: bool = True      # Sniper: launch must link an x.com profile
    min_bundle_sol: float = 0.5       # Sniper: minimum creator bundle
    min_wallets_to_buy: int = 1       # Copy: tracked wallets that must be buying
    max_daily_loss_sol: float = 0.0   # Realized loss today that halts entries; 0 disables
    candle_analysis_delay_sec: float = 30.0
    momentum_samples: int = 3
    sample_interval_sec: float = 5.0
    poll_interval_sec: float = 1.0    # Idle wait on an empty signal queue

    def validate(self) -> None:
        _require(self.sniper_buy_sol > 0, "entry.sniper_buy_sol must be > 0")
        _require(self.copy_buy_sol > 0, "entry.copy_buy_sol must be > 0")
        _require(self.sniper_max_positions >= 1, "entry.sniper_max_positions must be >= 1")
        _require(self.copy_max_positions >= 1, "entry.copy_max_positions must be >= 1")
        _require(self.min_bundle_sol >= 0, "entry.min_bundle_sol must be >= 0")
        _require(self.min_wallets_to_buy >= 1, "entry.min_wallets_to_buy must be >= 1")
        _require(self.max_daily_loss_sol >= 0, "entry.max_daily_loss_sol must be >= 0")
        _require(self.candle_analysis_delay_sec >= 0, "entry.candle_analysis_delay_sec must be >= 0")
        _require(self.momentum_samples >= 0, "entry.momentum_samples must be >= 0")
        _require(self.sample_interval_sec >= 0, "entry.sample_interval_sec must be >= 0")
        _require(self.poll_interval_sec > 0, "entry.poll_interval_sec must be > 0")


@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_dir: str = "logs"


@dataclass
class BotConfig:
    """Complete bot configuration"""
    rpc: RpcConfig = field(default_factory=RpcConfig)
    valuation: ValuationConfig = field(default_factory=ValuationConfig)
    momentum: MomentumConfig = field(default_factory=MomentumConfig)
    sniper_exit: ExitRulesConfig = field(default_factory=ExitRulesConfig.sniper_defaults)
    copy_exit: ExitRulesConfig = field(default_factory=ExitRulesConfig.copy_defaults)
    copy_phases: CopyPhaseConfig = field(default_factory=CopyPhaseConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    entry: EntryConfig = field(default_factory=EntryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotConfig":
        """Create from dictionary"""
        try:
            sniper_exit = asdict(ExitRulesConfig.sniper_defaults())
            sniper_exit.update(data.get("sniper_exit", {}))
            copy_exit = asdict(ExitRulesConfig.copy_defaults())
            copy_exit.update(data.get("copy_exit", {}))
            momentum = dict(data.get("momentum", {}))
            if "thresholds" in momentum:
                thresholds = MomentumConfig().thresholds
                thresholds.update(momentum["thresholds"])
                momentum["thresholds"] = thresholds
            return cls(
                rpc=RpcConfig(**data.get("rpc", {})),
                valuation=ValuationConfig(**data.get("valuation", {})),
                momentum=MomentumConfig(**momentum),
                sniper_exit=ExitRulesConfig(**sniper_exit),
                copy_exit=ExitRulesConfig(**copy_exit),
                copy_phases=CopyPhaseConfig(**data.get("copy_phases", {})),
                orchestrator=OrchestratorConfig(**data.get("orchestrator", {})),
                store=StoreConfig(**data.get("store", {})),
                telegram=TelegramConfig(**data.get("telegram", {})),
                execution=ExecutionConfig(**data.get("execution", {})),
                entry=EntryConfig(**data.get("entry", {})),
                logging=LoggingConfig(**data.get("logging", {})),
            )
        except TypeError as e:
            raise ConfigurationException("Unknown configuration field", error=str(e)) from e

    def validate(self) -> "BotConfig":
        self.rpc.validate()
        self.valuation.validate()
        self.momentum.validate()
        self.sniper_exit.validate("sniper_exit")
        self.copy_exit.validate("copy_exit")
        self.copy_phases.validate()
        self.orchestrator.validate()
        self.store.validate()
        self.execution.validate()
        self.entry.validate()
        return self


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var -> (section, field, parser)
ENV_OVERRIDES = {
    "RPC_URL": ("rpc", "primary_url", str),
    "RPC_FALLBACK_URL": ("rpc", "fallback_url", str),
    "REDIS_URL": ("store", "redis_url", str),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token", str),
    "TELEGRAM_CHAT_ID": ("telegram", "chat_id", str),
    "TELEGRAM_ENABLED": ("telegram", "enabled", _env_bool),
    "DRY_RUN": ("execution", "dry_run", _env_bool),
    "AUTO_TRADING": ("entry", "enabled", _env_bool),
    "MAX_POSITIONS": ("entry", "sniper_max_positions", int),
    "REQUIRE_TWITTER": ("entry", "require_twitter", _env_bool),
    "MIN_BUNDLE_AMOUNT": ("entry", "min_bundle_sol", float),
    "MIN_WALLETS_TO_BUY": ("entry", "min_wallets_to_buy", int),
    "MAX_DAILY_LOSS_SOL": ("entry", "max_daily_loss_sol", float),
    "CANDLE_ANALYSIS_DELAY_SEC": ("entry", "candle_analysis_delay_sec", float),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_DIR": ("logging", "log_dir", str),
    "MONITOR_INTERVAL_SEC": ("orchestrator", "tick_interval_sec", float),
}

for _prefix, _section in (("SNIPER", "sniper_exit"), ("COPY", "copy_exit")):
    ENV_OVERRIDES.update({
        f"{_prefix}_TAKE_PROFIT_PCT": (_section, "take_profit_pct", float),
        f"{_prefix}_TRAILING_STOP_PCT": (_section, "trailing_stop_pct", float),
        f"{_prefix}_STOP_LOSS_PCT": (_section, "stop_loss_pct", float),
        f"{_prefix}_MAX_HOLD_MINUTES": (_section, "max_hold_minutes", float),
        f"{_prefix}_TAKE_PROFIT_ENABLED": (_section, "take_profit_enabled", _env_bool),
        f"{_prefix}_TRAILING_STOP_ENABLED": (_section, "trailing_stop_enabled", _env_bool),
        f"{_prefix}_STOP_LOSS_ENABLED": (_section, "stop_loss_enabled", _env_bool),
        f"{_prefix}_MAX_HOLD_ENABLED": (_section, "max_hold_enabled", _env_bool),
    })


def apply_env_overrides(config: BotConfig, environ: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Overlay environment variables onto a config (env wins over file)."""
    environ = os.environ if environ is None else environ
    for name, (section, attr, parse) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = parse(raw)
        except ValueError as e:
            raise ConfigurationException("Invalid environment value", variable=name, value=raw) from e
        setattr(getattr(config, section), attr, value)
    return config


def load_config(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> BotConfig:
    """
    Load configuration from an optional YAML file plus environment overrides.

    Raises:
        ConfigurationException: if the file is missing/unreadable or a value
            violates its constraint.
    """
    data: Dict[str, Any] = {}
    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationException("Config file not found", path=str(config_path))
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationException("Config file is not valid YAML", path=str(config_path)) from e
        logger.info("Loaded config from %s", config_path)

    config = apply_env_overrides(BotConfig.from_dict(data), environ)
    return config.validate()
