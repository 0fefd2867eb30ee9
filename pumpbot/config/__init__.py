"""Config package"""
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from .settings import (
    MOMENTUM_WINDOWS,
    BotConfig,
    CopyPhaseConfig,
    EntryConfig,
    ExecutionConfig,
    ExitRulesConfig,
    LoggingConfig,
    MomentumConfig,
    OrchestratorConfig,
    RpcConfig,
    StoreConfig,
    TelegramConfig,
    ValuationConfig,
    apply_env_overrides,
    load_config,
)

__all__ = [
    "MOMENTUM_WINDOWS",
    "BotConfig",
    "CopyPhaseConfig",
    "EntryConfig",
    "ExecutionConfig",
    "ExitRulesConfig",
    "LoggingConfig",
    "MomentumConfig",
    "OrchestratorConfig",
    "RpcConfig",
    "StoreConfig",
    "TelegramConfig",
    "ValuationConfig",
    "apply_env_overrides",
    "load_config",
]
