"""
Custom exception classes for the bot.

Provides typed exceptions for better error handling and debugging.
"""


class BotException(Exception):
    """Base exception for all bot-related errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ConfigurationException(BotException):
    """Raised when configuration is invalid or a required dependency is missing."""
    pass


class NetworkException(BotException):
    """Raised when network/RPC operations fail."""
    pass


class ValuationException(BotException):
    """Raised when a price source returns data that cannot be decoded."""
    pass


class PositionValidationException(BotException):
    """Raised when a position record is malformed."""
    pass


class StateException(BotException):
    """Raised when store state management operations fail."""
    pass


class ExecutionException(BotException):
    """Raised when a buy/sell submission fails."""
    pass
