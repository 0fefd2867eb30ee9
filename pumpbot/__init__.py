"""Position lifecycle and exit engine for pump.fun memecoin trading."""

__version__ = "0.3.0"
