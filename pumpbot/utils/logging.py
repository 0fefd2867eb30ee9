from __future__ import annotations

import logging
from pathlib import Path


class ColoredFormatter(logging.Formatter):
    """Console formatter that colors position lifecycle events."""

    GREY = "\x1b[90m"
    GREEN = "\x1b[92m"
    CYAN = "\x1b[96m"
    RED = "\x1b[91m"
    MAGENTA = "\x1b[95m"
    YELLOW = "\x1b[93m"
    RESET = "\x1b[0m"

    DATE_FMT = "%H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            color = self.RED
        elif record.levelno >= logging.WARNING:
            color = self.YELLOW
        else:
            color = self.GREY

        # Keyword highlighting (override base color)
        msg = str(record.msg)
        if "OPEN" in msg or "BUY" in msg or "🟢" in msg:
            color = self.GREEN
        elif "GRADUATED" in msg or "🎓" in msg:
            color = self.CYAN
        elif "SELL" in msg or "EXIT" in msg or "💰" in msg:
            color = self.MAGENTA

        formatter = logging.Formatter(f"{color}%(asctime)s %(message)s{self.RESET}", datefmt=self.DATE_FMT)
        return formatter.format(record)


def setup_logging(level: str = "INFO", log_dir: str = "logs") -> None:
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # File Handler (Plain text, no colors)
    file_handler = logging.FileHandler(log_path / "bot.log", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter())

    root = logging.getLogger()
    root.setLevel(level.upper())

    # Remove existing handlers to avoid duplicates on reload
    if root.hasHandlers():
        root.handlers.clear()

    root.addHandler(file_handler)
    root.addHandler(console_handler)

    # Silence noisy HTTP/RPC libraries - only show WARNING and above
    for noisy in ("httpx", "httpcore", "hpack", "asyncio", "solana", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
