from __future__ import annotations

import logging
from html import escape
from typing import Any

import httpx

from pumpbot.config import TelegramConfig
from pumpbot.core.models import ClosedTrade, Position, now_ms


class TelegramNotifier:
    """Human-readable alerts. Never raises: a failed message is only logged."""

    def __init__(self, config: TelegramConfig, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self.token = config.bot_token
        self.chat_id = config.chat_id
        self.enabled = config.active
        self.client = client or httpx.AsyncClient(timeout=config.timeout_sec)
        self.logger = logging.getLogger("pumpbot.telegram")

    async def close(self) -> None:
        await self.client.aclose()

    async def send_message(self, text: str) -> bool:
        if not self.enabled:
            return False
        payload: dict[str, Any] = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        return bool(await self._post("sendMessage", payload))

    async def send_position_opened(self, position: Position) -> bool:
        return await self.send_message(build_open_message(position))

    async def send_position_closed(self, trade: ClosedTrade) -> bool:
        return await self.send_message(build_close_message(trade))

    async def send_pnl_update(self, position: Position, price: float) -> bool:
        return await self.send_message(build_update_message(position, price))

    async def _post(self, method: str, payload: dict[str, Any]) -> Any:
        url = f"https://api.telegram.org/bot{self.token}/{method}"
        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self.logger.warning("Telegram %s failed: %s", method, exc)
            return {}


def build_open_message(position: Position) -> str:
    header = "🎯 <b>SNIPER ENTRY</b>" if position.strategy.value == "sniper" else "📡 <b>COPY TRADE ENTRY</b>"
    lines = [
        header,
        f"💎 <b>{escape(position.symbol or 'UNKNOWN')}</b> | <code>{escape(position.asset)}</code>",
    ]
    if position.source_wallet:
        lines.append(f"👤 <b>Copied from:</b> <code>{escape(position.source_wallet)}</code>")
    lines.extend([
        "",
        f"• Size: <b>{position.sol_amount:.4f} SOL</b>",
        f"• Tokens: {position.token_amount:,.0f}",
        f"• Entry: {position.entry_price:.10f} SOL",
    ])
    return "\n".join(lines)


def build_close_message(trade: ClosedTrade) -> str:
    pnl_emoji = "🟢" if trade.pnl >= 0 else "🔴"
    if trade.pnl_percent > 100:
        pnl_emoji = "🚀"
    return "\n".join([
        f"🚪 <b>POSITION CLOSED</b> ({escape(trade.strategy)})",
        f"💎 <b>{escape(trade.symbol or 'UNKNOWN')}</b> | <code>{escape(trade.asset)}</code>",
        "",
        f"• Entry: {trade.entry_price:.10f} SOL",
        f"• Exit:  {trade.exit_price:.10f} SOL",
        f"• {pnl_emoji} <b>PnL: {trade.pnl:+.4f} SOL ({trade.pnl_percent:+.2f}%)</b>",
        f"• Hold: {_format_duration(trade.hold_seconds)}",
        "",
        f"📝 <b>Reason:</b> {escape(trade.reason)}",
    ])


def build_update_message(position: Position, price: float) -> str:
    pnl_pct = position.pnl_percent_at(price)
    value = position.token_amount * price
    pnl_emoji = "🟢" if pnl_pct >= 0 else "🔴"
    drawdown = (price - position.max_price) / position.max_price * 100 if position.max_price else 0.0
    lines = [
        f"📊 <b>{escape(position.symbol or position.asset[:8])}</b> ({position.strategy.value})",
        f"• {pnl_emoji} PnL: <b>{pnl_pct:+.2f}%</b> | Value: {value:.4f} SOL",
        f"• Price: {price:.10f} | Peak: {position.max_price:.10f} ({drawdown:+.1f}%)",
        f"• Held: {_format_duration(position.hold_seconds(now_ms()))}",
    ]
    return "\n".join(lines)


def _format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
