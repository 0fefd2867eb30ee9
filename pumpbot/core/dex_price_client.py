from __future__ import annotations

import logging

import httpx

from pumpbot.constants import JUPITER_PRICE_API, WSOL_MINT
from pumpbot.utils.retry import async_retry


class JupiterPriceClient:
    """Price lookups for graduated tokens via the Jupiter Price API (v3)."""

    def __init__(self, base_url: str = JUPITER_PRICE_API, timeout: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = base_url
        self.logger = logging.getLogger("pumpbot.jupiter_price")
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            limits=httpx.Limits(max_keepalive_connections=5),
        )

    @async_retry(max_attempts=2, delay=0.25, exceptions=(httpx.TransportError,))
    async def _fetch(self, ids: str) -> dict:
        response = await self._client.get(self.base_url, params={"ids": ids})
        response.raise_for_status()
        return response.json()

    async def get_price_in_sol(self, mint: str) -> float | None:
        """
        Token price denominated in SOL, or None when Jupiter has no price yet
        (no liquidity indexed) or the request fails.
        """
        sol_mint = str(WSOL_MINT)
        try:
            # Response format: {"<mint>": {"usdPrice": 0.0012, "liquidity": ..., ...}, ...}
            data = await self._fetch(f"{mint},{sol_mint}")
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning("Jupiter price request failed for %s: %s", mint[:8], e)
            return None

        if not isinstance(data, dict):
            return None

        token_usd = _usd_price(data.get(mint))
        sol_usd = _usd_price(data.get(sol_mint))
        if not token_usd or not sol_usd:
            self.logger.debug("Jupiter has no price for %s yet", mint[:8])
            return None

        return token_usd / sol_usd

    async def close(self) -> None:
        await self._client.aclose()


def _usd_price(entry: object) -> float | None:
    if not isinstance(entry, dict):
        return None
    try:
        price = float(entry.get("usdPrice"))
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None
