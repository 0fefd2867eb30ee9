"""
Pump.fun bonding curve account decoding.

The curve account is an Anchor account: an 8-byte discriminator followed by
five little-endian u64 fields and a ``complete`` flag that flips once the
token has migrated to an open market.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solders.pubkey import Pubkey

from pumpbot.constants import BONDING_CURVE_SEED, LAMPORTS_PER_SOL, PUMP_PROGRAM, PUMP_TOKEN_DECIMALS
from pumpbot.exceptions import NetworkException, ValuationException

DISCRIMINATOR_SIZE = 8
CURVE_LAYOUT = struct.Struct("<QQQQQ?")
MIN_ACCOUNT_SIZE = DISCRIMINATOR_SIZE + CURVE_LAYOUT.size


@dataclass(frozen=True)
class BondingCurveState:
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool

    @classmethod
    def from_bytes(cls, data: bytes) -> "BondingCurveState":
        if len(data) < MIN_ACCOUNT_SIZE:
            raise ValuationException("Bonding curve account too short", size=len(data), expected=MIN_ACCOUNT_SIZE)
        state = cls(*CURVE_LAYOUT.unpack_from(data, DISCRIMINATOR_SIZE))
        if state.virtual_token_reserves == 0 or state.virtual_sol_reserves == 0:
            raise ValuationException(
                "Bonding curve has empty reserves",
                virtual_token=state.virtual_token_reserves,
                virtual_sol=state.virtual_sol_reserves,
            )
        return state

    def to_bytes(self, discriminator: bytes = bytes(DISCRIMINATOR_SIZE)) -> bytes:
        return discriminator + CURVE_LAYOUT.pack(
            self.virtual_token_reserves,
            self.virtual_sol_reserves,
            self.real_token_reserves,
            self.real_sol_reserves,
            self.token_total_supply,
            self.complete,
        )

    @property
    def reserve_price(self) -> float:
        """Constant-product spot price in SOL per whole token."""
        sol = self.virtual_sol_reserves / LAMPORTS_PER_SOL
        tokens = self.virtual_token_reserves / 10 ** PUMP_TOKEN_DECIMALS
        return sol / tokens


def derive_bonding_curve(mint: str) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [BONDING_CURVE_SEED, bytes(Pubkey.from_string(mint))],
        PUMP_PROGRAM,
    )
    return pda


class BondingCurveReader:
    """Reads raw curve accounts from one RPC endpoint."""

    def __init__(self, url: str, name: str = "primary", commitment: str = "confirmed", timeout: float = 10.0) -> None:
        self.name = name
        self.client = AsyncClient(url, commitment=Commitment(commitment), timeout=timeout)
        self.logger = logging.getLogger("pumpbot.curve")

    async def fetch_account(self, mint: str) -> bytes:
        try:
            curve = derive_bonding_curve(mint)
        except ValueError as e:
            raise ValuationException("Invalid mint address", mint=mint) from e

        try:
            resp = await self.client.get_account_info(curve)
        except (SolanaRpcException, httpx.HTTPError, OSError) as e:
            raise NetworkException("get_account_info failed", endpoint=self.name, mint=mint, error=str(e)) from e

        if resp.value is None:
            # Fresh launches can lag behind on some nodes
            raise ValuationException("Bonding curve account not found", endpoint=self.name, mint=mint)

        return bytes(resp.value.data)

    async def close(self) -> None:
        await self.client.close()
