"""Fee-tier pool discovery for concentrated-liquidity pairs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from eth_abi.exceptions import DecodingError

from chain.client import ChainClient
from chain.contracts import Pool, PoolFactory
from chain.errors import ChainError
from core.base_types import Address, Token

from .token_directory import TokenDirectory
from .uniswap_v3_math import FEE_TIERS, adjusted_price, fee_percent, round_places

logger = logging.getLogger(__name__)

_PROBE_ERRORS = (ChainError, DecodingError, ValueError)


@dataclass(frozen=True)
class PoolCandidate:
    """Pool state snapshot. Built fresh on every discovery call."""

    address: Address
    fee: int
    tier_name: str
    sqrt_price_x96: int
    tick: int
    liquidity: int

    @property
    def is_active(self) -> bool:
        return self.liquidity > 0

    def to_dict(self) -> dict:
        return {
            "address": self.address.checksum,
            "fee": self.fee,
            "tierName": self.tier_name,
            "feePercent": f"{fee_percent(self.fee):f}%",
            "sqrtPriceX96": str(self.sqrt_price_x96),
            "tick": self.tick,
            "liquidity": str(self.liquidity),
            "active": self.is_active,
        }


@dataclass(frozen=True)
class PoolInfo:
    """Detailed pool view with resolved tokens and decimal-adjusted price."""

    address: Address
    token0: Token
    token1: Token
    fee: int
    liquidity: int
    sqrt_price_x96: int
    tick: int
    tick_spacing: int
    unlocked: bool

    @property
    def price(self) -> Decimal:
        return adjusted_price(
            self.sqrt_price_x96, self.token0.decimals, self.token1.decimals
        )

    def to_dict(self) -> dict:
        price = round_places(self.price, 6)
        return {
            "address": self.address.checksum,
            "token0": self.token0.to_dict(),
            "token1": self.token1.to_dict(),
            "fee": self.fee,
            "feePercent": f"{fee_percent(self.fee):f}%",
            "liquidity": str(self.liquidity),
            "sqrtPriceX96": str(self.sqrt_price_x96),
            "tick": str(self.tick),
            "tickSpacing": str(self.tick_spacing),
            "price": f"{price:f}",
            "priceFormatted": (
                f"1 {self.token0.symbol} = {price:f} {self.token1.symbol}"
            ),
            "unlocked": self.unlocked,
        }


class PoolDiscovery:
    """
    Probes the factory for each fee tier of a pair.

    The registry lookup is order-sensitive, so a miss is retried with the
    tokens reversed. Tiers that error are skipped.
    """

    def __init__(
        self,
        client: ChainClient,
        factory: Address,
        tokens: TokenDirectory,
        fee_tiers: Optional[dict[str, int]] = None,
    ):
        self._client = client
        self._factory = factory
        self._tokens = tokens
        self._fee_tiers = dict(fee_tiers or FEE_TIERS)

    async def find_pools(self, token_a: Address, token_b: Address) -> list[PoolCandidate]:
        """All existing pools for the pair, liquidity descending."""
        probes = await asyncio.gather(
            *(
                self._probe_tier(token_a, token_b, name, fee)
                for name, fee in self._fee_tiers.items()
            )
        )
        pools = [pool for pool in probes if pool is not None]
        # sorted() is stable, so equal liquidity keeps tier order
        return sorted(pools, key=lambda pool: pool.liquidity, reverse=True)

    async def get_pool_address(
        self, token_a: Address, token_b: Address, fee: int
    ) -> Optional[Address]:
        for first, second in ((token_a, token_b), (token_b, token_a)):
            (pool_address,) = await asyncio.to_thread(
                self._client.read,
                self._factory,
                PoolFactory.GET_POOL,
                first.checksum,
                second.checksum,
                fee,
            )
            address = Address(pool_address)
            if not address.is_zero:
                return address
        return None

    async def get_pool_info(
        self, token_a: Address, token_b: Address, fee: int
    ) -> Optional[PoolInfo]:
        pool_address = await self.get_pool_address(token_a, token_b, fee)
        if pool_address is None:
            return None

        slot0, (liquidity,), (token0,), (token1,), (tick_spacing,) = await asyncio.gather(
            self._read(pool_address, Pool.SLOT0),
            self._read(pool_address, Pool.LIQUIDITY),
            self._read(pool_address, Pool.TOKEN0),
            self._read(pool_address, Pool.TOKEN1),
            self._read(pool_address, Pool.TICK_SPACING),
        )
        token0_info, token1_info = await asyncio.gather(
            self._tokens.get_metadata(Address(token0)),
            self._tokens.get_metadata(Address(token1)),
        )
        return PoolInfo(
            address=pool_address,
            token0=token0_info,
            token1=token1_info,
            fee=fee,
            liquidity=int(liquidity),
            sqrt_price_x96=int(slot0[0]),
            tick=int(slot0[1]),
            tick_spacing=int(tick_spacing),
            unlocked=bool(slot0[6]),
        )

    async def _probe_tier(
        self, token_a: Address, token_b: Address, tier_name: str, fee: int
    ) -> Optional[PoolCandidate]:
        try:
            pool_address = await self.get_pool_address(token_a, token_b, fee)
            if pool_address is None:
                return None
            slot0, (liquidity,) = await asyncio.gather(
                self._read(pool_address, Pool.SLOT0),
                self._read(pool_address, Pool.LIQUIDITY),
            )
        except _PROBE_ERRORS as exc:
            logger.debug(
                "no pool for %s/%s at fee %d: %s", token_a, token_b, fee, exc
            )
            return None

        return PoolCandidate(
            address=pool_address,
            fee=fee,
            tier_name=tier_name,
            sqrt_price_x96=int(slot0[0]),
            tick=int(slot0[1]),
            liquidity=int(liquidity),
        )

    async def _read(self, address: Address, fn) -> tuple:
        return await asyncio.to_thread(self._client.read, address, fn)
