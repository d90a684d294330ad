from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from itertools import combinations
from typing import Optional, Sequence

from chain.client import ChainClient
from core.base_types import Address, Token, TokenAmount
from network_config import NetworkConfig

from .errors import InvalidPath, NoLiquidity, RoutingError
from .path_encoder import SwapPlan, build_multi_hop_swap, build_single_hop_swap
from .pool_discovery import PoolCandidate, PoolDiscovery, PoolInfo
from .quote_engine import Quote, QuoteEngine
from .token_directory import TokenCache, TokenDirectory

logger = logging.getLogger(__name__)

TokenInput = str | Address
AmountInput = str | Decimal | TokenAmount


class PricingEngine:
    """
    Main interface for the routing module.
    Wires the token directory, pool discovery, quote engine and calldata
    builders against one network deployment.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        network: NetworkConfig,
        cache: Optional[TokenCache] = None,
    ):
        self.client = chain_client
        self.network = network
        self.tokens = TokenDirectory(chain_client, network.tokens, cache)
        self.discovery = PoolDiscovery(
            chain_client, Address(network.factory), self.tokens
        )
        self.quotes = QuoteEngine(
            chain_client, Address(network.quoter), self.tokens, self.discovery
        )
        self.router = Address(network.swap_router)

    def resolve_address(self, token: TokenInput) -> Address:
        if isinstance(token, Address):
            return token
        return self.tokens.resolve(token)

    async def resolve_token(self, token: TokenInput) -> Token:
        return await self.tokens.get_metadata(self.resolve_address(token))

    async def discover_pools(
        self, token_a: TokenInput, token_b: TokenInput
    ) -> list[PoolCandidate]:
        return await self.discovery.find_pools(
            self.resolve_address(token_a), self.resolve_address(token_b)
        )

    async def quote(
        self,
        token_in: TokenInput,
        token_out: TokenInput,
        amount_in: str | Decimal,
        slippage_percent: int | str | Decimal | float = Decimal("0.5"),
    ) -> Quote:
        return await self.quotes.quote_single_hop(
            self.resolve_address(token_in),
            self.resolve_address(token_out),
            amount_in,
            slippage_percent,
        )

    async def quote_path(
        self,
        path: Sequence[TokenInput],
        amount_in: str | Decimal,
        slippage_percent: int | str | Decimal | float = Decimal("0.5"),
    ) -> Quote:
        return await self.quotes.quote_multi_hop(
            [self.resolve_address(token) for token in path],
            amount_in,
            slippage_percent,
        )

    async def build_swap(
        self,
        token_in: TokenInput,
        token_out: TokenInput,
        amount_in: AmountInput,
        amount_out_min: AmountInput,
        recipient: Optional[TokenInput] = None,
        deadline: Optional[int] = None,
        fee: Optional[int] = None,
    ) -> SwapPlan:
        """
        exactInputSingle plan. Without ``fee`` the highest-liquidity pool's
        tier is used.
        """
        info_in, info_out = await asyncio.gather(
            self.resolve_token(token_in), self.resolve_token(token_out)
        )
        pools = await self.discovery.find_pools(info_in.address, info_out.address)
        if not pools:
            raise NoLiquidity(
                f"No liquidity pool found for {info_in.symbol}/{info_out.symbol}"
            )
        pool = pools[0]
        if fee is not None:
            pool = next((p for p in pools if p.fee == fee), None)
            if pool is None:
                raise NoLiquidity(
                    f"No {fee} fee pool for {info_in.symbol}/{info_out.symbol}"
                )
        return build_single_hop_swap(
            self.router,
            info_in,
            info_out,
            pool.fee,
            _as_amount(info_in, amount_in),
            _as_amount(info_out, amount_out_min),
            recipient=_as_address(recipient),
            deadline=deadline,
            pool=pool,
        )

    async def build_path_swap(
        self,
        path: Sequence[TokenInput],
        amount_in: AmountInput,
        amount_out_min: AmountInput,
        recipient: Optional[TokenInput] = None,
        deadline: Optional[int] = None,
        fees: Optional[Sequence[int]] = None,
    ) -> SwapPlan:
        """exactInput plan; missing fees come from each hop's top pool."""
        if len(path) < 2:
            raise InvalidPath("Path must have at least 2 tokens")
        tokens = await asyncio.gather(*(self.resolve_token(t) for t in path))
        if fees is None:
            hop_fees = []
            for first, second in zip(tokens, tokens[1:]):
                pools = await self.discovery.find_pools(first.address, second.address)
                if not pools:
                    raise NoLiquidity(
                        f"No pool found for {first.symbol} → {second.symbol}"
                    )
                hop_fees.append(pools[0].fee)
            fees = hop_fees
        return build_multi_hop_swap(
            self.router,
            tokens,
            fees,
            _as_amount(tokens[0], amount_in),
            _as_amount(tokens[-1], amount_out_min),
            recipient=_as_address(recipient),
            deadline=deadline,
        )

    async def get_pool_info(
        self, token_a: TokenInput, token_b: TokenInput, fee: int
    ) -> Optional[PoolInfo]:
        return await self.discovery.get_pool_info(
            self.resolve_address(token_a), self.resolve_address(token_b), fee
        )

    async def get_all_pools(self) -> list[PoolInfo]:
        """Active pools between every pair of configured tokens."""
        addresses = [Address(entry["address"]) for entry in self.network.tokens.values()]
        pools: list[PoolInfo] = []
        for token_a, token_b in combinations(addresses, 2):
            for candidate in await self.discovery.find_pools(token_a, token_b):
                if not candidate.is_active:
                    continue
                info = await self.discovery.get_pool_info(token_a, token_b, candidate.fee)
                if info is not None:
                    pools.append(info)
        return pools

    async def get_token_price(
        self, token: TokenInput, base_token: TokenInput = "USDC"
    ) -> dict:
        """
        Price of one whole token in ``base_token``. Falls back to a route
        through the wrapped native token when there is no direct quote.
        """
        info = await self.resolve_token(token)
        base = await self.resolve_token(base_token)
        try:
            quote = await self.quotes.quote_single_hop(info.address, base.address, "1")
            route = "direct"
        except RoutingError as exc:
            wrapped = self.resolve_address(self.network.wrapped_native_symbol)
            if info.address == wrapped or base.address == wrapped:
                raise
            logger.info("no direct price for %s, routing via %s: %s", info.symbol, wrapped, exc)
            quote = await self.quotes.quote_multi_hop(
                [info.address, wrapped, base.address], "1"
            )
            route = f"multi-hop via {self.network.wrapped_native_symbol}"
        return {
            "token": info.symbol,
            "tokenAddress": info.address.checksum,
            "baseToken": base.symbol,
            "price": quote.amount_out.formatted(),
            "priceImpact": f"{quote.price_impact_percent:f}",
            "route": route,
        }


def _as_amount(token: Token, value: AmountInput) -> TokenAmount:
    if isinstance(value, TokenAmount):
        if value.decimals != token.decimals:
            raise ValueError(
                f"amount has {value.decimals} decimals, {token.symbol} has {token.decimals}"
            )
        return value
    return token.amount(value)


def _as_address(value: Optional[TokenInput]) -> Optional[Address]:
    if value is None or isinstance(value, Address):
        return value
    return Address(value)
