"""Single-hop and multi-hop quoting against the QuoterV2 contract."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from eth_abi.exceptions import DecodingError

from chain.client import ChainClient
from chain.contracts import QuoterV2
from chain.errors import ChainError
from core.base_types import Address, Token, TokenAmount

from .errors import InvalidPath, NoLiquidity, NoQuoteAvailable
from .pool_discovery import PoolCandidate, PoolDiscovery
from .token_directory import TokenDirectory
from .uniswap_v3_math import (
    min_amount_out,
    price_impact_percent,
    round_places,
    to_decimal,
)

logger = logging.getLogger(__name__)

_SIMULATION_ERRORS = (ChainError, DecodingError, ValueError)


@dataclass(frozen=True)
class _Simulation:
    pool: PoolCandidate
    amount_out: int
    sqrt_price_after: int
    gas_estimate: int


@dataclass(frozen=True)
class Quote:
    """Read-only quote for a single hop or a whole path."""

    path: tuple[Token, ...]
    fees: tuple[int, ...]
    amount_in: TokenAmount
    amount_out: TokenAmount
    amount_out_minimum: TokenAmount
    price_impact_percent: Decimal
    gas_estimate: int
    slippage_percent: Decimal
    pool: Optional[PoolCandidate] = None
    hops: tuple["Quote", ...] = ()

    @property
    def token_in(self) -> Token:
        return self.path[0]

    @property
    def token_out(self) -> Token:
        return self.path[-1]

    @property
    def route(self) -> str:
        return " → ".join(token.symbol for token in self.path)

    @property
    def is_multi_hop(self) -> bool:
        return len(self.path) > 2

    @property
    def execution_price(self) -> Decimal:
        if self.amount_in.raw == 0:
            return Decimal(0)
        return round_places(self.amount_out.human / self.amount_in.human, 6)

    def to_dict(self) -> dict:
        payload = {
            "amountIn": self.amount_in.formatted(),
            "amountOut": self.amount_out.formatted(),
            "amountOutMin": self.amount_out_minimum.formatted(),
            "tokenIn": self.token_in.to_dict(),
            "tokenOut": self.token_out.to_dict(),
            "priceImpact": f"{self.price_impact_percent:f}",
            "gasEstimate": str(self.gas_estimate),
            "slippage": f"{self.slippage_percent:f}",
            "route": self.route,
            "executionPrice": f"{self.execution_price:f}",
        }
        if self.pool is not None:
            payload["pool"] = {
                "address": self.pool.address.checksum,
                "fee": self.pool.fee,
                "tierName": self.pool.tier_name,
                "liquidity": str(self.pool.liquidity),
            }
        if self.hops:
            payload["hops"] = len(self.hops)
            payload["quotes"] = [hop.to_dict() for hop in self.hops]
        return payload


class QuoteEngine:
    """
    Quotes every active pool of a pair and keeps the largest output.

    Liquidity rank and realized output can diverge, so the top-liquidity
    pool is not assumed to be best.
    """

    def __init__(
        self,
        client: ChainClient,
        quoter: Address,
        tokens: TokenDirectory,
        discovery: PoolDiscovery,
    ):
        self._client = client
        self._quoter = quoter
        self._tokens = tokens
        self._discovery = discovery

    async def quote_single_hop(
        self,
        token_in: Address,
        token_out: Address,
        amount_in: str | Decimal,
        slippage_percent: int | str | Decimal | float = Decimal("0.5"),
    ) -> Quote:
        info_in, info_out = await asyncio.gather(
            self._tokens.get_metadata(token_in),
            self._tokens.get_metadata(token_out),
        )
        raw_in = info_in.amount(amount_in)
        return await self.quote_exact_input(info_in, info_out, raw_in, slippage_percent)

    async def quote_multi_hop(
        self,
        path: Sequence[Address],
        amount_in: str | Decimal,
        slippage_percent: int | str | Decimal | float = Decimal("0.5"),
    ) -> Quote:
        """
        Chain single-hop quotes, feeding each output into the next hop.

        Intermediate hops are quoted at zero slippage; the tolerance is
        applied once to the final output. Price impact is the sum of the
        per-hop impacts, an approximation that ignores compounding.
        """
        if len(path) < 2:
            raise InvalidPath("Path must have at least 2 tokens")
        for first, second in zip(path, path[1:]):
            if first == second:
                raise InvalidPath(f"Path repeats {first} in consecutive hops")

        tokens = await asyncio.gather(*(self._tokens.get_metadata(a) for a in path))
        current = tokens[0].amount(amount_in)
        hops: list[Quote] = []
        for token_in, token_out in zip(tokens, tokens[1:]):
            hop = await self.quote_exact_input(token_in, token_out, current, 0)
            hops.append(hop)
            current = hop.amount_out

        slippage = to_decimal(slippage_percent)
        final_out = hops[-1].amount_out
        return Quote(
            path=tuple(tokens),
            fees=tuple(hop.fees[0] for hop in hops),
            amount_in=hops[0].amount_in,
            amount_out=final_out,
            amount_out_minimum=tokens[-1].raw_amount(
                min_amount_out(final_out.raw, slippage)
            ),
            price_impact_percent=sum(
                (hop.price_impact_percent for hop in hops), Decimal("0.00")
            ),
            gas_estimate=sum(hop.gas_estimate for hop in hops),
            slippage_percent=slippage,
            hops=tuple(hops),
        )

    async def quote_exact_input(
        self,
        token_in: Token,
        token_out: Token,
        amount_in: TokenAmount,
        slippage_percent: int | str | Decimal | float,
    ) -> Quote:
        slippage = to_decimal(slippage_percent)
        pools = await self._discovery.find_pools(token_in.address, token_out.address)
        if not pools:
            raise NoLiquidity(
                f"No liquidity pool found for {token_in.symbol}/{token_out.symbol}"
            )

        simulations = await asyncio.gather(
            *(
                self._simulate(pool, token_in, token_out, amount_in.raw)
                for pool in pools
                if pool.is_active
            )
        )
        best: Optional[_Simulation] = None
        for simulation in simulations:
            if simulation is None:
                continue
            if best is None or simulation.amount_out > best.amount_out:
                best = simulation
        if best is None:
            raise NoQuoteAvailable(
                f"Failed to get quote from any pool for "
                f"{token_in.symbol}/{token_out.symbol}"
            )

        impact = Decimal("0.00")
        if best.pool.sqrt_price_x96 > 0:
            impact = round_places(
                price_impact_percent(best.pool.sqrt_price_x96, best.sqrt_price_after)
            )
        return Quote(
            path=(token_in, token_out),
            fees=(best.pool.fee,),
            amount_in=amount_in,
            amount_out=token_out.raw_amount(best.amount_out),
            amount_out_minimum=token_out.raw_amount(
                min_amount_out(best.amount_out, slippage)
            ),
            price_impact_percent=impact,
            gas_estimate=best.gas_estimate,
            slippage_percent=slippage,
            pool=best.pool,
        )

    async def _simulate(
        self, pool: PoolCandidate, token_in: Token, token_out: Token, amount_in: int
    ) -> Optional[_Simulation]:
        params = (
            token_in.address.checksum,
            token_out.address.checksum,
            amount_in,
            pool.fee,
            0,
        )
        try:
            amount_out, sqrt_after, _ticks, gas_estimate = await asyncio.to_thread(
                self._client.simulate,
                self._quoter,
                QuoterV2.QUOTE_EXACT_INPUT_SINGLE,
                params,
            )
        except _SIMULATION_ERRORS as exc:
            logger.warning(
                "quote failed for %s pool %s: %s", pool.tier_name, pool.address, exc
            )
            return None
        return _Simulation(
            pool=pool,
            amount_out=int(amount_out),
            sqrt_price_after=int(sqrt_after),
            gas_estimate=int(gas_estimate),
        )
