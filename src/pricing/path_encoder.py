"""Route path encoding and swap-router calldata construction."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from chain.contracts import SwapRouter
from core.base_types import Address, Token, TokenAmount

from .errors import InvalidPath
from .pool_discovery import PoolCandidate
from .uniswap_v3_math import MAX_UINT24

ADDRESS_SIZE = 20
FEE_SIZE = 3
DEFAULT_DEADLINE_SECONDS = 20 * 60
SINGLE_HOP_GAS_LIMIT = 300_000
# Allowance per token in the path, so a 3-token route gets 450k.
MULTI_HOP_GAS_PER_TOKEN = 150_000


def encode_path(tokens: Sequence[Address], fees: Sequence[int]) -> bytes:
    """address(20) | fee(3) | address(20) | ... | address(20)"""
    if len(tokens) < 2:
        raise InvalidPath("Path must have at least 2 tokens")
    if len(tokens) != len(fees) + 1:
        raise InvalidPath(
            f"Path has {len(tokens)} tokens but {len(fees)} fee tiers"
        )
    encoded = bytearray(tokens[0].to_bytes())
    for fee, token in zip(fees, tokens[1:]):
        if not 0 <= fee <= MAX_UINT24:
            raise InvalidPath(f"Fee tier {fee} does not fit in 3 bytes")
        encoded += fee.to_bytes(FEE_SIZE, "big")
        encoded += token.to_bytes()
    return bytes(encoded)


def decode_path(encoded: bytes) -> tuple[list[Address], list[int]]:
    step = ADDRESS_SIZE + FEE_SIZE
    if len(encoded) < step + ADDRESS_SIZE or (len(encoded) - ADDRESS_SIZE) % step:
        raise InvalidPath(f"Malformed path of {len(encoded)} bytes")
    tokens = [Address("0x" + encoded[:ADDRESS_SIZE].hex())]
    fees: list[int] = []
    offset = ADDRESS_SIZE
    while offset < len(encoded):
        fees.append(int.from_bytes(encoded[offset : offset + FEE_SIZE], "big"))
        offset += FEE_SIZE
        tokens.append(Address("0x" + encoded[offset : offset + ADDRESS_SIZE].hex()))
        offset += ADDRESS_SIZE
    return tokens, fees


def default_deadline(now: Optional[float] = None) -> int:
    return int(now if now is not None else time.time()) + DEFAULT_DEADLINE_SECONDS


@dataclass(frozen=True)
class SwapPlan:
    """
    Router call for one execution attempt.

    The minimum output is baked into ``data``; a new slippage needs a new plan.
    """

    to: Address
    data: bytes
    value: TokenAmount
    gas_limit: int
    token_in: Token
    token_out: Token
    amount_in: TokenAmount
    amount_out_minimum: TokenAmount
    recipient: Address
    deadline: int
    path: tuple[Token, ...]
    fees: tuple[int, ...]
    pool: Optional[PoolCandidate] = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_multi_hop(self) -> bool:
        return len(self.path) > 2

    @property
    def route(self) -> str:
        return " → ".join(token.symbol for token in self.path)

    def to_dict(self) -> dict:
        payload = {
            "to": self.to.checksum,
            "data": f"0x{self.data.hex()}",
            "value": str(self.value.raw),
            "gasLimit": str(self.gas_limit),
            "params": {
                "tokenIn": self.token_in.to_dict(),
                "tokenOut": self.token_out.to_dict(),
                "path": self.route,
                "fees": list(self.fees),
                "amountIn": self.amount_in.formatted(),
                "amountOutMin": self.amount_out_minimum.formatted(),
                "deadline": self.deadline,
                "recipient": self.recipient.checksum,
                **self.metadata,
            },
        }
        if self.pool is not None:
            payload["pool"] = {
                "address": self.pool.address.checksum,
                "fee": self.pool.fee,
                "tierName": self.pool.tier_name,
            }
        return payload


def build_single_hop_swap(
    router: Address,
    token_in: Token,
    token_out: Token,
    fee: int,
    amount_in: TokenAmount,
    amount_out_minimum: TokenAmount,
    recipient: Optional[Address] = None,
    deadline: Optional[int] = None,
    pool: Optional[PoolCandidate] = None,
) -> SwapPlan:
    """exactInputSingle with no price limit."""
    recipient = recipient or Address.zero()
    deadline = deadline or default_deadline()
    params = (
        token_in.address.checksum,
        token_out.address.checksum,
        fee,
        recipient.checksum,
        deadline,
        amount_in.raw,
        amount_out_minimum.raw,
        0,
    )
    return SwapPlan(
        to=router,
        data=SwapRouter.EXACT_INPUT_SINGLE.encode(params),
        value=TokenAmount(raw=0, decimals=18),
        gas_limit=SINGLE_HOP_GAS_LIMIT,
        token_in=token_in,
        token_out=token_out,
        amount_in=amount_in,
        amount_out_minimum=amount_out_minimum,
        recipient=recipient,
        deadline=deadline,
        path=(token_in, token_out),
        fees=(fee,),
        pool=pool,
    )


def build_multi_hop_swap(
    router: Address,
    tokens: Sequence[Token],
    fees: Sequence[int],
    amount_in: TokenAmount,
    amount_out_minimum: TokenAmount,
    recipient: Optional[Address] = None,
    deadline: Optional[int] = None,
) -> SwapPlan:
    """exactInput over an encoded path; gas scales with path length."""
    encoded = encode_path([token.address for token in tokens], fees)
    recipient = recipient or Address.zero()
    deadline = deadline or default_deadline()
    params = (
        encoded,
        recipient.checksum,
        deadline,
        amount_in.raw,
        amount_out_minimum.raw,
    )
    return SwapPlan(
        to=router,
        data=SwapRouter.EXACT_INPUT.encode(params),
        value=TokenAmount(raw=0, decimals=18),
        gas_limit=MULTI_HOP_GAS_PER_TOKEN * len(tokens),
        token_in=tokens[0],
        token_out=tokens[-1],
        amount_in=amount_in,
        amount_out_minimum=amount_out_minimum,
        recipient=recipient,
        deadline=deadline,
        path=tuple(tokens),
        fees=tuple(fees),
        metadata={"encodedPath": f"0x{encoded.hex()}"},
    )
