"""Typed contract-function descriptors for the calls the router makes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils.crypto import keccak

from .errors import RPCError

MAX_UINT256 = 2**256 - 1


@dataclass(frozen=True)
class ContractFunction:
    """
    One contract function: canonical argument types and return types.

    Struct parameters are written as ABI tuples, e.g.
    ``"(address,address,uint256,uint24,uint160)"``.
    """

    name: str
    arg_types: tuple[str, ...] = ()
    return_types: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.arg_types)})"

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    def encode(self, *args: Any) -> bytes:
        if len(args) != len(self.arg_types):
            raise ValueError(
                f"{self.name} expects {len(self.arg_types)} args, got {len(args)}"
            )
        return self.selector + abi_encode(list(self.arg_types), list(args))

    def decode(self, data: bytes) -> tuple:
        if not self.return_types:
            return ()
        if not data:
            raise RPCError(f"{self.name} returned no data")
        return tuple(abi_decode(list(self.return_types), data))


class ERC20:
    DECIMALS = ContractFunction("decimals", (), ("uint8",))
    SYMBOL = ContractFunction("symbol", (), ("string",))
    NAME = ContractFunction("name", (), ("string",))
    BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))
    ALLOWANCE = ContractFunction("allowance", ("address", "address"), ("uint256",))
    APPROVE = ContractFunction("approve", ("address", "uint256"), ("bool",))


class WrappedNative:
    DEPOSIT = ContractFunction("deposit")


class PoolFactory:
    GET_POOL = ContractFunction(
        "getPool", ("address", "address", "uint24"), ("address",)
    )


class Pool:
    # sqrtPriceX96, tick, observationIndex, observationCardinality,
    # observationCardinalityNext, feeProtocol, unlocked
    SLOT0 = ContractFunction(
        "slot0", (), ("uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool")
    )
    LIQUIDITY = ContractFunction("liquidity", (), ("uint128",))
    TOKEN0 = ContractFunction("token0", (), ("address",))
    TOKEN1 = ContractFunction("token1", (), ("address",))
    TICK_SPACING = ContractFunction("tickSpacing", (), ("int24",))


class QuoterV2:
    # (tokenIn, tokenOut, amountIn, fee, sqrtPriceLimitX96)
    # -> (amountOut, sqrtPriceX96After, initializedTicksCrossed, gasEstimate)
    QUOTE_EXACT_INPUT_SINGLE = ContractFunction(
        "quoteExactInputSingle",
        ("(address,address,uint256,uint24,uint160)",),
        ("uint256", "uint160", "uint32", "uint256"),
    )


class SwapRouter:
    # (tokenIn, tokenOut, fee, recipient, deadline, amountIn,
    #  amountOutMinimum, sqrtPriceLimitX96)
    EXACT_INPUT_SINGLE = ContractFunction(
        "exactInputSingle",
        ("(address,address,uint24,address,uint256,uint256,uint256,uint160)",),
        ("uint256",),
    )
    # (path, recipient, deadline, amountIn, amountOutMinimum)
    EXACT_INPUT = ContractFunction(
        "exactInput",
        ("(bytes,address,uint256,uint256,uint256)",),
        ("uint256",),
    )
