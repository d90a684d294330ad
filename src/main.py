"""CLI entrypoint for DragonSwap routing, quoting and swap execution."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal
from typing import Any, Optional

from chain.client import ChainClient
from config import get_env
from core.wallet_manager import WalletManager
from executor.engine import Executor, SwapRequest
from executor.errors import ErrorInfo
from network_config import NetworkConfig
from pricing.pricing_engine import PricingEngine

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DragonSwap V2 router CLI")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument("--rpc-url", help="Override SEI_RPC_URL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    quote = subparsers.add_parser("quote", help="Best single-hop quote")
    quote.add_argument("token_in")
    quote.add_argument("token_out")
    quote.add_argument("amount_in")
    quote.add_argument("--slippage", default="0.5", help="Slippage percent")

    quote_path = subparsers.add_parser("quote-path", help="Multi-hop quote")
    quote_path.add_argument("amount_in")
    quote_path.add_argument("path", nargs="+", help="Token symbols or addresses")
    quote_path.add_argument("--slippage", default="0.5", help="Slippage percent")

    pools = subparsers.add_parser("pools", help="Pools for a pair, by liquidity")
    pools.add_argument("token_a")
    pools.add_argument("token_b")

    pool_info = subparsers.add_parser("pool-info", help="Detailed pool state")
    pool_info.add_argument("token_a")
    pool_info.add_argument("token_b")
    pool_info.add_argument("fee", type=int)

    subparsers.add_parser("all-pools", help="Active pools across configured tokens")

    price = subparsers.add_parser("price", help="Price of one token")
    price.add_argument("token")
    price.add_argument("--base", default="USDC")

    build_swap = subparsers.add_parser("build-swap", help="exactInputSingle calldata")
    build_swap.add_argument("token_in")
    build_swap.add_argument("token_out")
    build_swap.add_argument("amount_in")
    build_swap.add_argument("amount_out_min")
    build_swap.add_argument("--recipient")
    build_swap.add_argument("--deadline", type=int)

    build_path = subparsers.add_parser("build-path-swap", help="exactInput calldata")
    build_path.add_argument("amount_in")
    build_path.add_argument("amount_out_min")
    build_path.add_argument("path", nargs="+")
    build_path.add_argument("--recipient")
    build_path.add_argument("--deadline", type=int)

    execute = subparsers.add_parser("execute", help="Wrap, approve and swap")
    execute.add_argument("amount_in")
    execute.add_argument("--token-in")
    execute.add_argument("--token-out")
    execute.add_argument("--path", nargs="+")
    execute.add_argument("--amount-out-min")
    execute.add_argument("--slippage", help="Single slippage percent, no ladder")
    execute.add_argument("--recipient")
    execute.add_argument("--deadline", type=int)

    return parser


async def _dispatch(args: argparse.Namespace, network: NetworkConfig) -> Any:
    client = ChainClient([network.rpc_url], native_symbol=network.native_symbol)
    engine = PricingEngine(client, network)

    if args.command == "quote":
        quote = await engine.quote(
            args.token_in, args.token_out, args.amount_in, args.slippage
        )
        return quote.to_dict()

    if args.command == "quote-path":
        quote = await engine.quote_path(args.path, args.amount_in, args.slippage)
        return quote.to_dict()

    if args.command == "pools":
        candidates = await engine.discover_pools(args.token_a, args.token_b)
        return {
            "pools": [pool.to_dict() for pool in candidates],
            "count": len(candidates),
        }

    if args.command == "pool-info":
        info = await engine.get_pool_info(args.token_a, args.token_b, args.fee)
        return {"pool": info.to_dict() if info else None}

    if args.command == "all-pools":
        infos = await engine.get_all_pools()
        return {"pools": [info.to_dict() for info in infos], "count": len(infos)}

    if args.command == "price":
        return await engine.get_token_price(args.token, args.base)

    if args.command == "build-swap":
        plan = await engine.build_swap(
            args.token_in,
            args.token_out,
            args.amount_in,
            args.amount_out_min,
            recipient=args.recipient,
            deadline=args.deadline,
        )
        return plan.to_dict()

    if args.command == "build-path-swap":
        plan = await engine.build_path_swap(
            args.path,
            args.amount_in,
            args.amount_out_min,
            recipient=args.recipient,
            deadline=args.deadline,
        )
        return plan.to_dict()

    if args.command == "execute":
        wallet = WalletManager(get_env("WALLET_PRIVATE_KEY", required=True))
        executor = Executor(client, wallet, engine, network)
        ctx = await executor.execute(
            SwapRequest(
                amount_in=args.amount_in,
                token_in=args.token_in,
                token_out=args.token_out,
                path=args.path,
                amount_out_min=args.amount_out_min,
                slippage=Decimal(args.slippage) if args.slippage else None,
                recipient=args.recipient,
                deadline=args.deadline,
            )
        )
        return ctx.to_dict(network)

    raise ValueError(f"Unknown command: {args.command}")


def run(argv: Optional[list[str]] = None) -> dict:
    """Parse ``argv`` and run one command. Errors come back as a failure payload."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        network = NetworkConfig.from_env()
        if args.rpc_url:
            network = NetworkConfig(rpc_url=args.rpc_url)
        result = asyncio.run(_dispatch(args, network))
    except Exception as exc:
        logger.error("%s failed: %s", args.command, exc)
        error = ErrorInfo.from_exception(exc, default_kind=None)
        return {"success": False, "error": error.to_dict()}
    if isinstance(result, dict) and "success" in result:
        return result
    return {"success": True, "data": result}


def main() -> None:
    payload = run()
    print(json.dumps(payload, indent=2, default=str))
    if not payload.get("success"):
        sys.exit(1)


if __name__ == "__main__":
    main()
