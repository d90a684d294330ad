"""Tests for executor.engine: transition table and the async swap controller."""

from decimal import Decimal

import pytest

from chain.contracts import MAX_UINT256
from chain.errors import NonceTooLow, RPCError
from core.base_types import Address
from executor.engine import (
    ExecutionContext,
    Executor,
    ExecutorConfig,
    ExecutorEvent,
    ExecutorState,
    SwapRequest,
    transition,
)
from executor.recovery import SlippageLadder
from network_config import NetworkConfig
from pricing.pricing_engine import PricingEngine

from fakes import JLY, SIGNER, USDC, USDT, WSEI, FakeChain, FakeWallet

NETWORK = NetworkConfig()
ROUTER = NETWORK.swap_router
ONE_TO_ONE = (1, 10**12)


def _executor(chain, **config):
    wallet = FakeWallet(chain)
    pricing = PricingEngine(chain, NETWORK)
    return Executor(chain, wallet, pricing, NETWORK, ExecutorConfig(**config))


def _fund(chain, token, raw):
    chain.balances[(token.lower(), SIGNER.lower())] = raw


def _approve(chain, token):
    chain.allowances[(token.lower(), SIGNER.lower(), ROUTER.lower())] = MAX_UINT256


def _direct_chain():
    chain = FakeChain()
    chain.add_pool(WSEI, USDC, 500, liquidity=100, rate=ONE_TO_ONE)
    _fund(chain, WSEI, 10 * 10**18)
    return chain


class TestTransition:
    @pytest.mark.parametrize(
        "state, event, expected",
        [
            (ExecutorState.IDLE, ExecutorEvent.NATIVE_INPUT, ExecutorState.WRAPPING_NATIVE),
            (ExecutorState.IDLE, ExecutorEvent.TOKEN_INPUT, ExecutorState.ROUTE_SELECTION),
            (ExecutorState.WRAPPING_NATIVE, ExecutorEvent.WRAPPED, ExecutorState.ROUTE_SELECTION),
            (ExecutorState.ROUTE_SELECTION, ExecutorEvent.DIRECT_ROUTE, ExecutorState.DIRECT_QUOTE),
            (
                ExecutorState.ROUTE_SELECTION,
                ExecutorEvent.MULTI_HOP_ROUTE,
                ExecutorState.MULTI_HOP_QUOTE,
            ),
            (ExecutorState.ROUTE_SELECTION, ExecutorEvent.NOTHING_TO_SWAP, ExecutorState.DONE),
            (ExecutorState.DIRECT_QUOTE, ExecutorEvent.QUOTED, ExecutorState.APPROVAL_CHECK),
            (ExecutorState.APPROVAL_CHECK, ExecutorEvent.APPROVED, ExecutorState.SUBMIT),
            (ExecutorState.SUBMIT, ExecutorEvent.CONFIRMED, ExecutorState.DONE),
            (
                ExecutorState.SUBMIT,
                ExecutorEvent.RECOVERABLE_FAILURE,
                ExecutorState.RETRY_NEXT_SLIPPAGE,
            ),
            (
                ExecutorState.RETRY_NEXT_SLIPPAGE,
                ExecutorEvent.DIRECT_ROUTE,
                ExecutorState.DIRECT_QUOTE,
            ),
            (
                ExecutorState.RETRY_NEXT_SLIPPAGE,
                ExecutorEvent.LADDER_EXHAUSTED,
                ExecutorState.FAILED,
            ),
            (ExecutorState.SUBMIT, ExecutorEvent.FATAL_FAILURE, ExecutorState.FAILED),
        ],
    )
    def test_valid_transitions(self, state, event, expected):
        assert transition(state, event) == expected

    def test_recoverable_outside_attempt_is_fatal(self):
        assert (
            transition(ExecutorState.WRAPPING_NATIVE, ExecutorEvent.RECOVERABLE_FAILURE)
            == ExecutorState.FAILED
        )
        assert (
            transition(ExecutorState.ROUTE_SELECTION, ExecutorEvent.RECOVERABLE_FAILURE)
            == ExecutorState.FAILED
        )

    def test_invalid_pair_raises(self):
        with pytest.raises(ValueError, match="No transition"):
            transition(ExecutorState.IDLE, ExecutorEvent.CONFIRMED)

    @pytest.mark.parametrize("state", [ExecutorState.DONE, ExecutorState.FAILED])
    def test_terminal_states(self, state):
        with pytest.raises(ValueError, match="terminal"):
            transition(state, ExecutorEvent.TOKEN_INPUT)


class TestExecutorConfig:
    def test_defaults(self):
        cfg = ExecutorConfig()
        assert cfg.gas_reserve == Decimal("0.1")
        assert cfg.slippage_ladder == (Decimal("1"), Decimal("2"))
        assert cfg.wrap_gas_limit == 100_000
        assert cfg.deadline_seconds == 1200


class TestExecutionContext:
    def test_default_state(self):
        ctx = ExecutionContext(
            request=SwapRequest(amount_in="1"), ladder=SlippageLadder.for_request()
        )
        assert ctx.state == ExecutorState.IDLE
        assert ctx.error is None
        assert not ctx.success
        assert ctx.to_dict()["transactions"] == []


class TestDirectSwap:
    @pytest.mark.asyncio
    async def test_approves_then_swaps(self):
        chain = _direct_chain()
        executor = _executor(chain)

        ctx = await executor.execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.success, ctx.error
        assert chain.sent_kinds() == ["approval", "swap"]
        assert [tx.type for tx in ctx.transactions] == ["approval", "swap"]
        assert ctx.route_type == "direct"
        assert ctx.slippage_used == Decimal("1")
        assert ctx.plan.amount_out_minimum.raw == 990_000
        assert ctx.plan.recipient == Address(SIGNER)

        _kind, approval = chain.sent[0]
        assert Address(approval["to"]) == Address(WSEI)
        assert ROUTER.lower()[2:] in approval["data"].lower()

        payload = ctx.to_dict(NETWORK)
        assert payload["success"] is True
        assert payload["txHash"] == "0xswap2"
        assert payload["explorerUrl"] == "https://seitrace.com/tx/0xswap2"
        assert payload["slippageUsed"] == "1%"
        assert payload["gasCost"] == "0.00000000000015"
        assert payload["type"] == "direct"

    @pytest.mark.asyncio
    async def test_existing_allowance_skips_approval(self):
        chain = _direct_chain()
        _approve(chain, WSEI)

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.success
        assert chain.sent_kinds() == ["swap"]

    @pytest.mark.asyncio
    async def test_explicit_minimum_skips_quote(self):
        chain = _direct_chain()
        _approve(chain, WSEI)

        ctx = await _executor(chain).execute(
            SwapRequest(
                amount_in="1", token_in="WSEI", token_out="USDC", amount_out_min="0.5"
            )
        )

        assert ctx.success
        assert ctx.quote is None
        assert ctx.plan.amount_out_minimum.raw == 500_000

    @pytest.mark.asyncio
    async def test_insufficient_token_balance(self):
        chain = _direct_chain()
        _fund(chain, WSEI, 10**17)

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.state == ExecutorState.FAILED
        assert ctx.error.kind == "InsufficientTokenBalance"
        assert chain.sent == []
        assert len(ctx.ladder.attempts) == 1

    @pytest.mark.asyncio
    async def test_approval_revert_is_fatal(self):
        chain = _direct_chain()
        chain.approval_outcome = "revert"

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.error.kind == "ApprovalFailed"
        assert chain.sent_kinds() == ["approval"]
        assert ctx.transactions[0].status == "reverted"

    @pytest.mark.asyncio
    async def test_quote_failure_is_fatal(self):
        chain = FakeChain()
        chain.add_pool(WSEI, USDC, 500, liquidity=1, quote_error=RPCError("reverted"))
        _fund(chain, WSEI, 10**18)

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.error.kind == "NoQuoteAvailable"
        assert len(ctx.ladder.attempts) == 1
        assert chain.sent == []


class TestBridgedRoute:
    @pytest.mark.asyncio
    async def test_routes_through_primary_bridge(self):
        chain = FakeChain()
        chain.add_pool(JLY, WSEI, 10_000, liquidity=10, rate=(1, 2))
        chain.add_pool(WSEI, USDC, 500, liquidity=10, rate=ONE_TO_ONE)
        _fund(chain, JLY, 100 * 10**18)

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="10", token_in="JLY", token_out="USDC")
        )

        assert ctx.success, ctx.error
        assert ctx.path == [Address(JLY), Address(WSEI), Address(USDC)]
        assert ctx.route_type == "multi-hop"
        assert ctx.plan.fees == (10_000, 500)
        assert ctx.plan.gas_limit == 450_000
        assert ctx.quote.amount_out.raw == 5_000_000
        assert chain.sent_kinds() == ["approval", "swap"]

    @pytest.mark.asyncio
    async def test_secondary_bridge_when_wrapped_native_is_an_endpoint(self):
        chain = FakeChain()
        chain.add_pool(WSEI, USDT, 500, liquidity=10, rate=ONE_TO_ONE)
        chain.add_pool(USDT, JLY, 3000, liquidity=10, rate=(10**12, 1))
        _fund(chain, WSEI, 10**18)

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="JLY")
        )

        assert ctx.success, ctx.error
        assert ctx.path == [Address(WSEI), Address(USDT), Address(JLY)]

    @pytest.mark.asyncio
    async def test_explicit_path(self):
        chain = FakeChain()
        chain.add_pool(JLY, WSEI, 10_000, liquidity=10, rate=(1, 2))
        chain.add_pool(WSEI, USDC, 500, liquidity=10, rate=ONE_TO_ONE)
        _fund(chain, JLY, 100 * 10**18)
        _approve(chain, JLY)

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="2", path=["JLY", "WSEI", "USDC"])
        )

        assert ctx.success, ctx.error
        assert ctx.plan.is_multi_hop
        assert "encodedPath" in ctx.plan.metadata
        assert chain.sent_kinds() == ["swap"]


class TestSlippageLadder:
    @pytest.mark.asyncio
    async def test_retries_at_next_slippage_then_surfaces_last_error(self):
        chain = _direct_chain()
        chain.swap_outcomes = ["revert", "revert"]

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.state == ExecutorState.FAILED
        assert chain.sent_kinds() == ["approval", "swap", "swap"]
        assert ctx.error.kind == "SwapReverted"
        assert ctx.error.message == "Transaction failed with 2% slippage"
        assert [a.slippage_percent for a in ctx.ladder.attempts] == [
            Decimal("1"),
            Decimal("2"),
        ]
        assert [(tx.type, tx.status) for tx in ctx.transactions] == [
            ("approval", "confirmed"),
            ("swap", "reverted"),
            ("swap", "reverted"),
        ]

    @pytest.mark.asyncio
    async def test_retry_requotes_with_wider_tolerance(self):
        chain = _direct_chain()
        chain.swap_outcomes = ["revert", "ok"]

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.success
        assert ctx.slippage_used == Decimal("2")
        assert ctx.plan.amount_out_minimum.raw == 980_000
        assert chain.sent_kinds() == ["approval", "swap", "swap"]

    @pytest.mark.asyncio
    async def test_slippage_message_at_send_is_recoverable(self):
        chain = _direct_chain()
        _approve(chain, WSEI)
        chain.swap_outcomes = [RPCError("execution reverted: Too little received"), "ok"]

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.success
        assert ctx.ladder.attempts[0].outcome.value == "recoverable-failure"

    @pytest.mark.asyncio
    async def test_caller_slippage_is_single_attempt(self):
        chain = _direct_chain()
        chain.swap_outcomes = ["revert"]

        ctx = await _executor(chain).execute(
            SwapRequest(
                amount_in="1",
                token_in="WSEI",
                token_out="USDC",
                slippage=Decimal("0.5"),
            )
        )

        assert ctx.error.message == "Transaction failed with 0.5% slippage"
        assert chain.sent_kinds() == ["approval", "swap"]

    @pytest.mark.asyncio
    async def test_non_slippage_error_is_not_retried(self):
        chain = _direct_chain()
        _approve(chain, WSEI)
        chain.swap_outcomes = [NonceTooLow("nonce too low")]

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.error.kind == "SwapFatal"
        assert len(ctx.ladder.attempts) == 1
        assert chain.sent == []


class TestNativeInput:
    @pytest.mark.asyncio
    async def test_insufficient_native_balance_sends_nothing(self):
        chain = _direct_chain()
        chain.native_balance = 10**18

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="SEI", token_out="USDC")
        )

        assert ctx.error.kind == "InsufficientNativeBalance"
        assert "need 1.1 SEI" in ctx.error.message
        assert chain.signed == []
        assert chain.sent == []
        assert ctx.transactions == []

    @pytest.mark.asyncio
    async def test_wraps_then_swaps(self):
        chain = FakeChain()
        chain.add_pool(WSEI, USDC, 500, liquidity=100, rate=ONE_TO_ONE)
        chain.native_balance = 5 * 10**18

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="SEI", token_out="USDC")
        )

        assert ctx.success, ctx.error
        assert chain.sent_kinds() == ["wrap", "approval", "swap"]
        _kind, wrap = chain.sent[0]
        assert Address(wrap["to"]) == Address(WSEI)
        assert wrap["value"] == 10**18
        assert wrap["gas"] == 100_000
        assert ctx.route_type == "native-swap"
        assert ctx.plan.token_in.symbol == "WSEI"

    @pytest.mark.asyncio
    async def test_wrap_only(self):
        chain = FakeChain()
        chain.native_balance = 5 * 10**18

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="SEI", token_out="WSEI")
        )

        assert ctx.success
        assert chain.sent_kinds() == ["wrap"]
        assert ctx.plan is None
        assert ctx.to_dict(NETWORK)["explorerUrl"].endswith("/tx/0xwrap1")

    @pytest.mark.asyncio
    async def test_wrap_is_not_repeated_on_retry(self):
        chain = FakeChain()
        chain.add_pool(WSEI, USDC, 500, liquidity=100, rate=ONE_TO_ONE)
        chain.native_balance = 5 * 10**18
        chain.swap_outcomes = ["revert", "revert"]

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="SEI", token_out="USDC")
        )

        assert not ctx.success
        assert chain.sent_kinds() == ["wrap", "approval", "swap", "swap"]
        assert ctx.transactions[0].type == "wrap"
        assert ctx.to_dict()["transactions"][0]["status"] == "confirmed"


class TestRequestValidation:
    @pytest.mark.asyncio
    async def test_missing_tokens(self):
        ctx = await _executor(FakeChain()).execute(SwapRequest(amount_in="1"))
        assert ctx.state == ExecutorState.FAILED
        assert "tokenIn/tokenOut" in ctx.error.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1", "abc"])
    async def test_bad_amount(self, amount):
        ctx = await _executor(FakeChain()).execute(
            SwapRequest(amount_in=amount, token_in="WSEI", token_out="USDC")
        )
        assert ctx.state == ExecutorState.FAILED
        assert ctx.error is not None

    @pytest.mark.asyncio
    async def test_short_path(self):
        ctx = await _executor(FakeChain()).execute(
            SwapRequest(amount_in="1", path=["WSEI"])
        )
        assert ctx.error.kind == "InvalidPath"

    @pytest.mark.asyncio
    async def test_unknown_token_is_reported(self):
        ctx = await _executor(FakeChain()).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="DOGE")
        )
        assert ctx.error.kind == "UnknownToken"

    @pytest.mark.asyncio
    async def test_non_string_token_is_reported(self):
        ctx = await _executor(FakeChain()).execute(
            SwapRequest(amount_in="1", path=[None, "USDC"])
        )
        assert ctx.state == ExecutorState.FAILED
        assert "symbols or addresses" in ctx.error.message

    @pytest.mark.asyncio
    async def test_no_distinct_bridge_is_no_liquidity(self):
        chain = FakeChain()
        _fund(chain, WSEI, 10**18)

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDT")
        )

        assert ctx.error.kind == "NoLiquidity"
        assert chain.sent == []


class TestTransactionLog:
    @pytest.mark.asyncio
    async def test_receipt_timeout_keeps_broadcast_swap(self):
        chain = _direct_chain()
        _approve(chain, WSEI)
        chain.swap_outcomes = ["timeout"]

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert ctx.state == ExecutorState.FAILED
        assert ctx.error.message == "Timed out waiting for receipt 0xswap1"
        assert len(ctx.ladder.attempts) == 1
        assert ctx.to_dict()["transactions"] == [
            {"type": "swap", "hash": "0xswap1", "status": "pending"}
        ]

    @pytest.mark.asyncio
    async def test_reverted_wrap_is_logged(self):
        chain = FakeChain()
        chain.add_pool(WSEI, USDC, 500, liquidity=100, rate=ONE_TO_ONE)
        chain.native_balance = 5 * 10**18
        chain.wrap_outcome = "revert"

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="SEI", token_out="USDC")
        )

        assert ctx.error.kind == "TransactionFailed"
        assert chain.sent_kinds() == ["wrap"]
        assert [(tx.type, tx.tx_hash, tx.status) for tx in ctx.transactions] == [
            ("wrap", "0xwrap1", "reverted")
        ]
        assert not ctx.wrapped

    @pytest.mark.asyncio
    async def test_logged_as_pending_before_receipt(self, monkeypatch):
        chain = _direct_chain()
        _approve(chain, WSEI)
        records = []
        statuses_at_wait = []

        record_tx = ExecutionContext.record_tx

        def capture(ctx, *args, **kwargs):
            record = record_tx(ctx, *args, **kwargs)
            records.append(record)
            return record

        wait = chain.wait_for_receipt

        def recording_wait(tx_hash, timeout=120):
            statuses_at_wait.append([record.status for record in records])
            return wait(tx_hash, timeout)

        monkeypatch.setattr(ExecutionContext, "record_tx", capture)
        chain.wait_for_receipt = recording_wait

        ctx = await _executor(chain).execute(
            SwapRequest(amount_in="1", token_in="WSEI", token_out="USDC")
        )

        assert statuses_at_wait == [["pending"]]
        assert ctx.transactions[0].status == "confirmed"
