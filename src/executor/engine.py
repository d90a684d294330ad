import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Optional

from chain import ChainClient, ChainError, TransactionBuilder, TransactionFailed
from chain.contracts import ERC20, MAX_UINT256, WrappedNative
from core.base_types import Address, TokenAmount, TransactionReceipt
from core.wallet_manager import WalletManager
from network_config import NetworkConfig
from pricing.errors import InvalidPath, NoLiquidity
from pricing.path_encoder import DEFAULT_DEADLINE_SECONDS, SwapPlan
from pricing.pricing_engine import PricingEngine
from pricing.quote_engine import Quote

from .errors import (
    ApprovalFailed,
    ErrorInfo,
    InsufficientNativeBalance,
    InsufficientTokenBalance,
    SwapFatal,
    SwapReverted,
)
from .recovery import (
    DEFAULT_SLIPPAGE_LADDER,
    AttemptOutcome,
    FailureClassifier,
    SlippageLadder,
)

logger = logging.getLogger(__name__)


class ExecutorState(Enum):
    IDLE = auto()
    WRAPPING_NATIVE = auto()
    ROUTE_SELECTION = auto()
    DIRECT_QUOTE = auto()
    MULTI_HOP_QUOTE = auto()
    APPROVAL_CHECK = auto()
    SUBMIT = auto()
    RETRY_NEXT_SLIPPAGE = auto()
    DONE = auto()
    FAILED = auto()


class ExecutorEvent(Enum):
    NATIVE_INPUT = auto()
    TOKEN_INPUT = auto()
    WRAPPED = auto()
    DIRECT_ROUTE = auto()
    MULTI_HOP_ROUTE = auto()
    NOTHING_TO_SWAP = auto()
    QUOTED = auto()
    APPROVED = auto()
    CONFIRMED = auto()
    RECOVERABLE_FAILURE = auto()
    LADDER_EXHAUSTED = auto()
    FATAL_FAILURE = auto()


TERMINAL_STATES = frozenset({ExecutorState.DONE, ExecutorState.FAILED})

# States whose failures may be retried at the next slippage.
RETRYABLE_STATES = frozenset(
    {
        ExecutorState.DIRECT_QUOTE,
        ExecutorState.MULTI_HOP_QUOTE,
        ExecutorState.APPROVAL_CHECK,
        ExecutorState.SUBMIT,
    }
)

TRANSITIONS: dict[tuple[ExecutorState, ExecutorEvent], ExecutorState] = {
    (ExecutorState.IDLE, ExecutorEvent.NATIVE_INPUT): ExecutorState.WRAPPING_NATIVE,
    (ExecutorState.IDLE, ExecutorEvent.TOKEN_INPUT): ExecutorState.ROUTE_SELECTION,
    (ExecutorState.WRAPPING_NATIVE, ExecutorEvent.WRAPPED): ExecutorState.ROUTE_SELECTION,
    (ExecutorState.ROUTE_SELECTION, ExecutorEvent.DIRECT_ROUTE): ExecutorState.DIRECT_QUOTE,
    (ExecutorState.ROUTE_SELECTION, ExecutorEvent.MULTI_HOP_ROUTE): ExecutorState.MULTI_HOP_QUOTE,
    (ExecutorState.ROUTE_SELECTION, ExecutorEvent.NOTHING_TO_SWAP): ExecutorState.DONE,
    (ExecutorState.DIRECT_QUOTE, ExecutorEvent.QUOTED): ExecutorState.APPROVAL_CHECK,
    (ExecutorState.MULTI_HOP_QUOTE, ExecutorEvent.QUOTED): ExecutorState.APPROVAL_CHECK,
    (ExecutorState.APPROVAL_CHECK, ExecutorEvent.APPROVED): ExecutorState.SUBMIT,
    (ExecutorState.SUBMIT, ExecutorEvent.CONFIRMED): ExecutorState.DONE,
    (ExecutorState.RETRY_NEXT_SLIPPAGE, ExecutorEvent.DIRECT_ROUTE): ExecutorState.DIRECT_QUOTE,
    (ExecutorState.RETRY_NEXT_SLIPPAGE, ExecutorEvent.MULTI_HOP_ROUTE): ExecutorState.MULTI_HOP_QUOTE,
    (ExecutorState.RETRY_NEXT_SLIPPAGE, ExecutorEvent.LADDER_EXHAUSTED): ExecutorState.FAILED,
}


def transition(state: ExecutorState, event: ExecutorEvent) -> ExecutorState:
    """Next state for ``event`` in ``state``. Pure; no side effects."""
    if state in TERMINAL_STATES:
        raise ValueError(f"{state.name} is terminal")
    if event == ExecutorEvent.FATAL_FAILURE:
        return ExecutorState.FAILED
    if event == ExecutorEvent.RECOVERABLE_FAILURE:
        if state in RETRYABLE_STATES:
            return ExecutorState.RETRY_NEXT_SLIPPAGE
        return ExecutorState.FAILED
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"No transition from {state.name} on {event.name}") from None


@dataclass
class SwapRequest:
    """
    One swap as asked for by the caller.

    Amounts are human-readable strings. ``path`` overrides
    ``token_in``/``token_out``; ``slippage`` pins a single tolerance
    instead of the default ladder.
    """

    amount_in: str
    token_in: Optional[str] = None
    token_out: Optional[str] = None
    path: Optional[list[str]] = None
    amount_out_min: Optional[str] = None
    slippage: Optional[Decimal] = None
    recipient: Optional[str] = None
    deadline: Optional[int] = None


@dataclass
class TransactionRecord:
    type: str
    tx_hash: str
    status: str = "confirmed"

    def to_dict(self) -> dict:
        return {"type": self.type, "hash": self.tx_hash, "status": self.status}


@dataclass
class ExecutionContext:
    request: SwapRequest
    ladder: SlippageLadder
    state: ExecutorState = ExecutorState.IDLE
    route_kind: Optional[ExecutorEvent] = None
    route_type: str = "direct"
    path: list[Address] = field(default_factory=list)
    wrapped: bool = False
    quote: Optional[Quote] = None
    plan: Optional[SwapPlan] = None
    receipt: Optional[TransactionReceipt] = None
    transactions: list[TransactionRecord] = field(default_factory=list)
    slippage_used: Optional[Decimal] = None
    error: Optional[ErrorInfo] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.state == ExecutorState.DONE

    def record_tx(
        self, tx_type: str, tx_hash: str, status: str = "confirmed"
    ) -> TransactionRecord:
        record = TransactionRecord(tx_type, tx_hash, status)
        self.transactions.append(record)
        return record

    def to_dict(self, network: Optional[NetworkConfig] = None) -> dict:
        payload: dict = {
            "success": self.success,
            "type": self.route_type,
            "transactions": [tx.to_dict() for tx in self.transactions],
            "attempts": [attempt.to_dict() for attempt in self.ladder.attempts],
        }
        if self.plan is not None:
            payload["route"] = self.plan.route
            payload["amountIn"] = self.plan.amount_in.formatted()
            payload["amountOutMin"] = self.plan.amount_out_minimum.formatted()
            if self.plan.pool is not None:
                payload["pool"] = self.plan.pool.address.checksum
        if self.quote is not None:
            payload["expectedAmountOut"] = self.quote.amount_out.formatted()
            payload["priceImpact"] = f"{self.quote.price_impact_percent:f}"
        if self.slippage_used is not None:
            payload["slippageUsed"] = f"{self.slippage_used:f}%"
        if self.receipt is not None:
            payload["txHash"] = self.receipt.tx_hash
            payload["blockNumber"] = self.receipt.block_number
            payload["gasUsed"] = str(self.receipt.gas_used)
            payload["gasCost"] = self.receipt.tx_fee.formatted()
            if network is not None:
                payload["explorerUrl"] = network.explorer_tx_url(self.receipt.tx_hash)
        elif self.success and self.transactions and network is not None:
            payload["explorerUrl"] = network.explorer_tx_url(self.transactions[-1].tx_hash)
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass
class ExecutorConfig:
    gas_reserve: Decimal = Decimal("0.1")
    slippage_ladder: tuple[Decimal, ...] = DEFAULT_SLIPPAGE_LADDER
    deadline_seconds: int = DEFAULT_DEADLINE_SECONDS
    wrap_gas_limit: int = 100_000
    # None estimates the approval gas from the node.
    approval_gas_limit: Optional[int] = None
    gas_priority: str = "medium"
    receipt_timeout: int = 120


class Executor:
    """
    Drives one swap through wrap, route selection, quoting, approval and
    submission, retrying quote/approve/submit across the slippage ladder.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        wallet: WalletManager,
        pricing: PricingEngine,
        network: NetworkConfig,
        config: Optional[ExecutorConfig] = None,
    ):
        self.client = chain_client
        self.wallet = wallet
        self.pricing = pricing
        self.network = network
        self.config = config or ExecutorConfig()
        self._handlers = {
            ExecutorState.WRAPPING_NATIVE: self._wrap_native,
            ExecutorState.ROUTE_SELECTION: self._select_route,
            ExecutorState.DIRECT_QUOTE: self._quote_direct,
            ExecutorState.MULTI_HOP_QUOTE: self._quote_multi_hop,
            ExecutorState.APPROVAL_CHECK: self._check_approval,
            ExecutorState.SUBMIT: self._submit,
            ExecutorState.RETRY_NEXT_SLIPPAGE: self._next_slippage,
        }

    @property
    def signer(self) -> Address:
        return Address.from_string(self.wallet.address)

    async def execute(self, request: SwapRequest) -> ExecutionContext:
        """Run the state machine. Never raises; failures land in ``ctx.error``."""
        ctx = ExecutionContext(
            request=request, ladder=SlippageLadder(self.config.slippage_ladder)
        )
        try:
            ctx.ladder = SlippageLadder.for_request(
                request.slippage, self.config.slippage_ladder
            )
            event = self._start_event(request)
        except (ValueError, TypeError, ArithmeticError, InvalidPath) as exc:
            ctx.state = ExecutorState.FAILED
            ctx.error = ErrorInfo.from_exception(exc)
            ctx.finished_at = time.time()
            return ctx

        while True:
            ctx.state = transition(ctx.state, event)
            if ctx.state in TERMINAL_STATES:
                break
            try:
                event = await self._handlers[ctx.state](ctx)
            except Exception as exc:
                event = self._on_failure(ctx, exc)

        ctx.finished_at = time.time()
        if ctx.success:
            logger.info("swap done: %s", [tx.to_dict() for tx in ctx.transactions])
        else:
            logger.warning("swap failed: %s", ctx.error)
        return ctx

    def _start_event(self, request: SwapRequest) -> ExecutorEvent:
        if TokenAmount.from_human(request.amount_in, 18).raw == 0:
            raise ValueError("amountIn must be greater than zero")
        tokens = [t for t in (request.token_in, request.token_out) if t is not None]
        if request.path is not None:
            tokens.extend(request.path)
        if not all(isinstance(token, str) for token in tokens):
            raise TypeError("Tokens must be given as symbols or addresses")
        if request.path is not None:
            if len(request.path) < 2:
                raise InvalidPath("Path must have at least 2 tokens")
            return (
                ExecutorEvent.NATIVE_INPUT
                if self._is_native(request.path[0])
                else ExecutorEvent.TOKEN_INPUT
            )
        if not request.token_in or not request.token_out:
            raise ValueError("Either provide tokenIn/tokenOut or a path array")
        if self._is_native(request.token_in):
            return ExecutorEvent.NATIVE_INPUT
        return ExecutorEvent.TOKEN_INPUT

    def _on_failure(self, ctx: ExecutionContext, exc: Exception) -> ExecutorEvent:
        ctx.error = ErrorInfo.from_exception(exc)
        if ctx.state not in RETRYABLE_STATES:
            logger.error("%s failed: %s", ctx.state.name, exc)
            return ExecutorEvent.FATAL_FAILURE
        outcome = FailureClassifier.classify(exc)
        ctx.ladder.record(outcome, ctx.error.message)
        logger.warning(
            "failed with %s%% slippage in %s: %s", ctx.ladder.current, ctx.state.name, exc
        )
        if outcome == AttemptOutcome.RECOVERABLE_FAILURE:
            return ExecutorEvent.RECOVERABLE_FAILURE
        return ExecutorEvent.FATAL_FAILURE

    def _is_native(self, token: str) -> bool:
        return token.strip().lower() in (self.network.native_symbol.lower(), "native")

    def _unwrap_symbol(self, token: str) -> str:
        return self.network.wrapped_native_symbol if self._is_native(token) else token

    # ── states ────────────────────────────────────────────────

    async def _wrap_native(self, ctx: ExecutionContext) -> ExecutorEvent:
        amount = TokenAmount.from_human(
            ctx.request.amount_in, 18, self.network.native_symbol
        )
        reserve = TokenAmount.from_human(self.config.gas_reserve, 18)
        needed = amount + reserve
        balance = await asyncio.to_thread(self.client.get_balance, self.signer)
        if balance.raw < needed.raw:
            raise InsufficientNativeBalance(
                f"Insufficient {self.network.native_symbol} balance. "
                f"Have {balance.formatted()} {self.network.native_symbol}, "
                f"need {needed.formatted()} {self.network.native_symbol} (including gas)"
            )

        wrapped = self.pricing.resolve_address(self.network.wrapped_native_symbol)
        logger.info("wrapping %s to %s", amount, self.network.wrapped_native_symbol)
        await self._send(
            ctx,
            "wrap",
            TransactionBuilder(self.client, self.wallet)
            .to(wrapped)
            .value(amount)
            .call(WrappedNative.DEPOSIT),
            gas_limit=self.config.wrap_gas_limit,
        )
        ctx.wrapped = True
        ctx.route_type = "native-swap"
        return ExecutorEvent.WRAPPED

    async def _select_route(self, ctx: ExecutionContext) -> ExecutorEvent:
        request = ctx.request
        if request.path is not None:
            ctx.path = [
                self.pricing.resolve_address(self._unwrap_symbol(token))
                for token in request.path
            ]
            if ctx.wrapped and len(set(ctx.path)) == 1:
                return ExecutorEvent.NOTHING_TO_SWAP
            if not ctx.wrapped:
                ctx.route_type = "multi-hop" if len(ctx.path) > 2 else "direct"
            ctx.route_kind = ExecutorEvent.MULTI_HOP_ROUTE
            return ctx.route_kind

        token_in = self.pricing.resolve_address(self._unwrap_symbol(request.token_in))
        token_out = self.pricing.resolve_address(self._unwrap_symbol(request.token_out))
        if token_in == token_out:
            if ctx.wrapped:
                return ExecutorEvent.NOTHING_TO_SWAP
            raise InvalidPath("tokenIn and tokenOut are the same token")

        if await self.pricing.discover_pools(token_in, token_out):
            ctx.path = [token_in, token_out]
            ctx.route_kind = ExecutorEvent.DIRECT_ROUTE
            return ctx.route_kind

        bridge = self.pricing.resolve_address(self.network.primary_bridge_symbol)
        if bridge in (token_in, token_out):
            bridge = self.pricing.resolve_address(self.network.secondary_bridge_symbol)
        if bridge in (token_in, token_out):
            raise NoLiquidity(
                f"No liquidity pool found for {token_in}/{token_out} "
                f"and no bridge asset distinct from both"
            )
        logger.info("no direct pool for %s/%s, bridging via %s", token_in, token_out, bridge)
        ctx.path = [token_in, bridge, token_out]
        if not ctx.wrapped:
            ctx.route_type = "multi-hop"
        ctx.route_kind = ExecutorEvent.MULTI_HOP_ROUTE
        return ctx.route_kind

    async def _quote_direct(self, ctx: ExecutionContext) -> ExecutorEvent:
        token_in, token_out = ctx.path
        fee = None
        min_out = ctx.request.amount_out_min
        if min_out is None:
            ctx.quote = await self.pricing.quotes.quote_single_hop(
                token_in, token_out, ctx.request.amount_in, ctx.ladder.current
            )
            min_out = ctx.quote.amount_out_minimum
            fee = ctx.quote.fees[0]
        ctx.plan = await self.pricing.build_swap(
            token_in,
            token_out,
            ctx.request.amount_in,
            min_out,
            recipient=ctx.request.recipient or self.wallet.address,
            deadline=self._deadline(ctx),
            fee=fee,
        )
        return ExecutorEvent.QUOTED

    async def _quote_multi_hop(self, ctx: ExecutionContext) -> ExecutorEvent:
        fees = None
        min_out = ctx.request.amount_out_min
        if min_out is None:
            ctx.quote = await self.pricing.quotes.quote_multi_hop(
                ctx.path, ctx.request.amount_in, ctx.ladder.current
            )
            min_out = ctx.quote.amount_out_minimum
            fees = list(ctx.quote.fees)
        ctx.plan = await self.pricing.build_path_swap(
            ctx.path,
            ctx.request.amount_in,
            min_out,
            recipient=ctx.request.recipient or self.wallet.address,
            deadline=self._deadline(ctx),
            fees=fees,
        )
        return ExecutorEvent.QUOTED

    async def _check_approval(self, ctx: ExecutionContext) -> ExecutorEvent:
        plan = ctx.plan
        if plan.value.raw > 0:
            return ExecutorEvent.APPROVED
        token = plan.token_in
        needed = plan.amount_in.raw

        (balance,) = await asyncio.to_thread(
            self.client.read, token.address, ERC20.BALANCE_OF, self.signer.checksum
        )
        if balance < needed:
            raise InsufficientTokenBalance(
                f"Insufficient {token.symbol} balance. "
                f"Have {token.raw_amount(balance).formatted()}, "
                f"need {plan.amount_in.formatted()}"
            )

        (allowance,) = await asyncio.to_thread(
            self.client.read,
            token.address,
            ERC20.ALLOWANCE,
            self.signer.checksum,
            plan.to.checksum,
        )
        if allowance >= needed:
            return ExecutorEvent.APPROVED

        logger.info("approving %s for %s", token.symbol, plan.to)
        try:
            await self._send(
                ctx,
                "approval",
                TransactionBuilder(self.client, self.wallet)
                .to(token.address)
                .call(ERC20.APPROVE, plan.to.checksum, MAX_UINT256),
                gas_limit=self.config.approval_gas_limit,
            )
        except TransactionFailed as exc:
            raise ApprovalFailed(f"Approval of {token.symbol} reverted") from exc
        except ChainError as exc:
            raise ApprovalFailed(f"Approval of {token.symbol} failed: {exc}") from exc
        return ExecutorEvent.APPROVED

    async def _submit(self, ctx: ExecutionContext) -> ExecutorEvent:
        plan = ctx.plan
        slippage = ctx.ladder.current
        try:
            receipt = await self._send(
                ctx,
                "swap",
                TransactionBuilder(self.client, self.wallet)
                .to(plan.to)
                .value(plan.value)
                .data(plan.data),
                gas_limit=plan.gas_limit,
            )
        except TransactionFailed as exc:
            raise SwapReverted(f"Transaction failed with {slippage:f}% slippage") from exc
        except ChainError as exc:
            if FailureClassifier.matches_slippage(str(exc)):
                raise SwapReverted(str(exc)) from exc
            raise SwapFatal(str(exc)) from exc

        ctx.receipt = receipt
        ctx.slippage_used = slippage
        ctx.ladder.record(AttemptOutcome.SUCCESS)
        logger.info("swap successful with %s%% slippage: %s", slippage, receipt.tx_hash)
        return ExecutorEvent.CONFIRMED

    async def _next_slippage(self, ctx: ExecutionContext) -> ExecutorEvent:
        if not ctx.ladder.advance():
            return ExecutorEvent.LADDER_EXHAUSTED
        logger.info("retrying at %s%% slippage", ctx.ladder.current)
        return ctx.route_kind

    def _deadline(self, ctx: ExecutionContext) -> int:
        if ctx.request.deadline is not None:
            return ctx.request.deadline
        return int(time.time()) + self.config.deadline_seconds

    async def _send(
        self,
        ctx: ExecutionContext,
        tx_type: str,
        builder: TransactionBuilder,
        gas_limit: Optional[int] = None,
    ) -> TransactionReceipt:
        """
        Price, sign and send on a worker thread, then wait for the receipt.

        The hash is logged as ``pending`` once the node accepts it, so a
        receipt timeout still leaves the broadcast transaction visible.
        """

        def _price_and_send() -> str:
            builder.chain_id(self.network.chain_id)
            if gas_limit is None:
                builder.with_gas_estimate()
            else:
                builder.gas_limit(gas_limit)
            builder.with_gas_price(self.config.gas_priority)
            return builder.send()

        tx_hash = await asyncio.to_thread(_price_and_send)
        record = ctx.record_tx(tx_type, tx_hash, "pending")
        try:
            receipt = await asyncio.to_thread(
                self.client.wait_for_receipt, tx_hash, self.config.receipt_timeout
            )
        except TransactionFailed:
            record.status = "reverted"
            raise
        record.status = "confirmed"
        return receipt
