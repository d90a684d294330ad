"""EVM JSON-RPC client with retries, error classification and typed calls."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests

from core.base_types import Address, TokenAmount, TransactionReceipt, TransactionRequest

from .contracts import ContractFunction
from .errors import ChainError, RPCError, TransactionFailed, classify_rpc_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GasPrice:
    """Current gas price information."""

    base_fee: int
    priority_fee_low: int
    priority_fee_medium: int
    priority_fee_high: int

    def get_priority_fee(self, priority: str = "medium") -> int:
        priority_fee = {
            "low": self.priority_fee_low,
            "medium": self.priority_fee_medium,
            "high": self.priority_fee_high,
        }.get(priority)
        if priority_fee is None:
            raise ValueError("priority must be low, medium, or high")
        return priority_fee

    def get_max_fee(self, priority: str = "medium", buffer: float = 1.2) -> int:
        """Calculate maxFeePerGas with buffer for base fee increase."""
        if buffer <= 0:
            raise ValueError("buffer must be positive")
        return int(self.base_fee * buffer) + self.get_priority_fee(priority)


class ChainClient:
    """
    EVM RPC client.

    Read side: ``read`` / ``simulate`` run an ``eth_call`` against a typed
    ``ContractFunction`` and return the decoded tuple. Write side: raw
    transaction submission and receipt polling; signing lives in
    ``TransactionBuilder``.
    """

    def __init__(
        self,
        rpc_urls: list[str],
        timeout: int = 30,
        max_retries: int = 3,
        native_symbol: str = "ETH",
    ):
        if not rpc_urls:
            raise ValueError("rpc_urls must not be empty")
        self._rpc_urls = rpc_urls
        self._timeout = timeout
        self._max_retries = max_retries
        self._native_symbol = native_symbol
        self._session = requests.Session()

    def read(
        self, address: Address, fn: ContractFunction, *args: Any
    ) -> tuple:
        """Call a view function and decode its return values."""
        tx = TransactionRequest(
            to=address,
            value=TokenAmount(raw=0, decimals=18),
            data=fn.encode(*args),
        )
        return fn.decode(self.call(tx))

    def simulate(
        self,
        address: Address,
        fn: ContractFunction,
        *args: Any,
        sender: Optional[Address] = None,
    ) -> tuple:
        """Static-call a state-changing function without mutating state."""
        tx = TransactionRequest(
            to=address,
            value=TokenAmount(raw=0, decimals=18),
            data=fn.encode(*args),
            sender=sender,
        )
        return fn.decode(self.call(tx))

    def get_balance(self, address: Address) -> TokenAmount:
        balance_hex = self._rpc_call("eth_getBalance", [address.checksum, "latest"])
        return TokenAmount(
            raw=_hex_to_int(balance_hex),
            decimals=18,
            symbol=self._native_symbol,
        )

    def get_nonce(self, address: Address, block: str = "pending") -> int:
        nonce_hex = self._rpc_call("eth_getTransactionCount", [address.checksum, block])
        return _hex_to_int(nonce_hex)

    def get_gas_price(self) -> GasPrice:
        block = self._rpc_call("eth_getBlockByNumber", ["latest", False])
        base_fee = _hex_to_int(block.get("baseFeePerGas", "0x0"))
        priority = self._rpc_call("eth_maxPriorityFeePerGas", [])
        priority_fee = _hex_to_int(priority)
        return GasPrice(
            base_fee=base_fee,
            priority_fee_low=priority_fee,
            priority_fee_medium=priority_fee,
            priority_fee_high=int(priority_fee * 1.5),
        )

    def estimate_gas(self, tx: TransactionRequest) -> int:
        gas_hex = self._rpc_call("eth_estimateGas", [tx.to_call_dict()])
        return _hex_to_int(gas_hex)

    def send_transaction(self, signed_tx: bytes) -> str:
        tx_hash = self._rpc_call("eth_sendRawTransaction", [f"0x{signed_tx.hex()}"])
        return str(tx_hash)

    def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: int = 120,
        poll_interval: float = 1.0,
    ) -> TransactionReceipt:
        """Poll until mined. A reverted receipt raises ``TransactionFailed``."""
        start = time.time()
        while time.time() - start < timeout:
            receipt = self.get_receipt(tx_hash)
            if receipt is not None:
                if receipt.status is False:
                    raise TransactionFailed(tx_hash, receipt)
                return receipt
            time.sleep(poll_interval)
        raise TimeoutError(f"Timed out waiting for receipt {tx_hash}")

    def get_receipt(self, tx_hash: str) -> Optional[TransactionReceipt]:
        data = self._rpc_call("eth_getTransactionReceipt", [tx_hash])
        if data is None:
            return None
        return TransactionReceipt.from_web3(data)

    def call(self, tx: TransactionRequest, block: str = "latest") -> bytes:
        result = self._rpc_call("eth_call", [tx.to_call_dict(), block])
        return _hex_to_bytes(result)

    def _rpc_call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        last_error: Optional[Exception] = None
        for url in self._rpc_urls:
            for attempt in range(self._max_retries):
                start = time.perf_counter()
                try:
                    response = self._session.post(
                        url,
                        json=payload,
                        timeout=self._timeout,
                    )
                    elapsed = time.perf_counter() - start
                    logger.info("rpc %s %s in %.3fs", method, url, elapsed)
                    if response.status_code >= 400:
                        raise RPCError(f"HTTP {response.status_code} from {url}")
                    data = response.json()
                    if "error" in data:
                        raise classify_rpc_error(data["error"])
                    return data.get("result")
                except (requests.Timeout, requests.ConnectionError) as exc:
                    last_error = exc
                    logger.warning("rpc %s %s attempt %d failed: %s", method, url, attempt + 1, exc)
                    self._sleep_backoff(attempt)
                except json.JSONDecodeError as exc:
                    last_error = exc
                    self._sleep_backoff(attempt)
        raise ChainError(f"RPC request {method} failed") from last_error

    def _sleep_backoff(self, attempt: int) -> None:
        delay = 0.5 * (2**attempt)
        time.sleep(delay)


def _hex_to_int(value: str) -> int:
    if not isinstance(value, str):
        raise RPCError("Expected hex string result")
    return int(value, 16)


def _hex_to_bytes(value: str) -> bytes:
    if not isinstance(value, str):
        raise RPCError("Expected hex string result")
    normalized = value[2:] if value.startswith("0x") else value
    if normalized == "":
        return b""
    return bytes.fromhex(normalized)
