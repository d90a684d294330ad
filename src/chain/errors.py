"""Chain-specific exceptions for RPC and transaction failures."""

from __future__ import annotations

from typing import Optional

from core.base_types import TransactionReceipt


class ChainError(Exception):
    """Base class for chain errors."""

    kind = "ChainError"


class RPCError(ChainError):
    """RPC request failed, including reverted eth_call."""

    kind = "RPCError"

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Optional[object] = None,
    ):
        self.code = code
        self.data = data
        super().__init__(message)


class TransactionFailed(ChainError):
    """Transaction mined with a reverted status."""

    kind = "TransactionFailed"

    def __init__(self, tx_hash: str, receipt: TransactionReceipt):
        self.tx_hash = tx_hash
        self.receipt = receipt
        super().__init__(f"Transaction {tx_hash} reverted")


class InsufficientFunds(ChainError):
    """Not enough native balance to cover value plus gas."""

    kind = "InsufficientFunds"


class NonceTooLow(ChainError):
    """Nonce already used."""

    kind = "NonceTooLow"


class ReplacementUnderpriced(ChainError):
    """Replacement transaction gas too low."""

    kind = "ReplacementUnderpriced"


def classify_rpc_error(error: dict) -> ChainError:
    """Map a JSON-RPC error object onto the matching exception."""
    message = str(error.get("message", "RPC error"))
    lowered = message.lower()
    if "insufficient funds" in lowered:
        return InsufficientFunds(message)
    if "nonce too low" in lowered:
        return NonceTooLow(message)
    if "replacement transaction underpriced" in lowered:
        return ReplacementUnderpriced(message)
    return RPCError(message, code=error.get("code"), data=error.get("data"))
