"""Execution failures and their structured form for callers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ExecutionError(Exception):
    """Base class for swap execution errors."""

    kind = "ExecutionError"


class InsufficientNativeBalance(ExecutionError):
    kind = "InsufficientNativeBalance"


class InsufficientTokenBalance(ExecutionError):
    kind = "InsufficientTokenBalance"


class ApprovalFailed(ExecutionError):
    kind = "ApprovalFailed"


class SwapReverted(ExecutionError):
    """Swap reverted or hit a slippage guard. Retried at the next slippage."""

    kind = "SwapReverted"


class SwapFatal(ExecutionError):
    """Swap failed for a reason slippage cannot fix."""

    kind = "SwapFatal"


@dataclass(frozen=True)
class ErrorInfo:
    kind: str
    message: str

    @classmethod
    def from_exception(
        cls, exc: BaseException, default_kind: Optional[str] = SwapFatal.kind
    ) -> "ErrorInfo":
        """Unknown exception types get ``default_kind``, or their class name when None."""
        kind = getattr(exc, "kind", None) or default_kind or type(exc).__name__
        return cls(kind=kind, message=str(exc) or type(exc).__name__)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}
