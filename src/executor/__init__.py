from .engine import (
    ExecutionContext,
    Executor,
    ExecutorConfig,
    ExecutorEvent,
    ExecutorState,
    SwapRequest,
    transition,
)
from .errors import ErrorInfo, ExecutionError
from .recovery import FailureClassifier, SlippageLadder

__all__ = [
    "Executor",
    "ExecutorConfig",
    "ExecutorEvent",
    "ExecutorState",
    "ExecutionContext",
    "SwapRequest",
    "transition",
    "ErrorInfo",
    "ExecutionError",
    "FailureClassifier",
    "SlippageLadder",
]
