"""
Slippage ladder and failure classification for swap execution.

Failure Classifier
~~~~~~~~~~~~~~~~~~
A swap attempt either succeeds, fails in a way a looser slippage may fix
(on-chain revert, output below the minimum), or fails fatally (anything
else). Only recoverable failures advance the ladder.

Slippage Ladder
~~~~~~~~~~~~~~~
Ordered slippage tolerances tried one after another: the caller's single
value, or ``DEFAULT_SLIPPAGE_LADDER``. Every attempt is recorded.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from chain.errors import TransactionFailed

from .errors import ExecutionError, SwapReverted

logger = logging.getLogger(__name__)

DEFAULT_SLIPPAGE_LADDER: tuple[Decimal, ...] = (Decimal("1"), Decimal("2"))

# ╔══════════════════════════════════════════════════════════════════╗
# ║  Failure Classifier                                             ║
# ╚══════════════════════════════════════════════════════════════════╝


class AttemptOutcome(Enum):
    SUCCESS = "success"
    RECOVERABLE_FAILURE = "recoverable-failure"
    FATAL_FAILURE = "fatal-failure"


# Messages that mean the output fell short of the minimum.
_RECOVERABLE_PATTERNS: list[re.Pattern] = [
    re.compile(r"slippage", re.I),
    re.compile(r"too little received", re.I),
    re.compile(r"insufficient_output_amount", re.I),
]


class FailureClassifier:
    """Decide whether an attempt's failure should advance the ladder."""

    @staticmethod
    def classify(error: BaseException) -> AttemptOutcome:
        if isinstance(error, (SwapReverted, TransactionFailed)):
            return AttemptOutcome.RECOVERABLE_FAILURE
        if isinstance(error, ExecutionError):
            return AttemptOutcome.FATAL_FAILURE
        if FailureClassifier.matches_slippage(str(error)):
            return AttemptOutcome.RECOVERABLE_FAILURE
        return AttemptOutcome.FATAL_FAILURE

    @staticmethod
    def matches_slippage(message: Optional[str]) -> bool:
        if not message:
            return False
        return any(pattern.search(message) for pattern in _RECOVERABLE_PATTERNS)


# ╔══════════════════════════════════════════════════════════════════╗
# ║  Slippage Ladder                                                ║
# ╚══════════════════════════════════════════════════════════════════╝


@dataclass(frozen=True)
class SlippageAttempt:
    """One execution attempt at a given slippage tolerance."""

    slippage_percent: Decimal
    outcome: AttemptOutcome
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "slippage": f"{self.slippage_percent:f}%",
            "outcome": self.outcome.value,
            "error": self.error,
        }


@dataclass
class SlippageLadder:
    steps: tuple[Decimal, ...]
    attempts: list[SlippageAttempt] = field(default_factory=list)
    _index: int = 0

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("slippage ladder must not be empty")
        for step in self.steps:
            if step < 0 or step >= 100:
                raise ValueError("slippage must be in [0, 100)")

    @classmethod
    def for_request(
        cls,
        slippage_percent: Optional[Decimal] = None,
        default: Iterable[Decimal] = DEFAULT_SLIPPAGE_LADDER,
    ) -> "SlippageLadder":
        if slippage_percent is not None:
            return cls(steps=(Decimal(str(slippage_percent)),))
        return cls(steps=tuple(Decimal(str(step)) for step in default))

    @property
    def current(self) -> Decimal:
        return self.steps[self._index]

    @property
    def has_next(self) -> bool:
        return self._index + 1 < len(self.steps)

    def record(self, outcome: AttemptOutcome, error: Optional[str] = None) -> None:
        self.attempts.append(SlippageAttempt(self.current, outcome, error))
        logger.info("attempt at %s%% slippage: %s", self.current, outcome.value)

    def advance(self) -> bool:
        """Move to the next step; False once the ladder is exhausted."""
        if not self.has_next:
            return False
        self._index += 1
        return True
