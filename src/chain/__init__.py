from .client import ChainClient, GasPrice
from .contracts import ContractFunction
from .errors import (
    ChainError,
    InsufficientFunds,
    NonceTooLow,
    ReplacementUnderpriced,
    RPCError,
    TransactionFailed,
)
from .transaction_builder import TransactionBuilder

__all__ = [
    "ChainClient",
    "ContractFunction",
    "GasPrice",
    "TransactionBuilder",
    "ChainError",
    "RPCError",
    "TransactionFailed",
    "InsufficientFunds",
    "NonceTooLow",
    "ReplacementUnderpriced",
]
