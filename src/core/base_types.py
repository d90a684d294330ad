"""Core value types shared by the chain, pricing and executor modules."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from eth_utils.address import is_address, to_checksum_address

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class Address:
    """EVM address with validation and checksumming."""

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise TypeError("Address value must be a string")
        if not is_address(self.value):
            raise ValueError(f"Invalid EVM address: {self.value}")
        object.__setattr__(self, "value", to_checksum_address(self.value))

    @classmethod
    def from_string(cls, s: str) -> "Address":
        return cls(s)

    @classmethod
    def zero(cls) -> "Address":
        return cls(ZERO_ADDRESS)

    @staticmethod
    def is_valid(value: object) -> bool:
        return isinstance(value, str) and value.startswith("0x") and is_address(value)

    @property
    def checksum(self) -> str:
        return self.value

    @property
    def lower(self) -> str:
        return self.value.lower()

    @property
    def is_zero(self) -> bool:
        return int(self.value, 16) == 0

    def to_bytes(self) -> bytes:
        """Raw 20-byte form."""
        return bytes.fromhex(self.value[2:])

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Address):
            return self.lower == other.lower
        if isinstance(other, str):
            return self.lower == other.lower()
        return False

    def __hash__(self) -> int:
        return hash(self.lower)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Token:
    """Resolved ERC20 metadata. Immutable once built."""

    address: Address
    decimals: int
    symbol: str
    name: str

    def amount(self, human: str | Decimal) -> "TokenAmount":
        return TokenAmount.from_human(human, self.decimals, self.symbol)

    def raw_amount(self, raw: int) -> "TokenAmount":
        return TokenAmount(raw=raw, decimals=self.decimals, symbol=self.symbol)

    def to_dict(self) -> dict:
        return {
            "address": self.address.checksum,
            "decimals": self.decimals,
            "symbol": self.symbol,
            "name": self.name,
        }


@dataclass(frozen=True)
class TokenAmount:
    """
    A token amount stored as integer base units.

    `human` gives the decimal view for display only; all math stays on `raw`.
    """

    raw: int
    decimals: int
    symbol: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.raw, int) or isinstance(self.raw, bool):
            raise TypeError("raw must be an int")
        if not isinstance(self.decimals, int) or self.decimals < 0:
            raise ValueError("decimals must be a non-negative integer")

    @classmethod
    def from_human(
        cls, amount: str | Decimal, decimals: int, symbol: str | None = None
    ) -> "TokenAmount":
        """Create from a human-readable amount (e.g. '1.5' WSEI)."""
        if isinstance(amount, float):
            raise TypeError("amount must be a string or Decimal, not float")
        if isinstance(amount, str):
            try:
                decimal_amount = Decimal(amount.strip())
            except ArithmeticError as exc:
                raise ValueError(f"Invalid amount: {amount!r}") from exc
        elif isinstance(amount, Decimal):
            decimal_amount = amount
        else:
            raise TypeError("amount must be a string or Decimal")
        if not decimal_amount.is_finite() or decimal_amount < 0:
            raise ValueError(f"Invalid amount: {amount!r}")

        scale = Decimal(10) ** decimals
        raw_decimal = decimal_amount * scale
        if raw_decimal != raw_decimal.to_integral_value():
            raise ValueError("amount has more precision than decimals allow")
        return cls(raw=int(raw_decimal), decimals=decimals, symbol=symbol)

    @property
    def human(self) -> Decimal:
        scale = Decimal(10) ** self.decimals
        return Decimal(self.raw) / scale

    def formatted(self, places: int | None = None) -> str:
        value = self.human
        if places is not None:
            value = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
        return f"{value:f}"

    def __add__(self, other: "TokenAmount") -> "TokenAmount":
        if not isinstance(other, TokenAmount):
            return NotImplemented
        if self.decimals != other.decimals:
            raise ValueError("TokenAmount decimals must match")
        return TokenAmount(self.raw + other.raw, self.decimals, self.symbol or other.symbol)

    def __lt__(self, other: "TokenAmount") -> bool:
        if not isinstance(other, TokenAmount):
            return NotImplemented
        if self.decimals != other.decimals:
            raise ValueError("TokenAmount decimals must match")
        return self.raw < other.raw

    def __str__(self) -> str:
        return f"{self.formatted()} {self.symbol or ''}".strip()


@dataclass
class TransactionRequest:
    """A transaction ready to be signed, or an eth_call payload."""

    to: Address
    value: TokenAmount
    data: bytes
    nonce: Optional[int] = None
    gas_limit: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee: Optional[int] = None
    chain_id: int = 1
    sender: Optional[Address] = None

    def to_dict(self) -> dict:
        """Convert to a web3-compatible dict."""
        payload: dict[str, object] = {
            "to": self.to.checksum,
            "value": self.value.raw,
            "data": f"0x{self.data.hex()}",
            "chainId": self.chain_id,
        }
        if self.nonce is not None:
            payload["nonce"] = self.nonce
        if self.gas_limit is not None:
            payload["gas"] = self.gas_limit
        if self.max_fee_per_gas is not None:
            payload["maxFeePerGas"] = self.max_fee_per_gas
        if self.max_priority_fee is not None:
            payload["maxPriorityFeePerGas"] = self.max_priority_fee
        return payload

    def to_call_dict(self) -> dict:
        """Fields accepted by eth_call / eth_estimateGas."""
        payload: dict[str, object] = {
            "to": self.to.checksum,
            "data": f"0x{self.data.hex()}",
        }
        if self.value.raw:
            payload["value"] = hex(self.value.raw)
        if self.sender is not None:
            payload["from"] = self.sender.checksum
        return payload


@dataclass
class TransactionReceipt:
    """Parsed transaction receipt."""

    tx_hash: str
    block_number: int
    status: bool
    gas_used: int
    effective_gas_price: int
    logs: list

    @property
    def tx_fee(self) -> TokenAmount:
        return TokenAmount(
            raw=self.gas_used * self.effective_gas_price,
            decimals=18,
        )

    @classmethod
    def from_web3(cls, receipt: dict) -> "TransactionReceipt":
        """Parse from a JSON-RPC receipt dict."""
        tx_hash = receipt.get("transactionHash")
        if hasattr(tx_hash, "hex"):
            tx_hash_value = tx_hash.hex()
        else:
            tx_hash_value = str(tx_hash)

        status_value = receipt.get("status")
        if isinstance(status_value, bool):
            status = status_value
        elif isinstance(status_value, int):
            status = status_value == 1
        elif isinstance(status_value, str):
            status = _to_int(status_value) == 1
        else:
            raise ValueError("Invalid status in receipt")

        return cls(
            tx_hash=tx_hash_value,
            block_number=_to_int(receipt.get("blockNumber")),
            status=status,
            gas_used=_to_int(receipt.get("gasUsed")),
            effective_gas_price=_to_int(receipt.get("effectiveGasPrice", 0)),
            logs=receipt.get("logs", []),
        )


def _to_int(value: object) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError("Expected integer-like value")
