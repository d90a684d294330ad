"""Signing identity used by the swap executor."""

from __future__ import annotations

import os
from typing import Any

from eth_account import Account
from eth_account.datastructures import SignedTransaction
from eth_utils.address import to_checksum_address

from .base_types import Address


def _mask_private_key(private_key: Any) -> str:
    if isinstance(private_key, (bytes, bytearray)):
        raw = private_key.hex()
    else:
        raw = str(private_key)

    if raw.startswith("0x"):
        raw = raw[2:]

    if len(raw) < 10:
        return "<redacted>"

    return f"0x{raw[:6]}...{raw[-4:]}"


class WalletManager:
    """
    Holds the signer account for swap, wrap and approval transactions.

    The private key must never appear in logs, errors, or string
    representations.
    """

    def __init__(self, private_key: str | bytes) -> None:
        try:
            self._account = Account.from_key(private_key)
        except Exception as exc:
            masked = _mask_private_key(private_key)
            raise ValueError(f"Invalid private key: {masked}") from exc

    @classmethod
    def from_env(cls, env_var: str = "WALLET_PRIVATE_KEY") -> "WalletManager":
        value = os.environ.get(env_var)
        if not value:
            raise ValueError(f"Environment variable {env_var} is not set")
        return cls(value)

    @property
    def address(self) -> str:
        """Checksummed signer address."""
        return to_checksum_address(self._account.address)

    @property
    def account_address(self) -> Address:
        return Address(self.address)

    def sign_transaction(self, tx: dict) -> SignedTransaction:
        if not isinstance(tx, dict):
            raise TypeError("tx must be a dict")
        if not tx:
            raise ValueError("tx must not be empty")
        return self._account.sign_transaction(tx)

    def __repr__(self) -> str:
        return f"WalletManager(address={self.address})"

    def __str__(self) -> str:
        return self.__repr__()
