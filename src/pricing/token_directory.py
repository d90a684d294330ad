"""Symbol/address resolution and cached ERC20 metadata."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from chain.client import ChainClient
from chain.contracts import ERC20
from core.base_types import Address, Token

from .errors import UnknownToken

logger = logging.getLogger(__name__)

FALLBACK_DECIMALS = 18
FALLBACK_SYMBOL = "UNKNOWN"
FALLBACK_NAME = "Unknown"


class TokenCache:
    """
    Append-only token metadata cache keyed by address.

    Entries are written once and never replaced, so concurrent readers
    need no locking.
    """

    def __init__(self) -> None:
        self._tokens: dict[Address, Token] = {}

    def get(self, address: Address) -> Optional[Token]:
        return self._tokens.get(address)

    def add(self, token: Token) -> Token:
        return self._tokens.setdefault(token.address, token)

    def __contains__(self, address: object) -> bool:
        return address in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)


class TokenDirectory:
    """
    Resolves user input to token addresses and loads token metadata.

    ``symbol_table`` maps a lowercase key to ``{address, symbol, decimals,
    name}``; configured tokens are seeded into the cache so they never hit
    the chain.
    """

    def __init__(
        self,
        client: ChainClient,
        symbol_table: dict[str, dict],
        cache: Optional[TokenCache] = None,
    ):
        self._client = client
        self._symbol_table = symbol_table
        self.cache = cache if cache is not None else TokenCache()
        for entry in symbol_table.values():
            self.cache.add(
                Token(
                    address=Address(entry["address"]),
                    decimals=int(entry["decimals"]),
                    symbol=entry["symbol"],
                    name=entry.get("name", entry["symbol"]),
                )
            )

    def resolve(self, token_input: str) -> Address:
        """Address passes through; otherwise case-insensitive symbol lookup."""
        if not isinstance(token_input, str) or not token_input.strip():
            raise UnknownToken(str(token_input))
        value = token_input.strip()
        if value.startswith("0x"):
            if not Address.is_valid(value):
                raise UnknownToken(value)
            return Address(value)

        key = value.lower()
        entry = self._symbol_table.get(key)
        if entry is None:
            for candidate in self._symbol_table.values():
                if candidate["symbol"].lower() == key:
                    entry = candidate
                    break
        if entry is None:
            raise UnknownToken(value)
        return Address(entry["address"])

    async def resolve_token(self, token_input: str) -> Token:
        return await self.get_metadata(self.resolve(token_input))

    async def get_metadata(self, address: Address) -> Token:
        """
        Return cached metadata or read decimals/symbol/name concurrently.

        Each read falls back on its own default; the result is cached
        whether or not the reads succeeded.
        """
        cached = self.cache.get(address)
        if cached is not None:
            return cached

        decimals, symbol, name = await asyncio.gather(
            self._read_field(address, ERC20.DECIMALS, FALLBACK_DECIMALS),
            self._read_field(address, ERC20.SYMBOL, FALLBACK_SYMBOL),
            self._read_field(address, ERC20.NAME, FALLBACK_NAME),
        )
        token = Token(
            address=address,
            decimals=int(decimals),
            symbol=str(symbol),
            name=str(name),
        )
        return self.cache.add(token)

    async def _read_field(self, address: Address, fn, default):
        try:
            (value,) = await asyncio.to_thread(self._client.read, address, fn)
            return value
        except Exception as exc:
            logger.warning(
                "%s() failed for %s, using %r: %s", fn.name, address, default, exc
            )
            return default
