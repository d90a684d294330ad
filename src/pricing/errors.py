"""Routing failures surfaced by discovery, quoting and path handling."""

from __future__ import annotations


class RoutingError(Exception):
    """Base class for routing errors. ``kind`` is stable across releases."""

    kind = "RoutingError"


class UnknownToken(RoutingError):
    kind = "UnknownToken"

    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Unknown token: {token}")


class NoLiquidity(RoutingError):
    """No pool exists for the pair in any probed fee tier."""

    kind = "NoLiquidity"


class NoQuoteAvailable(RoutingError):
    """Pools exist but every simulated quote failed."""

    kind = "NoQuoteAvailable"


class InvalidPath(RoutingError):
    kind = "InvalidPath"
