from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, localcontext

Q96 = 2**96

# Probed in this order; the order also breaks liquidity ties in discovery.
FEE_TIERS: dict[str, int] = {
    "LOWEST": 100,  # 0.01%
    "LOW": 500,  # 0.05%
    "MEDIUM": 3_000,  # 0.3%
    "HIGH": 10_000,  # 1%
}

MAX_UINT24 = 2**24 - 1


def tier_name(fee: int) -> str:
    for name, tier_fee in FEE_TIERS.items():
        if tier_fee == fee:
            return name
    return f"FEE_{fee}"


def fee_percent(fee: int) -> Decimal:
    """Fee tier in hundredths of a bip to percent (3000 -> 0.3)."""
    return Decimal(fee) / Decimal(10_000)


def to_decimal(value: int | str | Decimal | float) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def sqrt_price_x96_to_price(sqrt_price_x96: int) -> Decimal:
    """Raw token1/token0 price: (sqrtPriceX96 / 2^96)^2, no decimal adjustment."""
    if sqrt_price_x96 < 0:
        raise ValueError("sqrt_price_x96 must be non-negative")
    with localcontext() as ctx:
        ctx.prec = 80
        ratio = Decimal(sqrt_price_x96) / Decimal(Q96)
        return +(ratio * ratio)


def adjusted_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> Decimal:
    """Human price of token0 in token1 units."""
    with localcontext() as ctx:
        ctx.prec = 80
        return sqrt_price_x96_to_price(sqrt_price_x96) * (
            Decimal(10) ** (decimals0 - decimals1)
        )


def price_impact_percent(sqrt_price_before: int, sqrt_price_after: int) -> Decimal:
    """|after - before| / before * 100 on the squared sqrt-price."""
    if sqrt_price_before <= 0:
        raise ValueError("sqrt_price_before must be positive")
    with localcontext() as ctx:
        ctx.prec = 80
        before = sqrt_price_x96_to_price(sqrt_price_before)
        after = sqrt_price_x96_to_price(sqrt_price_after)
        return abs(after - before) / before * 100


def round_places(value: Decimal, places: int = 2) -> Decimal:
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def min_amount_out(amount_out: int, slippage_percent: int | str | Decimal | float) -> int:
    """
    floor(amount_out * (1 - slippage_percent / 100)), computed exactly.

    1_000_000 at 0.5% -> 995_000.
    """
    if amount_out < 0:
        raise ValueError("amount_out must be non-negative")
    slippage = to_decimal(slippage_percent)
    if not slippage.is_finite() or slippage < 0 or slippage >= 100:
        raise ValueError("slippage_percent must be in [0, 100)")
    numerator, denominator = slippage.as_integer_ratio()
    scale = 100 * denominator
    return amount_out * (scale - numerator) // scale
