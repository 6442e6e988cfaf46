from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Mapping, Sequence


ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND"})

DEFAULT_TARGET_CURRENCIES: tuple[str, ...] = ("USD", "CNY", "HKD")

_CENT = Decimal("0.01")


def round_amount(value: float | int | Decimal) -> float:
    """Half-up rounding to 2 places (float round() is half-even on the binary value)."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def to_decimal(currency: str, minor_amount: int | float) -> float:
    """
    Minor units -> display amount.
    Zero-decimal currencies pass through; everything else is divided by 100.
    """
    code = (currency or "").upper()
    if code in ZERO_DECIMAL_CURRENCIES:
        value = Decimal(str(minor_amount))
    else:
        value = Decimal(str(minor_amount)) / Decimal(100)
    return round_amount(value)


def _rate(rates: Mapping[str, float], currency: str) -> float | None:
    val = rates.get(currency)
    if val is None:
        return None
    try:
        val = float(val)
    except (TypeError, ValueError):
        return None
    return val if val > 0 else None


def convert(
    amount: float,
    from_currency: str,
    to_currency: str,
    rates: Mapping[str, float],
) -> float:
    """
    Convert via the rate table's common base.
    Missing rate on either side returns the amount unconverted.
    """
    src = from_currency.upper()
    dst = to_currency.upper()
    if src == dst:
        return amount
    src_rate = _rate(rates, src)
    dst_rate = _rate(rates, dst)
    if src_rate is None or dst_rate is None:
        return amount
    in_base = Decimal(str(amount)) / Decimal(str(src_rate))
    return round_amount(in_base * Decimal(str(dst_rate)))


def convert_revenue(
    revenue: Mapping[str, float],
    target_currency: str,
    rates: Mapping[str, float],
) -> Dict[str, float]:
    """Collapse a currency map into a single {target: total} entry."""
    target = target_currency.upper()
    total = sum(convert(amt, cur, target, rates) for cur, amt in revenue.items())
    return {target: round_amount(total)}


def convert_total_revenue(
    revenue: Mapping[str, float],
    rates: Mapping[str, float],
    targets: Sequence[str] = DEFAULT_TARGET_CURRENCIES,
) -> Dict[str, Dict[str, float]]:
    """
    For every source currency, its amount expressed in each target currency.
    e.g. {"EUR": {"EUR": 10.0, "USD": 10.9, "CNY": 78.5, "HKD": 85.1}}
    """
    converted: Dict[str, Dict[str, float]] = {}
    for src, amount in revenue.items():
        row = {src: amount}
        for dst in targets:
            if dst != src:
                row[dst] = convert(amount, src, dst, rates)
        converted[src] = row
    return converted


def convert_total_to(
    amounts: Mapping[str, float],
    target_currency: str,
    rates: Mapping[str, float],
) -> float:
    target = target_currency.upper()
    return round_amount(sum(convert(amt, cur, target, rates) for cur, amt in amounts.items()))
