"""Conversion between on-ledger integer units and human decimal units.

Decimal input finer than the converter's scale is truncated toward zero, so
``UnitConverter(9).to_smallest_unit("1.0000000001") == "1000000000"``. The
discarded sub-unit value is never rounded up.
"""

import re
from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Union

from .errors import InvalidAmount

U64_MAX = 2**64 - 1
_DIGITS = re.compile(r"[0-9]+")


def parse_decimal(value: Union[str, int, float, Decimal]) -> Decimal:
    """Parse a user amount into a finite Decimal or raise InvalidAmount."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        parsed = Decimal(value.strip() if isinstance(value, str) else value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if not parsed.is_finite():
        raise InvalidAmount(f"Amount must be finite: {value!r}")
    return parsed


class UnitConverter:
    def __init__(self, decimals: int):
        if decimals < 0:
            raise ValueError("decimals must be >= 0")
        self.decimals = decimals
        self.scale = 10**decimals

    def __repr__(self) -> str:
        return f"UnitConverter(decimals={self.decimals})"

    def to_smallest_unit(self, decimal_amount: Union[str, int, float, Decimal]) -> str:
        amount = parse_decimal(decimal_amount)
        if amount < 0:
            raise InvalidAmount(f"Amount must not be negative: {decimal_amount!r}")
        with localcontext() as ctx:
            ctx.prec = 80
            scaled = amount * self.scale
        if scaled >= U64_MAX + 1:
            raise InvalidAmount(f"Amount overflows ledger range: {decimal_amount!r}")
        smallest = scaled.quantize(Decimal(1), rounding=ROUND_DOWN)
        return str(int(smallest))

    def to_decimal_unit(self, smallest_amount: Union[str, int]) -> str:
        value = self._parse_integer(smallest_amount)
        whole, fraction = divmod(value, self.scale)
        if not fraction:
            return str(whole)
        digits = str(fraction).rjust(self.decimals, "0").rstrip("0")
        return f"{whole}.{digits}"

    def to_int(self, decimal_amount: Union[str, int, float, Decimal]) -> int:
        return int(self.to_smallest_unit(decimal_amount))

    def rescale(self, smallest_amount: int, target: "UnitConverter") -> int:
        """Express an amount of this unit in ``target``'s smallest unit, truncating."""
        if smallest_amount < 0:
            raise InvalidAmount(f"Amount must not be negative: {smallest_amount}")
        if target.decimals >= self.decimals:
            return smallest_amount * 10 ** (target.decimals - self.decimals)
        return smallest_amount // 10 ** (self.decimals - target.decimals)

    def _parse_integer(self, smallest_amount: Union[str, int]) -> int:
        if isinstance(smallest_amount, bool):
            raise InvalidAmount(f"Invalid integer amount: {smallest_amount!r}")
        if isinstance(smallest_amount, int):
            value = smallest_amount
        elif isinstance(smallest_amount, str) and _DIGITS.fullmatch(smallest_amount.strip()):
            value = int(smallest_amount.strip())
        else:
            raise InvalidAmount(f"Invalid integer amount: {smallest_amount!r}")
        if value < 0 or value > U64_MAX:
            raise InvalidAmount(f"Amount outside ledger range: {smallest_amount!r}")
        return value
