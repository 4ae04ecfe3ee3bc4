"""
Amount -- fixed-point monetary value in smallest units.

Responsibility:
    The single value type for every balance, tip, share, and total in the
    system.  Internally an integer count of the smallest unit (satoshi-like,
    ``UNITS_PER_COIN`` per coin), so addition, subtraction, multiplication by
    a count, and integer division never lose or invent units.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other component.

Invariants enforced:
    - Amounts are never negative (construction and subtraction reject it).
    - No floats: coin values are parsed from ``Decimal``/``str``/``int`` only.
    - Values finer than one smallest unit are rejected, never rounded.

Failure modes:
    - ValueError on negative values, floats, non-numeric strings, or more
      than ``COIN_DECIMAL_PLACES`` fractional digits.
    - TypeError when arithmetic mixes Amount with unsupported types.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

COIN_DECIMAL_PLACES = 8
UNITS_PER_COIN = 10**COIN_DECIMAL_PLACES
DEFAULT_TICKER = "VRSC"


@dataclass(frozen=True, slots=True, order=True)
class Amount:
    """
    Non-negative amount of the ledger coin.

    Contract:
        Wraps an ``int`` count of smallest units.  Ordering and equality
        compare the unit count.

    Guarantees:
        - Immutable and hashable
        - ``sats`` is always an int >= 0
        - ``checked_div(n) * n + remainder == self`` for every n > 0

    Non-goals:
        - Does NOT carry a ticker; formatting takes one explicitly.
        - Does NOT convert to fiat (price display is an outer concern).
    """

    sats: int

    def __post_init__(self) -> None:
        if isinstance(self.sats, bool) or not isinstance(self.sats, int):
            raise TypeError(f"Amount units must be int, got {type(self.sats).__name__}")
        if self.sats < 0:
            raise ValueError(f"Amount cannot be negative: {self.sats}")

    @classmethod
    def zero(cls) -> Amount:
        return cls(0)

    @classmethod
    def from_sats(cls, sats: int) -> Amount:
        """Create an Amount from a count of smallest units."""
        return cls(sats)

    @classmethod
    def from_coins(cls, value: Decimal | str | int) -> Amount:
        """
        Parse a coin-denominated value.

        Preconditions:
            - value is a Decimal, a numeric string, or an int (never float).

        Postconditions:
            - Returns an Amount whose ``to_coins()`` equals ``value`` exactly.

        Raises:
            ValueError: float input, non-numeric string, negative value, or
                more than 8 fractional digits.
        """
        if isinstance(value, float):
            raise ValueError("Floats are not accepted for amounts; pass a str or Decimal")
        try:
            coins = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
        if not coins.is_finite():
            raise ValueError(f"Invalid amount: {value!r}")

        units = coins * UNITS_PER_COIN
        if units != units.to_integral_value():
            raise ValueError(
                f"Amount {value} is finer than the smallest unit "
                f"({COIN_DECIMAL_PLACES} decimal places)"
            )
        return cls(int(units))

    def to_coins(self) -> Decimal:
        """Coin value as a Decimal with 8 fractional digits."""
        return (Decimal(self.sats) / UNITS_PER_COIN).quantize(
            Decimal(1).scaleb(-COIN_DECIMAL_PLACES)
        )

    @property
    def is_zero(self) -> bool:
        return self.sats == 0

    def checked_div(self, count: int) -> Amount | None:
        """Floor division by a recipient count; None when count is zero."""
        if count <= 0:
            return None
        return Amount(self.sats // count)

    def split(self, count: int) -> tuple[Amount, Amount]:
        """
        Split into ``count`` equal shares.

        Returns ``(share, remainder)`` with ``share * count + remainder == self``.

        Raises:
            ValueError: If count is not positive.
        """
        if count <= 0:
            raise ValueError(f"Cannot split into {count} shares")
        share, rest = divmod(self.sats, count)
        return Amount(share), Amount(rest)

    def format(self, ticker: str = DEFAULT_TICKER) -> str:
        return f"{self.to_coins():f} {ticker}"

    def __add__(self, other: Amount) -> Amount:
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.sats + other.sats)

    def __sub__(self, other: Amount) -> Amount:
        """Subtract; raises ValueError if the result would be negative."""
        if not isinstance(other, Amount):
            return NotImplemented
        return Amount(self.sats - other.sats)

    def __mul__(self, count: int) -> Amount:
        if isinstance(count, bool) or not isinstance(count, int):
            return NotImplemented
        return Amount(self.sats * count)

    def __rmul__(self, count: int) -> Amount:
        return self.__mul__(count)

    def __str__(self) -> str:
        return f"{self.to_coins():f}"

    def __repr__(self) -> str:
        return f"Amount({self.sats})"


def sum_amounts(amounts) -> Amount:
    """Sum an iterable of Amounts (zero for an empty iterable)."""
    return Amount(sum(a.sats for a in amounts))
