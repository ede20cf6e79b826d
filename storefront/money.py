"""Exact decimal money.

Every amount is held as a ``decimal.Decimal`` with 28 significant digits.
Nothing is rounded while computing; the single rounding rule (ROUND_HALF_UP)
is applied only when converting to integer minor units or when presenting an
amount with two decimals.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Iterable, Union

from .errors import CurrencyMismatch, InvalidMoneyFormat

DEFAULT_CURRENCY = "EUR"
MINOR_UNITS_PER_MAJOR = 100

_CONTEXT = Context(prec=28, rounding=ROUND_HALF_UP)
_CENT = Decimal("0.01")
_ONE = Decimal("1")

# decimal separator, group separator, layout
_LOCALES = {
    "nl-NL": (",", ".", "{symbol} {amount}"),
    "en-US": (".", ",", "{symbol}{amount}"),
    "en-GB": (".", ",", "{symbol}{amount}"),
    "de-DE": (",", ".", "{amount} {symbol}"),
}
_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£"}

Number = Union[str, int, float, Decimal]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, bool):
        raise InvalidMoneyFormat(value)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # shortest repr, so 0.1 stays 0.1 instead of its binary expansion
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidMoneyFormat(value) from None
    else:
        raise InvalidMoneyFormat(value)
    if not result.is_finite():
        raise InvalidMoneyFormat(value)
    return result


@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal) or not self.amount.is_finite():
            raise InvalidMoneyFormat(self.amount)

    @classmethod
    def of(cls, value: Number, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(to_decimal(value), currency)

    @classmethod
    def from_minor_units(cls, minor: int, currency: str = DEFAULT_CURRENCY) -> "Money":
        if isinstance(minor, bool) or not isinstance(minor, int):
            raise InvalidMoneyFormat(minor)
        return cls(_CONTEXT.divide(Decimal(minor), Decimal(MINOR_UNITS_PER_MAJOR)), currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> "Money":
        return cls(Decimal(0), currency)

    @classmethod
    def sum(cls, values: Iterable["Money"], currency: str = DEFAULT_CURRENCY) -> "Money":
        total = cls.zero(currency)
        for value in values:
            total = total.add(value)
        return total

    def add(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(_CONTEXT.add(self.amount, other.amount), self.currency)

    def subtract(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(_CONTEXT.subtract(self.amount, other.amount), self.currency)

    def multiply_by_int(self, factor: int) -> "Money":
        if isinstance(factor, bool) or not isinstance(factor, int):
            raise TypeError(f"quantity must be an int, got {type(factor).__name__}")
        return Money(_CONTEXT.multiply(self.amount, Decimal(factor)), self.currency)

    def multiply_by_rate(self, rate: Decimal) -> "Money":
        return Money(_CONTEXT.multiply(self.amount, to_decimal(rate)), self.currency)

    def is_equal(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount == other.amount

    def is_greater_or_equal(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    def is_less_than(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def is_zero(self) -> bool:
        return self.amount == 0

    def to_decimal(self) -> Decimal:
        return self.amount

    def to_minor_units(self) -> int:
        scaled = _CONTEXT.multiply(self.amount, Decimal(MINOR_UNITS_PER_MAJOR))
        return int(scaled.quantize(_ONE, rounding=ROUND_HALF_UP))

    def quantize(self) -> "Money":
        return Money(self.amount.quantize(_CENT, rounding=ROUND_HALF_UP), self.currency)

    def format(self, locale: str = "nl-NL", currency: str = "") -> str:
        code = currency or self.currency
        decimal_sep, group_sep, layout = _LOCALES.get(locale, _LOCALES["en-US"])
        rounded = self.amount.quantize(_CENT, rounding=ROUND_HALF_UP)
        text = f"{abs(rounded):,.2f}"
        text = text.replace(",", "\0").replace(".", decimal_sep).replace("\0", group_sep)
        formatted = layout.format(symbol=_SYMBOLS.get(code, code), amount=text)
        return f"-{formatted}" if rounded < 0 else formatted

    def __str__(self) -> str:
        return self.format()

    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatch(self.currency, other.currency)
