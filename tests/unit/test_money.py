from decimal import Decimal

import pytest

from storefront.errors import CurrencyMismatch, InvalidMoneyFormat
from storefront.money import Money, to_decimal


@pytest.mark.unit
def test_float_sum_is_exact():
    # 0.1 + 0.2 在十进制下没有误差
    total = Money.of(0.1).add(Money.of(0.2))
    assert total.is_equal(Money.of("0.3"))
    assert total.amount == Decimal("0.3")


@pytest.mark.unit
@pytest.mark.parametrize(
    "amount,cents",
    [("19.99", 1999), ("0.125", 13), ("0.005", 1), ("0.004", 0), ("-0.005", -1), ("75", 7500)],
    ids=["plain", "half-up", "half-cent", "below-half", "negative-half", "whole"],
)
def test_to_minor_units_rounds_half_up(amount, cents):
    assert Money.of(amount).to_minor_units() == cents


@pytest.mark.unit
def test_no_intermediate_rounding():
    # 先乘后舍入：0.333 * 3 = 0.999 -> 100 分，而不是 99 分
    assert Money.of("0.333").multiply_by_int(3).to_minor_units() == 100


@pytest.mark.unit
def test_from_minor_units():
    assert Money.from_minor_units(1999).amount == Decimal("19.99")
    assert Money.from_minor_units(0).is_zero()
    with pytest.raises(InvalidMoneyFormat):
        Money.from_minor_units(19.99)


@pytest.mark.unit
@pytest.mark.parametrize("bad", ["abc", "", "NaN", float("inf"), True, None, [1]])
def test_invalid_amounts_rejected(bad):
    with pytest.raises(InvalidMoneyFormat):
        Money.of(bad)


@pytest.mark.unit
def test_invalid_money_is_value_error():
    with pytest.raises(ValueError):
        to_decimal("12,50")


@pytest.mark.unit
def test_currency_mismatch():
    with pytest.raises(CurrencyMismatch):
        Money.of("1", "EUR").add(Money.of("1", "USD"))


@pytest.mark.unit
def test_comparisons():
    a, b = Money.of("74.99"), Money.of("75")
    assert a.is_less_than(b)
    assert b.is_greater_or_equal(b)
    assert not a.is_greater_or_equal(b)
    assert Money.sum([a, Money.of("0.01")]).is_equal(b)


@pytest.mark.unit
def test_format_by_locale(locale_case):
    # 动态参数生成：通过 pytest_generate_tests 注入 locale_case
    locale, expected = locale_case
    assert Money.of("1234.5").format(locale) == expected


@pytest.mark.unit
def test_format_negative_and_default():
    assert Money.of("-7.5").format("en-US") == "-€7.50"
    assert str(Money.of("7.5")) == "€ 7,50"
    assert Money.of("3", "USD").format("xx-XX") == "$3.00"


@pytest.mark.unit
def test_quantize_only_for_presentation():
    m = Money.of("2.345")
    assert m.quantize().amount == Decimal("2.35")
    assert m.to_decimal() == Decimal("2.345")
