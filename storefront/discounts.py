import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from .models import (
    FIXED_AMOUNT,
    PERCENTAGE,
    SOURCE_AUTHORITY,
    SOURCE_LIST,
    SOURCE_PROMOTION,
    SOURCE_SALE,
    LineValidation,
    Product,
    Promotion,
)
from .money import Money

logger = logging.getLogger("storefront.discounts")

_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class Resolution:
    price: Money
    list_price: Money
    source: str
    promotion_id: Optional[str] = None


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_promotion_active(promotion: Promotion, now: Optional[datetime] = None) -> bool:
    now = _aware(now or datetime.now(timezone.utc))
    return _aware(promotion.start_date) <= now <= _aware(promotion.end_date)


def discount_amount(price: Money, promotion: Promotion) -> Money:
    if promotion.discount_type == PERCENTAGE:
        return price.multiply_by_rate(promotion.discount_value / _HUNDRED)
    fixed = Money(promotion.discount_value, price.currency)
    # a fixed discount never takes more than the price itself
    return price if fixed.is_greater_or_equal(price) else fixed


def discounted_price(price: Money, promotion: Promotion) -> Money:
    result = price.subtract(discount_amount(price, promotion))
    return result if result.is_greater_or_equal(Money.zero(price.currency)) else Money.zero(price.currency)


def best_promotion(
    product_id: str,
    price: Money,
    promotions: Iterable[Promotion],
    now: Optional[datetime] = None,
) -> Optional[Promotion]:
    best = None
    best_amount = Money.zero(price.currency)
    for promotion in promotions:
        if not promotion.applies_to(product_id) or not is_promotion_active(promotion, now):
            continue
        amount = discount_amount(price, promotion)
        if best is None or best_amount.is_less_than(amount):
            best, best_amount = promotion, amount
    return best


def format_discount_text(discount_type: str, discount_value: Decimal) -> str:
    if discount_type == PERCENTAGE:
        return f"{int(discount_value.to_integral_value(rounding=ROUND_HALF_UP))}% korting"
    if discount_type == FIXED_AMOUNT:
        return f"€{discount_value.normalize():f} korting"
    raise ValueError(f"unknown discount type: {discount_type}")


def _authoritative(product: Product, validated: LineValidation) -> Resolution:
    currency = product.price.currency
    price = Money.from_minor_units(validated.authoritative_unit_price_cents, currency)
    list_price = product.price
    if list_price.is_less_than(price):
        original = Money.from_minor_units(validated.original_unit_price_cents, currency)
        list_price = price if original.is_less_than(price) else original
    return Resolution(price, list_price, SOURCE_AUTHORITY, validated.applied_promotion_id)


def resolve_effective_price(
    product: Product,
    promotions: Iterable[Promotion] = (),
    validated: Optional[LineValidation] = None,
    now: Optional[datetime] = None,
) -> Resolution:
    """Pick the single price a line is charged at.

    An authority-confirmed price wins when the authority accepted it (or it
    lies within tolerance). Otherwise the cheaper of the catalog sale price
    and the best active promotion applies, falling back to the list price.
    Discounts are never stacked.
    """
    if validated is not None and validated.accepted:
        return _authoritative(product, validated)

    resolution = Resolution(product.price, product.price, SOURCE_LIST)
    if product.on_sale:
        resolution = Resolution(product.discounted_price, product.price, SOURCE_SALE)

    promotion = best_promotion(product.id, product.price, promotions, now)
    if promotion is not None:
        promo_price = discounted_price(product.price, promotion)
        if promo_price.is_less_than(product.price) and not resolution.price.is_less_than(promo_price):
            resolution = Resolution(promo_price, product.price, SOURCE_PROMOTION, promotion.id)

    logger.debug("resolved %s at %s (%s)", product.id, resolution.price.amount, resolution.source)
    return resolution
