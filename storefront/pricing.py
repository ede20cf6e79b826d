import logging
from typing import Sequence

from .config import PricingConfig
from .models import OrderSummary, PricedLine, ValidationResult
from .money import Money

logger = logging.getLogger("storefront.pricing")


def shipping_cost(price_total: Money, config: PricingConfig) -> Money:
    if price_total.is_greater_or_equal(config.free_shipping_threshold):
        return Money.zero(config.currency)
    return config.standard_shipping_fee


def free_shipping_remaining(price_total: Money, config: PricingConfig) -> Money:
    if price_total.is_less_than(config.free_shipping_threshold):
        return config.free_shipping_threshold.subtract(price_total)
    return Money.zero(config.currency)


def calculate_summary(lines: Sequence[PricedLine], config: PricingConfig) -> OrderSummary:
    zero = Money.zero(config.currency)
    price_total = subtotal = tax = original_total = zero
    item_count = 0
    for line in lines:
        price_total = price_total.add(line.unit_effective_price.multiply_by_int(line.quantity))
        subtotal = subtotal.add(line.unit_subtotal.multiply_by_int(line.quantity))
        tax = tax.add(line.unit_tax.multiply_by_int(line.quantity))
        original_total = original_total.add(line.unit_list_price.multiply_by_int(line.quantity))
        item_count += line.quantity

    shipping = shipping_cost(price_total, config) if lines else zero
    summary = OrderSummary(
        subtotal=subtotal,
        tax=tax,
        shipping_cost=shipping,
        price_total=price_total,
        grand_total=price_total.add(shipping),
        item_count=item_count,
        original_total=original_total,
        total_savings=original_total.subtract(price_total),
        has_discounts=any(line.has_discount for line in lines),
        source="local",
    )
    logger.info(
        "summary: items=%d price_total=%s shipping=%s grand_total=%s",
        item_count,
        price_total.amount,
        shipping.amount,
        summary.grand_total.amount,
    )
    return summary


def summary_from_authority(result: ValidationResult, config: PricingConfig) -> OrderSummary:
    totals = result.authoritative_totals
    currency = config.currency
    price_total = Money.from_minor_units(totals.discounted_price_cents, currency)
    original_total = Money.from_minor_units(totals.original_price_cents, currency)
    shipping = shipping_cost(price_total, config) if result.per_line else Money.zero(currency)
    summary = OrderSummary(
        subtotal=Money.from_minor_units(totals.subtotal_cents, currency),
        tax=Money.from_minor_units(totals.tax_cents, currency),
        shipping_cost=shipping,
        price_total=price_total,
        grand_total=price_total.add(shipping),
        item_count=result.item_count,
        original_total=original_total,
        total_savings=Money.from_minor_units(totals.discount_amount_cents, currency),
        has_discounts=totals.discount_amount_cents > 0,
        source="authority",
    )
    logger.debug("summary from authority: grand_total=%s", summary.grand_total.amount)
    return summary
