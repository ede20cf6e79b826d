import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence

from .discounts import Resolution, resolve_effective_price
from .errors import UnresolvableLineItem
from .models import (
    SOURCE_AUTHORITY,
    SOURCE_CART,
    AuthenticatedLine,
    CartLine,
    LineValidation,
    PricedLine,
    Product,
    Promotion,
)
from .money import Money

logger = logging.getLogger("storefront.normalizer")


@dataclass(frozen=True)
class NormalizedCart:
    lines: List[PricedLine] = field(default_factory=list)
    unresolved: List[UnresolvableLineItem] = field(default_factory=list)

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved)


def price_line(
    product_id: str,
    quantity: int,
    resolution: Resolution,
    tax_rate: Decimal,
) -> PricedLine:
    # prices are tax-inclusive: tax = price * rate, subtotal = price - tax
    unit_tax = resolution.price.multiply_by_rate(tax_rate)
    return PricedLine(
        product_id=product_id,
        quantity=quantity,
        unit_list_price=resolution.list_price,
        unit_effective_price=resolution.price,
        unit_tax=unit_tax,
        unit_subtotal=resolution.price.subtract(unit_tax),
        applied_promotion_id=resolution.promotion_id,
        price_source=resolution.source,
    )


def _stored_line(line: AuthenticatedLine, product: Product, resolution: Resolution) -> Optional[PricedLine]:
    currency = product.price.currency
    stored_price = Money.from_minor_units(line.unit_price_cents, currency)
    if not stored_price.is_equal(resolution.price):
        logger.info(
            "cart line %s is stale: stored %s, catalog now %s",
            line.product_id,
            stored_price.amount,
            resolution.price.amount,
        )
        return None
    stored_tax = Money.from_minor_units(line.unit_tax_cents, currency)
    stored_subtotal = Money.from_minor_units(line.unit_subtotal_cents, currency)
    if not stored_tax.add(stored_subtotal).is_equal(stored_price):
        logger.debug("cart line %s tax and subtotal do not add up, recomputing", line.product_id)
        return None
    return PricedLine(
        product_id=line.product_id,
        quantity=line.quantity,
        unit_list_price=resolution.list_price,
        unit_effective_price=stored_price,
        unit_tax=stored_tax,
        unit_subtotal=stored_subtotal,
        applied_promotion_id=resolution.promotion_id,
        price_source=SOURCE_CART,
    )


def normalize_line(
    entry: CartLine,
    product: Optional[Product],
    tax_rate: Decimal,
    promotions: Iterable[Promotion] = (),
    validated: Optional[LineValidation] = None,
    now: Optional[datetime] = None,
) -> Optional[PricedLine]:
    """Turn one cart entry of either shape into a PricedLine.

    Returns None when the catalog has no product for the entry. A server cart
    line keeps its stored figures only while its unit price still matches the
    catalog's current effective price; otherwise it is priced from the catalog.
    """
    if product is None:
        return None
    resolution = resolve_effective_price(product, promotions, validated, now)
    if isinstance(entry, AuthenticatedLine) and resolution.source != SOURCE_AUTHORITY:
        stored = _stored_line(entry, product, resolution)
        if stored is not None:
            return stored
    return price_line(entry.product_id, entry.quantity, resolution, tax_rate)


def normalize_cart(
    entries: Sequence[CartLine],
    products: Mapping[str, Product],
    tax_rate: Decimal,
    promotions: Iterable[Promotion] = (),
    validations: Optional[Mapping[str, LineValidation]] = None,
    now: Optional[datetime] = None,
) -> NormalizedCart:
    promotions = list(promotions)
    validations = validations or {}
    result = NormalizedCart()
    for entry in entries:
        product = products.get(entry.product_id)
        line = normalize_line(
            entry,
            product,
            tax_rate,
            promotions,
            validations.get(entry.product_id),
            now,
        )
        if line is None:
            logger.warning("no catalog product for %s, excluded from totals", entry.product_id)
            result.unresolved.append(UnresolvableLineItem(entry.product_id, entry.quantity))
            continue
        result.lines.append(line)
    logger.debug("normalized %d lines, %d unresolved", len(result.lines), result.unresolved_count)
    return result

