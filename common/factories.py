from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from storefront.guest_cart import GuestCart
from storefront.models import AuthenticatedLine, Product, Promotion, ValidationRequestItem
from storefront.money import Money


@dataclass(frozen=True)
class Defaults:
    base_price: str = "10.00"
    tax_rate: Decimal = Decimal("0.21")
    now: datetime = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_product(pid: str = "P1", price: str = Defaults.base_price, sale: Optional[str] = None) -> Product:
    return Product(
        id=pid,
        name=f"Product {pid}",
        price=Money.of(price),
        discounted_price=Money.of(sale) if sale is not None else None,
    )


def make_products(n: int = 1, base: str = Defaults.base_price) -> Dict[str, Product]:
    products = [make_product(f"P{i}", str(Decimal(base) + i)) for i in range(n)]
    return {p.id: p for p in products}


def make_promotion(
    pid: str = "PROMO1",
    discount_type: str = "percentage",
    value: str = "10",
    product_ids: Iterable[str] = (),
    days: int = 7,
    now: datetime = Defaults.now,
) -> Promotion:
    return Promotion(
        id=pid,
        discount_type=discount_type,
        discount_value=Decimal(value),
        start_date=now - timedelta(days=days),
        end_date=now + timedelta(days=days),
        product_ids=tuple(product_ids),
    )


def split_cents(price_cents: int, tax_rate: Decimal = Defaults.tax_rate) -> Dict[str, int]:
    tax = Money.from_minor_units(price_cents).multiply_by_rate(tax_rate).to_minor_units()
    return {"unit_tax_cents": tax, "unit_subtotal_cents": price_cents - tax}


def make_auth_line(pid: str = "P0", quantity: int = 1, price_cents: int = 1000) -> AuthenticatedLine:
    split = split_cents(price_cents)
    return AuthenticatedLine(
        product_id=pid,
        quantity=quantity,
        unit_price_cents=price_cents,
        unit_tax_cents=split["unit_tax_cents"],
        unit_subtotal_cents=split["unit_subtotal_cents"],
        item_id=f"item-{pid}",
    )


def make_guest_cart(quantities: Optional[Dict[str, int]] = None) -> GuestCart:
    c = GuestCart()
    for pid, qty in (quantities or {}).items():
        c.add(pid, qty)
    return c


def make_request(prices: Dict[str, int], quantity: int = 1) -> List[ValidationRequestItem]:
    return [ValidationRequestItem(pid, quantity, cents) for pid, cents in prices.items()]


def make_response(
    items: Iterable[ValidationRequestItem],
    prices: Optional[Dict[str, int]] = None,
    envelope: bool = True,
) -> dict:
    """Build a pricing-authority answer for ``items``.

    ``prices`` overrides the authority's unit price per product; anything not
    listed is confirmed at the expected price.
    """
    prices = prices or {}
    rows = []
    totals = {"original": 0, "discounted": 0, "discount": 0, "tax": 0, "subtotal": 0}
    for item in items:
        price = prices.get(item.product_id, item.expected_unit_price_cents)
        split = split_cents(price)
        rows.append({
            "product_id": item.product_id,
            "quantity": item.quantity,
            "original_unit_price_cents": price,
            "discounted_unit_price_cents": price,
            "discount_amount_cents": 0,
            "applied_promotion_id": None,
            "is_price_valid": price == item.expected_unit_price_cents,
            **split,
        })
        totals["original"] += price * item.quantity
        totals["discounted"] += price * item.quantity
        totals["tax"] += split["unit_tax_cents"] * item.quantity
        totals["subtotal"] += split["unit_subtotal_cents"] * item.quantity
    body = {
        "is_valid": all(row["is_price_valid"] for row in rows),
        "items": rows,
        "total_original_price_cents": totals["original"],
        "total_discounted_price_cents": totals["discounted"],
        "total_discount_amount_cents": totals["discount"],
        "total_tax_cents": totals["tax"],
        "total_subtotal_cents": totals["subtotal"],
    }
    return {"success": True, "data": body} if envelope else body
