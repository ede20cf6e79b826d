from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .errors import InvalidMoneyFormat
from .money import DEFAULT_CURRENCY, Money, to_decimal

PERCENTAGE = "percentage"
FIXED_AMOUNT = "fixed_amount"

# which rule produced a line's effective price
SOURCE_AUTHORITY = "authority"
SOURCE_PROMOTION = "promotion"
SOURCE_SALE = "sale"
SOURCE_LIST = "list"
SOURCE_CART = "cart"


@dataclass(frozen=True)
class Product:
    id: str
    price: Money  # tax-inclusive list price
    discounted_price: Optional[Money] = None
    name: str = ""

    @property
    def on_sale(self) -> bool:
        return self.discounted_price is not None and self.discounted_price.is_less_than(self.price)

    @classmethod
    def from_api(cls, data: Mapping[str, Any], currency: str = DEFAULT_CURRENCY) -> "Product":
        discounted = data.get("discounted_price")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            price=Money.of(data["price"], currency),
            discounted_price=Money.of(discounted, currency) if discounted is not None else None,
        )


@dataclass(frozen=True)
class Promotion:
    id: str
    discount_type: str  # "percentage" or "fixed_amount"
    discount_value: Decimal
    start_date: datetime
    end_date: datetime
    product_ids: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.discount_type not in (PERCENTAGE, FIXED_AMOUNT):
            raise ValueError(f"unknown discount type: {self.discount_type}")
        if self.discount_value < 0:
            raise InvalidMoneyFormat(self.discount_value)

    def applies_to(self, product_id: str) -> bool:
        return not self.product_ids or product_id in self.product_ids

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "Promotion":
        return cls(
            id=str(data["id"]),
            discount_type=str(data["discount_type"]),
            discount_value=to_decimal(data["discount_value"]),
            start_date=datetime.fromisoformat(str(data["start_date"]).replace("Z", "+00:00")),
            end_date=datetime.fromisoformat(str(data["end_date"]).replace("Z", "+00:00")),
            product_ids=tuple(str(p) for p in data.get("product_ids", ())),
        )


@dataclass(frozen=True)
class AuthenticatedLine:
    product_id: str
    quantity: int
    unit_price_cents: int
    unit_tax_cents: int
    unit_subtotal_cents: int
    item_id: str = ""

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("The quantity must be a positive number.")


@dataclass(frozen=True)
class GuestLine:
    product_id: str
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("The quantity must be a positive number.")


CartLine = Union[AuthenticatedLine, GuestLine]


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    quantity: int
    unit_list_price: Money
    unit_effective_price: Money
    unit_tax: Money
    unit_subtotal: Money
    applied_promotion_id: Optional[str] = None
    price_source: str = SOURCE_LIST

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("The quantity must be a positive number.")
        if not self.unit_subtotal.add(self.unit_tax).is_equal(self.unit_effective_price):
            raise ValueError(f"tax and subtotal of {self.product_id} do not add up to its price")
        if not self.unit_list_price.is_greater_or_equal(self.unit_effective_price):
            raise ValueError(f"effective price of {self.product_id} exceeds its list price")

    @property
    def line_total(self) -> Money:
        return self.unit_effective_price.multiply_by_int(self.quantity)

    @property
    def has_discount(self) -> bool:
        return self.unit_effective_price.is_less_than(self.unit_list_price)


@dataclass(frozen=True)
class OrderSummary:
    subtotal: Money
    tax: Money
    shipping_cost: Money
    price_total: Money
    grand_total: Money
    item_count: int
    original_total: Money
    total_savings: Money
    has_discounts: bool = False
    source: str = "local"

    def to_dict(self) -> Dict[str, object]:
        return {
            "subtotal_cents": self.subtotal.to_minor_units(),
            "tax_cents": self.tax.to_minor_units(),
            "shipping_cents": self.shipping_cost.to_minor_units(),
            "price_total_cents": self.price_total.to_minor_units(),
            "grand_total_cents": self.grand_total.to_minor_units(),
            "item_count": self.item_count,
            "source": self.source,
        }


@dataclass(frozen=True)
class ValidationRequestItem:
    product_id: str
    quantity: int
    expected_unit_price_cents: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "expected_unit_price_cents": self.expected_unit_price_cents,
        }


@dataclass(frozen=True)
class LineValidation:
    product_id: str
    quantity: int
    expected_unit_price_cents: int
    authoritative_unit_price_cents: int
    original_unit_price_cents: int
    discount_amount_cents: int
    unit_tax_cents: int
    unit_subtotal_cents: int
    applied_promotion_id: Optional[str]
    is_price_valid: bool
    within_tolerance: bool

    @property
    def accepted(self) -> bool:
        return self.is_price_valid or self.within_tolerance


@dataclass(frozen=True)
class AuthoritativeTotals:
    original_price_cents: int
    discounted_price_cents: int
    discount_amount_cents: int
    tax_cents: int
    subtotal_cents: int


RequestKey = Tuple[Tuple[str, int, int], ...]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    per_line: Dict[str, LineValidation]
    authoritative_totals: AuthoritativeTotals
    request_key: RequestKey = ()
    missing_product_ids: Tuple[str, ...] = field(default=())

    @property
    def mismatched(self) -> Tuple[LineValidation, ...]:
        return tuple(v for v in self.per_line.values() if not v.accepted)

    @property
    def item_count(self) -> int:
        # counted from the request, so every cart line contributes its quantity
        return sum(quantity for _, quantity, _ in self.request_key)
