import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .clients import CatalogClient
from .config import PricingConfig
from .errors import CheckoutBlocked, StorefrontError, ValidationMismatch
from .guest_cart import GuestCart, GuestCartStore
from .models import CartLine, OrderSummary, PricedLine, Product, Promotion, ValidationResult
from .money import Money
from .normalizer import NormalizedCart, normalize_cart
from .pricing import calculate_summary, free_shipping_remaining, summary_from_authority
from .reconciler import REFRESH_MESSAGE, PriceReconciler, ReconcileState

logger = logging.getLogger("storefront.service")


@dataclass
class OrderDraft:
    lines: List[PricedLine]
    summary: OrderSummary
    authenticated: bool
    meta: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "lines": [
                {
                    "product_id": line.product_id,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_effective_price.to_minor_units(),
                    "applied_promotion_id": line.applied_promotion_id,
                }
                for line in self.lines
            ],
            "summary": self.summary.to_dict(),
            "authenticated": self.authenticated,
            "meta": self.meta,
        }


class CheckoutSession:
    """One shopper's checkout: cart source, catalog data and price validation.

    The session recomputes its lines after every change and hands them to the
    reconciler; it never edits the server cart itself. Guest carts are edited
    through ``add_item`` / ``update_item`` / ``remove_item``.
    """

    def __init__(
        self,
        config: PricingConfig,
        reconciler: PriceReconciler,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.reconciler = reconciler
        self.clock = clock
        self.authenticated = False
        self.products: Dict[str, Product] = {}
        self.promotions: List[Promotion] = []
        self.guest_cart: Optional[GuestCart] = None
        self.guest_store: Optional[GuestCartStore] = None
        self._entries: List[CartLine] = []
        self._local = NormalizedCart()

    # cart sources

    def use_server_cart(self, lines: Sequence[CartLine]) -> None:
        self.authenticated = True
        self.guest_cart = None
        self._entries = list(lines)
        self._recompute()

    def use_guest_cart(self, cart: GuestCart, store: Optional[GuestCartStore] = None) -> None:
        self.authenticated = False
        self.guest_cart = cart
        self.guest_store = store
        self._entries = list(cart.items)
        self._recompute()

    def add_item(self, product_id: str, quantity: int = 1) -> None:
        self._guest().add(product_id, quantity)
        self._guest_changed()

    def update_item(self, product_id: str, quantity: int) -> None:
        self._guest().update(product_id, quantity)
        self._guest_changed()

    def remove_item(self, product_id: str) -> None:
        self._guest().remove(product_id)
        self._guest_changed()

    def set_catalog(
        self,
        products: Mapping[str, Product],
        promotions: Optional[Iterable[Promotion]] = None,
    ) -> None:
        self.products = dict(products)
        if promotions is not None:
            self.promotions = list(promotions)
        self._recompute()

    async def load_catalog(self, catalog: CatalogClient) -> None:
        ids = [entry.product_id for entry in self._entries]
        products = await catalog.get_products(ids)
        promotions = await catalog.get_promotions(products)
        self.set_catalog(products, promotions)

    # derived views

    @property
    def local_lines(self) -> List[PricedLine]:
        return list(self._local.lines)

    @property
    def unresolved_count(self) -> int:
        return self._local.unresolved_count

    def validation(self) -> Optional[ValidationResult]:
        result = self.reconciler.result_for(self._local.lines)
        if result is not None and result.is_valid:
            return result
        return None

    def lines(self) -> List[PricedLine]:
        result = self.validation()
        if result is None:
            return self.local_lines
        return normalize_cart(
            self._entries,
            self.products,
            self.config.tax_rate,
            self.promotions,
            validations=result.per_line,
            now=self._now(),
        ).lines

    def summary(self) -> OrderSummary:
        result = self.validation()
        if result is not None:
            return summary_from_authority(result, self.config)
        return calculate_summary(self._local.lines, self.config)

    def free_shipping_remaining(self) -> Money:
        return free_shipping_remaining(self.summary().price_total, self.config)

    @property
    def can_submit(self) -> bool:
        return (
            bool(self._local.lines)
            and self.unresolved_count == 0
            and self.reconciler.can_submit
        )

    @property
    def blocking_message(self) -> Optional[str]:
        state = self.reconciler.state
        if state is ReconcileState.MISMATCH:
            return REFRESH_MESSAGE
        if not self._local.lines:
            return "Your cart is empty."
        if self.unresolved_count:
            return f"{self.unresolved_count} item(s) could not be priced."
        if state in (ReconcileState.DEBOUNCING, ReconcileState.PENDING, ReconcileState.IDLE):
            return "Checking prices..."
        if not self.reconciler.can_submit:
            return "Prices could not be verified, please try again."
        return None

    # checkout

    def checkout(self) -> OrderDraft:
        if self.reconciler.state is ReconcileState.MISMATCH:
            raise ValidationMismatch(self.reconciler.mismatched_count)
        if not self.can_submit:
            raise CheckoutBlocked(self.blocking_message or "checkout is not available")
        order = OrderDraft(
            lines=self.lines(),
            summary=self.summary(),
            authenticated=self.authenticated,
        )
        order.meta["ts"] = str(int(time.time()))
        order.meta["locale"] = self.config.locale
        order.meta["validated"] = "true" if self.validation() is not None else "false"
        logger.info(
            "order ready: items=%d grand_total=%s source=%s",
            order.summary.item_count,
            order.summary.grand_total.amount,
            order.summary.source,
        )
        return order

    def _guest(self) -> GuestCart:
        if self.authenticated:
            raise StorefrontError("server carts are edited through the cart service")
        if self.guest_cart is None:
            self.guest_cart = GuestCart(max_quantity=self.config.max_quantity_per_item)
        return self.guest_cart

    def _guest_changed(self) -> None:
        if self.guest_store is not None:
            self.guest_store.save(self.guest_cart)
        self._entries = list(self.guest_cart.items)
        self._recompute()

    def _now(self) -> Optional[datetime]:
        return self.clock() if self.clock is not None else None

    def _recompute(self) -> None:
        self._local = normalize_cart(
            self._entries,
            self.products,
            self.config.tax_rate,
            self.promotions,
            now=self._now(),
        )
        self.reconciler.cart_changed(self._local.lines)


def print_receipt(order: OrderDraft, locale: Optional[str] = None) -> str:
    locale = locale or order.meta.get("locale", "nl-NL")
    summary = order.summary
    payload = {
        "count": summary.item_count,
        "subtotal": summary.subtotal.format(locale),
        "tax": summary.tax.format(locale),
        "shipping": summary.shipping_cost.format(locale),
        "total": summary.grand_total.format(locale),
        "validated": order.meta.get("validated", "false"),
    }
    text = json.dumps(payload, ensure_ascii=False)
    print(text)
    return text
