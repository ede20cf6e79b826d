import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .models import GuestLine

logger = logging.getLogger("storefront.guest_cart")

CART_VERSION = "v1"


@dataclass
class GuestCart:
    items: List[GuestLine] = field(default_factory=list)
    max_quantity: int = 99

    def _index(self, product_id: str) -> int:
        for i, item in enumerate(self.items):
            if item.product_id == product_id:
                return i
        return -1

    def _checked(self, quantity: int) -> int:
        if quantity > self.max_quantity:
            raise ValueError(f"at most {self.max_quantity} of one product per order")
        return quantity

    def add(self, product_id: str, quantity: int = 1) -> None:
        if quantity <= 0:
            raise ValueError("The quantity must be a positive number.")
        i = self._index(product_id)
        if i >= 0:
            merged = self._checked(self.items[i].quantity + quantity)
            self.items[i] = GuestLine(product_id, merged)
        else:
            self.items.append(GuestLine(product_id, self._checked(quantity)))

    def update(self, product_id: str, quantity: int) -> None:
        i = self._index(product_id)
        if i < 0:
            return
        if quantity <= 0:
            del self.items[i]
        else:
            self.items[i] = GuestLine(product_id, self._checked(quantity))

    def remove(self, product_id: str) -> None:
        self.items = [item for item in self.items if item.product_id != product_id]

    def clear(self) -> None:
        self.items.clear()

    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)


class GuestCartStore:
    """Keeps an anonymous shopper's cart in a local JSON file."""

    def __init__(self, path: Path, max_quantity: int = 99) -> None:
        self.path = Path(path)
        self.max_quantity = max_quantity

    def load(self) -> GuestCart:
        cart = GuestCart(max_quantity=self.max_quantity)
        if not self.path.exists():
            return cart
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            logger.warning("unreadable guest cart %s, starting empty: %s", self.path, exc)
            return cart
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return cart
        for raw in items:
            try:
                line = GuestLine(str(raw["product_id"]), int(raw["quantity"]))
            except (KeyError, TypeError, ValueError):
                logger.warning("dropping malformed guest cart entry: %r", raw)
                continue
            if line.quantity > self.max_quantity:
                logger.warning(
                    "guest cart quantity %d for %s above limit, capped at %d",
                    line.quantity,
                    line.product_id,
                    self.max_quantity,
                )
                line = GuestLine(line.product_id, self.max_quantity)
            cart.items.append(line)
        return cart

    def save(self, cart: GuestCart) -> None:
        payload = {
            "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in cart.items],
            "version": CART_VERSION,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
