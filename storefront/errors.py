from typing import Optional


class StorefrontError(Exception):
    pass


class InvalidMoneyFormat(StorefrontError, ValueError):
    def __init__(self, value: object) -> None:
        super().__init__(f"not a valid monetary amount: {value!r}")
        self.value = value


class CurrencyMismatch(StorefrontError):
    def __init__(self, left: str, right: str) -> None:
        super().__init__(f"cannot combine {left} with {right}")
        self.left = left
        self.right = right


class ConfigError(StorefrontError):
    pass


class UnresolvableLineItem(StorefrontError):
    """A cart entry without a matching catalog product.

    Recorded by the normalizer rather than raised: the line is left out of
    the totals and counted so callers can show the reduced item count.
    """

    def __init__(self, product_id: str, quantity: int) -> None:
        super().__init__(f"no catalog product for cart entry {product_id}")
        self.product_id = product_id
        self.quantity = quantity


class ValidationTransportFailure(StorefrontError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ValidationMismatch(StorefrontError):
    def __init__(self, mismatched: int) -> None:
        super().__init__(
            f"Prices have changed, please refresh your cart ({mismatched} item(s) affected)"
        )
        self.mismatched = mismatched


class CheckoutBlocked(StorefrontError):
    pass
