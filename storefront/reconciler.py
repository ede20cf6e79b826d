"""Reconciliation of local prices with the pricing authority.

Each cart change bumps a generation counter and cancels whatever debounce
timer or request belongs to the previous generation. A response is applied
only when its generation and request key still match the current cart, so a
late answer for an older cart can never reach the displayed totals.
"""
import asyncio
import enum
import logging
from typing import Any, Dict, List, Optional, Sequence

from .config import PricingConfig
from .errors import ValidationTransportFailure
from .models import (
    AuthoritativeTotals,
    LineValidation,
    PricedLine,
    RequestKey,
    ValidationRequestItem,
    ValidationResult,
)
from .schema import MalformedResponse, PriceValidationResponse, parse_validation_response

logger = logging.getLogger("storefront.reconciler")

REFRESH_MESSAGE = "Prices have changed, please refresh your cart."


class ReconcileState(enum.Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    PENDING = "pending"
    VALID = "valid"
    MISMATCH = "mismatch"
    UNVERIFIED = "unverified"


def within_tolerance(expected: int, actual: int, tolerance: int = 1) -> bool:
    return abs(expected - actual) <= tolerance


def build_validation_request(lines: Sequence[PricedLine]) -> List[ValidationRequestItem]:
    # one entry per product; a server cart may hold the same product on several lines
    merged: Dict[str, ValidationRequestItem] = {}
    for line in lines:
        cents = line.unit_effective_price.to_minor_units()
        seen = merged.get(line.product_id)
        quantity = line.quantity + (seen.quantity if seen is not None else 0)
        if seen is not None and seen.expected_unit_price_cents != cents:
            logger.warning(
                "lines for %s are priced differently (%d vs %d), validating the first",
                line.product_id,
                seen.expected_unit_price_cents,
                cents,
            )
            cents = seen.expected_unit_price_cents
        merged[line.product_id] = ValidationRequestItem(
            product_id=line.product_id,
            quantity=quantity,
            expected_unit_price_cents=cents,
        )
    return list(merged.values())


def request_key(items: Sequence[ValidationRequestItem]) -> RequestKey:
    return tuple(
        sorted((i.product_id, i.quantity, i.expected_unit_price_cents) for i in items)
    )


def reconcile(
    request: Sequence[ValidationRequestItem],
    response: PriceValidationResponse,
    tolerance: int,
) -> ValidationResult:
    expected = {item.product_id: item for item in request}
    per_line: Dict[str, LineValidation] = {}
    unmatched = []
    for item in response.items:
        sent = expected.get(item.product_id)
        if sent is None:
            logger.warning("authority priced %s which was not requested", item.product_id)
            unmatched.append(item.product_id)
            continue
        if item.quantity != sent.quantity:
            logger.warning(
                "authority priced %s for quantity %d, requested %d",
                item.product_id,
                item.quantity,
                sent.quantity,
            )
            unmatched.append(item.product_id)
            continue
        close = within_tolerance(
            sent.expected_unit_price_cents, item.discounted_unit_price_cents, tolerance
        )
        per_line[item.product_id] = LineValidation(
            product_id=item.product_id,
            quantity=item.quantity,
            expected_unit_price_cents=sent.expected_unit_price_cents,
            authoritative_unit_price_cents=item.discounted_unit_price_cents,
            original_unit_price_cents=item.original_unit_price_cents,
            discount_amount_cents=item.discount_amount_cents,
            unit_tax_cents=item.unit_tax_cents,
            unit_subtotal_cents=item.unit_subtotal_cents,
            applied_promotion_id=item.applied_promotion_id,
            is_price_valid=item.is_price_valid,
            within_tolerance=close,
        )
        if not item.is_price_valid:
            logger.debug(
                "price check %s: expected=%d authority=%d within_tolerance=%s",
                item.product_id,
                sent.expected_unit_price_cents,
                item.discounted_unit_price_cents,
                close,
            )
    unmatched.extend(pid for pid in expected if pid not in per_line and pid not in unmatched)
    is_valid = not unmatched and all(line.accepted for line in per_line.values())
    return ValidationResult(
        is_valid=is_valid,
        per_line=per_line,
        authoritative_totals=AuthoritativeTotals(
            original_price_cents=response.total_original_price_cents,
            discounted_price_cents=response.total_discounted_price_cents,
            discount_amount_cents=response.total_discount_amount_cents,
            tax_cents=response.total_tax_cents,
            subtotal_cents=response.total_subtotal_cents,
        ),
        request_key=request_key(request),
        missing_product_ids=tuple(unmatched),
    )


class PriceReconciler:
    """Debounced, cancellable validation of one cart against the authority.

    ``authority`` is anything with an awaitable ``validate_prices(items)``
    returning the decoded response body (see ``PricingAuthorityClient``).
    ``cart_changed`` and ``refresh`` must be called from the running loop.
    """

    def __init__(self, authority: Any, config: PricingConfig) -> None:
        self.authority = authority
        self.config = config
        self.state = ReconcileState.IDLE
        self.last_error: Optional[str] = None
        self._generation = 0
        self._request: List[ValidationRequestItem] = []
        self._key: RequestKey = ()
        self._result: Optional[ValidationResult] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def result(self) -> Optional[ValidationResult]:
        return self._result

    @property
    def can_submit(self) -> bool:
        if self.state is ReconcileState.VALID:
            return True
        if self.state is ReconcileState.UNVERIFIED:
            return not self.config.block_checkout_on_transport_failure
        return False

    @property
    def mismatched_count(self) -> int:
        if self.state is not ReconcileState.MISMATCH or self._result is None:
            return 0
        return len(self._result.mismatched) + len(self._result.missing_product_ids)

    def result_for(self, lines: Sequence[PricedLine]) -> Optional[ValidationResult]:
        """The last result, if it was produced for exactly these lines."""
        if self._result is None:
            return None
        if self._result.request_key != request_key(build_validation_request(lines)):
            return None
        return self._result

    def cart_changed(self, lines: Sequence[PricedLine]) -> None:
        request = build_validation_request(lines)
        key = request_key(request)
        self._generation += 1
        self._cancel_pending()
        self._request = request
        self._key = key

        if not request:
            self._result = None
            self.state = ReconcileState.IDLE
            return
        if self._result is not None and self._result.request_key == key:
            # same line-set as the last answered request
            self.state = ReconcileState.VALID if self._result.is_valid else ReconcileState.MISMATCH
            return

        self._result = None
        self.state = ReconcileState.DEBOUNCING
        self._task = asyncio.get_running_loop().create_task(
            self._debounce_then_validate(self._generation)
        )

    async def refresh(self) -> Optional[ValidationResult]:
        """Validate the current cart right away, replacing any pending attempt."""
        self._cancel_pending()
        if not self._request:
            return None
        self._result = None
        task = asyncio.get_running_loop().create_task(self._validate(self._generation))
        self._task = task
        await asyncio.wait({task})
        return None if task.cancelled() else task.result()

    async def wait_settled(self) -> None:
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def close(self) -> None:
        self._cancel_pending()
        await self.wait_settled()

    def _cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def _is_current(self, generation: int, key: RequestKey) -> bool:
        return generation == self._generation and key == self._key

    async def _debounce_then_validate(self, generation: int) -> Optional[ValidationResult]:
        await asyncio.sleep(self.config.debounce_seconds)
        if generation != self._generation:
            return None
        return await self._validate(generation)

    async def _validate(self, generation: int) -> Optional[ValidationResult]:
        request, key = self._request, self._key
        self.state = ReconcileState.PENDING
        logger.info("validating %d line(s) with the pricing authority", len(request))
        try:
            payload = await self.authority.validate_prices(request)
        except ValidationTransportFailure as exc:
            if self._is_current(generation, key):
                self._fall_back(str(exc))
            return None
        except Exception as exc:
            logger.exception("pricing authority call raised unexpectedly")
            if self._is_current(generation, key):
                self._fall_back(f"unexpected error: {exc!r}")
            return None

        if not self._is_current(generation, key):
            logger.info("discarding stale validation response (generation %d)", generation)
            return None

        parsed = parse_validation_response(payload)
        if isinstance(parsed, MalformedResponse):
            self._fall_back(f"malformed response: {parsed.reason}")
            return None

        result = reconcile(request, parsed.response, self.config.tolerance_minor_units)
        self._result = result
        self.last_error = None
        if result.is_valid:
            self.state = ReconcileState.VALID
            logger.info("authority confirmed prices for %d line(s)", len(result.per_line))
        else:
            self.state = ReconcileState.MISMATCH
            self.last_error = REFRESH_MESSAGE
            logger.warning(
                "authority price mismatch on %d line(s): %s",
                self.mismatched_count,
                ", ".join(line.product_id for line in result.mismatched) or "missing lines",
            )
        return result

    def _fall_back(self, reason: str) -> None:
        logger.warning("price validation failed, using local totals: %s", reason)
        self._result = None
        self.last_error = reason
        self.state = ReconcileState.UNVERIFIED
