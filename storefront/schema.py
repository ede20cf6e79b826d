"""Wire shapes of the pricing authority.

A response is either parsed into ``PriceValidationResponse`` or rejected as
``MalformedResponse``; there is no partial acceptance. Numeric fields must be
integers (minor units) and flags must be real booleans.
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, ValidationError


class PriceValidationItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: StrictStr
    quantity: StrictInt = Field(gt=0)
    expected_unit_price_cents: StrictInt


class PriceValidationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: List[PriceValidationItem] = Field(..., min_length=1)


class ValidatedPriceItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: StrictStr
    quantity: StrictInt
    original_unit_price_cents: StrictInt
    discounted_unit_price_cents: StrictInt
    discount_amount_cents: StrictInt
    unit_tax_cents: StrictInt
    unit_subtotal_cents: StrictInt
    applied_promotion_id: Optional[StrictStr]
    is_price_valid: StrictBool


class PriceValidationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: StrictBool
    items: List[ValidatedPriceItem]
    total_original_price_cents: StrictInt
    total_discounted_price_cents: StrictInt
    total_discount_amount_cents: StrictInt
    total_tax_cents: StrictInt
    total_subtotal_cents: StrictInt


@dataclass(frozen=True)
class ParsedResponse:
    response: PriceValidationResponse


@dataclass(frozen=True)
class MalformedResponse:
    reason: str


ParseResult = Union[ParsedResponse, MalformedResponse]


def unwrap_envelope(payload: Any) -> Any:
    # the storefront API wraps payloads as {"success": ..., "data": ...}
    if isinstance(payload, dict) and "data" in payload and "success" in payload:
        return payload["data"]
    return payload


def parse_validation_response(payload: Any) -> ParseResult:
    body = unwrap_envelope(payload)
    if not isinstance(body, dict):
        return MalformedResponse(f"expected an object, got {type(body).__name__}")
    try:
        return ParsedResponse(PriceValidationResponse.model_validate(body))
    except ValidationError as exc:
        return MalformedResponse(f"{exc.error_count()} schema error(s): {exc.errors()[0]['msg']}")
