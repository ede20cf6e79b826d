import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import httpx

from .config import PricingConfig
from .errors import InvalidMoneyFormat, ValidationTransportFailure
from .models import Product, Promotion, ValidationRequestItem
from .money import DEFAULT_CURRENCY
from .schema import PriceValidationItem, PriceValidationRequest, unwrap_envelope

logger = logging.getLogger("storefront.clients")


def create_http_client(config: PricingConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=config.api_base_url,
        timeout=config.request_timeout,
        headers={"Accept": "application/json"},
    )


class CatalogClient:
    """Read-only access to products and their active promotions."""

    def __init__(self, client: httpx.AsyncClient, currency: str = DEFAULT_CURRENCY) -> None:
        self.client = client
        self.currency = currency

    async def get_product(self, product_id: str) -> Optional[Product]:
        try:
            resp = await self.client.get(f"/products/{product_id}")
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("failed to load product %s: %s", product_id, exc)
            return None
        if not isinstance(payload, dict) or not payload.get("success"):
            logger.warning("catalog returned no product for %s", product_id)
            return None
        try:
            return Product.from_api(payload["data"], self.currency)
        except (KeyError, TypeError, InvalidMoneyFormat) as exc:
            logger.warning("unusable product record for %s: %s", product_id, exc)
            return None

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        ids = list(dict.fromkeys(product_ids))
        products = await asyncio.gather(*(self.get_product(pid) for pid in ids))
        return {pid: product for pid, product in zip(ids, products) if product is not None}

    async def get_promotion(self, product_id: str) -> Optional[Promotion]:
        try:
            resp = await self.client.get(f"/promotions/product/{product_id}")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            data = unwrap_envelope(resp.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("failed to load promotion for %s: %s", product_id, exc)
            return None
        if data is None:
            return None
        try:
            return Promotion.from_api(data)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("unusable promotion for %s: %s", product_id, exc)
            return None

    async def get_promotions(self, product_ids: Iterable[str]) -> List[Promotion]:
        ids = list(dict.fromkeys(product_ids))
        promotions = await asyncio.gather(*(self.get_promotion(pid) for pid in ids))
        return [promotion for promotion in promotions if promotion is not None]


class PricingAuthorityClient:
    VALIDATE_PATH = "/promotions/validate-price"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def validate_prices(self, items: Sequence[ValidationRequestItem]) -> Any:
        """POST the expected prices and return the decoded JSON body.

        Any network error, non-2xx status or undecodable body raises
        ValidationTransportFailure. The body itself is not checked here.
        """
        request = PriceValidationRequest(
            items=[PriceValidationItem(**item.to_dict()) for item in items]
        )
        try:
            resp = await self.client.post(self.VALIDATE_PATH, json=request.model_dump())
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise ValidationTransportFailure(
                f"pricing authority answered {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ValidationTransportFailure(f"pricing authority unreachable: {exc}") from exc
        except ValueError as exc:
            raise ValidationTransportFailure(f"pricing authority sent invalid JSON: {exc}") from exc
