import asyncio
import json

import httpx
import pytest

from common.factories import make_request, make_response
from storefront.clients import CatalogClient, PricingAuthorityClient, create_http_client
from storefront.config import PricingConfig
from storefront.errors import ValidationTransportFailure
from storefront.models import GuestLine, Product, ValidationRequestItem
from storefront.money import Money
from storefront.normalizer import normalize_cart
from storefront.reconciler import PriceReconciler, ReconcileState

BASE_URL = "http://shop.test"

PRODUCTS = {
    "P1": {"id": "P1", "name": "Mok", "price": "19.99", "discounted_price": None},
    "P2": {"id": "P2", "name": "Theepot", "price": 45, "discounted_price": "39.95"},
}
PROMOTIONS = {
    "P1": {
        "id": "SPRING",
        "discount_type": "percentage",
        "discount_value": 10,
        "start_date": "2026-01-01T00:00:00Z",
        "end_date": "2026-12-31T23:59:59Z",
        "product_ids": ["P1"],
    }
}


def shop_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if request.method == "GET" and path.startswith("/products/"):
        pid = path.rsplit("/", 1)[-1]
        if pid in PRODUCTS:
            return httpx.Response(200, json={"success": True, "data": PRODUCTS[pid]})
        return httpx.Response(404, json={"success": False, "error": "not found"})
    if request.method == "GET" and path.startswith("/promotions/product/"):
        pid = path.rsplit("/", 1)[-1]
        if pid in PROMOTIONS:
            return httpx.Response(200, json={"success": True, "data": PROMOTIONS[pid]})
        return httpx.Response(404)
    if request.method == "POST" and path == PricingAuthorityClient.VALIDATE_PATH:
        body = json.loads(request.content)
        items = [ValidationRequestItem(**row) for row in body["items"]]
        return httpx.Response(200, json=make_response(items))
    return httpx.Response(500)


def _client(handler=shop_handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


@pytest.mark.integration
def test_catalog_loads_products_and_promotions(log_capture):
    async def scenario():
        async with _client() as http:
            catalog = CatalogClient(http)
            products = await catalog.get_products(["P1", "P2", "P1", "P404"])
            promotions = await catalog.get_promotions(products)
            return products, promotions

    products, promotions = asyncio.run(scenario())
    assert set(products) == {"P1", "P2"}
    assert products["P1"].price.is_equal(Money.of("19.99"))
    assert products["P2"].on_sale
    assert [p.id for p in promotions] == ["SPRING"]
    assert promotions[0].applies_to("P1")
    assert "P404" in log_capture.text


@pytest.mark.integration
def test_unusable_product_record_skipped():
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": {"id": "P1", "price": "gratis"}})

    async def scenario():
        async with _client(handler) as http:
            return await CatalogClient(http).get_product("P1")

    assert asyncio.run(scenario()) is None


@pytest.mark.integration
def test_validate_prices_posts_expected_cents():
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, json.loads(request.content)))
        return shop_handler(request)

    async def scenario():
        async with _client(handler) as http:
            return await PricingAuthorityClient(http).validate_prices(make_request({"P1": 1799}, quantity=2))

    payload = asyncio.run(scenario())
    assert seen == [
        ("POST", "/promotions/validate-price", {"items": [{"product_id": "P1", "quantity": 2, "expected_unit_price_cents": 1799}]})
    ]
    assert payload["success"] is True
    assert payload["data"]["total_discounted_price_cents"] == 3598


def _refuse(request):
    raise httpx.ConnectError("refused", request=request)


@pytest.mark.integration
@pytest.mark.parametrize(
    "handler,status",
    [
        (lambda request: httpx.Response(503, text="unavailable"), 503),
        (lambda request: httpx.Response(200, content=b"<html>oops</html>"), None),
        (_refuse, None),
    ],
    ids=["server-error", "not-json", "unreachable"],
)
def test_transport_problems_raise(handler, status):
    async def scenario():
        async with _client(handler) as http:
            await PricingAuthorityClient(http).validate_prices(make_request({"P1": 1000}))

    with pytest.raises(ValidationTransportFailure) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.status_code == status


@pytest.mark.integration
def test_reconciler_over_http(config):
    async def scenario():
        async with _client() as http:
            rec = PriceReconciler(PricingAuthorityClient(http), config)
            lines = normalize_cart(
                [GuestLine("P1", 2)], {"P1": Product("P1", Money.of("19.99"))}, config.tax_rate
            ).lines
            rec.cart_changed(lines)
            await rec.wait_settled()
            return rec

    rec = asyncio.run(scenario())
    assert rec.state is ReconcileState.VALID
    assert rec.result.authoritative_totals.discounted_price_cents == 3998


@pytest.mark.integration
def test_http_client_from_config():
    config = PricingConfig(api_base_url="http://pricing.internal:9000", request_timeout=3)
    client = create_http_client(config)
    try:
        assert str(client.base_url).startswith("http://pricing.internal:9000")
        assert client.timeout.read == 3
    finally:
        asyncio.run(client.aclose())
