import asyncio
from decimal import Decimal

import pytest

from common.factories import make_products
from storefront.config import PricingConfig
from storefront.errors import ValidationTransportFailure
from storefront.models import GuestLine
from storefront.normalizer import normalize_cart
from storefront.reconciler import REFRESH_MESSAGE, PriceReconciler, ReconcileState

PRODUCTS = make_products(3)


def _lines(**quantities):
    entries = [GuestLine(pid, qty) for pid, qty in quantities.items()]
    return normalize_cart(entries, PRODUCTS, Decimal("0.21")).lines


def _run(authority, config, *carts):
    async def scenario():
        reconciler = PriceReconciler(authority, config)
        for lines in carts:
            reconciler.cart_changed(lines)
        await reconciler.wait_settled()
        return reconciler

    return asyncio.run(scenario())


@pytest.mark.integration
def test_rapid_changes_send_one_request(config, fake_authority):
    rec = _run(fake_authority, config, _lines(P0=1), _lines(P0=2), _lines(P0=2, P1=1))
    assert len(fake_authority.calls) == 1
    assert {i.product_id for i in fake_authority.calls[0]} == {"P0", "P1"}
    assert rec.state is ReconcileState.VALID
    assert rec.can_submit
    assert rec.result_for(_lines(P0=2, P1=1)) is rec.result


@pytest.mark.integration
def test_debounce_state_before_request(config, fake_authority):
    async def scenario():
        rec = PriceReconciler(fake_authority, config)
        rec.cart_changed(_lines(P0=1))
        state = rec.state
        await rec.close()
        return rec, state

    rec, state = asyncio.run(scenario())
    assert state is ReconcileState.DEBOUNCING
    assert not rec.can_submit
    assert fake_authority.calls == []


@pytest.mark.integration
def test_price_change_closes_the_gate(config, fake_authority, log_capture):
    fake_authority.prices = {"P1": 1150}
    rec = _run(fake_authority, config, _lines(P0=1, P1=1))
    assert rec.state is ReconcileState.MISMATCH
    assert not rec.can_submit
    assert rec.mismatched_count == 1
    assert rec.last_error == REFRESH_MESSAGE
    assert "mismatch" in log_capture.text


@pytest.mark.integration
def test_one_cent_drift_passes(config, fake_authority):
    fake_authority.prices = {"P0": 1001}
    rec = _run(fake_authority, config, _lines(P0=1))
    assert rec.state is ReconcileState.VALID
    assert rec.result.per_line["P0"].authoritative_unit_price_cents == 1001


@pytest.mark.integration
def test_transport_failure_falls_back(config, fake_authority, log_capture):
    fake_authority.failure = ValidationTransportFailure("pricing authority answered 503", status_code=503)
    rec = _run(fake_authority, config, _lines(P0=1))
    assert rec.state is ReconcileState.UNVERIFIED
    assert rec.result is None
    assert rec.can_submit
    assert "503" in rec.last_error
    assert "using local totals" in log_capture.text


@pytest.mark.integration
def test_transport_failure_can_block_checkout(fake_authority):
    config = PricingConfig(debounce_seconds=0, block_checkout_on_transport_failure=True)
    fake_authority.failure = ValidationTransportFailure("timeout")
    rec = _run(fake_authority, config, _lines(P0=1))
    assert rec.state is ReconcileState.UNVERIFIED
    assert not rec.can_submit


@pytest.mark.integration
def test_malformed_response_is_unverified(config, fake_authority):
    fake_authority.payload = {"success": True, "data": {"is_valid": True, "items": "nope"}}
    rec = _run(fake_authority, config, _lines(P0=1))
    assert rec.state is ReconcileState.UNVERIFIED
    assert rec.last_error.startswith("malformed response")


@pytest.mark.integration
def test_answer_for_old_cart_never_applied(config, fake_authority):
    async def scenario():
        rec = PriceReconciler(fake_authority, config)
        fake_authority.hold()
        rec.cart_changed(_lines(P0=1))
        while not fake_authority.calls:
            await asyncio.sleep(0)
        in_flight = rec.state
        rec.cart_changed(_lines(P0=3))
        fake_authority.release()
        await rec.wait_settled()
        return rec, in_flight

    rec, in_flight = asyncio.run(scenario())
    assert in_flight is ReconcileState.PENDING
    assert len(fake_authority.calls) == 2
    assert rec.result_for(_lines(P0=1)) is None
    assert rec.result_for(_lines(P0=3)) is not None
    assert rec.result.item_count == 3


@pytest.mark.integration
def test_unchanged_cart_not_revalidated(config, fake_authority):
    rec = _run(fake_authority, config, _lines(P0=1))
    asyncio.run(_change(rec, _lines(P0=1)))
    assert len(fake_authority.calls) == 1
    assert rec.state is ReconcileState.VALID


async def _change(rec, lines):
    rec.cart_changed(lines)
    await rec.wait_settled()


@pytest.mark.integration
def test_empty_cart_is_idle(config, fake_authority):
    rec = _run(fake_authority, config, _lines(P0=1), [])
    assert rec.state is ReconcileState.IDLE
    assert rec.result is None
    assert not rec.can_submit
    assert fake_authority.calls == []


@pytest.mark.integration
def test_refresh_after_failure(config, fake_authority):
    fake_authority.failure = ValidationTransportFailure("connection refused")

    async def scenario():
        rec = PriceReconciler(fake_authority, config)
        rec.cart_changed(_lines(P2=1))
        await rec.wait_settled()
        first = rec.state
        fake_authority.failure = None
        result = await rec.refresh()
        return rec, first, result

    rec, first, result = asyncio.run(scenario())
    assert first is ReconcileState.UNVERIFIED
    assert rec.state is ReconcileState.VALID
    assert result is rec.result
    assert rec.last_error is None
    assert rec.generation == 1


@pytest.mark.integration
def test_unexpected_authority_error_falls_back(config, fake_authority, log_capture):
    fake_authority.failure = RuntimeError("authority misconfigured")

    async def scenario():
        rec = PriceReconciler(fake_authority, config)
        rec.cart_changed(_lines(P0=1))
        await rec.wait_settled()
        settled = rec.state
        result = await rec.refresh()
        return rec, settled, result

    rec, settled, result = asyncio.run(scenario())
    assert settled is ReconcileState.UNVERIFIED
    assert result is None
    assert rec.state is ReconcileState.UNVERIFIED
    assert rec.can_submit
    assert "RuntimeError" in rec.last_error
    assert "raised unexpectedly" in log_capture.text
