import logging
from decimal import Decimal

import pytest

from storefront.config import PricingConfig
from storefront.guest_cart import GuestCartStore

# 激活自定义插件
pytest_plugins = [
    "common.plugins.layer_plugin",
    "common.plugins.authority_plugin"
]


def pytest_addoption(parser):
    parser.addoption("--env", action="store", default="dev", help="运行环境")


@pytest.fixture(scope="session")
def env(pytestconfig):
    return pytestconfig.getoption("--env")


@pytest.fixture(scope="function")
def config(tolerance):
    # 测试中不等待防抖
    return PricingConfig(debounce_seconds=0, tolerance_minor_units=tolerance)


@pytest.fixture(scope="function")
def log_capture(caplog):
    logger = logging.getLogger("storefront")
    caplog.set_level(logging.INFO, logger=logger.name)
    return caplog


@pytest.fixture(scope="function")
def guest_store(tmp_path):
    path = tmp_path / "cart.v1.json"
    yield GuestCartStore(path)
    path.unlink(missing_ok=True)


@pytest.fixture(scope="function")
def set_storefront_env(monkeypatch):
    monkeypatch.setenv("STOREFRONT_TOLERANCE_MINOR_UNITS", "2")
    monkeypatch.setenv("STOREFRONT_TAX_RATE", str(Decimal("0.09")))
    yield
    monkeypatch.delenv("STOREFRONT_TOLERANCE_MINOR_UNITS", raising=False)
    monkeypatch.delenv("STOREFRONT_TAX_RATE", raising=False)


def pytest_generate_tests(metafunc):
    if "locale_case" in metafunc.fixturenames:
        metafunc.parametrize(
            "locale_case",
            [("nl-NL", "€ 1.234,50"), ("en-US", "€1,234.50"), ("de-DE", "1.234,50 €")],
            ids=["nl", "us", "de"],
        )
