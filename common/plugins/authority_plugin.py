import asyncio
from typing import Dict, List, Optional

import pytest

from common.factories import make_response


# 插件入口函数
def pytest_configure(config):
    """配置pytest，注册定价服务相关标记"""
    config.addinivalue_line("markers", "fake_authority: 使用模拟定价服务的测试")


# 自定义命令行参数
def pytest_addoption(parser):
    """添加自定义命令行参数"""
    group = parser.getgroup("authority_plugin", "定价服务插件选项")
    group.addoption(
        "--tolerance",
        action="store",
        type=int,
        default=1,
        help="价格比对允许的误差（分）"
    )


@pytest.fixture(scope="session")
def tolerance(pytestconfig):
    """提供价格误差配置的fixture"""
    return pytestconfig.getoption("--tolerance")


class FakeAuthority:
    """模拟定价服务：记录每次请求，按设定返回结果"""

    def __init__(self):
        self.calls: List[list] = []
        # 按商品覆盖服务端价格（分）
        self.prices: Dict[str, int] = {}
        self.payload = None
        self.failure: Optional[Exception] = None
        # 设置后，请求会挂起直到 release()
        self.gate: Optional[asyncio.Event] = None

    async def validate_prices(self, items):
        self.calls.append(list(items))
        if self.gate is not None:
            await self.gate.wait()
        if self.failure is not None:
            raise self.failure
        if self.payload is not None:
            return self.payload
        return make_response(items, self.prices)

    def hold(self):
        self.gate = asyncio.Event()

    def release(self):
        if self.gate is not None:
            self.gate.set()


@pytest.fixture(scope="function")
def fake_authority():
    """提供模拟定价服务的fixture"""
    authority = FakeAuthority()
    yield authority
    # 清理资源
    authority.calls.clear()
