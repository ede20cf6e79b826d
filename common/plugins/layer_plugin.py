import pytest
import time
import os

# 测试分层顺序
LAYERS = ("unit", "contract", "integration", "e2e")


# Hook 1: 自定义测试发现后的处理
def pytest_collection_modifyitems(config, items):
    """修改收集到的测试项，根据环境和标记进行过滤"""
    env = config.getoption("--env")
    # 生产环境跳过慢测试
    if env == "prod":
        for item in items:
            if "slow" in [m.name for m in item.iter_markers()]:
                item.add_marker(pytest.mark.skip(reason="生产环境跳过慢测试"))

    # 按标记对测试排序
    def item_priority(item):
        markers = [m.name for m in item.iter_markers()]
        for i, layer in enumerate(LAYERS):
            if layer in markers:
                return i
        return len(LAYERS)

    items.sort(key=item_priority)


# Hook 2: 记录会话开始时间，摘要中使用
def pytest_sessionstart(session):
    session.config._layer_started = time.monotonic()


# Hook 3: 按测试分层汇总结果
def pytest_terminal_summary(terminalreporter, exitstatus, config):
    """按 unit / contract / integration / e2e 统计通过与失败数"""
    rows = {layer: [0, 0] for layer in LAYERS + ("other",)}
    for outcome, column in (("passed", 0), ("failed", 1)):
        for report in terminalreporter.stats.get(outcome, []):
            if getattr(report, "when", "call") != "call":
                continue
            layer = next((name for name in LAYERS if name in report.keywords), "other")
            rows[layer][column] += 1

    elapsed = time.monotonic() - getattr(config, "_layer_started", time.monotonic())
    terminalreporter.write_sep("=", f"分层统计 (环境: {config.getoption('--env')}, 耗时 {elapsed:.2f}秒)")
    for layer, (passed, failed) in rows.items():
        if passed or failed:
            terminalreporter.write_line(f"{layer:<12} 通过: {passed:<4} 失败: {failed}")


# Hook 4: 测试函数执行前执行
def pytest_runtest_setup(item):
    """需要真实定价服务的测试，只有设置了地址才运行"""
    markers = [m.name for m in item.iter_markers()]
    if "live_api" in markers and not os.environ.get("STOREFRONT_API_BASE_URL"):
        pytest.skip("未配置定价服务地址，跳过测试")


# Hook 5: 注册标记
def pytest_configure(config):
    """配置pytest，注册分层标记"""
    config.addinivalue_line("markers", "unit: 单元测试")
    config.addinivalue_line("markers", "contract: 契约测试，校验数据结构")
    config.addinivalue_line("markers", "integration: 集成测试")
    config.addinivalue_line("markers", "e2e: 端到端测试")
    config.addinivalue_line("markers", "slow: 慢测试，生产环境跳过")
    config.addinivalue_line("markers", "live_api: 需要真实定价服务的测试")
