"""
测试公共配置
在导入任何 dashboard_service 模块之前关闭 MongoDB、清空外部 API key，
保证测试不访问真实数据库和网络。
"""

import os
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

os.environ["MONGODB_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"
for _key in ("ALPHA_VANTAGE_API_KEY", "FINNHUB_API_KEY", "NEWS_API_KEY", "LLM_API_KEY"):
    os.environ[_key] = ""


class FakeClock:
    """可手动推进的时钟（秒）"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    from dashboard_service.db.store import MemoryDocumentStore
    return MemoryDocumentStore()
