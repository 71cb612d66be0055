import os
import pathlib
import sys

import pytest

# 无显示环境下使用 offscreen 平台运行 Qt
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# 保证项目根目录在 sys.path 中（平铺的模块布局）
repo_root = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from config_loader import Config  # noqa: E402
from danmaku_models import RawItem  # noqa: E402
from scheduler_core import SchedulerConfig  # noqa: E402


class FakeClock:
    """可手动推进的毫秒时钟。"""
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float):
        self.now += ms


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fresh_config(tmp_path):
    """每个测试使用独立的 Config 单例和配置文件。"""
    Config._instance = None
    config = Config(str(tmp_path / "config.ini"))
    yield config
    Config._instance = None


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(period_length=10000, duration=5000, line_height=36, font_size=24,
                           prefetch_ahead=1, seek_threshold=1000)


def make_items(*timestamps, start_id=1):
    return [RawItem(start_id + i, ts, f"弹幕{start_id + i}") for i, ts in enumerate(timestamps)]
