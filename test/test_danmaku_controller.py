"""Tests for the Qt scheduling shell: effects, signals and the loader thread."""

import asyncio

import pytest
from PyQt6.QtCore import QObject, pyqtSignal

from conftest import make_items
from danmaku_controller import DanmakuController
from danmaku_models import CacheStatus
from motion_driver import MotionDriver


class FakeFetcher(QObject):
    """记录加载请求，由测试决定何时返回结果。"""
    load_finished = pyqtSignal(int, int, object)
    load_failed = pyqtSignal(int, int, str)

    def __init__(self):
        super().__init__()
        self.requests = []

    def submit(self, index, token, start, end):
        self.requests.append((index, token, start, end))

    def requested(self):
        return [r[0] for r in self.requests]

    def _token(self, index):
        return [r[1] for r in self.requests if r[0] == index][-1]

    def complete(self, index, items):
        self.load_finished.emit(index, self._token(index), list(items))

    def reject(self, index, message):
        self.load_failed.emit(index, self._token(index), message)

    def stop(self):
        pass


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def controller(qtbot, scheduler_config, fetcher, fake_clock):
    async def unused_loader(start, end):
        return []

    controller = DanmakuController(unused_loader, scheduler_config, fetcher=fetcher,
                                   motion=MotionDriver(clock=fake_clock))
    controller.set_geometry(1000, 360)
    yield controller
    controller.stop()


def test_reveal_emits_signal_and_mounts_trajectory(qtbot, controller, fetcher):
    controller.update_time(2000)
    assert fetcher.requested() == [0, 1]
    assert fetcher.requests[0][2:] == (0, 10000)

    with qtbot.waitSignal(controller.period_revealed, timeout=1000) as blocker:
        fetcher.complete(0, make_items(2500, 1000))

    assert blocker.args == [0]
    assert controller.active_periods() == [0]
    trajectory = controller.trajectory(0)
    # 在 2000ms 时展示: 画布左移 2000 * 1000 / 5000 = 400 像素
    assert trajectory.start_offset == 600
    # 周期画布宽 2000 像素，比视口多出 1000 像素
    assert trajectory.total_ms == pytest.approx(15000)


def test_positioned_items_use_surface_width(controller, fetcher):
    controller.update_time(0)
    fetcher.complete(0, make_items(2500, 1000, 4000))

    layout = controller.positioned_items(0)

    assert [p.item.timestamp for p in layout] == [1000, 2500, 4000]
    assert [p.horizontal_offset for p in layout] == [200.0, 500.0, 800.0]
    assert [p.lane for p in layout] == [0, 1, 2]
    assert controller.positioned_items(0) is layout


def test_geometry_change_recomputes_layout(controller, fetcher):
    controller.update_time(0)
    fetcher.complete(0, make_items(2500))
    before = controller.positioned_items(0)

    controller.set_geometry(500, 360)

    after = controller.positioned_items(0)
    assert after is not before
    assert after[0].horizontal_offset == 250.0


def test_completed_trajectory_removes_period(qtbot, controller, fetcher, fake_clock):
    controller.update_time(0)
    fetcher.complete(0, make_items(100))
    trajectory = controller.trajectory(0)

    fake_clock.advance(trajectory.total_ms)
    with qtbot.waitSignal(controller.period_removed, timeout=1000) as blocker:
        controller.motion.update()

    assert blocker.args == [0]
    assert controller.active_periods() == []
    assert controller.trajectory(0) is None


def test_pause_freezes_trajectories(controller, fetcher, fake_clock):
    controller.update_time(0)
    fetcher.complete(0, make_items(100))
    fake_clock.advance(1000)

    controller.set_paused(True)
    frozen = controller.motion.offset(controller.trajectory(0))
    fake_clock.advance(3000)

    assert controller.motion.offset(controller.trajectory(0)) == frozen
    controller.set_paused(False)
    assert controller.motion.remaining(controller.trajectory(0)) == pytest.approx(14000)


def test_period_revealed_while_paused_starts_paused(controller, fetcher):
    controller.set_paused(True)
    controller.update_time(0)
    fetcher.complete(0, make_items(100))

    assert controller.trajectory(0).paused


def test_seek_emits_reset_and_discards_trajectories(qtbot, controller, fetcher):
    controller.update_time(0)
    fetcher.complete(0, make_items(100))
    old = controller.trajectory(0)

    with qtbot.waitSignal(controller.timeline_reset, timeout=1000) as blocker:
        controller.update_time(20000)

    assert blocker.args == [0, 20000]
    assert old.discarded
    assert controller.active_periods() == []
    assert fetcher.requested() == [0, 1, 2, 3]


def test_fetch_failure_is_reported_and_retry_requests_again(qtbot, controller, fetcher):
    controller.update_time(0)

    with qtbot.waitSignal(controller.fetch_failed, timeout=1000) as blocker:
        fetcher.reject(0, "TimeoutError()")

    assert blocker.args == [0, "TimeoutError()"]
    assert controller.state.cache.status(0) is CacheStatus.FAILED
    assert controller.active_periods() == []

    controller.retry(0)
    assert fetcher.requested() == [0, 1, 0]
    fetcher.complete(0, make_items(100))
    assert controller.active_periods() == [0]


def test_stop_resets_state(controller, fetcher):
    controller.start()
    controller.update_time(0)
    fetcher.complete(0, make_items(100))

    controller.stop()

    assert not controller.is_running()
    assert controller.active_periods() == []
    assert len(controller.state.cache) == 0


def test_loader_runs_in_worker_thread(qtbot, scheduler_config):
    calls = []

    async def loader(start, end):
        calls.append((start, end))
        await asyncio.sleep(0.01)
        return make_items(start + 100)

    controller = DanmakuController(loader, scheduler_config)
    controller.start()
    try:
        controller.set_geometry(800, 600)
        with qtbot.waitSignal(controller.period_revealed, timeout=3000) as blocker:
            controller.update_time(0)
        assert blocker.args == [0]
        assert (0, 10000) in calls
        assert [p.item.timestamp for p in controller.positioned_items(0)] == [100]
    finally:
        controller.stop()


def test_loader_exception_becomes_failed_period(qtbot, scheduler_config):
    async def loader(start, end):
        raise ConnectionError("network down")

    controller = DanmakuController(loader, scheduler_config)
    controller.start()
    try:
        controller.set_geometry(800, 600)
        with qtbot.waitSignal(controller.fetch_failed, timeout=3000) as blocker:
            controller.update_time(0)
        assert blocker.args[0] in (0, 1)
        assert "network down" in blocker.args[1]
    finally:
        controller.stop()


def test_finished_period_is_not_replayed_when_playback_is_slow(controller, fetcher, fake_clock):
    revealed = []
    controller.period_revealed.connect(revealed.append)
    controller.update_time(0)
    fetcher.complete(0, make_items(100))

    # 0.5倍速：运动时钟每步前进100ms，播放时钟只前进50ms
    for step in range(1, 181):
        fake_clock.advance(100)
        controller.motion.update()
        controller.update_time(step * 50)

    assert revealed == [0]
    assert controller.active_periods() == []


def test_width_change_rescales_live_trajectories(controller, fetcher, fake_clock):
    controller.update_time(0)
    fetcher.complete(0, make_items(100))
    trajectory = controller.trajectory(0)
    fake_clock.advance(3000)
    assert controller.motion.offset(trajectory) == pytest.approx(400)

    controller.set_geometry(500, 360)

    assert controller.trajectory(0) is trajectory
    assert controller.motion.offset(trajectory) == pytest.approx(200)
    assert controller.motion.remaining(trajectory) == pytest.approx(12000)


def test_restart_keeps_geometry(controller, fetcher):
    controller.start()
    controller.stop()
    controller.start()

    controller.update_time(0)

    assert fetcher.requested() == [0, 1]
    assert controller.state.geometry == (1000, 360)


def test_loader_returning_none_becomes_failed_period(qtbot, scheduler_config):
    async def loader(start, end):
        return None

    controller = DanmakuController(loader, scheduler_config)
    controller.start()
    try:
        controller.set_geometry(800, 600)
        with qtbot.waitSignal(controller.fetch_failed, timeout=3000) as blocker:
            controller.update_time(0)
        assert "TypeError" in blocker.args[1]
    finally:
        controller.stop()
