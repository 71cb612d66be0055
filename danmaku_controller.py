# danmaku_controller.py
import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Awaitable, Callable

from PyQt6.QtCore import QObject, QThread, QTimer, pyqtSignal

from danmaku_models import Period, PositionedItem, RawItem
from danmaku_positioner import position, surface_width
from motion_driver import MotionDriver, Trajectory
from scheduler_core import (
    FetchFailed, FetchResolved, GeometryResolved, LoadRequested, PauseChanged,
    PeriodFinished, PeriodRemoved, PeriodRevealed, PlaybackStateChanged,
    RetryRequested, SchedulerConfig, SchedulerState, SessionState, TickOccurred,
    TimelineReset, reduce,
)

Loader = Callable[[int, int], Awaitable[list[RawItem]]]


class LoadWorker(QObject):
    """
    弹幕加载工作者。在一个独立的QThread中运行asyncio事件循环，避免阻塞主GUI线程。
    加载结果通过信号送回主线程，加载器抛出的异常不会越过这个边界。
    """
    load_finished = pyqtSignal(int, int, object)  # 周期序号, 请求编号, 弹幕列表
    load_failed = pyqtSignal(int, int, str)       # 周期序号, 请求编号, 错误信息

    def __init__(self, loader: Loader):
        super().__init__()
        self.loader = loader
        # 事件循环在这里创建，在工作线程中运行；
        # 线程启动之前提交的任务会排队，等循环开始后执行
        self.loop = asyncio.new_event_loop()

    def run(self):
        """此方法在QThread启动后被调用。"""
        asyncio.set_event_loop(self.loop)
        logging.info("弹幕加载线程的事件循环已启动。")
        try:
            self.loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self.loop)
            for task in pending:
                task.cancel()
            if pending:
                self.loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            self.loop.close()
            logging.info("弹幕加载线程的事件循环已正常退出。")

    def submit(self, index: int, token: int, start: int, end: int):
        """从任意线程提交一次加载请求。"""
        asyncio.run_coroutine_threadsafe(self._load(index, token, start, end), self.loop)

    async def _load(self, index: int, token: int, start: int, end: int):
        try:
            items = list(await self.loader(start, end))
        except asyncio.CancelledError:
            logging.debug(f"周期 {index} 的加载任务被取消。")
            raise
        except Exception as e:
            logging.error(f"加载周期 {index} ({start}ms-{end}ms) 的弹幕时出错: {e!r}")
            self.load_failed.emit(index, token, repr(e))
        else:
            self.load_finished.emit(index, token, items)

    def stop(self):
        """请求停止事件循环。"""
        logging.info("正在请求停止弹幕加载线程...")
        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.loop.stop)


class DanmakuController(QObject):
    """
    一个播放器实例的调度上下文。

    它持有调度状态快照、周期缓存和运动驱动器，把外部输入（时钟、几何、暂停）
    转换为调度事件交给 reduce()，再执行得到的副作用。所有事件都在GUI线程中
    按先进先出的顺序处理，执行副作用时产生的新事件会排在当前事件之后。
    """
    period_revealed = pyqtSignal(int)
    period_removed = pyqtSignal(int)
    timeline_reset = pyqtSignal(int, int)
    fetch_failed = pyqtSignal(int, str)
    error_occurred = pyqtSignal(str)

    MOTION_FPS = 60

    def __init__(self, loader: Loader, config: SchedulerConfig,
                 fetcher: LoadWorker | None = None, motion: MotionDriver | None = None):
        super().__init__()
        self.config = config
        self.loader = loader
        self.motion = motion or MotionDriver()

        self._state = SchedulerState.initial(config)
        self._events: deque = deque()
        self._dispatching = False
        self._trajectories: dict[int, Trajectory] = {}
        self._positioned: dict[int, list[PositionedItem]] = {}
        self._is_running_flag = False

        self._worker_thread: QThread | None = None
        self._fetcher = fetcher
        if fetcher is not None:
            self._connect_fetcher(fetcher)

        self._motion_timer = QTimer(self)
        self._motion_timer.timeout.connect(self.motion.update)

    @property
    def state(self) -> SchedulerState:
        return self._state

    def is_running(self) -> bool:
        return self._is_running_flag

    # --- 生命周期 ---

    def _connect_fetcher(self, fetcher):
        fetcher.load_finished.connect(self._on_load_finished)
        fetcher.load_failed.connect(self._on_load_failed)

    def _setup_worker(self):
        logging.debug("正在设置新的加载线程和工作者对象...")
        self._worker_thread = QThread()
        self._fetcher = LoadWorker(self.loader)
        self._fetcher.moveToThread(self._worker_thread)
        self._worker_thread.started.connect(self._fetcher.run)
        self._connect_fetcher(self._fetcher)
        self._worker_thread.finished.connect(self._worker_thread.deleteLater)
        self._worker_thread.finished.connect(self._fetcher.deleteLater)

    def start(self):
        if self._is_running_flag:
            logging.warning("调度器已经正在运行。")
            return
        if self._fetcher is None:
            self._setup_worker()
            self._worker_thread.start()
        self._motion_timer.start(1000 // self.MOTION_FPS)
        self._is_running_flag = True
        logging.info(f"弹幕调度器已启动: {self.config}")

    def stop(self):
        if not self._is_running_flag:
            return
        self._motion_timer.stop()
        if self._worker_thread is not None:
            self._fetcher.stop()
            self._worker_thread.quit()
            if not self._worker_thread.wait(500):
                logging.warning("加载线程未在500毫秒内正常停止，正在强制终止。")
                self._worker_thread.terminate()
                self._worker_thread.wait()
            self._worker_thread = None
            self._fetcher = None
        self.motion.clear()
        self._trajectories.clear()
        self._positioned.clear()
        self._events.clear()
        # 视口几何在重启后仍然有效
        self._state = replace(SchedulerState.initial(self.config), geometry=self._state.geometry)
        self._is_running_flag = False
        logging.info("弹幕调度器已停止并清理资源。")

    # --- 外部输入 ---

    def update_time(self, time_ms: float):
        self.dispatch(TickOccurred(time_ms))

    def set_geometry(self, width: float, height: float):
        previous = self._state.geometry
        if previous != (width, height):
            # 几何变化后布局需要重新计算
            self._positioned.clear()
        self.dispatch(GeometryResolved(width, height))
        if previous is not None and previous[0] != width:
            for index, trajectory in self._trajectories.items():
                self.motion.rescale(trajectory, **self._motion_path(index))

    def set_paused(self, paused: bool):
        self.dispatch(PauseChanged(paused))

    def retry(self, index: int):
        self.dispatch(RetryRequested(index))

    def _on_load_finished(self, index: int, token: int, items: list):
        self.dispatch(FetchResolved(index, token, items=tuple(items)))

    def _on_load_failed(self, index: int, token: int, message: str):
        self.dispatch(FetchResolved(index, token, error=message))

    # --- 给渲染器的读取接口 ---

    def active_periods(self) -> list[int]:
        return sorted(self._state.active)

    def trajectory(self, index: int) -> Trajectory | None:
        return self._trajectories.get(index)

    def positioned_items(self, index: int) -> list[PositionedItem]:
        """惰性计算某个已展示周期的布局，直到几何变化前都复用结果。"""
        cached = self._positioned.get(index)
        if cached is not None:
            return cached
        revealed = self._state.revealed.get(index)
        if revealed is None or self._state.geometry is None:
            return []
        width, height = self._state.geometry
        period = Period(index, self.config.period_length)
        layout = position(
            list(revealed.items), period.start_time, period.end_time,
            surface_width(width, self.config.period_length, self.config.duration),
            height, self.config.line_height, self.config.font_size,
        )
        self._positioned[index] = layout
        return layout

    # --- 事件循环 ---

    def dispatch(self, event):
        self._events.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._events:
                transition = reduce(self.config, self._state, self._events.popleft())
                self._state = transition.state
                for effect in transition.effects:
                    self._apply(effect)
        finally:
            self._dispatching = False

    def _apply(self, effect):
        if isinstance(effect, LoadRequested):
            logging.debug(f"请求周期 {effect.index} 的弹幕: {effect.start}ms-{effect.end}ms")
            if self._fetcher is None:
                logging.warning(f"调度器尚未启动，周期 {effect.index} 的请求将保持等待状态。")
                return
            self._fetcher.submit(effect.index, effect.token, effect.start, effect.end)
        elif isinstance(effect, PeriodRevealed):
            self._mount(effect.index)
        elif isinstance(effect, PeriodRemoved):
            self._unmount(effect.index)
        elif isinstance(effect, TimelineReset):
            self.timeline_reset.emit(int(effect.previous_time), int(effect.time))
        elif isinstance(effect, FetchFailed):
            self.fetch_failed.emit(effect.index, effect.error)
            self.error_occurred.emit(f"周期 {effect.index} 的弹幕加载失败:\n{effect.error}")
        elif isinstance(effect, PlaybackStateChanged):
            if effect.paused:
                self.motion.pause_all()
            else:
                self.motion.resume_all()

    def _motion_path(self, index: int) -> dict:
        width, _ = self._state.geometry
        period = Period(index, self.config.period_length)
        speed = width / self.config.duration
        # 周期在中途才展示时，画布要向左偏移已经过去的那段时间
        start_shift = (self._state.revealed[index].reveal_time - period.start_time) * speed
        extent = surface_width(width, self.config.period_length, self.config.duration) - width
        return dict(viewport_width=width, duration=self.config.duration,
                    start_shift=start_shift, extent=max(extent, 0.0))

    def _mount(self, index: int):
        trajectory = self.motion.start(index, **self._motion_path(index))
        if self._state.session is SessionState.PAUSED:
            self.motion.pause(trajectory)
        self.motion.on_complete(trajectory, lambda t: self.dispatch(PeriodFinished(t.period_index)))
        self._trajectories[index] = trajectory
        self.period_revealed.emit(index)

    def _unmount(self, index: int):
        trajectory = self._trajectories.pop(index, None)
        if trajectory is not None:
            self.motion.discard(trajectory)
        self._positioned.pop(index, None)
        self.period_removed.emit(index)
