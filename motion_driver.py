# motion_driver.py
import logging
import time
from typing import Callable


def _monotonic_ms() -> float:
    # 使用单调时钟，不受系统时间改变影响
    return time.monotonic() * 1000


def _path(viewport_width: float, duration: float, start_shift: float, extent: float):
    """返回 (起点, 终点, 总时长)。"""
    start_offset = viewport_width - start_shift
    distance = 2 * viewport_width + max(extent, 0.0)
    total_ms = 2 * duration
    if viewport_width > 0 and extent > 0:
        total_ms += extent / (viewport_width / duration)
    return start_offset, start_offset - distance, total_ms


class Trajectory:
    """
    一个周期画布的水平运动轨迹。
    位置随时间线性变化：从 start_offset 移动到 target_offset，共耗时 total_ms。
    """
    def __init__(self, period_index: int, start_offset: float, target_offset: float,
                 total_ms: float, started_at: float):
        self.period_index = period_index
        self.start_offset = start_offset
        self.target_offset = target_offset
        self.total_ms = total_ms
        self.elapsed_at_pause = 0.0   # 暂停时（或最近一次恢复前）已经走过的时间
        self.resumed_at = started_at  # 最近一次开始/恢复运动的时刻
        self.paused = False
        self.finished = False
        self.discarded = False
        self._callbacks: list[Callable[['Trajectory'], None]] = []

    def __repr__(self):
        state = "finished" if self.finished else "paused" if self.paused else "moving"
        return f"<Trajectory(period={self.period_index}, {state})>"


class MotionDriver:
    """
    驱动所有可见周期的水平运动。

    它不依赖任何定时器：由调用方（通常是一个60fps的QTimer）周期性调用 update()，
    轨迹到达终点时在 update() 中触发完成回调。
    """
    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or _monotonic_ms
        self._trajectories: list[Trajectory] = []

    def start(self, period_index: int, viewport_width: float, duration: float,
              start_shift: float = 0.0, extent: float = 0.0) -> Trajectory:
        """
        为一个周期开始一条新的轨迹。

        默认轨迹从视口右边缘外（+viewport_width）出发，在 2*duration 毫秒内
        匀速移动两个视口宽度。

        Args:
            period_index (int): 周期序号。
            viewport_width (float): 视口宽度（像素）。
            duration (float): 弹幕横穿一个视口所需的时间（毫秒）。
            start_shift (float): 周期在中途展示时，起点向左的偏移量（像素）。
            extent (float): 额外的移动距离（像素），按相同速度延长运动时间。

        Returns:
            Trajectory: 轨迹句柄。
        """
        start_offset, target_offset, total_ms = _path(viewport_width, duration, start_shift, extent)
        trajectory = Trajectory(period_index, start_offset, target_offset, total_ms, self._clock())
        self._trajectories.append(trajectory)
        return trajectory

    def rescale(self, trajectory: Trajectory, viewport_width: float, duration: float,
                start_shift: float = 0.0, extent: float = 0.0):
        """视口宽度变化后重新计算起点和终点。已经走过的时间保持不变，画布按新的速度继续移动。"""
        if trajectory.finished or trajectory.discarded:
            return
        elapsed = self.elapsed(trajectory)
        trajectory.start_offset, trajectory.target_offset, trajectory.total_ms = _path(
            viewport_width, duration, start_shift, extent)
        trajectory.elapsed_at_pause = elapsed
        if not trajectory.paused:
            trajectory.resumed_at = self._clock()

    def elapsed(self, trajectory: Trajectory) -> float:
        if trajectory.paused or trajectory.finished:
            elapsed = trajectory.elapsed_at_pause
        else:
            elapsed = trajectory.elapsed_at_pause + (self._clock() - trajectory.resumed_at)
        return min(elapsed, trajectory.total_ms)

    def remaining(self, trajectory: Trajectory) -> float:
        return trajectory.total_ms - self.elapsed(trajectory)

    def offset(self, trajectory: Trajectory) -> float:
        """轨迹当前的水平位置（像素）。"""
        if trajectory.total_ms <= 0:
            return trajectory.target_offset
        progress = self.elapsed(trajectory) / trajectory.total_ms
        return trajectory.start_offset + (trajectory.target_offset - trajectory.start_offset) * progress

    def pause(self, trajectory: Trajectory):
        """冻结当前位置。记录已走过的时间，而不是回到起点。"""
        if trajectory.paused or trajectory.finished or trajectory.discarded:
            return
        trajectory.elapsed_at_pause = self.elapsed(trajectory)
        trajectory.paused = True

    def resume(self, trajectory: Trajectory):
        """从冻结的位置继续向同一个终点移动，剩余时间保持不变。"""
        if not trajectory.paused or trajectory.discarded:
            return
        trajectory.resumed_at = self._clock()
        trajectory.paused = False

    def pause_all(self):
        for trajectory in self._trajectories:
            self.pause(trajectory)

    def resume_all(self):
        for trajectory in self._trajectories:
            self.resume(trajectory)

    def on_complete(self, trajectory: Trajectory, callback: Callable[[Trajectory], None]):
        if trajectory.discarded:
            return
        if trajectory.finished:
            callback(trajectory)
            return
        trajectory._callbacks.append(callback)

    def discard(self, trajectory: Trajectory):
        """丢弃轨迹。被丢弃的轨迹永远不会触发完成回调。"""
        trajectory.discarded = True
        trajectory._callbacks.clear()
        if trajectory in self._trajectories:
            self._trajectories.remove(trajectory)

    def clear(self):
        for trajectory in list(self._trajectories):
            self.discard(trajectory)

    def active(self) -> list[Trajectory]:
        return list(self._trajectories)

    def update(self):
        """检查所有运动中的轨迹，为到达终点的轨迹触发一次完成回调。"""
        for trajectory in list(self._trajectories):
            if trajectory.paused or trajectory.discarded:
                continue
            if self.elapsed(trajectory) < trajectory.total_ms:
                continue
            trajectory.elapsed_at_pause = trajectory.total_ms
            trajectory.finished = True
            self._trajectories.remove(trajectory)
            callbacks, trajectory._callbacks = trajectory._callbacks, []
            for callback in callbacks:
                try:
                    callback(trajectory)
                except Exception as e:
                    logging.error(f"轨迹完成回调出错 (周期 {trajectory.period_index}): {e}")
