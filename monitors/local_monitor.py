# monitors/local_monitor.py
import time
from typing import Callable

from .base_monitor import BaseMediaMonitor, PlaybackInfo


class LocalPlaybackMonitor(BaseMediaMonitor):
    """
    本地模拟的播放时钟，没有外部播放器时使用。
    支持播放、暂停和跳转，方便在任何平台上演示和测试调度器。
    """
    def __init__(self, title: str = "Local", duration_ms: float = 0,
                 clock: Callable[[], float] | None = None):
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self.title = title
        self.duration_ms = duration_ms
        self._base_position = 0.0
        self._anchor = self._clock()
        self._playing = False

    def position(self) -> float:
        if not self._playing:
            return self._base_position
        position = self._base_position + (self._clock() - self._anchor)
        if self.duration_ms > 0:
            position = min(position, self.duration_ms)
        return position

    def play(self):
        if not self._playing:
            self._anchor = self._clock()
            self._playing = True

    def pause(self):
        if self._playing:
            self._base_position = self.position()
            self._playing = False

    def seek(self, position_ms: float):
        self._base_position = max(0.0, position_ms)
        self._anchor = self._clock()

    async def get_current_session_info(self) -> PlaybackInfo:
        return PlaybackInfo(self.position(), self._playing, self.title, self.duration_ms, "local")
