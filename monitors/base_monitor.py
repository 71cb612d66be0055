# monitors/base_monitor.py
from abc import ABC, abstractmethod


class MediaMonitorError(Exception):
    """媒体监控器相关的异常基类。"""
    pass


class PlaybackInfo:
    """一次播放状态采样。时间统一使用毫秒。"""
    def __init__(self, position_ms: float, playing: bool, title: str = "",
                 duration_ms: float = 0, source: str = ""):
        self.position_ms = position_ms
        self.playing = playing
        self.title = title
        self.duration_ms = duration_ms
        self.source = source

    @staticmethod
    def format_time(ms: float) -> str:
        """将毫秒格式化为 HH:MM:SS"""
        ts = int(ms // 1000)
        return f"{ts // 3600:02d}:{(ts % 3600) // 60:02d}:{ts % 60:02d}"

    def __repr__(self):
        status = "PLAYING" if self.playing else "PAUSED"
        return (f"<PlaybackInfo(source='{self.source}', status='{status}', title='{self.title}', "
                f"progress='{self.format_time(self.position_ms)}/{self.format_time(self.duration_ms)}')>")


class BaseMediaMonitor(ABC):
    """
    播放时钟来源的抽象基类。
    调度器只关心当前的播放位置和是否暂停，具体来源可以是系统媒体会话，
    也可以是本地模拟的时钟。
    """

    @abstractmethod
    async def get_current_session_info(self) -> PlaybackInfo | None:
        """
        异步获取当前的播放状态。

        Returns:
            PlaybackInfo | None: 当前播放状态，没有活动会话时返回 None。
        """
        pass
