# monitors/windows_monitor.py
from .base_monitor import BaseMediaMonitor, MediaMonitorError, PlaybackInfo

# 尝试导入Windows平台特定的库
try:
    from winsdk.windows.media.control import (
        GlobalSystemMediaTransportControlsSessionManager as MediaManager,
        GlobalSystemMediaTransportControlsSessionPlaybackStatus as PlaybackStatus
    )
    WINSDK_AVAILABLE = True
except ImportError:
    WINSDK_AVAILABLE = False


class WindowsMediaMonitor(BaseMediaMonitor):
    """
    通过Windows SMTC API获取播放进度的时钟来源。
    只报告目标播放器（target_aumid）的会话。
    """
    def __init__(self, target_aumid: str):
        if not WINSDK_AVAILABLE:
            raise MediaMonitorError("winsdk 库未安装或不完整。请运行 'pip install winsdk'。")
        self.target_aumid = target_aumid

    async def get_current_session_info(self) -> PlaybackInfo | None:
        manager = await MediaManager.request_async()
        session = manager.get_current_session()
        if not session or session.source_app_user_model_id != self.target_aumid:
            return None
        info = await session.try_get_media_properties_async()
        timeline = session.get_timeline_properties()
        playback_info = session.get_playback_info()
        status = PlaybackStatus(playback_info.playback_status)
        return PlaybackInfo(
            position_ms=timeline.position.total_seconds() * 1000,
            playing=status == PlaybackStatus.PLAYING,
            title=info.title if info else "",
            duration_ms=timeline.end_time.total_seconds() * 1000,
            source=session.source_app_user_model_id,
        )
