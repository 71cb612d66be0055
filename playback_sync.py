# playback_sync.py
import asyncio
import logging
import time
from typing import Callable

from PyQt6.QtCore import QObject, QThread, QTimer, pyqtSignal

from monitors.base_monitor import BaseMediaMonitor, PlaybackInfo

# 导入控制器仅用于类型注解
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from danmaku_controller import DanmakuController


class MediaSyncWorker(QObject):
    """
    媒体同步工作者。在一个独立的QThread中运行，避免阻塞主GUI线程。
    它负责周期性地调用监控器的异步方法来获取播放状态。
    """
    playback_updated = pyqtSignal(object)

    def __init__(self, monitor: BaseMediaMonitor, poll_interval_ms: int = 100):
        super().__init__()
        self.monitor = monitor
        self.poll_interval = poll_interval_ms / 1000
        self._is_running = True
        self.loop = None
        self.main_task = None

    async def _loop_logic(self):
        logging.info("媒体同步工作线程循环已启动。")
        while self._is_running:
            try:
                info = await self.monitor.get_current_session_info()
                # 在 await 之后再次检查标志，因为在等待期间可能已经被停止
                if not self._is_running:
                    break
                self.playback_updated.emit(info)
                await asyncio.sleep(self.poll_interval)

            except asyncio.CancelledError:
                logging.info("媒体同步任务被取消，正常关闭中...")
                break
            except Exception as e:
                logging.error(f"在工作线程中获取播放状态时出错: {e}")
                self.playback_updated.emit(None)
                try:
                    # 出错后等待稍长一点时间再重试
                    await asyncio.sleep(1)
                except asyncio.CancelledError:
                    logging.info("媒体同步任务在错误后等待时被取消。")
                    break

        logging.info("媒体同步工作线程循环已正常退出。")

    def run(self):
        """此方法在QThread启动后被调用。"""
        try:
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)
            self.main_task = self.loop.create_task(self._loop_logic())
            self.loop.run_until_complete(self.main_task)
        except Exception as e:
            logging.error(f"asyncio 事件循环中发生意外错误: {e}")
        finally:
            if self.loop is not None:
                self.loop.close()

    def stop(self):
        """请求停止工作线程的循环。"""
        logging.info("正在请求停止媒体同步工作线程...")
        self._is_running = False
        if self.loop and self.main_task and not self.main_task.done():
            self.loop.call_soon_threadsafe(self.main_task.cancel)


class PlaybackSync(QObject):
    """
    把播放状态采样转换为调度器的时钟更新。

    播放器报告的进度往往是稀疏的，这里用单调时钟在两次采样之间推算播放位置，
    每一帧调用一次 controller.update_time()。小于跳转阈值的回退误差不会让时钟倒退，
    以免被误判为跳转；真正的跳转（超过阈值）则直接采用新的位置。
    """
    TICK_FPS = 60

    def __init__(self, controller: 'DanmakuController', seek_threshold_ms: float,
                 clock: Callable[[], float] | None = None):
        super().__init__()
        self.controller = controller
        self.seek_threshold_ms = seek_threshold_ms
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self._anchor_position: float | None = None
        self._anchor_time = 0.0
        self._playing = False
        self.last_info: PlaybackInfo | None = None
        self._last_reported: float | None = None

        self._worker_thread: QThread | None = None
        self._worker: MediaSyncWorker | None = None

        self._tick_timer = QTimer(self)
        self._tick_timer.timeout.connect(self.tick)

    def estimated_position(self) -> float | None:
        if self._anchor_position is None:
            return None
        if not self._playing:
            return self._anchor_position
        return self._anchor_position + (self._clock() - self._anchor_time)

    def on_playback_info(self, info: PlaybackInfo | None):
        self.last_info = info
        if info is None:
            # 播放器不可用时视为暂停，保留已经展示的弹幕
            self._set_playing(False)
            return

        if info.playing and self._playing and info.position_ms == self._last_reported:
            # 播放器没有刷新进度，继续按本地时钟推算
            self.tick()
            return
        self._last_reported = info.position_ms

        estimate = self.estimated_position()
        position = info.position_ms
        if estimate is not None and 0 <= estimate - position <= self.seek_threshold_ms:
            position = estimate
        self._anchor_position = position
        self._anchor_time = self._clock()
        self._set_playing(info.playing)
        self.tick()

    def _set_playing(self, playing: bool):
        if playing != self._playing:
            if not playing and self._anchor_position is not None:
                self._anchor_position = self.estimated_position()
                self._anchor_time = self._clock()
            self._playing = playing
        self.controller.set_paused(not playing)

    def tick(self):
        position = self.estimated_position()
        if position is not None:
            self.controller.update_time(position)

    def start(self, monitor: BaseMediaMonitor, poll_interval_ms: int = 100):
        logging.debug("正在设置新的媒体同步线程和工作者对象...")
        self._worker_thread = QThread()
        self._worker = MediaSyncWorker(monitor, poll_interval_ms)
        self._worker.moveToThread(self._worker_thread)
        self._worker_thread.started.connect(self._worker.run)
        self._worker.playback_updated.connect(self.on_playback_info)
        self._worker_thread.finished.connect(self._worker_thread.deleteLater)
        self._worker_thread.finished.connect(self._worker.deleteLater)
        self._worker_thread.start()
        self._tick_timer.start(1000 // self.TICK_FPS)

    def stop(self):
        self._tick_timer.stop()
        if self._worker:
            self._worker.stop()
        if self._worker_thread and self._worker_thread.isRunning():
            self._worker_thread.quit()
            if not self._worker_thread.wait(500):
                logging.warning("同步线程未在500毫秒内正常停止，正在强制终止。")
                self._worker_thread.terminate()
                self._worker_thread.wait()
        self._worker_thread = None
        self._worker = None
