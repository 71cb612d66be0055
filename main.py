# main.py
import sys
import logging
from PyQt6.QtWidgets import QApplication

from config_loader import get_config
from danmaku_controller import DanmakuController
from danmaku_parser import XmlDanmakuSource
from danmaku_renderer import DanmakuWindow
from logger_setup import setup_logging
from monitors.base_monitor import BaseMediaMonitor, MediaMonitorError
from monitors.local_monitor import LocalPlaybackMonitor
from monitors.windows_monitor import WindowsMediaMonitor
from playback_sync import PlaybackSync
from scheduler_core import SchedulerConfigError


def create_monitor(config) -> BaseMediaMonitor:
    """
    根据配置选择播放时钟来源。
    'auto' 时优先使用系统媒体会话，不可用则退回本地时钟。
    """
    if config.sync_source in ('auto', 'windows'):
        try:
            return WindowsMediaMonitor(config.target_aumid)
        except MediaMonitorError as e:
            if config.sync_source == 'windows':
                raise
            logging.warning(f"媒体监控器不可用，改用本地时钟: {e}")
    monitor = LocalPlaybackMonitor()
    monitor.play()
    return monitor


def main():
    """
    应用程序主入口函数。
    用法: python main.py [弹幕XML文件]
    """
    app = QApplication(sys.argv)
    config = get_config()
    log_signals = setup_logging(config)

    danmaku_path = sys.argv[1] if len(sys.argv) > 1 else config.last_danmaku_path
    if not danmaku_path:
        logging.error("未指定弹幕文件。用法: python main.py <弹幕XML文件>")
        return 1

    try:
        scheduler_config = config.scheduler_config()
    except SchedulerConfigError as e:
        logging.error(f"调度器配置不合法: {e}")
        return 1

    source = XmlDanmakuSource.from_file(danmaku_path, config.load_latency_ms)
    if not len(source):
        logging.error(f"无法从 '{danmaku_path}' 加载任何弹幕。")
        return 1
    if danmaku_path != config.last_danmaku_path:
        config.last_danmaku_path = danmaku_path
        config.save()

    controller = DanmakuController(source.load, scheduler_config)
    window = DanmakuWindow(controller)
    if window.debug_overlay:
        log_signals.log_message.connect(window.debug_overlay.push_log)

    sync = PlaybackSync(controller, scheduler_config.seek_threshold)

    controller.start()
    window.show()
    sync.start(create_monitor(config), config.poll_interval_ms)
    logging.info("弹幕覆盖层启动成功。")

    def shutdown():
        sync.stop()
        controller.stop()

    app.aboutToQuit.connect(shutdown)
    return app.exec()


if __name__ == '__main__':
    try:
        sys.exit(main())
    except Exception as e:
        # 记录所有未处理的顶层异常后退出
        logging.critical("应用程序发生未捕获的严重错误: %s", e, exc_info=True)
        sys.exit(1)
