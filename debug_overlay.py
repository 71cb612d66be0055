# debug_overlay.py
import time
import os
import logging
import psutil
from collections import deque
from PyQt6.QtGui import QPainter, QColor, QPen, QFont
from PyQt6.QtCore import Qt, QRect

from danmaku_models import CacheStatus

# 仅用于类型注解
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from config_loader import Config
    from danmaku_controller import DanmakuController


class DebugOverlay:
    """
    一个独立的调试信息覆盖层。
    负责在弹幕窗口上绘制调度状态、FPS、内存占用和最近的警告。
    """
    def __init__(self, parent_window, config: 'Config'):
        self.parent = parent_window
        self.config = config
        self._paint_times = deque(maxlen=60)

        self._current_period = None
        self._clock_ms = 0.0
        self._loaded = 0
        self._pending = 0
        self._failed = 0
        self._active = []
        self._generation = 0
        self._cpu_usage = 0.0
        self._mem_usage_mb = 0.0
        self._frame_count = 0
        self._last_log = ""

        self._font = QFont("Consolas", 8, QFont.Weight.Normal)

        try:
            self._proc = psutil.Process(os.getpid())
            self._proc.cpu_percent(interval=None)
        except psutil.NoSuchProcess:
            self._proc = None

        pos_map = {
            'top_left': Qt.AlignmentFlag.AlignTop | Qt.AlignmentFlag.AlignLeft,
            'top_right': Qt.AlignmentFlag.AlignTop | Qt.AlignmentFlag.AlignRight,
            'bottom_right': Qt.AlignmentFlag.AlignBottom | Qt.AlignmentFlag.AlignRight,
            'bottom_left': Qt.AlignmentFlag.AlignBottom | Qt.AlignmentFlag.AlignLeft
        }
        self._alignment = pos_map.get(
            self.config.debug_info_position,
            Qt.AlignmentFlag.AlignBottom | Qt.AlignmentFlag.AlignLeft
        )

    def update_stats(self, controller: 'DanmakuController'):
        """从控制器的状态快照读取调度信息。"""
        state = controller.state
        self._current_period = state.current_index
        self._clock_ms = state.last_time or 0.0
        self._loaded = state.cache.count(CacheStatus.LOADED)
        self._pending = state.cache.count(CacheStatus.PENDING)
        self._failed = state.cache.count(CacheStatus.FAILED)
        self._active = controller.active_periods()
        self._generation = state.generation

    def push_log(self, message: str, level: int):
        """连接到 LogSignals.log_message，记录最近一条警告或错误。"""
        if level >= logging.WARNING:
            self._last_log = message

    def _update_system_stats(self):
        if self._proc:
            self._cpu_usage = self._proc.cpu_percent(interval=None)
            self._mem_usage_mb = self._proc.memory_info().rss / (1024 * 1024)

    def paint(self, painter: QPainter):
        # 红色边框表示调试模式已开启
        painter.setPen(QPen(QColor("red"), 2))
        painter.drawRect(self.parent.rect().adjusted(1, 1, -1, -1))

        # 节流更新系统信息
        self._frame_count += 1
        if self._frame_count >= 30:
            self._frame_count = 0
            self._update_system_stats()

        now = time.monotonic()
        self._paint_times.append(now)
        fps = 0
        if len(self._paint_times) > 1:
            elapsed = self._paint_times[-1] - self._paint_times[0]
            if elapsed > 0:
                fps = (len(self._paint_times) - 1) / elapsed

        debug_text = (
            f"Clock: {self._clock_ms / 1000:.1f}s  Period: {self._current_period}\n"
            f"Cache: {self._loaded} loaded / {self._pending} pending / {self._failed} failed\n"
            f"Active: {self._active}  Resets: {self._generation}\n"
            f"--------------------------\n"
            f"FPS: {fps:.1f}\n"
            f"CPU: {self._cpu_usage:.1f}%\n"
            f"Mem: {self._mem_usage_mb:.1f} MB"
        )
        if self._last_log:
            debug_text += f"\nLast: {self._last_log[:80]}"

        painter.setFont(self._font)
        fm = painter.fontMetrics()

        margin = 15
        padding = 10
        text_bounding_rect = fm.boundingRect(QRect(0, 0, 0, 0), Qt.AlignmentFlag.AlignLeft, debug_text)
        bg_width = text_bounding_rect.width() + 2 * padding
        bg_height = text_bounding_rect.height() + 2 * padding

        parent_rect = self.parent.rect()
        if self._alignment & Qt.AlignmentFlag.AlignRight:
            bg_x = parent_rect.right() - margin - bg_width
        else:
            bg_x = parent_rect.left() + margin
        if self._alignment & Qt.AlignmentFlag.AlignBottom:
            bg_y = parent_rect.bottom() - margin - bg_height
        else:
            bg_y = parent_rect.top() + margin

        bg_rect = QRect(int(bg_x), int(bg_y), bg_width, bg_height)

        painter.save()
        painter.setPen(Qt.PenStyle.NoPen)
        painter.setBrush(QColor(0, 0, 0, 150))
        painter.drawRoundedRect(bg_rect, 8, 8)
        painter.setPen(QColor("white"))
        text_draw_rect = bg_rect.adjusted(padding, padding, -padding, -padding)
        painter.drawText(text_draw_rect, Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignTop, debug_text)
        painter.restore()
