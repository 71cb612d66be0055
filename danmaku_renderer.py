# danmaku_renderer.py
import sys
import logging
from PyQt6.QtWidgets import QMainWindow, QApplication
from PyQt6.QtCore import Qt, QTimer, QPointF, QSize
from PyQt6.QtGui import (
    QFont, QPainter, QColor, QFontMetrics, QPainterPath,
    QPainterPathStroker, QPixmap
)

from config_loader import get_config
from danmaku_controller import DanmakuController
from danmaku_models import PositionedItem
from debug_overlay import DebugOverlay

# 平台相关的导入，使其成为可选
IS_WINDOWS = sys.platform == 'win32'
try:
    if IS_WINDOWS:
        import win32gui
        import win32con
    PYWIN32_AVAILABLE = True
except ImportError:
    PYWIN32_AVAILABLE = False


class DanmakuWindow(QMainWindow):
    """
    弹幕渲染窗口。这是一个透明、无边框、可鼠标穿透的顶层窗口。
    它为每个已展示的周期绘制一块画布，画布的位置来自控制器的运动轨迹，
    画布内每条弹幕的位置来自周期布局。
    """
    def __init__(self, controller: DanmakuController, parent=None):
        super().__init__(parent)
        self.config = get_config()
        self.controller = controller

        window_flags = Qt.WindowType.FramelessWindowHint | Qt.WindowType.Tool
        if self.config.ontop_strategy > 0:
            window_flags |= Qt.WindowType.WindowStaysOnTopHint
        self.setWindowFlags(window_flags)
        self.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground)
        if not self.config.debug:
            self.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents)

        self._font = QFont(self.config.font_name, self.config.font_size, QFont.Weight.Bold)
        self._font_metrics = QFontMetrics(self._font)
        # 让文字在行内垂直居中
        self.y_offset = (self.config.line_height - self._font_metrics.height()) / 2 + self._font_metrics.ascent()

        # 弹幕ID -> 渲染好的带描边图片
        self._pixmap_cache: dict[int, QPixmap] = {}

        self.debug_overlay = DebugOverlay(self, self.config) if self.config.debug else None

        controller.period_removed.connect(self._on_period_removed)
        controller.timeline_reset.connect(self._on_timeline_reset)

        self._repaint_timer = QTimer(self)
        self._repaint_timer.timeout.connect(self.update_states)
        self._repaint_timer.start(1000 // 60)

        # 全屏播放器可能会抢走置顶，策略2下定期用Win32重新置顶
        self._on_top_timer = QTimer(self)
        self._on_top_timer.timeout.connect(self._force_on_top_win32_if_needed)
        if IS_WINDOWS and PYWIN32_AVAILABLE and self.config.ontop_strategy > 1:
            self._on_top_timer.start(2000)

        self.setGeometry(QApplication.primaryScreen().geometry())

    def resizeEvent(self, event):
        # 窗口尺寸就是调度器的视口几何
        super().resizeEvent(event)
        size = event.size()
        self.controller.set_geometry(size.width(), size.height())

    def _on_period_removed(self, index: int):
        # 图片缓存按弹幕ID索引，周期卸载后只保留仍在屏幕上的弹幕
        alive = {p.item.id for i in self.controller.active_periods()
                 for p in self.controller.positioned_items(i)}
        self._pixmap_cache = {k: v for k, v in self._pixmap_cache.items() if k in alive}

    def _on_timeline_reset(self, previous_ms: int, current_ms: int):
        self._pixmap_cache.clear()
        self.update()

    def _force_on_top_win32_if_needed(self):
        if not IS_WINDOWS or not PYWIN32_AVAILABLE:
            return
        try:
            hwnd = int(self.winId())
            win32gui.SetWindowPos(hwnd, win32con.HWND_TOPMOST, 0, 0, 0, 0,
                                  win32con.SWP_NOMOVE | win32con.SWP_NOSIZE | win32con.SWP_NOACTIVATE)
        except Exception as e:
            logging.error(f"Win32 置顶失败: {e}")
            self._on_top_timer.stop()

    def update_states(self):
        if self.debug_overlay:
            self.debug_overlay.update_stats(self.controller)
        self.update()

    def _render_item_to_pixmap(self, positioned: PositionedItem) -> QPixmap:
        stroke_offset = self.config.stroke_width
        text = str(positioned.item.content)
        bounding_rect = self._font_metrics.boundingRect(text)
        pixmap_size = QSize(bounding_rect.width() + stroke_offset * 2, bounding_rect.height() + stroke_offset * 2)
        pixmap = QPixmap(pixmap_size)
        pixmap.fill(Qt.GlobalColor.transparent)
        painter = QPainter(pixmap)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        path = QPainterPath()
        path.addText(stroke_offset, self._font_metrics.ascent() + stroke_offset, self._font, text)
        if self.config.stroke_width > 0:
            stroker = QPainterPathStroker()
            stroker.setWidth(self.config.stroke_width * 2)
            stroker.setCapStyle(Qt.PenCapStyle.RoundCap)
            stroker.setJoinStyle(Qt.PenJoinStyle.RoundJoin)
            painter.setPen(Qt.PenStyle.NoPen)
            painter.fillPath(stroker.createStroke(path), QColor("black"))
        painter.fillPath(path, positioned.item.color or QColor("white"))
        painter.end()
        return pixmap

    def paintEvent(self, event):
        painter = QPainter(self)
        painter.setOpacity(self.config.opacity)
        width = self.width()
        for index in self.controller.active_periods():
            trajectory = self.controller.trajectory(index)
            if trajectory is None:
                continue
            surface_x = self.controller.motion.offset(trajectory)
            for positioned in self.controller.positioned_items(index):
                x = surface_x + positioned.horizontal_offset
                if x > width:
                    # 画布内的弹幕按时间排序，后面的都还没进入屏幕
                    break
                pixmap = self._pixmap_cache.get(positioned.item.id)
                if pixmap is None:
                    pixmap = self._render_item_to_pixmap(positioned)
                    self._pixmap_cache[positioned.item.id] = pixmap
                if x + pixmap.width() < 0:
                    continue
                draw_pos = QPointF(x - self.config.stroke_width,
                                   positioned.top + self.y_offset - self.config.stroke_width - self._font_metrics.ascent())
                painter.drawPixmap(draw_pos, pixmap)
        painter.setOpacity(1.0)
        if self.debug_overlay:
            self.debug_overlay.paint(painter)

    def closeEvent(self, event):
        self._repaint_timer.stop()
        logging.debug("弹幕窗口已关闭。")
        super().closeEvent(event)
