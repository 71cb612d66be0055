# danmaku_models.py
import math
from enum import Enum

# 导入QColor仅用于类型注解，数据模型本身不依赖Qt
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from PyQt6.QtGui import QColor


class RawItem:
    """
    从加载器获取的原始弹幕数据。
    这是一个纯数据类（DTO），获取之后其属性不应再被修改。
    """
    __slots__ = ('id', 'timestamp', 'content', 'color')

    def __init__(self, id: int, timestamp: int, content, color: 'QColor | None' = None):
        self.id = id                # 在所有弹幕中唯一的标识
        self.timestamp = timestamp  # 弹幕出现的时间（毫秒）
        self.content = content      # 弹幕内容，对调度器来说是不透明的
        self.color = color          # 可选的颜色，由知道颜色的数据源提供

    def __repr__(self):
        return f"<RawItem(id={self.id}, timestamp={self.timestamp}, content={self.content!r})>"


class PositionedItem:
    """
    经过布局计算后的弹幕。
    它由所属周期的弹幕列表和视口几何信息推导而来，几何变化后需要重新计算。
    """
    __slots__ = ('item', 'lane', 'horizontal_offset', 'top', 'line_height', 'font_size')

    def __init__(self, item: RawItem, lane: int, horizontal_offset: float,
                 line_height: float, font_size: float):
        self.item = item
        self.lane = lane                            # 分配到的弹幕轨道（行）
        self.horizontal_offset = horizontal_offset  # 相对于周期画布左边缘的偏移（像素）
        self.top = lane * line_height               # 轨道对应的上边距（像素）
        self.line_height = line_height
        self.font_size = font_size

    def __repr__(self):
        return (f"<PositionedItem(id={self.item.id}, lane={self.lane}, "
                f"offset={self.horizontal_offset:.1f})>")


class Period:
    """时间线上一个固定长度的周期窗口。周期之间没有间隙，也不重叠。"""

    def __init__(self, index: int, period_length: int):
        self.index = index
        self.period_length = period_length

    @property
    def start_time(self) -> int:
        return self.index * self.period_length

    @property
    def end_time(self) -> int:
        return (self.index + 1) * self.period_length

    @staticmethod
    def index_at(time_ms: float, period_length: int) -> int:
        """任意时刻都恰好属于一个周期: floor(time / period_length)。"""
        return math.floor(time_ms / period_length)

    def __repr__(self):
        return f"<Period(index={self.index}, {self.start_time}ms-{self.end_time}ms)>"


class CacheStatus(Enum):
    PENDING = "pending"
    LOADED = "loaded"
    FAILED = "failed"


class CacheEntry:
    """
    周期缓存中的一条记录。
    状态只会从 PENDING 变为 LOADED 或 FAILED，不会回退。
    """
    __slots__ = ('index', 'status', 'items', 'token', 'error')

    def __init__(self, index: int, status: CacheStatus, token: int,
                 items: tuple[RawItem, ...] | None = None, error: str | None = None):
        self.index = index
        self.status = status
        self.token = token    # 创建这条记录的那次加载请求的编号
        self.items = items
        self.error = error

    def settled(self, status: CacheStatus, items=None, error=None) -> 'CacheEntry':
        """返回一条已结算的新记录，原记录保持不变。"""
        return CacheEntry(self.index, status, self.token, items, error)

    def __repr__(self):
        count = len(self.items) if self.items is not None else 0
        return f"<CacheEntry(index={self.index}, status={self.status.name}, items={count})>"
