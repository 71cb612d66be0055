# danmaku_positioner.py
import math

from danmaku_models import RawItem, PositionedItem


def surface_width(viewport_width: float, period_length: int, duration: int) -> float:
    """
    计算一个周期画布的宽度。
    弹幕速度为 viewport_width / duration（像素/毫秒），
    因此一个周期对应的画布宽度是速度乘以周期长度。
    """
    if duration <= 0:
        return 0.0
    return viewport_width / duration * period_length


def lane_count(viewport_height: float, line_height: float) -> int:
    """视口能容纳的轨道数。行高非法或高度不足时返回0。"""
    if line_height <= 0 or viewport_height <= 0:
        return 0
    return math.floor(viewport_height / line_height)


def position(items: list[RawItem], period_start: int, period_end: int,
             viewport_width: float, viewport_height: float,
             line_height: float, font_size: float) -> list[PositionedItem]:
    """
    为一个周期内的弹幕计算水平偏移和轨道。

    这是一个纯函数，没有副作用。几何信息不合法时返回退化但确定的结果，
    不会抛出异常。

    Args:
        items (list[RawItem]): 周期内的原始弹幕，顺序任意。
        period_start (int): 周期开始时间（毫秒）。
        period_end (int): 周期结束时间（毫秒）。
        viewport_width (float): 周期画布的宽度（像素）。
        viewport_height (float): 弹幕区域的高度（像素）。
        line_height (float): 弹幕行高（像素）。
        font_size (float): 弹幕字体大小。

    Returns:
        list[PositionedItem]: 按时间戳升序排列的布局结果，长度与输入相同。
    """
    lanes = lane_count(viewport_height, line_height)
    span = period_end - period_start
    # 每一毫秒对应的宽度
    ms_width = viewport_width / span if span > 0 else 0.0

    # sorted 是稳定排序，时间戳相同的弹幕保持原有顺序，
    # 所以轨道分配只取决于排序后的列表和轨道数
    ordered = sorted(items, key=lambda item: item.timestamp)

    positioned = []
    for i, item in enumerate(ordered):
        lane = i % lanes if lanes > 0 else 0
        offset = (item.timestamp - period_start) * ms_width
        positioned.append(PositionedItem(item, lane, offset, line_height, font_size))
    return positioned
