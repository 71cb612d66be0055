# danmaku_parser.py
import asyncio
import bisect
import logging
import xml.etree.ElementTree as ET
from PyQt6.QtGui import QColor

from danmaku_models import RawItem

# Bilibili 的滚动弹幕模式，调度器只负责滚动弹幕
ROLLING_MODES = (1, 2, 3)


def load_from_xml(filepath: str) -> list[RawItem]:
    """
    从Bilibili风格的XML文件中加载、解析并排序弹幕。

    Args:
        filepath (str): XML弹幕文件的路径。

    Returns:
        list[RawItem]: 按时间戳（毫秒）排序的弹幕列表。
                       如果文件未找到或解析失败，返回空列表。
    """
    items = []
    try:
        root = ET.parse(filepath).getroot()
        for row, d_element in enumerate(root.findall('d')):
            # 'p' 属性: 时间(秒),模式,字号,颜色,发送时间,弹幕池,用户哈希,弹幕ID
            p_attr = d_element.get('p', '').split(',')
            if len(p_attr) < 4:
                continue
            try:
                timestamp = round(float(p_attr[0]) * 1000)
                mode = int(p_attr[1])
                color_decimal = int(p_attr[3])
                item_id = int(p_attr[7]) if len(p_attr) > 7 and p_attr[7].isdigit() else row
            except (ValueError, IndexError) as e:
                logging.warning(f"忽略格式错误的弹幕行: p='{p_attr}', 错误: {e}")
                continue

            text = d_element.text
            if text and mode in ROLLING_MODES:
                color = QColor((color_decimal >> 16) & 255,
                               (color_decimal >> 8) & 255,
                               color_decimal & 255)
                items.append(RawItem(item_id, timestamp, text, color))

        # 按时间戳排序，后续按时间窗口取弹幕时使用二分查找
        items.sort(key=lambda x: x.timestamp)
        logging.info(f"成功加载 {len(items)} 条有效弹幕。")
        return items

    except FileNotFoundError:
        logging.error(f"错误: 弹幕文件 '{filepath}' 未找到。")
        return []
    except ET.ParseError as e:
        logging.error(f"解析XML时发生错误: {e}")
        return []


class XmlDanmakuSource:
    """
    基于本地XML文件的弹幕加载器。
    load() 满足调度器对加载器的要求: 异步地返回 [start, end) 内的弹幕。
    """
    def __init__(self, items: list[RawItem], latency_ms: int = 0):
        self._items = sorted(items, key=lambda x: x.timestamp)
        self._timestamps = [item.timestamp for item in self._items]
        self.latency_ms = latency_ms

    @classmethod
    def from_file(cls, filepath: str, latency_ms: int = 0) -> 'XmlDanmakuSource':
        return cls(load_from_xml(filepath), latency_ms)

    def __len__(self):
        return len(self._items)

    async def load(self, start_ms: int, end_ms: int) -> list[RawItem]:
        if self.latency_ms > 0:
            # 模拟网络延迟，方便观察预加载的效果
            await asyncio.sleep(self.latency_ms / 1000)
        lo = bisect.bisect_left(self._timestamps, start_ms)
        hi = bisect.bisect_left(self._timestamps, end_ms)
        return self._items[lo:hi]
