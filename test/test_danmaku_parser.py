"""Tests for the Bilibili XML source."""

import asyncio

import pytest

from danmaku_models import RawItem
from danmaku_parser import XmlDanmakuSource, load_from_xml

SAMPLE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<i>
    <chatid>958151789</chatid>
    <d p="12.5,1,25,16777215,1690000000,0,abc,9001">第二条</d>
    <d p="3.25,1,25,16711680,1690000000,0,abc,9000">第一条</d>
    <d p="5.0,5,25,16777215,1690000000,0,abc,9002">顶部弹幕</d>
    <d p="bad,1,25,16777215">格式错误</d>
    <d p="20.0,2,25,65280">没有ID</d>
    <d p="21.0,1,25,65280,1690000000,0,abc,9004"></d>
</i>
"""


@pytest.fixture
def xml_file(tmp_path):
    path = tmp_path / "danmaku.xml"
    path.write_text(SAMPLE_XML, encoding="utf-8")
    return str(path)


def test_load_from_xml(qapp, xml_file):
    items = load_from_xml(xml_file)

    assert [i.content for i in items] == ["第一条", "第二条", "没有ID"]
    assert [i.timestamp for i in items] == [3250, 12500, 20000]
    assert [i.id for i in items[:2]] == [9000, 9001]
    # 没有弹幕ID时使用行号
    assert items[2].id == 4
    assert items[0].color.red() == 255 and items[0].color.green() == 0


def test_missing_or_broken_file(tmp_path):
    assert load_from_xml(str(tmp_path / "missing.xml")) == []
    broken = tmp_path / "broken.xml"
    broken.write_text("<i><d p='1,1,25,0'>", encoding="utf-8")
    assert load_from_xml(str(broken)) == []


def test_source_returns_half_open_range():
    items = [RawItem(i, ts, str(ts)) for i, ts in enumerate([0, 9999, 10000, 15000, 20000])]
    source = XmlDanmakuSource(items)

    first = asyncio.run(source.load(0, 10000))
    second = asyncio.run(source.load(10000, 20000))

    assert [i.timestamp for i in first] == [0, 9999]
    assert [i.timestamp for i in second] == [10000, 15000]
    assert asyncio.run(source.load(30000, 40000)) == []


def test_source_from_file(qapp, xml_file):
    source = XmlDanmakuSource.from_file(xml_file, latency_ms=1)

    assert len(source) == 3
    assert [i.content for i in asyncio.run(source.load(0, 10000))] == ["第一条"]
