"""Tests for period layout: lanes and horizontal offsets."""

import pytest

from conftest import make_items
from danmaku_models import RawItem
from danmaku_positioner import lane_count, position, surface_width


def test_output_length_and_lane_range():
    items = make_items(900, 100, 500, 300, 700, 200, 800)
    result = position(items, 0, 1000, 1000, 100, 30, 20)

    assert len(result) == len(items)
    assert all(0 <= p.lane < 3 for p in result)


def test_sorted_by_timestamp_and_round_robin_lanes():
    items = make_items(400, 100, 300, 200, 500)
    result = position(items, 0, 1000, 1000, 90, 30, 20)

    assert [p.item.timestamp for p in result] == [100, 200, 300, 400, 500]
    assert [p.lane for p in result] == [0, 1, 2, 0, 1]
    # i 和 i + 轨道数 的弹幕在同一轨道
    for i in range(len(result) - 3):
        assert result[i].lane == result[i + 3].lane


def test_ties_keep_original_order():
    items = [RawItem(7, 100, "a"), RawItem(3, 100, "b"), RawItem(5, 50, "c")]
    result = position(items, 0, 1000, 1000, 300, 30, 20)

    assert [p.item.id for p in result] == [5, 7, 3]


def test_horizontal_offset_is_time_proportional():
    items = make_items(12500, 10000, 20000)
    result = position(items, 10000, 20000, 2000, 360, 36, 24)

    assert [p.horizontal_offset for p in result] == [0.0, 500.0, 2000.0]


def test_top_and_font_are_carried():
    result = position(make_items(0, 10), 0, 1000, 100, 100, 36, 24)

    assert result[1].top == 36
    assert result[1].line_height == 36
    assert result[1].font_size == 24


@pytest.mark.parametrize("height,line_height", [(20, 30), (0, 30), (-50, 30), (100, 0)])
def test_degenerate_geometry_maps_to_lane_zero(height, line_height):
    result = position(make_items(1, 2, 3), 0, 1000, 1000, height, line_height, 20)

    assert [p.lane for p in result] == [0, 0, 0]


def test_zero_span_does_not_raise():
    result = position(make_items(5), 5, 5, 1000, 100, 30, 20)

    assert result[0].horizontal_offset == 0.0


def test_empty_input():
    assert position([], 0, 1000, 1000, 100, 30, 20) == []


def test_input_list_is_not_mutated():
    items = make_items(300, 100, 200)
    position(items, 0, 1000, 1000, 100, 30, 20)

    assert [i.timestamp for i in items] == [300, 100, 200]


def test_surface_width_and_lane_count():
    assert surface_width(1000, 10000, 5000) == 2000
    assert surface_width(1000, 10000, 0) == 0.0
    assert lane_count(100, 30) == 3
    assert lane_count(100, -1) == 0
