"""Tests for the chart history buffers and path building."""

import threading

import pytest

from psu_lib.chart import PathVertex, build_path, path_to_svg
from psu_lib.ring_buffer import ChannelHistory, RingBuffer


def test_ring_buffer_starts_full_of_zeros() -> None:
    buf = RingBuffer(maxlen=5)
    assert len(buf) == 5
    assert buf.snapshot() == [0.0] * 5


def test_ring_buffer_evicts_oldest() -> None:
    buf = RingBuffer(maxlen=3)
    for value in (1.0, 2.0, 3.0, 4.0):
        buf.append(value)

    assert buf.snapshot() == [2.0, 3.0, 4.0]
    assert len(buf) == buf.maxlen


def test_ring_buffer_clear_refills() -> None:
    buf = RingBuffer(maxlen=3, fill=-1.0)
    buf.append(7.0)
    buf.clear()
    assert buf.snapshot() == [-1.0, -1.0, -1.0]


def test_ring_buffer_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        RingBuffer(maxlen=0)


def test_channel_history_pushes_both_channels() -> None:
    history = ChannelHistory(capacity=4)
    history.push(5.0, 0.5)
    history.push(6.0, 0.6)

    voltages, currents = history.snapshot()
    assert voltages == [0.0, 0.0, 5.0, 6.0]
    assert currents == [0.0, 0.0, 0.5, 0.6]
    assert len(history) == history.capacity == 4


def test_channel_history_length_constant_under_concurrency() -> None:
    """Channels stay the same length while several writers push."""
    history = ChannelHistory(capacity=50)

    def writer(offset: float) -> None:
        for i in range(200):
            history.push(offset + i, offset - i)

    threads = [threading.Thread(target=writer, args=(n * 1000.0,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    voltages, currents = history.snapshot()
    assert len(voltages) == len(currents) == 50
    # Each sample pair was pushed together
    for v, c in zip(voltages, currents):
        base = round(v, -3)
        assert v - base == pytest.approx(base - c)


def test_build_path_empty() -> None:
    assert build_path([]) == []


def test_build_path_scales_by_peak() -> None:
    vertices = build_path([0.0, 2.0, 4.0], width=100, height=100)

    assert vertices == [
        PathVertex("M", 0.0, 100.0),
        PathVertex("L", 50.0, 50.0),
        PathVertex("L", 100.0, 0.0),
    ]


def test_build_path_small_values_use_unit_scale() -> None:
    """A history peaking below 1.0 is not stretched to full height."""
    vertices = build_path([0.0, 0.5], width=10, height=10)
    assert [v.y for v in vertices] == [10.0, 5.0]


def test_build_path_all_zero_history() -> None:
    vertices = build_path([0.0] * 100)

    assert len(vertices) == 100
    assert vertices[0].op == "M"
    assert all(v.op == "L" for v in vertices[1:])
    assert all(v.y == 100.0 for v in vertices)
    assert vertices[-1].x == 100.0


def test_build_path_single_sample() -> None:
    assert build_path([3.0]) == [PathVertex("M", 0.0, 0.0)]


def test_path_to_svg() -> None:
    svg = path_to_svg(build_path([0.0, 2.0, 4.0]))
    assert svg == "M 0 100 L 50 50 L 100 0"
