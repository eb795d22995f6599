from __future__ import annotations

import allure
import pytest

from dagable_consumer.coalescer import BatchCoalescer, CoalescerState, Window

pytestmark = [
    allure.epic("Batch Persistence"),
    allure.feature("Batch Coalescer"),
]


class RecordingSink:
    def __init__(self, coalescer_ref: list[BatchCoalescer] | None = None) -> None:
        self.windows: list[Window] = []
        self.states: list[CoalescerState] = []
        self._coalescer_ref = coalescer_ref

    def __call__(self, window: Window) -> None:
        if self._coalescer_ref:
            self.states.append(self._coalescer_ref[0]._state)
        self.windows.append(window)


def test_in_order_stream_cuts_full_windows_and_a_partial_tail() -> None:
    sink = RecordingSink()
    coalescer = BatchCoalescer(batch_size=3, total_units=10, sink=sink)

    for index in range(10):
        coalescer.add(index, f"g{index}")
    coalescer.finish()

    assert [window.batch_number for window in sink.windows] == [1, 2, 3, 4]
    assert [window.size for window in sink.windows] == [3, 3, 3, 1]
    assert [window.completed_count for window in sink.windows] == [3, 6, 9, 10]
    assert sink.windows[3].artifacts == ("g9",)
    assert coalescer.state is CoalescerState.CLOSED
    assert coalescer.completed_count == 10


def test_window_count_is_ceil_of_total_over_batch_size() -> None:
    assert BatchCoalescer(batch_size=3, total_units=10, sink=RecordingSink()).window_count == 4
    assert BatchCoalescer(batch_size=5, total_units=10, sink=RecordingSink()).window_count == 2
    assert BatchCoalescer(batch_size=100, total_units=1, sink=RecordingSink()).window_count == 1


def test_snapshot_is_sorted_by_unit_index_regardless_of_arrival() -> None:
    sink = RecordingSink()
    coalescer = BatchCoalescer(batch_size=3, total_units=3, sink=sink)

    coalescer.add(2, "c")
    coalescer.add(0, "a")
    persisted = coalescer.add(1, "b")

    assert persisted == sink.windows
    assert sink.windows[0].artifacts == ("a", "b", "c")


def test_early_units_wait_for_their_window_to_open() -> None:
    sink = RecordingSink()
    coalescer = BatchCoalescer(batch_size=2, total_units=5, sink=sink)

    assert coalescer.add(4, "e") == []
    assert coalescer.add(2, "c") == []
    assert coalescer.add(3, "d") == []
    assert coalescer.add(0, "a") == []
    assert sink.windows == []

    persisted = coalescer.add(1, "b")

    assert [window.batch_number for window in persisted] == [1, 2, 3]
    assert [window.artifacts for window in persisted] == [("a", "b"), ("c", "d"), ("e",)]
    assert [window.completed_count for window in persisted] == [2, 4, 5]
    assert coalescer.state is CoalescerState.CLOSED


def test_sink_sees_persisting_state() -> None:
    ref: list[BatchCoalescer] = []
    sink = RecordingSink(ref)
    coalescer = BatchCoalescer(batch_size=1, total_units=2, sink=sink)
    ref.append(coalescer)

    coalescer.add(0, "a")
    assert coalescer.state is CoalescerState.ACCUMULATING
    assert coalescer.current_batch_number == 2
    coalescer.add(1, "b")

    assert sink.states == [CoalescerState.PERSISTING, CoalescerState.PERSISTING]
    assert coalescer.state is CoalescerState.CLOSED


def test_zero_units_starts_closed() -> None:
    coalescer = BatchCoalescer(batch_size=3, total_units=0, sink=RecordingSink())

    assert coalescer.state is CoalescerState.CLOSED
    assert coalescer.window_count == 0
    coalescer.finish()


def test_sink_failure_stops_the_window_from_advancing() -> None:
    def failing_sink(window: Window) -> None:
        raise OSError("disk full")

    coalescer = BatchCoalescer(batch_size=2, total_units=4, sink=failing_sink)
    coalescer.add(0, "a")

    with pytest.raises(OSError, match="disk full"):
        coalescer.add(1, "b")

    assert coalescer.completed_count == 0
    assert coalescer.current_batch_number == 1
    with pytest.raises(RuntimeError, match="window 1 open"):
        coalescer.finish()


def test_finish_reports_missing_units() -> None:
    coalescer = BatchCoalescer(batch_size=3, total_units=5, sink=RecordingSink())
    for index in range(4):
        coalescer.add(index, index)

    with pytest.raises(RuntimeError, match="1 unit"):
        coalescer.finish()


@pytest.mark.parametrize(
    ("batch_size", "total_units", "message"),
    [
        (0, 3, "batch_size"),
        (3, -1, "total_units"),
    ],
)
def test_invalid_construction(batch_size: int, total_units: int, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        BatchCoalescer(batch_size=batch_size, total_units=total_units, sink=RecordingSink())


def test_rejects_out_of_range_and_duplicate_units() -> None:
    coalescer = BatchCoalescer(batch_size=2, total_units=4, sink=RecordingSink())
    coalescer.add(3, "d")

    with pytest.raises(ValueError, match="outside"):
        coalescer.add(4, "x")
    with pytest.raises(ValueError, match="outside"):
        coalescer.add(-1, "x")
    with pytest.raises(ValueError, match="already added"):
        coalescer.add(3, "again")


def test_rejects_units_for_persisted_windows_and_adds_after_close() -> None:
    coalescer = BatchCoalescer(batch_size=1, total_units=2, sink=RecordingSink())
    coalescer.add(0, "a")

    with pytest.raises(ValueError, match="already persisted"):
        coalescer.add(0, "a")

    coalescer.add(1, "b")
    with pytest.raises(RuntimeError, match="closed"):
        coalescer.add(1, "b")
