"""Batch coalescer: groups completed units into fixed-size windows.

Unit `i` (0-based) belongs to window `i // batch_size + 1`. Windows close
strictly in order: window k is cut once all of its units have arrived, and
units that complete early for a later window wait aside until that window
opens. The cumulative completed count when window k closes is
`min(k * batch_size, total)`, and k is the batch number persisted for it.

State transitions: ACCUMULATING -> CUTTING -> PERSISTING -> ACCUMULATING,
ending in CLOSED after the last window.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class CoalescerState(str, Enum):
    ACCUMULATING = "accumulating"
    CUTTING = "cutting"
    PERSISTING = "persisting"
    CLOSED = "closed"


@dataclass(slots=True, frozen=True)
class Window:
    """Snapshot of one closed window, ordered by unit index."""

    batch_number: int
    artifacts: tuple[Any, ...]
    completed_count: int

    @property
    def size(self) -> int:
        return len(self.artifacts)


WindowSink = Callable[[Window], None]


class BatchCoalescer:
    """Thread-safe window buffer for one job invocation."""

    def __init__(self, *, batch_size: int, total_units: int, sink: WindowSink) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if total_units < 0:
            raise ValueError(f"total_units must be >= 0, got {total_units}")
        self.batch_size = batch_size
        self.total_units = total_units
        self._sink = sink
        self._lock = threading.Lock()
        self._buffer: dict[int, Any] = {}
        self._early: dict[int, Any] = {}
        self._window = 1
        self._completed = 0
        self._state = CoalescerState.ACCUMULATING if total_units else CoalescerState.CLOSED

    @property
    def window_count(self) -> int:
        return math.ceil(self.total_units / self.batch_size)

    @property
    def state(self) -> CoalescerState:
        with self._lock:
            return self._state

    @property
    def completed_count(self) -> int:
        """Units persisted through closed windows."""

        with self._lock:
            return self._completed

    @property
    def current_batch_number(self) -> int:
        with self._lock:
            return self._window

    def add(self, unit_index: int, artifact: Any) -> list[Window]:
        """Accept one completed unit; persist every window it completes.

        Returns the windows handed to the sink by this call, in order.
        """

        with self._lock:
            if self._state is CoalescerState.CLOSED:
                raise RuntimeError("Coalescer is closed; all windows were already persisted.")
            if not 0 <= unit_index < self.total_units:
                raise ValueError(f"unit_index {unit_index} is outside [0, {self.total_units})")
            if unit_index in self._buffer or unit_index in self._early:
                raise ValueError(f"unit {unit_index} was already added")
            if _window_of(unit_index, self.batch_size) < self._window:
                raise ValueError(f"unit {unit_index} belongs to an already persisted window")
            if _window_of(unit_index, self.batch_size) == self._window:
                self._buffer[unit_index] = artifact
            else:
                self._early[unit_index] = artifact

        persisted: list[Window] = []
        while True:
            window = self._cut_if_full()
            if window is None:
                return persisted
            self._persist(window)
            persisted.append(window)

    def _cut_if_full(self) -> Window | None:
        with self._lock:
            if self._state is not CoalescerState.ACCUMULATING:
                return None
            if len(self._buffer) < self._window_size(self._window):
                return None
            self._state = CoalescerState.CUTTING
            snapshot = tuple(self._buffer[index] for index in sorted(self._buffer))
            self._buffer = {}
            completed = min(self._window * self.batch_size, self.total_units)
            window = Window(
                batch_number=self._window,
                artifacts=snapshot,
                completed_count=completed,
            )
            self._state = CoalescerState.PERSISTING
            return window

    def _persist(self, window: Window) -> None:
        logger.debug(
            "Persisting window %s (%s units, completed=%s)",
            window.batch_number,
            window.size,
            window.completed_count,
        )
        self._sink(window)

        with self._lock:
            self._completed = window.completed_count
            if self._window >= self.window_count:
                self._state = CoalescerState.CLOSED
                return
            self._window += 1
            lower = (self._window - 1) * self.batch_size
            upper = lower + self.batch_size
            for index in [index for index in self._early if lower <= index < upper]:
                self._buffer[index] = self._early.pop(index)
            self._state = CoalescerState.ACCUMULATING

    def _window_size(self, window: int) -> int:
        start = (window - 1) * self.batch_size
        return min(self.batch_size, self.total_units - start)

    def finish(self) -> None:
        """Assert the stream ended with every window persisted."""

        with self._lock:
            if self._state is not CoalescerState.CLOSED:
                missing = self.total_units - self._completed - len(self._buffer) - len(self._early)
                raise RuntimeError(
                    f"Stream ended with window {self._window} open; {missing} unit(s) never arrived.",
                )


def _window_of(unit_index: int, batch_size: int) -> int:
    return unit_index // batch_size + 1
