"""Fixed-size generation pool feeding a bounded results channel."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from dagable_consumer.cancellation import CancellationToken
from dagable_consumer.errors import GenerationError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class UnitResult:
    unit_index: int
    artifact: Any


@dataclass(slots=True, frozen=True)
class _UnitFailure:
    unit_index: int
    error: Exception


class GenerationPool:
    """Runs `total_units` generation calls on at most `max_workers` threads.

    Workers claim unit indices in ascending order from a shared counter and
    push results onto a bounded channel; `results()` is the single collector.
    With `claim_limit` set, workers only claim indices below the limit and wait
    for `extend_claims()` to raise it.
    The first failure stops further claims and is re-raised by the collector.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        generate_unit: Callable[[int], Any],
        total_units: int,
        max_workers: int,
        channel_size: int = 256,
        cancel_token: CancellationToken | None = None,
        claim_limit: int | None = None,
        poll_interval_seconds: float = 0.1,
        join_timeout_seconds: float = 5.0,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._generate_unit = generate_unit
        self.total_units = total_units
        self.max_workers = max_workers
        self._channel: queue.Queue[UnitResult | _UnitFailure] = queue.Queue(
            maxsize=max(1, channel_size),
        )
        self._cancel = cancel_token or CancellationToken.none()
        self._poll = poll_interval_seconds
        self._join_timeout = join_timeout_seconds
        self._claim_cond = threading.Condition()
        self._claim_limit = total_units if claim_limit is None else min(claim_limit, total_units)
        self._next_index = 0
        self._stop = threading.Event()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []

    def __enter__(self) -> GenerationPool:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def start(self) -> None:
        worker_count = min(self.max_workers, self.total_units)
        for number in range(worker_count):
            thread = threading.Thread(
                target=self._worker,
                name=f"dagable-gen-{number}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()
        logger.debug("Generation pool started: %s worker(s) for %s unit(s)", worker_count, self.total_units)

    def close(self) -> None:
        self._closed.set()
        self._stop.set()
        with self._claim_cond:
            self._claim_cond.notify_all()
        for thread in self._threads:
            thread.join(timeout=self._join_timeout)
            if thread.is_alive():
                logger.warning("Generation worker %s still busy after stop request", thread.name)
        self._threads.clear()

    def results(self) -> Iterator[UnitResult]:
        """Yield exactly `total_units` results in completion order."""

        received = 0
        while received < self.total_units:
            self._cancel.raise_if_cancelled()
            try:
                item = self._channel.get(timeout=self._poll)
            except queue.Empty:
                continue
            if isinstance(item, _UnitFailure):
                self._stop.set()
                raise GenerationError(item.unit_index, item.error) from item.error
            received += 1
            yield item

    def extend_claims(self, limit: int) -> None:
        """Let workers claim unit indices below `limit`."""

        with self._claim_cond:
            self._claim_limit = max(self._claim_limit, min(limit, self.total_units))
            self._claim_cond.notify_all()

    def _claim(self) -> int | None:
        with self._claim_cond:
            while True:
                if self._stop.is_set() or self._cancel.cancelled:
                    return None
                if self._next_index >= self.total_units:
                    return None
                if self._next_index < self._claim_limit:
                    index = self._next_index
                    self._next_index += 1
                    return index
                self._claim_cond.wait(timeout=self._poll)

    def _worker(self) -> None:
        while not self._cancel.cancelled:
            index = self._claim()
            if index is None:
                return
            try:
                item: UnitResult | _UnitFailure = UnitResult(
                    unit_index=index,
                    artifact=self._generate_unit(index),
                )
            except Exception as error:  # noqa: BLE001
                logger.warning("Unit %s failed: %s", index, error)
                self._stop.set()
                item = _UnitFailure(unit_index=index, error=error)
            if not self._offer(item):
                return
            if isinstance(item, _UnitFailure):
                return

    def _offer(self, item: UnitResult | _UnitFailure) -> bool:
        while True:
            if self._cancel.cancelled or self._closed.is_set():
                return False
            if self._stop.is_set() and isinstance(item, UnitResult):
                return False
            try:
                self._channel.put(item, timeout=self._poll)
            except queue.Full:
                continue
            return True
