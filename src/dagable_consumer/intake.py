"""Broker intake loop: one unacknowledged job per consumer.

The loop consumes with `prefetch_count=1` and manual acknowledgment. A message
is acked only after the orchestrator returns; any failure hands it back to
the broker for redelivery. Bodies that cannot be decoded are parked on an
operator-visible queue instead of being retried forever.
"""

from __future__ import annotations

import logging
import signal
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from kombu import Connection, Consumer, Producer, Queue
from kombu.message import Message

from dagable_consumer.cancellation import CancellationToken
from dagable_consumer.errors import MessageDecodeError
from dagable_consumer.models import JobRequest

logger = logging.getLogger(__name__)

DEFAULT_EXCHANGE = ""
BODY_PREVIEW_CHARS = 200


class JobProcessor(Protocol):
    def process_job(
        self,
        request: JobRequest,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> Any: ...


class MessageOutcome(str, Enum):
    ACKED = "acked"
    REQUEUED = "requeued"
    PARKED = "parked"


@dataclass(slots=True)
class IntakeRunSummary:
    """Aggregate intake counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    parked: int = 0
    idle_polls: int = 0

    def add(self, other: IntakeRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.parked += other.parked
        self.idle_polls += other.idle_polls


def job_queue(name: str) -> Queue:
    """Durable work queue bound to the default exchange, as producers publish to it."""

    return Queue(name, routing_key=name, durable=True)


def publish_job_request(connection: Connection, *, queue_name: str, request: JobRequest) -> None:
    """Publish a job request as a persistent JSON message."""

    queue = job_queue(queue_name)
    producer = Producer(connection.default_channel)
    producer.publish(
        request.to_wire(),
        exchange=DEFAULT_EXCHANGE,
        routing_key=queue_name,
        serializer="json",
        delivery_mode=2,
        declare=[queue],
    )
    logger.info("Published job request %s to %s", request.request_guid, queue_name)


class IntakeLoop:
    """Consumes job requests and delegates them to the orchestrator."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        connection: Connection,
        processor: JobProcessor,
        queue_name: str,
        parking_queue_name: str,
        prefetch_count: int = 1,
        poll_interval_seconds: float = 1.0,
        job_timeout_seconds: float = 0.0,
        worker_id: str = "",
    ) -> None:
        self.connection = connection
        self.processor = processor
        self.queue = job_queue(queue_name)
        self.parking_queue = job_queue(parking_queue_name)
        self.prefetch_count = prefetch_count
        self.poll_interval_seconds = poll_interval_seconds
        self.job_timeout_seconds = job_timeout_seconds
        self.worker_id = worker_id
        self._channel: Any = None
        self._consumer: Consumer | None = None
        self._producer: Producer | None = None
        self._last_outcome: MessageOutcome | None = None
        self._current_token: CancellationToken | None = None
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    def __enter__(self) -> IntakeLoop:
        self.open()
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def open(self) -> None:
        if self._consumer is not None:
            return
        self._channel = self.connection.channel()
        self.parking_queue(self._channel).declare()
        self._producer = Producer(self._channel)
        self._consumer = Consumer(
            self._channel,
            queues=[self.queue],
            on_message=self._on_message,
            no_ack=False,
        )
        self._consumer.qos(prefetch_count=self.prefetch_count, apply_global=False)
        self._consumer.consume()
        logger.info(
            "Consuming from %s (prefetch=%s, worker=%s)",
            self.queue.name,
            self.prefetch_count,
            self.worker_id or "-",
        )

    def close(self) -> None:
        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        self._producer = None

    def run_once(self, *, timeout: float | None = None) -> IntakeRunSummary:
        """Wait for at most one message and process it."""

        summary = IntakeRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        self.open()
        self._last_outcome = None
        try:
            self.connection.drain_events(
                timeout=self.poll_interval_seconds if timeout is None else timeout,
            )
        except socket.timeout:
            pass

        outcome = self._last_outcome
        if outcome is None:
            summary.idle_polls = 1
            return summary
        summary.processed = 1
        if outcome is MessageOutcome.ACKED:
            summary.succeeded = 1
        elif outcome is MessageOutcome.PARKED:
            summary.parked = 1
        else:
            summary.failed = 1
        return summary

    def run_loop(
        self,
        *,
        max_messages: int | None = None,
        max_idle_polls: int | None = None,
    ) -> IntakeRunSummary:
        """Consume until stopped, `max_messages` handled, or `max_idle_polls` empty polls in a row."""

        aggregate = IntakeRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop_requested:
                if max_messages is not None and aggregate.processed >= max_messages:
                    break
                summary = self.run_once()
                aggregate.add(summary)
                if summary.processed:
                    consecutive_idle = 0
                    continue
                consecutive_idle += 1
                if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                    break
        if self._stop_requested:
            logger.info("Intake loop stopped by %s", self._stop_signal_name or "request")
        return aggregate

    def request_stop(self, *, reason: str = "request") -> None:
        """Stop after the in-flight job; a second request cancels it."""

        if self._stop_requested and self._current_token is not None:
            self._current_token.cancel(f"{reason} during job")
        self._stop_requested = True
        self._stop_signal_name = reason

    def handle_message(self, message: Message) -> MessageOutcome:
        """Decode, process and settle one delivery."""

        try:
            request = JobRequest.from_message(message.body)
        except MessageDecodeError as error:
            self._park(message, error)
            return MessageOutcome.PARKED

        token = CancellationToken(timeout_seconds=self.job_timeout_seconds)
        self._current_token = token
        try:
            logger.info(
                "Received job %s (graphs=%s, redelivered=%s)",
                request.request_guid,
                request.graph_count,
                bool(message.delivery_info.get("redelivered")),
            )
            self.processor.process_job(request, cancel_token=token)
        except Exception:
            logger.exception("Job %s failed; returning message for redelivery", request.request_guid)
            message.requeue()
            return MessageOutcome.REQUEUED
        finally:
            self._current_token = None

        message.ack()
        logger.info("Job %s acknowledged", request.request_guid)
        return MessageOutcome.ACKED

    def _on_message(self, message: Message) -> None:
        self._last_outcome = self.handle_message(message)

    def _park(self, message: Message, error: MessageDecodeError) -> None:
        body = message.body
        raw = body.encode("utf-8") if isinstance(body, str) else bytes(body or b"")
        logger.error(
            "Malformed message parked on %s: %s; body=%r",
            self.parking_queue.name,
            error,
            raw[:BODY_PREVIEW_CHARS],
        )
        producer = self._producer or Producer(self.connection.default_channel)
        producer.publish(
            raw,
            exchange=DEFAULT_EXCHANGE,
            routing_key=self.parking_queue.name,
            content_type=message.content_type or "application/octet-stream",
            content_encoding="binary",
            headers={
                "x-decode-error": str(error),
                "x-original-queue": self.queue.name,
                "x-worker-id": self.worker_id,
            },
            delivery_mode=2,
            declare=[self.parking_queue],
        )
        message.ack()

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=name)

        installed = True
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
