"""Job orchestrator: one job's lifecycle from upsert to final window."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol

from dagable_consumer.cancellation import CancellationToken
from dagable_consumer.codec import compress_batch
from dagable_consumer.coalescer import BatchCoalescer, Window
from dagable_consumer.errors import StoreError
from dagable_consumer.generation import GraphGenerator, sample_generation_params, unit_rng
from dagable_consumer.models import (
    BatchView,
    BatchWrite,
    JobCreate,
    JobRequest,
    JobUpsertResult,
    JobView,
)
from dagable_consumer.pool import GenerationPool

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def upsert_job_by_request_id(self, payload: JobCreate) -> JobUpsertResult: ...

    def update_completed_count(self, *, job_id: int, completed_graphs: int) -> JobView | None: ...


class BatchStore(Protocol):
    def upsert_batch(self, payload: BatchWrite) -> BatchView: ...


@dataclass(slots=True)
class JobOutcome:
    """Result of a successful job attempt."""

    job_id: int
    request_guid: str
    total_graphs: int
    completed_graphs: int
    reset: bool
    batch_numbers: list[int] = field(default_factory=list)
    progress: list[int] = field(default_factory=list)
    duration_seconds: float = 0.0


class JobOrchestrator:
    """Upserts the job, then generates and persists one window at a time.

    Window k+1 is not claimed by any worker until window k is stored, so a
    failed unit never costs an earlier complete window and held-aside units
    stay within one window.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        job_store: JobStore,
        batch_store: BatchStore,
        generator: GraphGenerator,
        batch_size: int,
        max_workers: int,
        results_channel_size: int = 256,
        job_timeout_seconds: float = 0.0,
        compress: Callable[[Iterable[Any]], bytes] = compress_batch,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.job_store = job_store
        self.batch_store = batch_store
        self.generator = generator
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.results_channel_size = results_channel_size
        self.job_timeout_seconds = job_timeout_seconds
        self._compress = compress

    def process_job(
        self,
        request: JobRequest,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> JobOutcome:
        """Process one request from scratch; raise on any failure."""

        token = cancel_token or CancellationToken(timeout_seconds=self.job_timeout_seconds)
        started = time.monotonic()
        token.raise_if_cancelled()

        upserted = self.job_store.upsert_job_by_request_id(
            JobCreate(
                request_guid=request.request_guid,
                user_guid=request.user_guid,
                total_graphs=request.graph_count,
            ),
        )
        job = upserted.job
        if upserted.reset:
            logger.info(
                "Job %s reset for reprocessing (id=%s, total=%s, deleted_batches=%s)",
                job.request_guid,
                job.id,
                job.total_graphs,
                upserted.deleted_batches,
            )
        else:
            logger.info("Job %s created (id=%s, total=%s)", job.request_guid, job.id, job.total_graphs)

        outcome = JobOutcome(
            job_id=job.id,
            request_guid=job.request_guid,
            total_graphs=job.total_graphs,
            completed_graphs=0,
            reset=upserted.reset,
        )
        if request.graph_count == 0:
            outcome.duration_seconds = time.monotonic() - started
            logger.info("Job %s has no units; nothing to generate", job.request_guid)
            return outcome

        def persist_window(window: Window) -> None:
            self._persist_window(job=job, window=window, token=token)
            outcome.batch_numbers.append(window.batch_number)
            outcome.progress.append(window.completed_count)
            outcome.completed_graphs = window.completed_count

        coalescer = BatchCoalescer(
            batch_size=self.batch_size,
            total_units=request.graph_count,
            sink=persist_window,
        )
        with GenerationPool(
            generate_unit=lambda unit_index: self._generate_unit(request, unit_index),
            total_units=request.graph_count,
            max_workers=self.max_workers,
            channel_size=self.results_channel_size,
            cancel_token=token,
            claim_limit=self.batch_size,
        ) as pool:
            for result in pool.results():
                if coalescer.add(result.unit_index, result.artifact):
                    # Units of the next window are claimed only once this one is stored.
                    pool.extend_claims(coalescer.current_batch_number * self.batch_size)
        coalescer.finish()

        if outcome.completed_graphs != request.graph_count:
            raise RuntimeError(
                f"Job {job.request_guid} finished with {outcome.completed_graphs} of "
                f"{request.graph_count} units persisted",
            )
        outcome.duration_seconds = time.monotonic() - started
        logger.info(
            "Job %s completed: %s unit(s) in %s batch(es), %.2fs",
            job.request_guid,
            outcome.completed_graphs,
            len(outcome.batch_numbers),
            outcome.duration_seconds,
        )
        return outcome

    def _generate_unit(self, request: JobRequest, unit_index: int) -> Any:
        rng = unit_rng(request.request_guid, unit_index)
        params = sample_generation_params(request.graph_settings, rng)
        return self.generator(
            params.layer_count,
            params.node_count,
            params.edge_probability,
            rng=rng,
        )

    def _persist_window(self, *, job: JobView, window: Window, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        payload = self._compress(window.artifacts)

        token.raise_if_cancelled()
        self.batch_store.upsert_batch(
            BatchWrite(
                job_id=job.id,
                batch_number=window.batch_number,
                compressed_data=payload,
            ),
        )

        token.raise_if_cancelled()
        updated = self.job_store.update_completed_count(
            job_id=job.id,
            completed_graphs=window.completed_count,
        )
        if updated is None:
            raise StoreError(f"Job {job.request_guid} (id={job.id}) disappeared during processing")
        logger.info(
            "Job %s batch %s persisted (%s units, %s bytes, completed %s/%s)",
            job.request_guid,
            window.batch_number,
            window.size,
            len(payload),
            window.completed_count,
            job.total_graphs,
        )
