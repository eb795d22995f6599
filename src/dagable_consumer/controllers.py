"""Controllers for consumer CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from kombu import Connection

from dagable_consumer.codec import decompress_batch
from dagable_consumer.config import Settings
from dagable_consumer.generation import LayeredTaskGraphGenerator
from dagable_consumer.intake import IntakeLoop, publish_job_request
from dagable_consumer.models import GraphSettings, JobRequest
from dagable_consumer.orchestrator import JobOrchestrator
from dagable_consumer.repository import ConsumerRepository


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for the intake worker."""

    db_path: Path | None
    once: bool
    max_messages: int | None
    max_idle_polls: int | None


@dataclass(slots=True)
class EnqueueCommand:
    """CLI input for publishing a job request."""

    graph_count: int
    graph_settings: GraphSettings
    request_guid: str | None = None
    user_guid: str | None = None
    include_cp: bool = False


@dataclass(slots=True)
class JobShowCommand:
    db_path: Path | None
    request_guid: str


@dataclass(slots=True)
class BatchExportCommand:
    db_path: Path | None
    request_guid: str
    batch_number: int
    output_path: Path | None


@dataclass(slots=True)
class MigrateCommand:
    db_path: Path | None


class ConsumerCliController:
    """Coordinates worker, enqueue, and inspection CLI operations."""

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
        )
        with _repository(settings) as repository, Connection(settings.broker.url) as connection:
            orchestrator = JobOrchestrator(
                job_store=repository,
                batch_store=repository,
                generator=LayeredTaskGraphGenerator(),
                batch_size=settings.processing.batch_size,
                max_workers=settings.processing.max_workers,
                results_channel_size=settings.processing.results_channel_size,
                job_timeout_seconds=settings.processing.job_timeout_seconds,
            )
            with IntakeLoop(
                connection=connection,
                processor=orchestrator,
                queue_name=settings.broker.queue_name,
                parking_queue_name=settings.broker.parking_queue_name,
                prefetch_count=settings.broker.prefetch_count,
                poll_interval_seconds=settings.broker.poll_interval_seconds,
                job_timeout_seconds=settings.processing.job_timeout_seconds,
                worker_id=settings.worker_id,
            ) as intake:
                summary = (
                    intake.run_once()
                    if command.once
                    else intake.run_loop(
                        max_messages=command.max_messages,
                        max_idle_polls=command.max_idle_polls,
                    )
                )

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} parked={summary.parked} idle_polls={summary.idle_polls}",
        ]

    def enqueue(self, command: EnqueueCommand) -> list[str]:
        """Publish a job request onto the work queue."""

        settings = Settings.from_env()
        request = JobRequest(
            request_guid=command.request_guid or str(uuid4()),
            user_guid=command.user_guid or str(uuid4()),
            graph_count=command.graph_count,
            include_cp=command.include_cp,
            graph_settings=command.graph_settings,
        )
        # Round-trip through the wire decoder so the CLI rejects what the worker would park.
        request = JobRequest.from_message(json.dumps(request.to_wire()))
        with Connection(settings.broker.url) as connection:
            publish_job_request(
                connection,
                queue_name=settings.broker.queue_name,
                request=request,
            )
        return [
            f"Job request published: request_guid={request.request_guid} "
            f"graphs={request.graph_count} queue={settings.broker.queue_name}",
        ]

    def show_job(self, command: JobShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if not settings.db_path.exists():
            return [f"Database not found: {settings.db_path}"]
        with _repository(settings, migrate=False) as repository:
            job = repository.get_job(command.request_guid)
            if job is None:
                return [f"Job not found: {command.request_guid}"]
            batches = repository.list_batches(job.id)

        lines = [
            f"Job {job.request_guid}",
            f"  Id:        {job.id}",
            f"  User:      {job.user_guid}",
            f"  Progress:  {job.completed_graphs}/{job.total_graphs}",
            f"  Created:   {job.created_at.isoformat()}",
            f"  Batches:   {len(batches)}",
        ]
        lines.extend(
            f"    #{batch.batch_number}: {len(batch.compressed_data)} bytes "
            f"({batch.created_at.isoformat()})"
            for batch in batches
        )
        return lines

    def export_batch(self, command: BatchExportCommand) -> list[str]:
        """Decompress one batch to JSON, on stdout or into a file."""

        settings = Settings.from_env(db_path=command.db_path)
        if not settings.db_path.exists():
            return [f"Database not found: {settings.db_path}"]
        with _repository(settings, migrate=False) as repository:
            job = repository.get_job(command.request_guid)
            if job is None:
                return [f"Job not found: {command.request_guid}"]
            batch = repository.get_batch(job_id=job.id, batch_number=command.batch_number)
        if batch is None:
            return [f"Batch {command.batch_number} not found for job {command.request_guid}"]

        artifacts = decompress_batch(batch.compressed_data)
        rendered = json.dumps(artifacts, indent=2, sort_keys=True)
        if command.output_path is None:
            return [rendered]
        command.output_path.write_text(rendered + "\n", encoding="utf-8")
        return [f"Wrote {len(artifacts)} task graph(s) to {command.output_path}"]

    def migrate(self, command: MigrateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings):
            pass
        return [f"Schema is up to date: {settings.db_path}"]


@contextmanager
def _repository(settings: Settings, *, migrate: bool = True) -> Iterator[ConsumerRepository]:
    repository = ConsumerRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    if migrate:
        repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
