"""Job and batch persistence backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from dagable_consumer.errors import StoreError
from dagable_consumer.models import (
    BatchView,
    BatchWrite,
    JobCreate,
    JobUpsertResult,
    JobView,
)
from dagable_consumer.storage.alembic_runner import upgrade_head
from dagable_consumer.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from dagable_consumer.storage.sqlmodel_models import Batch, Job

logger = logging.getLogger(__name__)


class ConsumerRepository:
    """Job store and batch store facade.

    Every write is an upsert keyed by a business key: jobs by request guid,
    batches by (job id, batch number). Each call runs in its own transaction.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def upsert_job_by_request_id(self, payload: JobCreate) -> JobUpsertResult:
        """Insert the job, or reset an existing one for reprocessing.

        A reset zeroes the completed count, adopts the new total and deletes the
        job's previously persisted batches in the same transaction.
        """

        with _store_errors("upsert job"), Session(self.engine) as session:
            existing = _find_job(session, payload.request_guid)
            if existing is None:
                row = Job(
                    request_guid=payload.request_guid,
                    user_guid=payload.user_guid,
                    total_graphs=payload.total_graphs,
                    completed_graphs=0,
                    created_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = _find_job(session, payload.request_guid)
                    if existing is None:
                        raise
                else:
                    session.refresh(row)
                    return JobUpsertResult(job=_to_job_view(row), reset=False)

            if existing.id is None:
                raise RuntimeError("Persisted job row has no id")
            deleted = session.exec(  # type: ignore[call-overload]
                sa_delete(Batch).where(col(Batch.job_id) == existing.id),
            )
            existing.completed_graphs = 0
            existing.total_graphs = payload.total_graphs
            session.add(existing)
            session.commit()
            session.refresh(existing)
            return JobUpsertResult(
                job=_to_job_view(existing),
                reset=True,
                deleted_batches=int(deleted.rowcount or 0),
            )

    def update_completed_count(self, *, job_id: int, completed_graphs: int) -> JobView | None:
        """Set the job's completed count; return None when the job no longer exists."""

        with _store_errors("update job progress"), Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                return None
            if not 0 <= completed_graphs <= row.total_graphs:
                raise ValueError(
                    f"completed_graphs must be within [0, {row.total_graphs}], "
                    f"got {completed_graphs}",
                )
            row.completed_graphs = completed_graphs
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def upsert_batch(self, payload: BatchWrite) -> BatchView:
        """Insert the batch or overwrite the payload of the existing (job, number) row."""

        with _store_errors("upsert batch"), Session(self.engine) as session:
            existing = _find_batch(session, payload.job_id, payload.batch_number)
            if existing is None:
                row = Batch(
                    job_id=payload.job_id,
                    batch_number=payload.batch_number,
                    compressed_data=payload.compressed_data,
                    created_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = _find_batch(session, payload.job_id, payload.batch_number)
                    if existing is None:
                        raise
                else:
                    session.refresh(row)
                    return _to_batch_view(row)

            existing.compressed_data = payload.compressed_data
            session.add(existing)
            session.commit()
            session.refresh(existing)
            return _to_batch_view(existing)

    def get_job(self, request_guid: str) -> JobView | None:
        with _store_errors("read job"), Session(self.engine) as session:
            row = _find_job(session, request_guid)
            return _to_job_view(row) if row is not None else None

    def list_batches(self, job_id: int) -> list[BatchView]:
        """Batches of one job in batch-number order."""

        with _store_errors("list batches"), Session(self.engine) as session:
            rows = session.exec(
                select(Batch)
                .where(Batch.job_id == job_id)
                .order_by(col(Batch.batch_number).asc()),
            ).all()
            return [_to_batch_view(row) for row in rows]

    def get_batch(self, *, job_id: int, batch_number: int) -> BatchView | None:
        with _store_errors("read batch"), Session(self.engine) as session:
            row = _find_batch(session, job_id, batch_number)
            return _to_batch_view(row) if row is not None else None


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as error:
        logger.exception("Store operation failed: %s", operation)
        raise StoreError(f"Failed to {operation}: {error}") from error


def _find_job(session: Session, request_guid: str) -> Job | None:
    return session.exec(select(Job).where(Job.request_guid == request_guid)).one_or_none()


def _find_batch(session: Session, job_id: int, batch_number: int) -> Batch | None:
    return session.exec(
        select(Batch).where(
            Batch.job_id == job_id,
            Batch.batch_number == batch_number,
        ),
    ).one_or_none()


def _to_job_view(row: Job) -> JobView:
    if row.id is None:
        raise RuntimeError("Persisted job row has no id")
    return JobView(
        id=row.id,
        request_guid=row.request_guid,
        user_guid=row.user_guid,
        total_graphs=row.total_graphs,
        completed_graphs=row.completed_graphs,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_batch_view(row: Batch) -> BatchView:
    if row.id is None:
        raise RuntimeError("Persisted batch row has no id")
    return BatchView(
        id=row.id,
        job_id=row.job_id,
        batch_number=row.batch_number,
        compressed_data=bytes(row.compressed_data),
        created_at=to_utc_aware_datetime(row.created_at),
    )
