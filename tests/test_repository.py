from __future__ import annotations

from pathlib import Path

import allure
import pytest
from factories import REQUEST_GUID, USER_GUID, random_guid
from sqlalchemy import text

from dagable_consumer.errors import StoreError
from dagable_consumer.models import BatchWrite, JobCreate
from dagable_consumer.repository import ConsumerRepository

pytestmark = [
    allure.epic("Batch Persistence"),
    allure.feature("Job & Batch Stores"),
]


def _job(repository: ConsumerRepository, total: int = 10, request_guid: str = REQUEST_GUID):
    return repository.upsert_job_by_request_id(
        JobCreate(request_guid=request_guid, user_guid=USER_GUID, total_graphs=total),
    )


def test_schema_is_initialized_to_head(repository: ConsumerRepository) -> None:
    with repository.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one()
        tables = connection.execute(
            text(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name IN ('jobs', 'batches') ORDER BY name",
            ),
        ).scalars().all()

    assert version == "20241021_0001"
    assert list(tables) == ["batches", "jobs"]


def test_init_schema_is_idempotent(repository: ConsumerRepository) -> None:
    repository.init_schema()

    assert repository.get_job(REQUEST_GUID) is None


def test_first_upsert_inserts_job(repository: ConsumerRepository) -> None:
    result = _job(repository, total=7)

    assert result.reset is False
    assert result.job.request_guid == REQUEST_GUID
    assert result.job.user_guid == USER_GUID
    assert result.job.total_graphs == 7
    assert result.job.completed_graphs == 0
    assert result.job.created_at.tzinfo is not None


def test_second_upsert_resets_progress_without_duplicate_rows(
    repository: ConsumerRepository,
) -> None:
    first = _job(repository)
    repository.update_completed_count(job_id=first.job.id, completed_graphs=6)

    second = _job(repository)

    assert second.reset is True
    assert second.job.id == first.job.id
    assert second.job.completed_graphs == 0
    with repository.engine.connect() as connection:
        count = connection.execute(
            text("SELECT COUNT(*) FROM jobs WHERE request_guid = :guid"),
            {"guid": REQUEST_GUID},
        ).scalar_one()
    assert count == 1


def test_reset_deletes_previous_batches_and_adopts_new_total(
    repository: ConsumerRepository,
) -> None:
    job = _job(repository, total=10).job
    for number in (1, 2, 3, 4):
        repository.upsert_batch(
            BatchWrite(job_id=job.id, batch_number=number, compressed_data=b"x"),
        )

    result = _job(repository, total=4)

    assert result.deleted_batches == 4
    assert result.job.total_graphs == 4
    assert repository.list_batches(job.id) == []


def test_update_completed_count(repository: ConsumerRepository) -> None:
    job = _job(repository).job

    updated = repository.update_completed_count(job_id=job.id, completed_graphs=3)

    assert updated is not None
    assert updated.completed_graphs == 3
    stored = repository.get_job(REQUEST_GUID)
    assert stored is not None
    assert stored.completed_graphs == 3


def test_update_completed_count_for_missing_job_returns_none(
    repository: ConsumerRepository,
) -> None:
    assert repository.update_completed_count(job_id=999, completed_graphs=1) is None


def test_update_completed_count_rejects_out_of_range(repository: ConsumerRepository) -> None:
    job = _job(repository, total=5).job

    with pytest.raises(ValueError, match="completed_graphs"):
        repository.update_completed_count(job_id=job.id, completed_graphs=6)


def test_batch_upsert_overwrites_existing_key(repository: ConsumerRepository) -> None:
    job = _job(repository).job

    first = repository.upsert_batch(
        BatchWrite(job_id=job.id, batch_number=1, compressed_data=b"first"),
    )
    second = repository.upsert_batch(
        BatchWrite(job_id=job.id, batch_number=1, compressed_data=b"second"),
    )

    assert second.id == first.id
    batches = repository.list_batches(job.id)
    assert len(batches) == 1
    assert batches[0].compressed_data == b"second"


def test_batches_are_listed_in_number_order_per_job(repository: ConsumerRepository) -> None:
    job = _job(repository).job
    other = _job(repository, request_guid=random_guid()).job
    for number in (3, 1, 2):
        repository.upsert_batch(
            BatchWrite(job_id=job.id, batch_number=number, compressed_data=bytes([number])),
        )
    repository.upsert_batch(BatchWrite(job_id=other.id, batch_number=1, compressed_data=b"o"))

    assert [batch.batch_number for batch in repository.list_batches(job.id)] == [1, 2, 3]
    fetched = repository.get_batch(job_id=other.id, batch_number=1)
    assert fetched is not None
    assert fetched.compressed_data == b"o"


def test_deleting_job_cascades_to_batches(repository: ConsumerRepository) -> None:
    job = _job(repository).job
    repository.upsert_batch(BatchWrite(job_id=job.id, batch_number=1, compressed_data=b"x"))

    with repository.engine.begin() as connection:
        connection.execute(text("DELETE FROM jobs WHERE id = :id"), {"id": job.id})

    assert repository.list_batches(job.id) == []


def test_batch_for_unknown_job_is_a_store_error(repository: ConsumerRepository) -> None:
    with pytest.raises(StoreError, match="upsert batch"):
        repository.upsert_batch(BatchWrite(job_id=4242, batch_number=1, compressed_data=b"x"))


def test_repositories_share_state_through_the_file(tmp_path: Path) -> None:
    db_path = tmp_path / "shared.db"
    writer = ConsumerRepository(db_path)
    writer.init_schema()
    _job(writer, total=3)
    writer.close()

    reader = ConsumerRepository(db_path)
    try:
        job = reader.get_job(REQUEST_GUID)
    finally:
        reader.close()

    assert job is not None
    assert job.total_graphs == 3
