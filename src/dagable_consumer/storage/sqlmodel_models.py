"""SQLModel ORM tables for job and batch storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, LargeBinary, UniqueConstraint
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    request_guid: str = Field(unique=True, index=True)
    user_guid: str = Field(index=True)
    total_graphs: int
    completed_graphs: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Batch(SQLModel, table=True):
    __tablename__ = "batches"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "job_id",
            "batch_number",
            name="uq_batches_job_batch_number",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    job_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    batch_number: int
    compressed_data: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
