"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from dagable_consumer.repository import ConsumerRepository


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[ConsumerRepository]:
    repo = ConsumerRepository(tmp_path / "consumer.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()
