"""Canonical serialization and compression of artifact batches.

Stored payload: gzip(UTF-8 JSON array), keys sorted, compact separators, no
NaN/Infinity. The gzip header mtime is pinned so equal batches compress to
equal bytes.
"""

from __future__ import annotations

import gzip
import json
import zlib
from collections.abc import Iterable, Mapping
from typing import Any

from dagable_consumer.errors import CodecError

COMPRESSION_LEVEL = 6


def serialize_artifact(artifact: Any) -> dict[str, Any]:
    """Convert one artifact into a plain JSON-ready mapping."""

    if isinstance(artifact, Mapping):
        return dict(artifact)
    to_dict = getattr(artifact, "to_dict", None)
    if callable(to_dict):
        payload = to_dict()
        if isinstance(payload, Mapping):
            return dict(payload)
    raise CodecError(f"Unsupported artifact type: {type(artifact).__name__}")


def compress_batch(artifacts: Iterable[Any]) -> bytes:
    """Serialize artifacts to canonical JSON and gzip it."""

    if artifacts is None:
        raise CodecError("Artifacts must not be None.")
    payload = [serialize_artifact(artifact) for artifact in artifacts]
    try:
        encoded = json.dumps(
            payload,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except (TypeError, ValueError) as error:
        raise CodecError(f"Batch serialization failed: {error}") from error
    return gzip.compress(encoded, compresslevel=COMPRESSION_LEVEL, mtime=0)


def decompress_batch(data: bytes) -> list[dict[str, Any]]:
    """Inverse of `compress_batch`."""

    try:
        decoded = json.loads(gzip.decompress(data).decode("utf-8"))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as error:
        raise CodecError(f"Batch payload is not decodable: {error}") from error
    if not isinstance(decoded, list):
        raise CodecError("Batch payload must decode to a JSON array.")
    return decoded
