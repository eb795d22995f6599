"""Error taxonomy for the job-processing pipeline.

Every failure aborts the current job attempt; recovery is broker redelivery
followed by a from-scratch reprocessing of the job.
"""

from __future__ import annotations


class ConsumerError(Exception):
    """Base class for pipeline failures."""


class MessageDecodeError(ConsumerError):
    """Message body is not a valid job request. Never retryable."""


class GenerationError(ConsumerError):
    """A unit failed to produce its task graph."""

    def __init__(self, unit_index: int, cause: BaseException) -> None:
        super().__init__(f"Generation failed for unit {unit_index}: {cause}")
        self.unit_index = unit_index
        self.cause = cause


class CodecError(ConsumerError):
    """Batch could not be serialized or compressed."""


class StoreError(ConsumerError):
    """Job or batch persistence failed."""


class JobCancelledError(ConsumerError):
    """Job attempt was abandoned by deadline or stop request."""
