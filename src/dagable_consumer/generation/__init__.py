"""Unit generation capability consumed by the job orchestrator."""

from __future__ import annotations

from dagable_consumer.generation.base import GraphGenerator
from dagable_consumer.generation.sampling import GenerationParams, sample_generation_params, unit_rng
from dagable_consumer.generation.task_graph import (
    LayeredTaskGraphGenerator,
    TaskEdge,
    TaskGraph,
    TaskNode,
)

__all__ = [
    "GenerationParams",
    "GraphGenerator",
    "LayeredTaskGraphGenerator",
    "TaskEdge",
    "TaskGraph",
    "TaskNode",
    "sample_generation_params",
    "unit_rng",
]
