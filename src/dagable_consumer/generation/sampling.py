"""Parameter sampling for generation units."""

from __future__ import annotations

import random
from dataclasses import dataclass

from dagable_consumer.models import GraphSettings

MIN_EDGE_PROBABILITY = 0.01
MAX_EDGE_PROBABILITY = 1.00


@dataclass(slots=True, frozen=True)
class GenerationParams:
    layer_count: int
    node_count: int
    edge_probability: float


def sample_generation_params(settings: GraphSettings, rng: random.Random) -> GenerationParams:
    """Draw layer/node counts uniformly from the inclusive bounds and an edge probability.

    The edge probability lies in [0.01, 1.00] and is rounded to two decimals.
    """

    node_count = rng.randint(settings.min_nodes, settings.max_nodes)
    layer_count = rng.randint(settings.min_layer, settings.max_layer)
    edge_probability = round(rng.uniform(MIN_EDGE_PROBABILITY, MAX_EDGE_PROBABILITY), 2)
    return GenerationParams(
        layer_count=layer_count,
        node_count=node_count,
        edge_probability=min(MAX_EDGE_PROBABILITY, max(MIN_EDGE_PROBABILITY, edge_probability)),
    )


def unit_rng(request_guid: str, unit_index: int) -> random.Random:
    """Deterministic random source for one unit of one request."""

    return random.Random(f"{request_guid}:{unit_index}")  # noqa: S311
