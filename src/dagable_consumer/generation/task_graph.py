"""Layered random task graph with critical path annotation.

Nodes are spread across layers, every node outside the first layer gets at
least one predecessor from the layer directly above it, and further forward
edges are added with the sampled edge probability. Costs are integers drawn
from the generator's configured ranges.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True, frozen=True)
class TaskNode:
    node_id: int
    layer: int
    computation_cost: int


@dataclass(slots=True, frozen=True)
class TaskEdge:
    source: int
    target: int
    communication_cost: int


@dataclass(slots=True)
class TaskGraph:
    """Generated artifact: a DAG plus its critical path."""

    layer_count: int
    edge_probability: float
    nodes: list[TaskNode] = field(default_factory=list)
    edges: list[TaskEdge] = field(default_factory=list)
    critical_path: list[int] = field(default_factory=list)
    critical_path_cost: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer_count": self.layer_count,
            "edge_probability": self.edge_probability,
            "nodes": [
                {
                    "id": node.node_id,
                    "layer": node.layer,
                    "computation_cost": node.computation_cost,
                }
                for node in self.nodes
            ],
            "edges": [
                {
                    "source": edge.source,
                    "target": edge.target,
                    "communication_cost": edge.communication_cost,
                }
                for edge in self.edges
            ],
            "critical_path": list(self.critical_path),
            "critical_path_cost": self.critical_path_cost,
        }


class LayeredTaskGraphGenerator:
    """Reference implementation of the generation capability."""

    def __init__(
        self,
        *,
        computation_cost_range: tuple[int, int] = (1, 10),
        communication_cost_range: tuple[int, int] = (1, 10),
    ) -> None:
        for name, (low, high) in (
            ("computation_cost_range", computation_cost_range),
            ("communication_cost_range", communication_cost_range),
        ):
            if low < 0 or low > high:
                raise ValueError(f"{name} must satisfy 0 <= low <= high, got {(low, high)}")
        self.computation_cost_range = computation_cost_range
        self.communication_cost_range = communication_cost_range

    def __call__(
        self,
        layer_count: int,
        node_count: int,
        edge_probability: float,
        *,
        rng: random.Random | None = None,
    ) -> TaskGraph:
        if layer_count < 0 or node_count < 0:
            raise ValueError("layer_count and node_count must be non-negative")
        if not 0.0 <= edge_probability <= 1.0:
            raise ValueError(f"edge_probability must be within [0, 1], got {edge_probability}")
        rng = rng or random.Random()  # noqa: S311

        effective_layers = min(layer_count, node_count)
        layers = _assign_layers(rng, node_count=node_count, layer_count=effective_layers)
        nodes: list[TaskNode] = []
        for layer_index, members in enumerate(layers):
            for node_id in members:
                nodes.append(
                    TaskNode(
                        node_id=node_id,
                        layer=layer_index,
                        computation_cost=rng.randint(*self.computation_cost_range),
                    ),
                )

        edges: list[TaskEdge] = []
        for layer_index in range(1, len(layers)):
            upper_nodes = [node for members in layers[:layer_index] for node in members]
            previous = layers[layer_index - 1]
            for target in layers[layer_index]:
                anchor = rng.choice(previous)
                for source in upper_nodes:
                    if source == anchor or rng.random() < edge_probability:
                        edges.append(
                            TaskEdge(
                                source=source,
                                target=target,
                                communication_cost=rng.randint(*self.communication_cost_range),
                            ),
                        )

        path, cost = _critical_path(nodes, edges)
        return TaskGraph(
            layer_count=effective_layers,
            edge_probability=edge_probability,
            nodes=nodes,
            edges=edges,
            critical_path=path,
            critical_path_cost=cost,
        )


def _assign_layers(rng: random.Random, *, node_count: int, layer_count: int) -> list[list[int]]:
    if layer_count == 0:
        return []
    sizes = [1] * layer_count
    for _ in range(node_count - layer_count):
        sizes[rng.randrange(layer_count)] += 1

    layers: list[list[int]] = []
    next_id = 0
    for size in sizes:
        layers.append(list(range(next_id, next_id + size)))
        next_id += size
    return layers


def _critical_path(nodes: list[TaskNode], edges: list[TaskEdge]) -> tuple[list[int], int]:
    """Longest path by computation plus communication cost.

    Node ids are assigned layer by layer, so ascending id order is topological.
    """

    if not nodes:
        return [], 0

    cost_of = {node.node_id: node.computation_cost for node in nodes}
    incoming: dict[int, list[TaskEdge]] = {node.node_id: [] for node in nodes}
    for edge in edges:
        incoming[edge.target].append(edge)

    best: dict[int, int] = {}
    parent: dict[int, int | None] = {}
    for node_id in sorted(cost_of):
        best[node_id] = cost_of[node_id]
        parent[node_id] = None
        for edge in incoming[node_id]:
            candidate = best[edge.source] + edge.communication_cost + cost_of[node_id]
            if candidate > best[node_id]:
                best[node_id] = candidate
                parent[node_id] = edge.source

    end = max(sorted(best), key=lambda node_id: best[node_id])
    path = [end]
    while parent[path[-1]] is not None:
        path.append(parent[path[-1]])  # type: ignore[arg-type]
    path.reverse()
    return path, best[end]
