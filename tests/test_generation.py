from __future__ import annotations

import random

import allure
import pytest
from factories import small_graph_settings

from dagable_consumer.generation import (
    LayeredTaskGraphGenerator,
    sample_generation_params,
    unit_rng,
)
from dagable_consumer.models import GraphSettings

pytestmark = [
    allure.epic("Unit Generation"),
    allure.feature("Task Graph Generator"),
]


def test_sampled_params_stay_within_bounds() -> None:
    settings = small_graph_settings()
    rng = random.Random(7)

    for _ in range(500):
        params = sample_generation_params(settings, rng)
        assert settings.min_layer <= params.layer_count <= settings.max_layer
        assert settings.min_nodes <= params.node_count <= settings.max_nodes
        assert 0.01 <= params.edge_probability <= 1.0
        assert params.edge_probability == round(params.edge_probability, 2)


def test_sampling_is_reproducible_per_unit() -> None:
    settings = small_graph_settings()

    first = sample_generation_params(settings, unit_rng("request", 3))
    second = sample_generation_params(settings, unit_rng("request", 3))

    assert first == second


def test_degenerate_bounds_yield_fixed_counts() -> None:
    settings = GraphSettings(
        min_layer=4,
        max_layer=4,
        min_nodes=9,
        max_nodes=9,
        min_comm=0,
        max_comm=0,
        min_comp=0,
        max_comp=0,
        min_processors=1,
        max_processors=1,
    )

    params = sample_generation_params(settings, random.Random(1))

    assert (params.layer_count, params.node_count) == (4, 9)


def test_generated_graph_is_layered_and_connected_upwards() -> None:
    graph = LayeredTaskGraphGenerator()(3, 10, 0.3, rng=random.Random(11))

    assert len(graph.nodes) == 10
    assert {node.layer for node in graph.nodes} == {0, 1, 2}
    layer_of = {node.node_id: node.layer for node in graph.nodes}
    for edge in graph.edges:
        assert layer_of[edge.source] < layer_of[edge.target]
    for node in graph.nodes:
        if node.layer > 0:
            assert any(
                edge.target == node.node_id and layer_of[edge.source] == node.layer - 1
                for edge in graph.edges
            )


def test_critical_path_cost_matches_path() -> None:
    graph = LayeredTaskGraphGenerator()(4, 12, 0.5, rng=random.Random(3))
    cost_of = {node.node_id: node.computation_cost for node in graph.nodes}
    edge_cost = {(edge.source, edge.target): edge.communication_cost for edge in graph.edges}

    path = graph.critical_path
    total = sum(cost_of[node] for node in path) + sum(
        edge_cost[(source, target)] for source, target in zip(path, path[1:], strict=False)
    )

    assert total == graph.critical_path_cost
    assert graph.critical_path_cost >= max(cost_of.values())


def test_full_probability_connects_every_forward_pair() -> None:
    graph = LayeredTaskGraphGenerator()(2, 4, 1.0, rng=random.Random(5))
    first_layer = [node.node_id for node in graph.nodes if node.layer == 0]
    second_layer = [node.node_id for node in graph.nodes if node.layer == 1]

    assert len(graph.edges) == len(first_layer) * len(second_layer)


def test_more_layers_than_nodes_collapses_layers() -> None:
    graph = LayeredTaskGraphGenerator()(5, 2, 0.5, rng=random.Random(2))

    assert graph.layer_count == 2
    assert len(graph.nodes) == 2


def test_empty_graph() -> None:
    graph = LayeredTaskGraphGenerator()(0, 0, 0.5, rng=random.Random(2))

    assert graph.to_dict()["nodes"] == []
    assert graph.critical_path == []
    assert graph.critical_path_cost == 0


def test_invalid_probability_is_rejected() -> None:
    with pytest.raises(ValueError, match="edge_probability"):
        LayeredTaskGraphGenerator()(2, 4, 1.5)
