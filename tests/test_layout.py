"""
Layout Engine Tests
===================

Covers preprocessing (node/link construction and placement), the force
run, incremental reconfiguration and the frozen output layout.
"""

import asyncio
import logging

import numpy as np
import pytest

from kg_universe.config import ForceConfig
from kg_universe.layout import (
    ENTITY_SIZES, RELATIONSHIP_THICKNESS, LayoutEngine,
    calculate_link_thickness, calculate_node_size, fibonacci_point,
    generate_layout, normalize_abstraction, shell_radius,
)
from kg_universe.models import GraphModel

from .conftest import community, entity, hub_records, relationship


FORCE_NAMES = {"charge", "link", "center", "collision", "community", "spherical"}


def star_graph(leaves=12) -> GraphModel:
    """A hub and its leaves with no communities."""
    names = [f"leaf{i}" for i in range(leaves)]
    return GraphModel.from_records(
        [entity("hub", degree=leaves, frequency=10)]
        + [entity(n, degree=1, frequency=1) for n in names],
        [relationship(f"r{i}", "hub", n) for i, n in enumerate(names)],
        [],
    )


class TestSizing:

    def test_node_size_bounds(self):
        assert calculate_node_size(0, 0) == ENTITY_SIZES["MIN"]
        assert calculate_node_size(1000, 1000) == ENTITY_SIZES["MAX"]

    def test_node_size_monotonic(self):
        sizes = [calculate_node_size(d, 3) for d in range(0, 40)]
        assert sizes == sorted(sizes)
        sizes = [calculate_node_size(3, f) for f in range(0, 100, 5)]
        assert sizes == sorted(sizes)

    def test_link_thickness(self):
        assert calculate_link_thickness(0) == RELATIONSHIP_THICKNESS["MIN"]
        assert calculate_link_thickness(5) == pytest.approx(0.7)
        assert calculate_link_thickness(500) == RELATIONSHIP_THICKNESS["MAX"]
        values = [calculate_link_thickness(w) for w in range(30)]
        assert values == sorted(values)


class TestPlacementHelpers:

    def test_normalize_abstraction(self):
        assert normalize_abstraction([2, 4, 6]) == [0.0, 0.5, 1.0]

    def test_normalize_equal_scores(self):
        assert normalize_abstraction([3, 3]) == [0.5, 0.5]
        assert normalize_abstraction([]) == []

    def test_shell_radius_inverse_to_abstraction(self):
        assert shell_radius(1.0, 150) == pytest.approx(15)
        assert shell_radius(0.0, 150) == pytest.approx(150)
        assert shell_radius(0.2, 150) > shell_radius(0.8, 150)

    def test_fibonacci_point_on_sphere(self):
        for i in range(10):
            x, y, z = fibonacci_point(i, 10, 42)
            assert (x * x + y * y + z * z) ** 0.5 == pytest.approx(42)


class TestPreprocess:

    def test_links_reference_layout_nodes(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.prepare(hub_graph)
        node_ids = {id(n) for n in engine.nodes}
        assert len(engine.links) == 12
        for link in engine.links:
            assert id(link.source) in node_ids
            assert id(link.target) in node_ids

    def test_dangling_relationship_dropped(self, caplog):
        graph = GraphModel.from_records(
            [entity("a"), entity("b")],
            [relationship("r1", "a", "b"), relationship("r2", "a", "ghost")],
            [],
        )
        engine = LayoutEngine(seed=1)
        with caplog.at_level(logging.WARNING, logger="kg_universe"):
            engine.prepare(graph)

        assert [l.id for l in engine.links] == ["r1"]
        assert engine.dropped_links == 1
        assert "ghost" in caplog.text

    def test_endpoints_fall_back_to_title(self):
        graph = GraphModel.from_records(
            [entity("a", title="Alpha"), entity("b", title="Beta")],
            [relationship("r1", "Alpha", "Beta")],
            [],
        )
        engine = LayoutEngine(seed=1)
        engine.prepare(graph)
        link = engine.links[0]
        assert (link.source.id, link.target.id) == ("a", "b")

    def test_id_wins_over_title(self):
        graph = GraphModel.from_records(
            [entity("a", title="b"), entity("b", title="Beta")],
            [relationship("r1", "a", "b")],
            [],
        )
        engine = LayoutEngine(seed=1)
        engine.prepare(graph)
        assert engine.links[0].target.id == "b"

    def test_node_attributes(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.prepare(hub_graph)
        hub = next(n for n in engine.nodes if n.id == "hub")
        leaf = next(n for n in engine.nodes if n.id == "leaf11")

        assert hub.abstraction_level == 1.0
        assert leaf.abstraction_level == 0.0
        assert hub.community.human_readable_id == "0"
        assert leaf.community_level == 2
        assert hub.computed_size > leaf.computed_size
        assert hub.computed_color == "#45b7d1"
        assert leaf.computed_color == "#4ecdc4"

    def test_entity_without_community_is_level_zero(self):
        engine = LayoutEngine(seed=1)
        engine.prepare(star_graph(3))
        assert all(n.community is None for n in engine.nodes)
        assert all(n.community_level == 0 for n in engine.nodes)

    def test_last_community_listing_wins(self):
        graph = GraphModel.from_records(
            [entity("a")],
            [],
            [community(0, entity_ids=["a"]), community(1, level=1, parent=0, entity_ids=["a"])],
        )
        engine = LayoutEngine(seed=1)
        engine.prepare(graph)
        assert engine.nodes[0].community.human_readable_id == "1"

    def test_initial_radius_within_jitter(self, hub_graph):
        engine = LayoutEngine(seed=3)
        engine.prepare(hub_graph)
        for node in engine.nodes:
            target = engine.target_radius(node)
            assert 0.9 * target - 1e-9 <= node.distance_from_origin <= 1.1 * target + 1e-9

    def test_community_centers_only_for_populated(self):
        graph = GraphModel.from_records(
            [entity("a")],
            [],
            [community(0, entity_ids=["a"]), community(1, level=1, parent=0)],
        )
        engine = LayoutEngine(seed=1)
        engine.prepare(graph)
        assert set(engine.community_centers) == {"c-0"}

    def test_forces_registered(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.prepare(hub_graph)
        assert set(engine.simulation.force_names) == FORCE_NAMES


class TestRun:

    def test_converges_within_tick_cap(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.run_sync(hub_graph)
        assert engine.converged
        assert engine.simulation.ticks <= 500
        assert engine.alpha < 0.001

    def test_tick_cap_ends_run(self, hub_graph):
        engine = LayoutEngine(seed=1, max_ticks=20)
        engine.run_sync(hub_graph)
        assert engine.simulation.ticks == 20

    def test_positions_finite(self, hub_graph):
        layout = LayoutEngine(seed=1).run_sync(hub_graph)
        for node in layout.nodes:
            assert np.all(np.isfinite(node.position))

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_central_entity_sits_near_core(self, seed):
        layout = LayoutEngine(seed=seed).run_sync(star_graph())
        hub = layout.get_node("hub")
        leaves = [n.distance_from_origin for n in layout.nodes if n.id != "hub"]
        assert hub.distance_from_origin < min(leaves)

    def test_central_entity_inside_leaves_with_communities(self, hub_graph):
        distances = []
        for seed in range(3):
            layout = LayoutEngine(seed=seed).run_sync(hub_graph)
            hub = layout.get_node("hub").distance_from_origin
            leaves = np.mean([n.distance_from_origin for n in layout.nodes if n.id != "hub"])
            distances.append((hub, leaves))
        assert np.mean([h for h, _ in distances]) < np.mean([l for _, l in distances])

    def test_seeded_runs_are_reproducible(self, hub_graph):
        first = LayoutEngine(seed=7).run_sync(hub_graph)
        second = LayoutEngine(seed=7).run_sync(hub_graph)
        assert [n.position for n in first.nodes] == [n.position for n in second.nodes]

    def test_async_run(self, hub_graph):
        layout = asyncio.run(generate_layout(hub_graph, seed=1))
        assert len(layout.nodes) == 13
        assert len(layout.links) == 12

    def test_empty_graph(self):
        layout = LayoutEngine(seed=1).run_sync(GraphModel())
        assert layout.nodes == []
        assert layout.links == []

    def test_config_passed_to_run(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.run_sync(hub_graph, {"spread_3d": 80})
        assert engine.config.spread_3d == 80

    def test_partial_config_merges_onto_engine_config(self, hub_graph):
        engine = LayoutEngine(config=ForceConfig(spread_3d=80), seed=1)
        engine.prepare(hub_graph, {"charge_strength": -50})
        assert engine.config.spread_3d == 80
        assert engine.config.charge_strength == -50

    def test_partial_config_rejects_unknown_parameter(self, hub_graph):
        engine = LayoutEngine(seed=1)
        with pytest.raises(ValueError, match="spred_3d"):
            engine.prepare(hub_graph, {"spred_3d": 80})

    def test_full_config_replaces_engine_config(self, hub_graph):
        engine = LayoutEngine(config=ForceConfig(spread_3d=80), seed=1)
        engine.prepare(hub_graph, ForceConfig(charge_strength=-50))
        assert engine.config.spread_3d == ForceConfig().spread_3d
        assert engine.config.charge_strength == -50

    @pytest.mark.parametrize("max_ticks, reason", [(20, "tick cap"), (500, "converged")])
    def test_finish_log_names_stop_condition(self, hub_graph, caplog, max_ticks, reason):
        with caplog.at_level(logging.INFO, logger="kg_universe"):
            LayoutEngine(seed=1, max_ticks=max_ticks).run_sync(hub_graph)
        finished = [r.getMessage() for r in caplog.records if "Layout finished" in r.getMessage()]
        assert len(finished) == 1
        assert finished[0].startswith(f"Layout finished ({reason})")

    def test_finish_log_after_stop(self, hub_graph, caplog):
        engine = LayoutEngine(seed=1)
        engine.prepare(hub_graph)
        engine.stop()
        with caplog.at_level(logging.INFO, logger="kg_universe"):
            engine.settle_sync()
        assert "Layout finished (stopped) after 0 ticks" in caplog.text


class TestOutputLayout:

    def test_layout_links_point_into_layout(self, hub_graph):
        layout = LayoutEngine(seed=1).run_sync(hub_graph)
        node_ids = {id(n) for n in layout.nodes}
        for link in layout.links:
            assert id(link.source) in node_ids
            assert id(link.target) in node_ids

    def test_communities_resolved(self, hub_graph):
        layout = LayoutEngine(seed=1).run_sync(hub_graph)
        root = next(c for c in layout.communities if c.human_readable_id == "0")
        assert root.computed_bounds is not None
        assert root.computed_color == "#ff6b6b"
        assert [c.human_readable_id for c in root.computed_hierarchy.child_communities] == ["1"]

    def test_each_run_returns_new_layout(self, hub_graph):
        engine = LayoutEngine(seed=1)
        first = engine.run_sync(hub_graph)
        second = engine.run_sync(hub_graph)
        assert first is not second
        assert not {id(n) for n in first.nodes} & {id(n) for n in second.nodes}

    def test_layout_frozen_after_resettle(self, hub_graph):
        engine = LayoutEngine(seed=1)
        layout = engine.run_sync(hub_graph)
        before = [n.position for n in layout.nodes]

        engine.update_config({"charge_strength": -400})
        engine.settle_sync()
        assert [n.position for n in layout.nodes] == before

    def test_json_output(self, hub_graph):
        data = LayoutEngine(seed=1).run_sync(hub_graph).to_json_dict()
        assert {l["source"] for l in data["links"]} == {"hub"}
        assert data["nodes"][0]["community"] == "0"
        assert len(data["communities"]) == 3


class TestUpdateConfig:

    @pytest.fixture
    def engine(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.run_sync(hub_graph)
        return engine

    def test_empty_update_keeps_positions(self, engine):
        before = engine.positions()
        engine.update_config({})
        assert engine.positions() == before
        assert engine.alpha == pytest.approx(0.1)
        assert not engine.converged

    def test_only_changed_forces_touched(self, engine):
        charge = engine.simulation.force("charge")
        link = engine.simulation.force("link")
        engine.update_config({"charge_strength": -50})

        assert engine.simulation.force("charge") is charge
        assert engine.simulation.force("link") is link
        hub_index = next(i for i, n in enumerate(engine.nodes) if n.id == "hub")
        assert charge._strengths[hub_index] == -50 - 12 * 5

    def test_link_parameters(self, engine):
        engine.update_config({"link_distance": 60, "link_strength": 0.01})
        link = engine.simulation.force("link")
        assert np.allclose(link._distances, 60 / 1.1)
        assert np.allclose(link._strengths, 0.01)

    def test_spread_moves_community_centers(self, engine):
        before = dict(engine.community_centers)
        engine.update_config({"spread_3d": 300})
        assert engine.community_centers["c-0"][3] > before["c-0"][3]

    def test_update_settles_again(self, engine):
        engine.update_config({"center_strength": 0.1})
        layout = engine.settle_sync()
        assert engine.converged
        assert len(layout.nodes) == 13

    def test_unknown_parameter_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.update_config({"gravity": 1})

    def test_failed_update_falls_back_to_full_setup(self, engine, monkeypatch):
        def broken(changes):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "_update_individual_forces", broken)
        before = engine.positions()
        engine.update_config({"collision_radius": 10})

        assert engine.alpha == pytest.approx(0.05)
        assert engine.positions() == before
        assert engine.config.collision_radius == 10
        assert set(engine.simulation.force_names) == FORCE_NAMES

    def test_update_before_run_only_changes_config(self):
        engine = LayoutEngine(config=ForceConfig(), seed=1)
        engine.update_config({"spread_3d": 50})
        assert engine.config.spread_3d == 50
        assert engine.simulation is None


class TestLifecycle:

    def test_stop_ends_run(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.prepare(hub_graph)
        engine.stop()
        assert engine.step() is True

    def test_dispose_releases_state(self, hub_graph):
        engine = LayoutEngine(seed=1)
        engine.run_sync(hub_graph)
        engine.dispose()
        assert engine.nodes == []
        assert engine.simulation is None
        assert engine.positions() == {}

    def test_dispose_during_async_run(self):
        records = hub_records()
        graph = GraphModel.from_records(records["entities"], records["relationships"], records["communities"])
        engine = LayoutEngine(seed=1)

        async def scenario():
            task = asyncio.create_task(engine.run(graph))
            while engine.simulation is None:
                await asyncio.sleep(0)
            engine.dispose()
            return await task

        layout = asyncio.run(scenario())
        assert layout.nodes == []
