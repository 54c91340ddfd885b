"""
3D force-directed layout for knowledge graphs.

Places entities in a "spherical knowledge universe":
- Abstraction score (degree + 0.5 x frequency) maps inversely to distance
  from the origin, so central topics sit near the core
- Community level adds a radial offset, so deeper communities form outer shells
- Six forces (charge, link, center, collision, community, spherical) are
  composed every tick until alpha decays below its minimum or the tick cap
  is reached

After convergence the positions are frozen into a `GraphLayout` and the
communities are annotated by the hierarchy resolver.
"""

import asyncio
import dataclasses
import logging
import math
from typing import Any, Optional, Union

import numpy as np

from .config import (
    ForceConfig, ForceConfigUpdate,
    ALPHA_START, MAX_TICKS, RECONFIGURE_ALPHA, FALLBACK_ALPHA,
)
from .hierarchy import CommunityHierarchyResolver
from .models import (
    Community, GraphLayout, GraphModel, Link3D, Node3D, ENTITY_COLORS,
)
from .simulation import (
    Simulation, Force, ManyBodyForce, LinkForce, CenterForce, CollideForce,
)


logger = logging.getLogger(__name__)

ENTITY_SIZES = {
    "MIN": 0.8,
    "MAX": 4.0,
    "SCALE_FACTOR": 0.15,
}

RELATIONSHIP_THICKNESS = {
    "MIN": 0.2,
    "MAX": 2.0,
    "SCALE_FACTOR": 0.1,
}

GOLDEN_ANGLE = math.pi * (3 - math.sqrt(5))
CORE_RADIUS_FRACTION = 0.1
NODE_LEVEL_OFFSET = 0.3
COMMUNITY_LEVEL_OFFSET = 0.2
POSITION_JITTER = 0.1
# Ticks between cooperative yields in async runs
YIELD_EVERY = 10

COMMUNITY_PARAMS = {"community_strength", "spread_3d", "level_spacing", "spherical_constraint"}


def calculate_node_size(degree: float, frequency: float) -> float:
    """Render size of a node, non-decreasing in degree and frequency."""
    size = ENTITY_SIZES["MIN"] + (degree + frequency * 0.1) * ENTITY_SIZES["SCALE_FACTOR"]
    return min(size, ENTITY_SIZES["MAX"])


def calculate_link_thickness(weight: float) -> float:
    """Render thickness of a link, non-decreasing in weight."""
    thickness = RELATIONSHIP_THICKNESS["MIN"] + weight * RELATIONSHIP_THICKNESS["SCALE_FACTOR"]
    return min(thickness, RELATIONSHIP_THICKNESS["MAX"])


def shell_radius(abstraction: float, spread: float) -> float:
    """Map normalized abstraction to a radius in [0.1 x spread, spread]; 1 maps to the core."""
    min_radius = spread * CORE_RADIUS_FRACTION
    return min_radius + (1 - abstraction) * (spread - min_radius)


def fibonacci_point(index: int, count: int, radius: float) -> tuple[float, float, float]:
    """Point `index` of a `count`-point golden-angle spiral on a sphere of `radius`."""
    phi = math.acos(1 - 2 * (index / count))
    theta = GOLDEN_ANGLE * index
    return (
        radius * math.sin(phi) * math.cos(theta),
        radius * math.sin(phi) * math.sin(theta),
        radius * math.cos(phi),
    )


def normalize_abstraction(scores: list[float]) -> list[float]:
    """Scale scores to [0, 1]; every score maps to 0.5 when they are all equal."""
    if not scores:
        return []
    low, high = min(scores), max(scores)
    if high <= low:
        return [0.5] * len(scores)
    return [(s - low) / (high - low) for s in scores]


class CommunityAttractionForce(Force):
    """Nudges each node's velocity toward its community's precomputed center."""

    def __init__(self, engine: "LayoutEngine"):
        super().__init__()
        self.engine = engine
        self._members = np.zeros(0, dtype=int)
        self._centers = np.zeros((0, 3))

    def initialize(self, simulation: Simulation) -> None:
        super().initialize(simulation)
        members, centers = [], []
        for i, node in enumerate(simulation.nodes):
            if node.community is None:
                continue
            center = self.engine.community_centers.get(node.community.id)
            if center is not None:
                members.append(i)
                centers.append(center[:3])
        self._members = np.array(members, dtype=int)
        self._centers = np.array(centers, dtype=float).reshape(-1, 3)

    def __call__(self, alpha: float) -> None:
        if not len(self._members):
            return
        pos = self.simulation.positions
        strength = self.engine.config.community_strength
        self.simulation.velocities[self._members] += (self._centers - pos[self._members]) * strength


class SphericalConstraintForce(Force):
    """Radial impulse pulling each node toward its target shell radius."""

    def __init__(self, engine: "LayoutEngine"):
        super().__init__()
        self.engine = engine
        self._targets = np.zeros(0)

    def initialize(self, simulation: Simulation) -> None:
        super().initialize(simulation)
        self._targets = np.array(
            [self.engine.target_radius(node) for node in simulation.nodes], dtype=float
        )

    def __call__(self, alpha: float) -> None:
        pos = self.simulation.positions
        if not len(pos):
            return
        distance = np.linalg.norm(pos, axis=1)
        moving = distance > 0
        if not moving.any():
            return
        direction = pos[moving] / distance[moving, None]
        impulse = (self._targets[moving] - distance[moving]) * self.engine.config.spherical_constraint
        self.simulation.velocities[moving] += direction * impulse[:, None]


class LayoutEngine:
    """
    Owns one layout run: node and link arrays, community centers and the
    simulation driving them.

    A new layout request should use a new engine; discarding an engine (and
    ignoring its eventual result) is how a run is cancelled.
    """

    def __init__(
        self,
        config: Optional[ForceConfig] = None,
        seed: Optional[int] = None,
        max_ticks: int = MAX_TICKS,
        resolver: Optional[CommunityHierarchyResolver] = None,
    ):
        self._config = config.model_copy() if config is not None else ForceConfig()
        self._rng = np.random.default_rng(seed)
        self._max_ticks = max_ticks
        self._resolver = resolver or CommunityHierarchyResolver()
        self._simulation: Optional[Simulation] = None
        self._nodes: list[Node3D] = []
        self._links: list[Link3D] = []
        self._communities: list[Community] = []
        self.community_centers: dict[str, tuple[float, float, float, float]] = {}
        self.dropped_links = 0

    # --- Properties ---

    @property
    def config(self) -> ForceConfig:
        return self._config

    @property
    def nodes(self) -> list[Node3D]:
        return self._nodes

    @property
    def links(self) -> list[Link3D]:
        return self._links

    @property
    def simulation(self) -> Optional[Simulation]:
        return self._simulation

    @property
    def alpha(self) -> float:
        return self._simulation.alpha if self._simulation else 0.0

    @property
    def converged(self) -> bool:
        return self._simulation is None or self._simulation.converged

    # --- Preprocessing ---

    def target_radius(self, node: Node3D) -> float:
        """Shell radius for a node: abstraction radius plus level offset."""
        return (
            shell_radius(node.abstraction_level, self._config.spread_3d)
            + node.community_level * self._config.level_spacing * NODE_LEVEL_OFFSET
        )

    def _preprocess(self, graph: GraphModel) -> None:
        self._communities = list(graph.communities)

        # Forward map; an entity listed by several communities keeps the last one
        entity_to_community: dict[str, Community] = {}
        for community in graph.communities:
            for entity_id in community.entity_ids:
                entity_to_community[entity_id] = community

        abstraction = normalize_abstraction([e.abstraction_score for e in graph.entities])
        count = len(graph.entities)

        self._nodes = []
        for index, entity in enumerate(graph.entities):
            community = entity_to_community.get(entity.id)
            node = Node3D.from_entity(
                entity,
                community=community,
                community_level=community.level if community else 0,
                abstraction_level=abstraction[index],
                computed_size=calculate_node_size(entity.degree, entity.frequency),
                computed_color=ENTITY_COLORS.get(entity.type, ENTITY_COLORS["unnamed"]),
            )
            # Jitter the radius so the spiral lattice is not visible
            radius = self.target_radius(node) * self._rng.uniform(1 - POSITION_JITTER, 1 + POSITION_JITTER)
            node.x, node.y, node.z = fibonacci_point(index, count, radius)
            self._nodes.append(node)

        node_by_id: dict[str, Node3D] = {n.id: n for n in self._nodes}
        endpoints = graph.endpoint_index()

        self._links = []
        self.dropped_links = 0
        for rel in graph.relationships:
            source = node_by_id.get(endpoints.get(rel.source))
            target = node_by_id.get(endpoints.get(rel.target))
            if source is None or target is None:
                logger.warning(f"Relationship link missing node: {rel.source} -> {rel.target}")
                self.dropped_links += 1
                continue
            self._links.append(Link3D(
                id=rel.id,
                source=source,
                target=target,
                weight=rel.weight,
                description=rel.description,
            ))

    def _calculate_community_centers(self) -> None:
        """Place each community on its shell via the golden-angle spiral, indexed by ordinal."""
        self.community_centers.clear()
        total = len(self._communities)

        members: dict[int, list[Node3D]] = {}
        for node in self._nodes:
            if node.community is not None:
                members.setdefault(id(node.community), []).append(node)

        for index, community in enumerate(self._communities):
            nodes = members.get(id(community))
            if not nodes:
                continue
            avg_abstraction = sum(n.abstraction_level for n in nodes) / len(nodes)
            radius = (
                shell_radius(avg_abstraction, self._config.spread_3d)
                + community.level * self._config.level_spacing * COMMUNITY_LEVEL_OFFSET
            )
            x, y, z = fibonacci_point(index, total, radius)
            self.community_centers[community.id] = (x, y, z, radius)

    # --- Forces ---

    def _charge_strength(self, node: Node3D) -> float:
        # Hubs repel less so dense neighborhoods can form
        return self._config.charge_strength - node.degree * 5

    def _link_distance(self, link: Link3D) -> float:
        return self._config.link_distance / (link.weight * 0.05 + 1)

    def _link_strength(self, link: Link3D) -> float:
        return min(link.weight * 0.05, self._config.link_strength)

    def _collision_radius(self, node: Node3D) -> float:
        return self._config.collision_radius + node.computed_size

    def _setup_forces(self) -> None:
        sim = self._simulation
        sim.force("charge", ManyBodyForce(strength=self._charge_strength))
        sim.force("link", LinkForce(self._links, distance=self._link_distance, strength=self._link_strength))
        sim.force("center", CenterForce(strength=self._config.center_strength))
        sim.force("collision", CollideForce(radius=self._collision_radius))
        self._calculate_community_centers()
        sim.force("community", CommunityAttractionForce(self))
        sim.force("spherical", SphericalConstraintForce(self))

    def _require_force(self, name: str) -> Force:
        force = self._simulation.force(name)
        if force is None:
            raise LookupError(f"Force not registered: {name}")
        return force

    def _update_individual_forces(self, changes: set[str]) -> None:
        if "charge_strength" in changes:
            self._require_force("charge").set_strength(self._charge_strength)

        if "link_distance" in changes:
            self._require_force("link").set_distance(self._link_distance)
        if "link_strength" in changes:
            self._require_force("link").set_strength(self._link_strength)

        if "center_strength" in changes:
            self._require_force("center").set_strength(self._config.center_strength)

        if "collision_radius" in changes:
            self._require_force("collision").set_radius(self._collision_radius)

        if changes & COMMUNITY_PARAMS:
            self._calculate_community_centers()
            self._require_force("community").initialize(self._simulation)
            self._require_force("spherical").initialize(self._simulation)

    # --- Running ---

    def prepare(self, graph: GraphModel, config: Optional[Union[ForceConfig, dict[str, Any]]] = None) -> None:
        """
        Build nodes, links and forces for a run without ticking.

        A full `ForceConfig` replaces the engine config; a dict is a partial
        update merged onto it.

        Raises:
            ValueError: If a dict names unknown parameters or bad values
        """
        if isinstance(config, ForceConfig):
            self._config = config.model_copy()
        elif config is not None:
            self._config = self._config.merged(config)

        self._preprocess(graph)
        self._simulation = Simulation(
            self._nodes,
            alpha=ALPHA_START,
            max_ticks=self._max_ticks,
            rng=self._rng,
        )
        self._setup_forces()

    def step(self) -> bool:
        """
        Advance one tick unless converged.

        Returns:
            True once the simulation has converged
        """
        if self.converged:
            return True
        self._simulation.tick()
        return self._simulation.converged

    async def run(
        self,
        graph: GraphModel,
        config: Optional[Union[ForceConfig, dict[str, Any]]] = None,
    ) -> GraphLayout:
        """Lay out a graph, yielding to the event loop between batches of ticks."""
        self.prepare(graph, config)
        logger.info(f"Layout started: {len(self._nodes)} nodes, {len(self._links)} links")

        while not self.step():
            if self._simulation.ticks % YIELD_EVERY == 0:
                await asyncio.sleep(0)

        return self._finalize()

    def run_sync(
        self,
        graph: GraphModel,
        config: Optional[Union[ForceConfig, dict[str, Any]]] = None,
    ) -> GraphLayout:
        """Lay out a graph without an event loop."""
        self.prepare(graph, config)
        while not self.step():
            pass
        return self._finalize()

    async def settle(self) -> GraphLayout:
        """Tick an already prepared run until it converges again (e.g. after update_config)."""
        while not self.step():
            if self._simulation.ticks % YIELD_EVERY == 0:
                await asyncio.sleep(0)
        return self._finalize()

    def settle_sync(self) -> GraphLayout:
        while not self.step():
            pass
        return self._finalize()

    def _finalize(self) -> GraphLayout:
        """Freeze current positions into a fresh layout and resolve the hierarchy."""
        if self._simulation is None:
            return GraphLayout()

        self._simulation.sync()
        logger.info(
            f"Layout finished ({self._simulation.stop_reason}) after {self._simulation.ticks} ticks "
            f"(alpha={self._simulation.alpha:.4f})"
        )

        communities = {id(c): c.model_copy() for c in self._communities}
        frozen = {
            id(n): dataclasses.replace(
                n, community=communities.get(id(n.community)) if n.community is not None else None
            )
            for n in self._nodes
        }
        nodes = list(frozen.values())
        links = [
            dataclasses.replace(l, source=frozen[id(l.source)], target=frozen[id(l.target)])
            for l in self._links
        ]
        resolved = self._resolver.resolve(nodes, list(communities.values()))
        return GraphLayout(nodes=nodes, links=links, communities=resolved)

    # --- Reconfiguration ---

    def update_config(self, update: Union[ForceConfigUpdate, dict[str, Any]]) -> None:
        """
        Apply a partial config change to the affected forces only.

        Positions are kept. Alpha is bumped to 0.1 so the layout re-settles;
        if the incremental update fails, all forces are rebuilt and alpha is
        bumped to 0.05 instead.

        Raises:
            ValueError: If `update` names unknown parameters or bad values
        """
        if isinstance(update, dict):
            update = ForceConfigUpdate(**update)
        changes = update.changed_fields()
        self._config = self._config.merged(update)

        if self._simulation is None or not self._nodes:
            return

        try:
            self._update_individual_forces(changes)
            self._simulation.restart(RECONFIGURE_ALPHA)
        except Exception:
            logger.warning("Force config update failed, falling back to full setup", exc_info=True)
            self._setup_forces()
            self._simulation.restart(FALLBACK_ALPHA)

    def positions(self) -> dict[str, tuple[float, float, float]]:
        """Snapshot of current node positions keyed by node id."""
        if self._simulation is None:
            return {}
        return {
            node.id: (float(x), float(y), float(z))
            for node, (x, y, z) in zip(self._nodes, self._simulation.positions)
        }

    # --- Lifecycle ---

    def stop(self) -> None:
        """Stop ticking; the current positions become final."""
        if self._simulation is not None:
            self._simulation.stop()

    def dispose(self) -> None:
        """Stop and release all run state."""
        self.stop()
        self._simulation = None
        self._nodes = []
        self._links = []
        self._communities = []
        self.community_centers.clear()


async def generate_layout(
    graph: GraphModel,
    config: Optional[ForceConfig] = None,
    seed: Optional[int] = None,
) -> GraphLayout:
    """Run a fresh engine over `graph` and return its layout."""
    engine = LayoutEngine(config=config, seed=seed)
    try:
        return await engine.run(graph)
    finally:
        engine.dispose()
