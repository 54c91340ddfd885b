"""
Framework-independent force simulation.

A `Simulation` owns the position and velocity arrays of a node set and a
registry of named forces. Each `tick()`:
- decays alpha (the kinetic-energy metric) toward its target
- applies every registered force in registration order
- damps velocities and integrates positions

The built-in forces follow d3-force-3d semantics (many-body charge, link
springs, centering, collision). Pairwise forces are computed exactly with
numpy in row chunks, which bounds memory for large node sets.
"""

from typing import Callable, Optional, Union, TYPE_CHECKING

import numpy as np

from .config import ALPHA_START, ALPHA_DECAY, ALPHA_MIN, VELOCITY_DECAY, MAX_TICKS

if TYPE_CHECKING:
    from .models import Node3D, Link3D


# Rows of the pairwise matrix computed per chunk
CHUNK_SIZE = 256
# Squared minimum distance for charge interactions (d3 distanceMin)
DISTANCE_MIN2 = 1.0

PerItem = Union[float, Callable[..., float]]


def _evaluate(value: PerItem, items: list) -> np.ndarray:
    """Evaluate a constant or per-item accessor into a float array."""
    if callable(value):
        return np.array([value(item) for item in items], dtype=float)
    return np.full(len(items), float(value), dtype=float)


class Force:
    """Base class for simulation forces."""

    def __init__(self):
        self.simulation: Optional["Simulation"] = None

    def initialize(self, simulation: "Simulation") -> None:
        """Bind to a simulation and (re)compute cached per-item parameters."""
        self.simulation = simulation

    def __call__(self, alpha: float) -> None:
        raise NotImplementedError

    def _jiggle(self, shape) -> np.ndarray:
        return (self.simulation.rng.random(shape) - 0.5) * 1e-6


class Simulation:
    """
    Iterative force simulation over a fixed node set.

    Nodes must expose `x, y, z, vx, vy, vz`. Positions live in numpy arrays
    while the simulation runs; `sync()` writes them back onto the nodes.
    """

    def __init__(
        self,
        nodes: list["Node3D"],
        alpha: float = ALPHA_START,
        alpha_decay: float = ALPHA_DECAY,
        alpha_min: float = ALPHA_MIN,
        velocity_decay: float = VELOCITY_DECAY,
        max_ticks: int = MAX_TICKS,
        rng: Optional[np.random.Generator] = None,
    ):
        self.nodes = nodes
        self.positions = np.array([[n.x, n.y, n.z] for n in nodes], dtype=float).reshape(-1, 3)
        self.velocities = np.array([[n.vx, n.vy, n.vz] for n in nodes], dtype=float).reshape(-1, 3)
        self.alpha = alpha
        self.alpha_target = 0.0
        self.alpha_decay = alpha_decay
        self.alpha_min = alpha_min
        self.velocity_decay = velocity_decay
        self.max_ticks = max_ticks
        self.rng = rng if rng is not None else np.random.default_rng()
        self.ticks = 0
        self._ticks_since_restart = 0
        self._stopped = False
        self._forces: dict[str, Force] = {}
        self._index = {id(node): i for i, node in enumerate(nodes)}

    def __len__(self) -> int:
        return len(self.nodes)

    def index_of(self, node: "Node3D") -> int:
        """Array row of a node (by identity)."""
        return self._index[id(node)]

    # --- Force registry ---

    def force(self, name: str, force: Optional[Force] = None) -> Optional[Force]:
        """Get a force by name, or register (and initialize) one under that name."""
        if force is None:
            return self._forces.get(name)
        force.initialize(self)
        self._forces[name] = force
        return force

    def remove_force(self, name: str) -> None:
        self._forces.pop(name, None)

    @property
    def force_names(self) -> list[str]:
        return list(self._forces)

    # --- Lifecycle ---

    @property
    def converged(self) -> bool:
        """True once alpha fell below alpha_min or the tick cap was reached."""
        return (
            self._stopped
            or self.alpha < self.alpha_min
            or self._ticks_since_restart >= self.max_ticks
        )

    @property
    def stop_reason(self) -> Optional[str]:
        """Why ticking ended: "stopped", "converged" or "tick cap"; None while running."""
        if self._stopped:
            return "stopped"
        if self.alpha < self.alpha_min:
            return "converged"
        if self._ticks_since_restart >= self.max_ticks:
            return "tick cap"
        return None

    def restart(self, alpha: Optional[float] = None) -> None:
        """Resume ticking, optionally resetting alpha."""
        if alpha is not None:
            self.alpha = alpha
        self._stopped = False
        self._ticks_since_restart = 0

    def stop(self) -> None:
        self._stopped = True

    def tick(self) -> None:
        """Advance the simulation by one step."""
        self.alpha += (self.alpha_target - self.alpha) * self.alpha_decay

        for force in self._forces.values():
            force(self.alpha)

        self.velocities *= 1 - self.velocity_decay
        self.positions += self.velocities
        self.ticks += 1
        self._ticks_since_restart += 1

    def sync(self) -> None:
        """Write array state back onto the node objects."""
        for node, (x, y, z), (vx, vy, vz) in zip(self.nodes, self.positions, self.velocities):
            node.x, node.y, node.z = float(x), float(y), float(z)
            node.vx, node.vy, node.vz = float(vx), float(vy), float(vz)


class ManyBodyForce(Force):
    """
    Pairwise charge force. Negative strength repels.

    Each node is pushed by every other node j by
    (p_j - p_i) * strength_j * alpha / d^2.
    """

    def __init__(self, strength: PerItem = -30):
        super().__init__()
        self._strength = strength
        self._strengths = np.zeros(0)

    def set_strength(self, strength: PerItem) -> None:
        self._strength = strength
        if self.simulation is not None:
            self.initialize(self.simulation)

    def initialize(self, simulation: Simulation) -> None:
        super().initialize(simulation)
        self._strengths = _evaluate(self._strength, simulation.nodes)

    def __call__(self, alpha: float) -> None:
        pos = self.simulation.positions
        vel = self.simulation.velocities
        n = len(pos)
        if n < 2:
            return

        for start in range(0, n, CHUNK_SIZE):
            stop = min(start + CHUNK_SIZE, n)
            rows = np.arange(stop - start)
            diff = pos[None, :, :] - pos[start:stop, None, :]
            d2 = np.einsum("ijk,ijk->ij", diff, diff)

            coincident = d2 == 0
            coincident[rows, rows + start] = False
            if coincident.any():
                diff[coincident] = self._jiggle((int(coincident.sum()), 3))
                d2 = np.einsum("ijk,ijk->ij", diff, diff)

            d2 = np.where(d2 < DISTANCE_MIN2, np.sqrt(d2 * DISTANCE_MIN2), d2)
            d2[rows, rows + start] = np.inf

            weights = self._strengths[None, :] * alpha / d2
            vel[start:stop] += np.einsum("ij,ijk->ik", weights, diff)


class LinkForce(Force):
    """
    Spring force along links, pulling endpoints toward a target distance.

    The correction is split between endpoints by their link counts, so
    well-connected nodes move less.
    """

    def __init__(
        self,
        links: list["Link3D"],
        distance: PerItem = 30,
        strength: PerItem = 1,
        iterations: int = 1,
    ):
        super().__init__()
        self.links = links
        self.iterations = iterations
        self._distance = distance
        self._strength = strength
        self._sources = np.zeros(0, dtype=int)
        self._targets = np.zeros(0, dtype=int)
        self._distances = np.zeros(0)
        self._strengths = np.zeros(0)
        self._bias = np.zeros(0)

    def set_distance(self, distance: PerItem) -> None:
        self._distance = distance
        if self.simulation is not None:
            self._distances = _evaluate(distance, self.links)

    def set_strength(self, strength: PerItem) -> None:
        self._strength = strength
        if self.simulation is not None:
            self._strengths = _evaluate(strength, self.links)

    def initialize(self, simulation: Simulation) -> None:
        super().initialize(simulation)
        self._sources = np.array([simulation.index_of(l.source) for l in self.links], dtype=int)
        self._targets = np.array([simulation.index_of(l.target) for l in self.links], dtype=int)

        counts = np.zeros(len(simulation), dtype=float)
        np.add.at(counts, self._sources, 1)
        np.add.at(counts, self._targets, 1)
        if len(self.links):
            src = counts[self._sources]
            self._bias = src / (src + counts[self._targets])
        else:
            self._bias = np.zeros(0)

        self._distances = _evaluate(self._distance, self.links)
        self._strengths = _evaluate(self._strength, self.links)

    def __call__(self, alpha: float) -> None:
        if not len(self._sources):
            return
        pos = self.simulation.positions
        vel = self.simulation.velocities
        s, t = self._sources, self._targets

        for _ in range(self.iterations):
            delta = (pos[t] + vel[t]) - (pos[s] + vel[s])
            length = np.linalg.norm(delta, axis=1)
            zero = length == 0
            if zero.any():
                delta[zero] = self._jiggle((int(zero.sum()), 3))
                length = np.linalg.norm(delta, axis=1)

            scale = (length - self._distances) / length * alpha * self._strengths
            delta *= scale[:, None]
            np.add.at(vel, t, -delta * self._bias[:, None])
            np.add.at(vel, s, delta * (1 - self._bias)[:, None])


class CenterForce(Force):
    """Shifts all nodes so their mean moves toward a center point."""

    def __init__(self, center: tuple[float, float, float] = (0.0, 0.0, 0.0), strength: float = 1.0):
        super().__init__()
        self.center = np.array(center, dtype=float)
        self.strength = strength

    def set_strength(self, strength: float) -> None:
        self.strength = strength

    def __call__(self, alpha: float) -> None:
        pos = self.simulation.positions
        if not len(pos):
            return
        pos -= (pos.mean(axis=0) - self.center) * self.strength


class CollideForce(Force):
    """
    Resolves overlaps between nodes treated as spheres with per-node radii.

    Overlapping pairs are pushed apart along the line between their
    anticipated positions, weighted by relative sphere area.
    """

    def __init__(self, radius: PerItem = 1, strength: float = 1.0, iterations: int = 1):
        super().__init__()
        self._radius = radius
        self.strength = strength
        self.iterations = iterations
        self._radii = np.zeros(0)

    def set_radius(self, radius: PerItem) -> None:
        self._radius = radius
        if self.simulation is not None:
            self._radii = _evaluate(radius, self.simulation.nodes)

    def initialize(self, simulation: Simulation) -> None:
        super().initialize(simulation)
        self._radii = _evaluate(self._radius, simulation.nodes)

    def __call__(self, alpha: float) -> None:
        n = len(self.simulation)
        if n < 2:
            return
        for _ in range(self.iterations):
            self._apply_once()

    def _apply_once(self) -> None:
        pos = self.simulation.positions
        vel = self.simulation.velocities
        n = len(pos)
        anticipated = pos + vel
        radii = self._radii
        radii2 = radii * radii
        cols = np.arange(n)
        impulse = np.zeros_like(vel)

        for start in range(0, n, CHUNK_SIZE):
            stop = min(start + CHUNK_SIZE, n)
            rows = np.arange(start, stop)
            diff = anticipated[start:stop, None, :] - anticipated[None, :, :]
            d2 = np.einsum("ijk,ijk->ij", diff, diff)
            reach = radii[start:stop, None] + radii[None, :]
            overlap = (cols[None, :] > rows[:, None]) & (d2 < reach * reach)
            if not overlap.any():
                continue

            coincident = overlap & (d2 == 0)
            if coincident.any():
                diff[coincident] = self._jiggle((int(coincident.sum()), 3))
                d2 = np.einsum("ijk,ijk->ij", diff, diff)

            length = np.sqrt(np.where(overlap, d2, 1.0))
            factor = np.where(overlap, (reach - length) / length * self.strength, 0.0)
            push = diff * factor[:, :, None]
            combined = radii2[start:stop, None] + radii2[None, :]
            share = np.divide(
                np.broadcast_to(radii2[None, :], combined.shape), combined,
                out=np.full(combined.shape, 0.5), where=combined > 0,
            )

            impulse[start:stop] += np.einsum("ij,ijk->ik", share, push)
            impulse -= np.einsum("ij,ijk->jk", 1 - share, push)

        vel += impulse
