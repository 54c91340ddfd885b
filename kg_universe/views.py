"""
Inspection and selection helpers over a finished layout.

These functions never move nodes: filtering returns a new GraphLayout that
shares node objects with the original, so positions stay stable.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from .models import Community, GraphLayout, Link3D, Node3D
from .subtree import select_subtree


LEVEL_LABELS = {
    0: "Sector",
    1: "System",
    2: "Subsystem",
    3: "Component",
    4: "Element",
}

DEFAULT_BOUNDS_SIZE = 200
CAMERA_DISTANCE_FACTOR = 1.2
CAMERA_OFFSET = 0.7


@dataclass
class GraphBounds:
    """Extent of a node set and a camera position that frames it."""
    center: tuple[float, float, float]
    size: float
    camera_position: tuple[float, float, float]

    def to_dict(self) -> dict:
        return {
            "center": list(self.center),
            "size": self.size,
            "camera_position": list(self.camera_position),
        }


def level_label(level: int) -> str:
    """Human-readable name for a community level."""
    return LEVEL_LABELS.get(level, f"L{level}")


def filter_layout(
    layout: GraphLayout,
    entity_types: Optional[Iterable[str]] = None,
    level: Optional[int] = None,
    min_weight: float = 0,
) -> GraphLayout:
    """
    Filter nodes by entity type and community level, then links by weight.

    Links survive only when both endpoints survive. Communities pass through.
    """
    types = set(entity_types or [])
    nodes = layout.nodes

    if types:
        nodes = [n for n in nodes if n.type in types]
    if level is not None:
        nodes = [n for n in nodes if n.community_level == level]

    visible = {n.id for n in nodes}
    links = [
        l for l in layout.links
        if l.weight >= min_weight and l.source.id in visible and l.target.id in visible
    ]
    return GraphLayout(nodes=nodes, links=links, communities=layout.communities)


def visible_communities(
    layout: GraphLayout,
    selected_node: Optional[Node3D],
    isolator: bool = True,
) -> list[Community]:
    """
    Communities to show for the current selection.

    In isolator mode with a selected node, this is the full root subtree of
    the node's community, or nothing when the node has no community.
    """
    if not layout.communities:
        return []
    if isolator and selected_node is not None:
        if selected_node.community is None:
            return []
        return select_subtree(selected_node.community, layout.communities)
    return list(layout.communities)


def nodes_in_hierarchy(communities: Iterable[Community]) -> set[str]:
    """Entity ids that belong to any of the given communities."""
    ids: set[str] = set()
    for community in communities:
        ids.update(community.entity_ids)
    return ids


def search_nodes(nodes: Iterable[Node3D], term: str) -> set[str]:
    """Ids of nodes whose title or description contains `term` (case-insensitive)."""
    needle = term.strip().lower()
    if not needle:
        return set()
    return {
        n.id for n in nodes
        if needle in n.title.lower() or needle in n.description.lower()
    }


def connected_links(links: Iterable[Link3D], node_id: str) -> list[Link3D]:
    """Links touching a node."""
    return [l for l in links if l.source.id == node_id or l.target.id == node_id]


def hero_link_ids(links: list[Link3D], quantile: float = 0.9) -> set[str]:
    """Ids of the top-weighted links (weight at or above the given quantile)."""
    if not links:
        return set()
    weights = sorted(l.weight for l in links)
    index = min(len(weights) - 1, max(0, int(len(weights) * quantile)))
    threshold = weights[index]
    return {l.id for l in links if l.weight >= threshold}


def graph_bounds(nodes: list[Node3D]) -> GraphBounds:
    """Center and extent of the nodes, with a camera position that frames them."""
    if not nodes:
        return GraphBounds(
            center=(0.0, 0.0, 0.0),
            size=DEFAULT_BOUNDS_SIZE,
            camera_position=(100.0, 100.0, 100.0),
        )

    xs = [n.x for n in nodes]
    ys = [n.y for n in nodes]
    zs = [n.z for n in nodes]
    center = ((min(xs) + max(xs)) / 2, (min(ys) + max(ys)) / 2, (min(zs) + max(zs)) / 2)
    size = max(max(xs) - min(xs), max(ys) - min(ys), max(zs) - min(zs))
    distance = max(size * CAMERA_DISTANCE_FACTOR, DEFAULT_BOUNDS_SIZE)

    return GraphBounds(
        center=center,
        size=size,
        camera_position=tuple(c + distance * CAMERA_OFFSET for c in center),
    )
