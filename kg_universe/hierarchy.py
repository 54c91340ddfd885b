"""
Community hierarchy resolution.

Runs once a layout has converged and annotates every community in place with:
- A padded axis-aligned bounding volume around its member nodes
- Its resolved parent and child communities
- A render color and opacity derived from its level

Resolution is idempotent and never touches node positions.
"""

import logging
from collections import defaultdict
from typing import Optional, Iterable, TYPE_CHECKING

from .models import Community, CommunityBounds, CommunityHierarchy

if TYPE_CHECKING:
    from .models import Node3D


logger = logging.getLogger(__name__)

BOUNDS_PADDING = 35
LEVEL_PALETTE = ("#ff6b6b", "#4ecdc4", "#45b7d1", "#96ceb4", "#feca57")
BASE_OPACITY = 0.15


def index_communities(communities: Iterable[Community]) -> dict[str, Community]:
    """Map human-readable id -> community. The first community with an id wins."""
    index: dict[str, Community] = {}
    for community in communities:
        index.setdefault(community.human_readable_id, community)
    return index


def index_children(communities: Iterable[Community]) -> dict[str, list[Community]]:
    """Reverse parent index: parent human-readable id -> communities naming it."""
    children: dict[str, list[Community]] = defaultdict(list)
    for community in communities:
        if community.parent is not None:
            children[community.parent].append(community)
    return children


def resolve_children(
    community: Community,
    by_id: dict[str, Community],
    children_by_parent: dict[str, list[Community]],
) -> list[Community]:
    """
    Union of communities whose parent is `community` and its explicit children.

    De-duplicated by identity, in discovery order; a community is never its
    own child.
    """
    found: list[Community] = []
    seen: set[int] = {id(community)}

    for child in children_by_parent.get(community.human_readable_id, []):
        if id(child) not in seen:
            seen.add(id(child))
            found.append(child)

    for child_id in community.children:
        child = by_id.get(child_id)
        if child is not None and id(child) not in seen:
            seen.add(id(child))
            found.append(child)

    return found


def compute_bounds(nodes: list["Node3D"], padding: float = BOUNDS_PADDING) -> Optional[CommunityBounds]:
    """
    Bounding box of node positions, padded on each axis.

    Returns:
        CommunityBounds, or None when there are no nodes (nothing to draw)
    """
    if not nodes:
        return None

    min_x = min(n.x for n in nodes)
    max_x = max(n.x for n in nodes)
    min_y = min(n.y for n in nodes)
    max_y = max(n.y for n in nodes)
    min_z = min(n.z for n in nodes)
    max_z = max(n.z for n in nodes)

    return CommunityBounds(
        center=((min_x + max_x) / 2, (min_y + max_y) / 2, (min_z + max_z) / 2),
        size=(max_x - min_x + padding, max_y - min_y + padding, max_z - min_z + padding),
        padding=padding,
    )


def _by_level(communities: list[Community]) -> list[Community]:
    return sorted(communities, key=lambda c: c.level)


class CommunityHierarchyResolver:
    """
    Attaches derived hierarchy data to communities after layout.

    Parents are looked up through each community's `parent` field; children
    are the union of the reverse parent index and the explicit `children`
    list.
    """

    def __init__(
        self,
        padding: float = BOUNDS_PADDING,
        palette: tuple[str, ...] = LEVEL_PALETTE,
        opacity: float = BASE_OPACITY,
    ):
        self.padding = padding
        self.palette = palette
        self.opacity = opacity

    def color_for_level(self, level: int) -> str:
        return self.palette[level % len(self.palette)]

    def resolve(self, nodes: list["Node3D"], communities: list[Community]) -> list[Community]:
        """
        Annotate communities in place.

        Args:
            nodes: Nodes with final positions
            communities: Communities to annotate

        Returns:
            The same list of communities (modified in-place)
        """
        node_index = {n.id: n for n in nodes}
        by_id = index_communities(communities)
        children_by_parent = index_children(communities)

        empty = 0
        dangling_parents = 0

        for community in communities:
            members = [node_index[eid] for eid in community.entity_ids if eid in node_index]
            community.computed_bounds = compute_bounds(members, self.padding)
            if not members:
                empty += 1

            parents: list[Community] = []
            if community.parent is not None:
                parent = by_id.get(community.parent)
                if parent is None:
                    dangling_parents += 1
                elif parent is not community:
                    parents.append(parent)

            children = resolve_children(community, by_id, children_by_parent)

            community.computed_hierarchy = CommunityHierarchy(
                parent_communities=_by_level(parents),
                child_communities=_by_level(children),
            )
            community.computed_color = self.color_for_level(community.level)
            community.computed_opacity = self.opacity

        if empty:
            logger.warning(f"{empty} communities have no members in the layout; no bounds computed")
        if dangling_parents:
            logger.warning(f"{dangling_parents} communities reference a parent that does not exist")

        return communities


def resolve_community_hierarchy(nodes: list["Node3D"], communities: list[Community]) -> list[Community]:
    """Annotate communities using the default resolver settings."""
    return CommunityHierarchyResolver().resolve(nodes, communities)


def hierarchy_info(community: Community, visible: list[Community]) -> CommunityHierarchy:
    """
    Direct parents and children of a community, restricted to a visible set.

    Used by inspection views that only show part of the hierarchy.
    """
    by_id = index_communities(visible)
    parents = []
    if community.parent is not None:
        parent = by_id.get(community.parent)
        if parent is not None and parent is not community:
            parents.append(parent)

    children = resolve_children(community, by_id, index_children(visible))
    return CommunityHierarchy(
        parent_communities=_by_level(parents),
        child_communities=_by_level(children),
    )
