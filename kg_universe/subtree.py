"""
Hierarchy subtree selection for isolator views.

Selecting any community yields the whole subtree of its top-level ancestor,
so selecting a leaf and selecting its root give the same result.
"""

import logging
from collections import deque
from typing import Optional

from .hierarchy import index_communities, index_children, resolve_children
from .models import Community


logger = logging.getLogger(__name__)

# Outer bound on the upward walk; cycles are caught earlier by the visited set
MAX_ANCESTOR_HOPS = 64


def find_root(
    selected: Community,
    all_communities: list[Community],
    by_id: Optional[dict[str, Community]] = None,
) -> Community:
    """
    Walk parent links upward from `selected` to its top-level ancestor.

    The walk stops at the last community reached when a parent id does not
    resolve, when a parent was already visited (a cycle), or after
    MAX_ANCESTOR_HOPS steps. That community is treated as the root.
    """
    if by_id is None:
        by_id = index_communities(all_communities)

    current = selected
    visited = {id(selected)}

    for _ in range(MAX_ANCESTOR_HOPS):
        if current.parent is None:
            return current

        parent = by_id.get(current.parent)
        if parent is None:
            logger.debug(f"Community {current.human_readable_id} has unknown parent {current.parent}")
            return current
        if id(parent) in visited:
            logger.warning(f"Parent cycle detected at community {parent.human_readable_id}")
            return current

        visited.add(id(parent))
        current = parent

    if current.parent is None:
        return current
    logger.warning(f"Ancestor walk from {selected.human_readable_id} exceeded {MAX_ANCESTOR_HOPS} hops")
    return current


def select_subtree(selected: Optional[Community], all_communities: list[Community]) -> list[Community]:
    """
    Collect the full hierarchy subtree under the root of `selected`.

    Args:
        selected: The community to focus on
        all_communities: Every community of the layout

    Returns:
        Subtree communities sorted by level ascending (ties keep input order).
        On any internal failure, just [selected].
    """
    if selected is None or not all_communities:
        return []

    try:
        by_id = index_communities(all_communities)
        children_by_parent = index_children(all_communities)
        root = find_root(selected, all_communities, by_id)

        # BFS over both the reverse parent index and explicit children
        collected: list[Community] = []
        visited = {id(root)}
        queue = deque([root])

        while queue:
            community = queue.popleft()
            collected.append(community)
            for child in resolve_children(community, by_id, children_by_parent):
                if id(child) not in visited:
                    visited.add(id(child))
                    queue.append(child)

        order = {id(c): i for i, c in enumerate(all_communities)}
        return sorted(collected, key=lambda c: (c.level, order.get(id(c), len(order))))

    except Exception:
        logger.warning("Error building community subtree", exc_info=True)
        return [selected]
