"""
Layout Manager - Service-side state for the loaded graph and its layout.

This module implements:
- Single graph state management (one graph loaded at a time)
- Ownership of the live LayoutEngine; a new run always replaces the old one
- Generation tracking so results of superseded runs are never published
- O(1) node/community lookups via index dictionaries
- Change callbacks for real-time sync
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from kg_universe.analysis import summarize_graph
from kg_universe.config import ForceConfig, ForceConfigUpdate
from kg_universe.hierarchy import hierarchy_info
from kg_universe.layout import LayoutEngine
from kg_universe.loader import load_graph_directory
from kg_universe.models import Community, GraphLayout, GraphModel, Node3D
from kg_universe.subtree import select_subtree
from kg_universe.validation import validate_graph, validation_summary
from kg_universe.views import (
    connected_links, filter_layout, graph_bounds, level_label, nodes_in_hierarchy, search_nodes,
)


logger = logging.getLogger(__name__)


class LayoutManager:
    """
    Manages the loaded graph, the layout engine and the published layout.

    Features:
    - Loading a graph discards the running engine and the old layout
    - Each run gets a generation number; a run only publishes if it is still
      the latest when it converges
    - Config updates go to the live engine and re-settle the current layout
    """

    def __init__(self, config: Optional[ForceConfig] = None, seed: Optional[int] = None):
        self._graph: Optional[GraphModel] = None
        self._source: Optional[Path] = None
        self._default_config = config or ForceConfig()
        self._config = self._default_config
        self._seed = seed
        self._engine: Optional[LayoutEngine] = None
        self._running_engine: Optional[LayoutEngine] = None
        self._layout: Optional[GraphLayout] = None
        self._generation = 0
        self._on_change_callbacks: list[Callable] = []

        # O(1) lookup indexes over the published layout
        self._node_index: dict[str, Node3D] = {}
        self._community_index: dict[str, Community] = {}

    # --- Index Management ---

    def _rebuild_indexes(self):
        """Rebuild lookup indexes from the published layout."""
        self._node_index.clear()
        self._community_index.clear()

        if self._layout is None:
            return

        for node in self._layout.nodes:
            self._node_index[node.id] = node
        for community in self._layout.communities:
            self._community_index.setdefault(community.human_readable_id, community)

    # --- Properties ---

    @property
    def graph(self) -> Optional[GraphModel]:
        return self._graph

    @property
    def layout(self) -> Optional[GraphLayout]:
        return self._layout

    @property
    def config(self) -> ForceConfig:
        return self._config

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._running_engine is not None

    # --- Change Callbacks ---

    def on_change(self, callback: Callable):
        """Register a callback for layout changes (once per callback)."""
        if callback not in self._on_change_callbacks:
            self._on_change_callbacks.append(callback)

    def _notify_change(self):
        """Notify all registered callbacks of a change."""
        for callback in self._on_change_callbacks:
            callback()

    # --- Engine Lifecycle ---

    def _discard_engine(self):
        """Drop the current engine; an in-flight run will finish without publishing."""
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._running_engine = None

    def _require_graph(self) -> GraphModel:
        if self._graph is None:
            raise LookupError("No graph loaded")
        return self._graph

    def _publish(self, layout: GraphLayout, generation: int, engine: LayoutEngine) -> Optional[GraphLayout]:
        """Publish a layout if its run is still current."""
        if generation != self._generation or engine is not self._engine:
            logger.info(f"Discarding stale layout from run {generation} (current {self._generation})")
            return None
        self._layout = layout
        self._rebuild_indexes()
        self._notify_change()
        return layout

    # --- Graph Operations ---

    def reset(self):
        """Forget the graph, the engine and the layout, and restore the initial config."""
        self._discard_engine()
        self._config = self._default_config
        self._graph = None
        self._source = None
        self._layout = None
        self._generation += 1
        self._rebuild_indexes()
        self._notify_change()

    def load_graph(self, graph: GraphModel, source: Optional[Path] = None) -> GraphModel:
        """Replace the loaded graph. The previous engine and layout are discarded."""
        self._discard_engine()
        self._graph = graph
        self._source = source
        self._layout = None
        self._generation += 1
        self._rebuild_indexes()
        self._notify_change()
        return graph

    def load_records(self, records: dict[str, list[dict]]) -> GraphModel:
        """Load a graph from raw artifact records."""
        graph = GraphModel.from_records(
            records.get("entities", []),
            records.get("relationships", []),
            records.get("communities", []),
            records.get("community_reports", []),
        )
        return self.load_graph(graph)

    def load_directory(self, directory: Union[str, Path]) -> GraphModel:
        """Load a graph from a directory of JSON artifacts."""
        path = Path(directory).expanduser()
        return self.load_graph(load_graph_directory(path), source=path)

    # --- Layout Operations ---

    async def run_layout(
        self,
        config: Optional[Union[ForceConfigUpdate, dict[str, Any]]] = None,
    ) -> Optional[GraphLayout]:
        """
        Run a fresh layout over the loaded graph.

        Returns:
            The published layout, or None if a newer run superseded this one
        """
        graph = self._require_graph()
        if config is not None:
            self._config = self._config.merged(config)

        self._discard_engine()
        self._generation += 1
        generation = self._generation

        engine = LayoutEngine(config=self._config, seed=self._seed)
        self._engine = engine
        self._running_engine = engine
        try:
            layout = await engine.run(graph)
        finally:
            if self._running_engine is engine:
                self._running_engine = None

        return self._publish(layout, generation, engine)

    async def update_config(
        self,
        update: Union[ForceConfigUpdate, dict[str, Any]],
    ) -> Optional[GraphLayout]:
        """
        Apply a partial config update without resetting positions.

        With a converged engine the layout is re-settled and republished.
        With a run in flight, the run picks the change up between ticks.
        """
        if isinstance(update, dict):
            update = ForceConfigUpdate(**update)
        self._config = self._config.merged(update)

        engine = self._engine
        if engine is None:
            return None

        engine.update_config(update)
        if self._running_engine is not None:
            return None

        generation = self._generation
        self._running_engine = engine
        try:
            layout = await engine.settle()
        finally:
            if self._running_engine is engine:
                self._running_engine = None

        return self._publish(layout, generation, engine)

    # --- Queries ---

    def get_state(self) -> dict:
        """Get the current service state."""
        return {
            "graph_loaded": self._graph is not None,
            "source": str(self._source) if self._source else None,
            "generation": self._generation,
            "running": self.is_running,
            "config": self._config.model_dump(),
            "layout": {
                "nodes": len(self._layout.nodes),
                "links": len(self._layout.links),
                "communities": len(self._layout.communities),
            } if self._layout else None,
        }

    def get_node(self, node_id: str) -> Optional[Node3D]:
        """Get a laid-out node by ID (O(1) index lookup)."""
        return self._node_index.get(node_id)

    def get_community(self, human_readable_id: str) -> Optional[Community]:
        """Get a community by human-readable ID (O(1) index lookup)."""
        return self._community_index.get(human_readable_id)

    def filtered_layout(
        self,
        entity_types: Optional[list[str]] = None,
        level: Optional[int] = None,
        min_weight: float = 0,
    ) -> Optional[GraphLayout]:
        if self._layout is None:
            return None
        return filter_layout(self._layout, entity_types, level, min_weight)

    def subtree(self, human_readable_id: str) -> Optional[list[Community]]:
        """Full root subtree for a community, or None if it does not exist."""
        community = self.get_community(human_readable_id)
        if community is None or self._layout is None:
            return None
        return select_subtree(community, self._layout.communities)

    def inspect_node(self, node_id: str, isolator: bool = True) -> Optional[dict]:
        """Node details with its community context and connected links."""
        node = self.get_node(node_id)
        if node is None:
            return None

        result = {"node": node.to_json_dict(), "community": None}
        if node.community is not None:
            visible = select_subtree(node.community, self._layout.communities) if isolator \
                else self._layout.communities
            info = hierarchy_info(node.community, visible)
            result["community"] = {
                "id": node.community.human_readable_id,
                "title": node.community.title,
                "level": node.community.level,
                "level_label": level_label(node.community.level),
                "size": node.community.size,
                "parents": [c.human_readable_id for c in info.parent_communities],
                "children": [c.human_readable_id for c in info.child_communities],
                "visible_communities": [c.human_readable_id for c in visible],
                "hierarchy_node_ids": sorted(nodes_in_hierarchy(visible)),
            }
        result["links"] = [l.to_json_dict() for l in connected_links(self._layout.links, node_id)]
        return result

    def search(self, term: str) -> list[Node3D]:
        if self._layout is None:
            return []
        ids = search_nodes(self._layout.nodes, term)
        return [n for n in self._layout.nodes if n.id in ids]

    def bounds(self) -> Optional[dict]:
        if self._layout is None:
            return None
        return graph_bounds(self._layout.nodes).to_dict()

    def validate(self) -> dict:
        issues = validate_graph(self._require_graph())
        return {
            "issues": [i.to_dict() for i in issues],
            "summary": validation_summary(issues),
        }

    def summary(self) -> dict:
        return summarize_graph(self._require_graph()).to_dict()


# Global instance for the application
layout_manager = LayoutManager()
