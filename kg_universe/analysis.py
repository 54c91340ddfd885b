"""
Graph analysis - Structural summaries of a knowledge graph.

Provides analysis used by the service and the CLI to describe a graph
before or alongside its layout.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import GraphModel


@dataclass
class ConnectedComponent:
    """A connected component of the entity graph."""
    entity_ids: list[str] = field(default_factory=list)
    relationship_count: int = 0

    @property
    def size(self) -> int:
        return len(self.entity_ids)


@dataclass
class EntityConnectionInfo:
    """Connection information for a single entity."""
    entity_id: str
    title: str
    connections: int = 0
    weight: float = 0.0


@dataclass
class GraphSummary:
    """Complete summary of a graph's structure."""
    total_entities: int
    total_relationships: int
    total_communities: int
    entities_by_type: dict[str, int]
    communities_by_level: dict[int, int]
    connected_components: int
    largest_component: int
    most_connected_entities: list[EntityConnectionInfo]
    orphan_count: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "total_entities": self.total_entities,
            "total_relationships": self.total_relationships,
            "total_communities": self.total_communities,
            "entities_by_type": self.entities_by_type,
            "communities_by_level": {str(k): v for k, v in self.communities_by_level.items()},
            "connected_components": self.connected_components,
            "largest_component": self.largest_component,
            "most_connected_entities": [
                {
                    "id": e.entity_id,
                    "title": e.title,
                    "connections": e.connections,
                    "weight": e.weight,
                }
                for e in self.most_connected_entities
            ],
            "orphan_count": self.orphan_count
        }


def find_connected_components(graph: "GraphModel") -> list[ConnectedComponent]:
    """
    Find all connected components of the entity graph using BFS.

    Relationships are treated as undirected. Endpoints resolve by entity ID,
    then by title; relationships with unknown endpoints are ignored.

    Args:
        graph: The graph to analyze

    Returns:
        List of ConnectedComponent objects, largest first
    """
    if not graph.entities:
        return []

    entity_ids = [e.id for e in graph.entities]
    adjacency: dict[str, set[str]] = {eid: set() for eid in entity_ids}
    edge_counts: dict[str, int] = defaultdict(int)

    endpoints = graph.endpoint_index()
    for rel in graph.relationships:
        source = endpoints.get(rel.source)
        target = endpoints.get(rel.target)
        if source is None or target is None:
            continue
        adjacency[source].add(target)
        adjacency[target].add(source)
        edge_counts[source] += 1

    visited: set[str] = set()
    components: list[ConnectedComponent] = []

    for start in entity_ids:
        if start in visited:
            continue

        members: list[str] = []
        queue = deque([start])
        visited.add(start)

        while queue:
            current = queue.popleft()
            members.append(current)
            for neighbor in adjacency[current]:
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)

        components.append(ConnectedComponent(
            entity_ids=members,
            relationship_count=sum(edge_counts[m] for m in members)
        ))

    components.sort(key=lambda c: c.size, reverse=True)
    return components


def calculate_entity_connections(graph: "GraphModel") -> dict[str, EntityConnectionInfo]:
    """
    Count resolved relationships and their total weight per entity.

    Endpoints resolve the same way as in `find_connected_components`.

    Args:
        graph: The graph to analyze

    Returns:
        Dictionary mapping entity_id to EntityConnectionInfo
    """
    connections: dict[str, EntityConnectionInfo] = {
        e.id: EntityConnectionInfo(entity_id=e.id, title=e.title)
        for e in graph.entities
    }

    endpoints = graph.endpoint_index()
    for rel in graph.relationships:
        source = endpoints.get(rel.source)
        target = endpoints.get(rel.target)
        if source is not None and target is not None:
            for end in (source, target):
                connections[end].connections += 1
                connections[end].weight += rel.weight

    return connections


def summarize_graph(graph: "GraphModel", top_n: int = 5) -> GraphSummary:
    """
    Generate a comprehensive summary of a graph.

    Args:
        graph: The graph to summarize
        top_n: Number of top connected entities to include

    Returns:
        GraphSummary object with all analysis results
    """
    type_counts: dict[str, int] = defaultdict(int)
    for entity in graph.entities:
        type_counts[entity.type] += 1

    level_counts: dict[int, int] = defaultdict(int)
    for community in graph.communities:
        level_counts[community.level] += 1

    components = find_connected_components(graph)
    connections = calculate_entity_connections(graph)

    sorted_by_connections = sorted(
        connections.values(),
        key=lambda x: (x.connections, x.weight),
        reverse=True
    )
    most_connected = [e for e in sorted_by_connections[:top_n] if e.connections > 0]
    orphan_count = sum(1 for e in connections.values() if e.connections == 0)

    return GraphSummary(
        total_entities=len(graph.entities),
        total_relationships=len(graph.relationships),
        total_communities=len(graph.communities),
        entities_by_type=dict(type_counts),
        communities_by_level=dict(sorted(level_counts.items())),
        connected_components=len(components),
        largest_component=components[0].size if components else 0,
        most_connected_entities=most_connected,
        orphan_count=orphan_count
    )
