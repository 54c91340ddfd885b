"""
Knowledge Universe Core - Models, 3D layout, hierarchy resolution and views.

This module provides the layout functionality used by both the backend API
and the CLI, ensuring a single source of truth for all layout logic.
"""

from .models import (
    # Input models
    Entity,
    Relationship,
    Community,
    CommunityReport,
    GraphModel,
    # Derived models
    CommunityBounds,
    CommunityHierarchy,
    Node3D,
    Link3D,
    GraphLayout,
    ENTITY_COLORS,
)

from .config import ForceConfig, ForceConfigUpdate
from .layout import (
    LayoutEngine,
    generate_layout,
    calculate_node_size,
    calculate_link_thickness,
)
from .hierarchy import CommunityHierarchyResolver, resolve_community_hierarchy, hierarchy_info
from .subtree import select_subtree, find_root
from .views import filter_layout, visible_communities, graph_bounds, level_label
from .validation import validate_graph, validation_summary, ValidationIssue, IssueSeverity
from .analysis import summarize_graph, find_connected_components

__all__ = [
    # Models
    "Entity",
    "Relationship",
    "Community",
    "CommunityReport",
    "GraphModel",
    "CommunityBounds",
    "CommunityHierarchy",
    "Node3D",
    "Link3D",
    "GraphLayout",
    "ENTITY_COLORS",
    # Config
    "ForceConfig",
    "ForceConfigUpdate",
    # Layout
    "LayoutEngine",
    "generate_layout",
    "calculate_node_size",
    "calculate_link_thickness",
    # Hierarchy
    "CommunityHierarchyResolver",
    "resolve_community_hierarchy",
    "hierarchy_info",
    "select_subtree",
    "find_root",
    # Views
    "filter_layout",
    "visible_communities",
    "graph_bounds",
    "level_label",
    # Validation
    "validate_graph",
    "validation_summary",
    "ValidationIssue",
    "IssueSeverity",
    # Analysis
    "summarize_graph",
    "find_connected_components",
]
