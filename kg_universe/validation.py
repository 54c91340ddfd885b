"""
Graph validation - Check knowledge graphs for integrity issues before layout.

None of these issues stop a layout run: dangling relationships are dropped,
unresolved members are skipped and malformed parents are treated as roots.
Validation reports them up front so callers can see what will be skipped.
"""

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .hierarchy import index_communities

if TYPE_CHECKING:
    from .models import GraphModel


class IssueSeverity(str, Enum):
    """Severity levels for validation issues."""
    ERROR = "error"      # Invalid state, results will be wrong
    WARNING = "warning"  # Data will be skipped during layout
    INFO = "info"        # Informational, may be intentional


@dataclass
class ValidationIssue:
    """A single validation issue found in a graph."""
    severity: IssueSeverity
    message: str
    entity_id: str | None = None
    relationship_id: str | None = None
    community_id: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        result = {
            "type": self.severity.value,
            "message": self.message
        }
        if self.entity_id:
            result["entity_id"] = self.entity_id
        if self.relationship_id:
            result["relationship_id"] = self.relationship_id
        if self.community_id:
            result["community_id"] = self.community_id
        return result


def _find_parent_cycles(graph: "GraphModel") -> list[list[str]]:
    """Cycles in the parent chain, as lists of human-readable ids."""
    by_id = index_communities(graph.communities)
    cycles: list[list[str]] = []
    seen: set[frozenset[str]] = set()

    for start in graph.communities:
        path: list[str] = []
        on_path: set[str] = set()
        current = start
        while current is not None and current.human_readable_id not in on_path:
            path.append(current.human_readable_id)
            on_path.add(current.human_readable_id)
            current = by_id.get(current.parent) if current.parent is not None else None

        if current is not None:
            cycle = path[path.index(current.human_readable_id):]
            key = frozenset(cycle)
            if key not in seen:
                seen.add(key)
                cycles.append(cycle)

    return cycles


def validate_graph(graph: "GraphModel") -> list[ValidationIssue]:
    """
    Validate a graph and return a list of issues.

    Checks for:
    - Empty graph - INFO
    - Duplicate entity ids - ERROR
    - Relationships with unknown endpoints - WARNING
    - Community members that are not entities - WARNING
    - Entities claimed by several communities at one level - INFO
    - Parents that do not resolve to a community - WARNING
    - Explicit children that do not resolve - WARNING
    - Cycles in the parent chain - WARNING

    Args:
        graph: The graph to validate

    Returns:
        List of ValidationIssue objects
    """
    issues: list[ValidationIssue] = []

    if not graph.entities:
        issues.append(ValidationIssue(
            severity=IssueSeverity.INFO,
            message="Graph has no entities"
        ))
        return issues

    # Quick lookup sets
    entity_ids: set[str] = set()
    for entity in graph.entities:
        if entity.id in entity_ids:
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Duplicate entity id: {entity.id}",
                entity_id=entity.id
            ))
        entity_ids.add(entity.id)
    endpoints = graph.endpoint_index()

    # Relationships resolve by id, or by title as a fallback
    for rel in graph.relationships:
        for end, label in ((rel.source, "source"), (rel.target, "target")):
            if end not in endpoints:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    message=f"Relationship references non-existent {label} entity: {end}",
                    relationship_id=rel.id
                ))

    # Community membership
    owners: dict[tuple[str, int], list[str]] = defaultdict(list)
    for community in graph.communities:
        missing = [eid for eid in community.entity_ids if eid not in entity_ids]
        if missing:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Community has {len(missing)} members that are not entities",
                community_id=community.human_readable_id
            ))
        for eid in community.entity_ids:
            owners[(eid, community.level)].append(community.human_readable_id)

    for (eid, level), claimed_by in owners.items():
        if len(claimed_by) > 1:
            issues.append(ValidationIssue(
                severity=IssueSeverity.INFO,
                message=f"Entity is a member of {len(claimed_by)} level-{level} communities: {', '.join(claimed_by)}",
                entity_id=eid
            ))

    # Hierarchy references
    by_id = index_communities(graph.communities)
    for community in graph.communities:
        if community.parent is not None and community.parent not in by_id:
            issues.append(ValidationIssue(
                severity=IssueSeverity.WARNING,
                message=f"Community parent does not exist: {community.parent} (treated as root)",
                community_id=community.human_readable_id
            ))
        for child_id in community.children:
            if child_id not in by_id:
                issues.append(ValidationIssue(
                    severity=IssueSeverity.WARNING,
                    message=f"Community child does not exist: {child_id}",
                    community_id=community.human_readable_id
                ))

    for cycle in _find_parent_cycles(graph):
        issues.append(ValidationIssue(
            severity=IssueSeverity.WARNING,
            message=f"Parent cycle: {' -> '.join(cycle + [cycle[0]])}",
            community_id=cycle[0]
        ))

    return issues


def validation_summary(issues: list[ValidationIssue]) -> dict:
    """
    Create a summary of validation issues.

    Args:
        issues: List of validation issues

    Returns:
        Dictionary with counts by severity
    """
    return {
        "total": len(issues),
        "errors": len([i for i in issues if i.severity == IssueSeverity.ERROR]),
        "warnings": len([i for i in issues if i.severity == IssueSeverity.WARNING]),
        "info": len([i for i in issues if i.severity == IssueSeverity.INFO]),
        "valid": len([i for i in issues if i.severity == IssueSeverity.ERROR]) == 0
    }
