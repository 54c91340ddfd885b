"""
Core data models for knowledge graphs and their 3D layouts.

These models define the canonical schema consumed and produced by the engine:
- Entities, relationships and communities as produced by the external loader
- Nodes and links augmented with live 3D simulation state
- The finished layout handed to renderers and inspection views

Identifier Convention:
- Identifiers arrive as numbers or strings depending on the artifact
- Everything is canonicalized to `str` on input so the engine never branches
  on identifier type (`3`, `3.0` and `"3"` all become `"3"`)
- A community `parent` of `None`, `""`, `-1` or `"-1"` means "no parent"
"""

from dataclasses import dataclass, field
import json
from typing import Optional, Any
from pydantic import BaseModel, Field, field_validator, model_validator


ENTITY_COLORS: dict[str, str] = {
    "ORGANIZATION": "#ff6b6b",
    "EVENT": "#4ecdc4",
    "PERSON": "#45b7d1",
    "GEO": "#96ceb4",
    "PROCESS": "#feca57",
    "unnamed": "#95a5a6",
}

NO_PARENT_VALUES = ("", "-1")


def canonical_id(value: Any) -> str:
    """Normalize a numeric or string identifier to its canonical string form."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def ensure_string_list(value: Any) -> list[str]:
    """
    Coerce a list-like column into a list of canonical strings.

    Accepts real lists, JSON-encoded list strings, comma-separated strings,
    scalars and null.
    """
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [canonical_id(v) for v in value]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [s.strip() for s in value.split(",") if s.strip()]
        if isinstance(parsed, list):
            return [canonical_id(v) for v in parsed]
        return [value]
    return [canonical_id(value)]


class Entity(BaseModel):
    """A named entity extracted from the corpus."""
    id: str
    human_readable_id: str = ""
    title: str = ""
    type: str = "unnamed"
    description: str = ""
    text_unit_ids: list[str] = Field(default_factory=list)
    frequency: float = 0
    degree: float = 0

    @field_validator("id", "human_readable_id", mode="before")
    @classmethod
    def normalize_ids(cls, v: Any) -> str:
        return canonical_id(v)

    @field_validator("type", mode="before")
    @classmethod
    def default_type(cls, v: Any) -> str:
        return str(v) if v else "unnamed"

    @field_validator("title", "description", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("text_unit_ids", mode="before")
    @classmethod
    def normalize_lists(cls, v: Any) -> list[str]:
        return ensure_string_list(v)

    @field_validator("frequency", "degree", mode="before")
    @classmethod
    def default_zero(cls, v: Any) -> float:
        return 0 if v is None else v

    @property
    def abstraction_score(self) -> float:
        """Topical centrality proxy: degree + 0.5 x frequency."""
        return self.degree + self.frequency * 0.5


class Relationship(BaseModel):
    """
    A weighted relationship between two entities.

    `source` and `target` name entity ids (or, as a fallback, entity titles).
    """
    id: str
    human_readable_id: str = ""
    source: str
    target: str
    description: str = ""
    weight: float = 1
    combined_degree: float = 0
    text_unit_ids: list[str] = Field(default_factory=list)

    @field_validator("id", "human_readable_id", "source", "target", mode="before")
    @classmethod
    def normalize_ids(cls, v: Any) -> str:
        return canonical_id(v)

    @field_validator("description", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("weight", mode="before")
    @classmethod
    def default_weight(cls, v: Any) -> float:
        return 1 if v is None else v

    @field_validator("combined_degree", mode="before")
    @classmethod
    def default_degree(cls, v: Any) -> float:
        return 0 if v is None else v

    @field_validator("text_unit_ids", mode="before")
    @classmethod
    def normalize_lists(cls, v: Any) -> list[str]:
        return ensure_string_list(v)


class CommunityBounds(BaseModel):
    """Axis-aligned box enclosing a community's member nodes."""
    center: tuple[float, float, float]
    size: tuple[float, float, float]
    padding: float


class CommunityHierarchy(BaseModel):
    """Resolved parent/child communities, sorted by level ascending."""
    parent_communities: list["Community"] = Field(default_factory=list)
    child_communities: list["Community"] = Field(default_factory=list)


class Community(BaseModel):
    """
    A community in the hierarchical clustering.

    Level 0 is the most general. `parent` and `children` hold human-readable
    ids of other communities. The `computed_*` fields are attached by the
    hierarchy resolver after layout and are absent on freshly loaded data.
    """
    id: str
    human_readable_id: str = ""
    community: str = ""
    level: int = 0
    parent: Optional[str] = None
    children: list[str] = Field(default_factory=list)
    title: str = ""
    size: int = 0
    entity_ids: list[str] = Field(default_factory=list)
    relationship_ids: list[str] = Field(default_factory=list)
    text_unit_ids: list[str] = Field(default_factory=list)
    period: str = ""
    # Derived fields (resolver-owned)
    computed_bounds: Optional[CommunityBounds] = None
    computed_hierarchy: Optional[CommunityHierarchy] = Field(default=None, exclude=True)
    computed_color: Optional[str] = None
    computed_opacity: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def default_community_key(cls, data: Any) -> Any:
        """Fall back to the human-readable id when the `community` column is missing."""
        if isinstance(data, dict) and data.get("community") in (None, ""):
            data = dict(data)
            data["community"] = data.get("human_readable_id", "")
        return data

    @field_validator("id", "human_readable_id", "community", mode="before")
    @classmethod
    def normalize_ids(cls, v: Any) -> str:
        return canonical_id(v)

    @field_validator("parent", mode="before")
    @classmethod
    def normalize_parent(cls, v: Any) -> Optional[str]:
        parent = canonical_id(v)
        if parent in NO_PARENT_VALUES:
            return None
        return parent

    @field_validator("children", "entity_ids", "relationship_ids", "text_unit_ids", mode="before")
    @classmethod
    def normalize_lists(cls, v: Any) -> list[str]:
        return ensure_string_list(v)

    @field_validator("level", "size", mode="before")
    @classmethod
    def default_zero(cls, v: Any) -> int:
        return 0 if v is None else int(float(v))

    @field_validator("title", "period", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def __hash__(self) -> int:
        return id(self)

    def __eq__(self, other: object) -> bool:
        return self is other

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict; hierarchy references become ids."""
        result = self.model_dump(exclude={"computed_bounds", "computed_hierarchy"})
        result["computed_bounds"] = (
            self.computed_bounds.model_dump() if self.computed_bounds else None
        )
        if self.computed_hierarchy is not None:
            result["computed_hierarchy"] = {
                "parent_ids": [c.human_readable_id for c in self.computed_hierarchy.parent_communities],
                "child_ids": [c.human_readable_id for c in self.computed_hierarchy.child_communities],
            }
        else:
            result["computed_hierarchy"] = None
        return result


CommunityHierarchy.model_rebuild()
Community.model_rebuild()


class CommunityReport(BaseModel):
    """A generated summary of a community; only its title is used by the engine."""
    id: str = ""
    human_readable_id: str = ""
    community: str = ""
    level: int = 0
    title: str = ""
    summary: str = ""
    full_content: str = ""
    rank: float = 0
    rank_explanation: str = ""
    findings: list[Any] = Field(default_factory=list)

    @field_validator("id", "human_readable_id", "community", mode="before")
    @classmethod
    def normalize_ids(cls, v: Any) -> str:
        return canonical_id(v)

    @field_validator("findings", mode="before")
    @classmethod
    def ensure_list(cls, v: Any) -> list[Any]:
        return v if isinstance(v, list) else []


class GraphModel(BaseModel):
    """
    The complete input graph.
    This is what the external loader produces and the layout engine consumes.
    """
    entities: list[Entity] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    communities: list[Community] = Field(default_factory=list)
    community_reports: list[CommunityReport] = Field(default_factory=list)

    @classmethod
    def from_records(
        cls,
        entities: list[dict],
        relationships: list[dict],
        communities: list[dict],
        community_reports: Optional[list[dict]] = None,
    ) -> "GraphModel":
        """Create a GraphModel from raw artifact records, merging report titles onto communities."""
        reports = [CommunityReport(**r) for r in (community_reports or [])]
        titles = {r.community: r.title for r in reports if r.title}

        parsed_communities = []
        for record in communities:
            community = Community(**record)
            if community.community in titles:
                community.title = titles[community.community]
            parsed_communities.append(community)

        return cls(
            entities=[Entity(**e) for e in entities],
            relationships=[Relationship(**r) for r in relationships],
            communities=parsed_communities,
            community_reports=reports,
        )

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        """Get an entity by ID (O(n))."""
        for entity in self.entities:
            if entity.id == entity_id:
                return entity
        return None

    def get_community(self, human_readable_id: str) -> Optional[Community]:
        """Get a community by human-readable ID (O(n))."""
        key = canonical_id(human_readable_id)
        for community in self.communities:
            if community.human_readable_id == key:
                return community
        return None

    def endpoint_index(self) -> dict[str, str]:
        """
        Map relationship endpoint names to entity IDs.

        Entity IDs resolve to themselves; titles resolve to the first entity
        carrying them, but never shadow an ID.
        """
        index = {e.id: e.id for e in self.entities}
        for entity in self.entities:
            if entity.title:
                index.setdefault(entity.title, entity.id)
        return index


# --- Layout Types ---

@dataclass(eq=False)
class Node3D:
    """An entity augmented with live simulation state."""
    id: str
    human_readable_id: str
    title: str
    type: str
    description: str
    text_unit_ids: list[str]
    frequency: float
    degree: float
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0
    community: Optional[Community] = None
    community_level: int = 0
    abstraction_level: float = 0.5
    computed_size: float = 0.0
    computed_color: str = ENTITY_COLORS["unnamed"]

    @classmethod
    def from_entity(cls, entity: Entity, **kwargs) -> "Node3D":
        return cls(
            id=entity.id,
            human_readable_id=entity.human_readable_id,
            title=entity.title,
            type=entity.type,
            description=entity.description,
            text_unit_ids=list(entity.text_unit_ids),
            frequency=entity.frequency,
            degree=entity.degree,
            **kwargs,
        )

    @property
    def position(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @property
    def distance_from_origin(self) -> float:
        return (self.x * self.x + self.y * self.y + self.z * self.z) ** 0.5

    def to_json_dict(self) -> dict:
        """Convert to JSON-serializable dict; the community becomes its id."""
        return {
            "id": self.id,
            "human_readable_id": self.human_readable_id,
            "title": self.title,
            "type": self.type,
            "description": self.description,
            "text_unit_ids": self.text_unit_ids,
            "frequency": self.frequency,
            "degree": self.degree,
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "community": self.community.human_readable_id if self.community else None,
            "community_level": self.community_level,
            "abstraction_level": self.abstraction_level,
            "computed_size": self.computed_size,
            "computed_color": self.computed_color,
        }


@dataclass(eq=False)
class Link3D:
    """A relationship whose endpoints resolved to nodes of the same layout."""
    id: str
    source: Node3D
    target: Node3D
    weight: float
    description: str = ""

    def to_json_dict(self) -> dict:
        return {
            "id": self.id,
            "source": self.source.id,
            "target": self.target.id,
            "weight": self.weight,
            "description": self.description,
        }


@dataclass
class GraphLayout:
    """
    The engine's output. Read-only once produced; every run yields a new one.
    """
    nodes: list[Node3D] = field(default_factory=list)
    links: list[Link3D] = field(default_factory=list)
    communities: list[Community] = field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[Node3D]:
        """Get a node by ID (O(n))."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_json_dict(self) -> dict:
        return {
            "nodes": [n.to_json_dict() for n in self.nodes],
            "links": [l.to_json_dict() for l in self.links],
            "communities": [c.to_json_dict() for c in self.communities],
        }
