import json

import pytest

from kg_universe.models import Community, GraphModel, Node3D


def entity(eid, degree=0, frequency=0, type="PERSON", title=None, description=""):
    return {
        "id": eid,
        "human_readable_id": eid,
        "title": title or eid.upper(),
        "type": type,
        "description": description,
        "text_unit_ids": [],
        "frequency": frequency,
        "degree": degree,
    }


def relationship(rid, source, target, weight=1.0):
    return {
        "id": rid,
        "source": source,
        "target": target,
        "weight": weight,
        "description": f"{source} relates to {target}",
    }


def community(hid, level=0, parent=None, children=None, entity_ids=None, title=None):
    return {
        "id": f"c-{hid}",
        "human_readable_id": hid,
        "community": hid,
        "level": level,
        "parent": parent,
        "children": children or [],
        "title": title or f"Community {hid}",
        "entity_ids": entity_ids or [],
        "size": len(entity_ids or []),
    }


def make_community(hid, level=0, parent=None, children=None, entity_ids=None) -> Community:
    return Community(**community(hid, level, parent, children, entity_ids))


def hub_records():
    """A hub entity linked to twelve leaves, in a three-level community chain."""
    leaves = [f"leaf{i}" for i in range(12)]
    entities = [entity("hub", degree=12, frequency=10)] + [
        entity(l, degree=1, frequency=1, type="EVENT") for l in leaves
    ]
    relationships = [relationship(f"r{i}", "hub", l, weight=2.0) for i, l in enumerate(leaves)]
    communities = [
        community(0, level=0, entity_ids=["hub"] + leaves[:6], children=[1]),
        community(1, level=1, parent=0, entity_ids=leaves[6:10], children=[2]),
        community(2, level=2, parent=1, entity_ids=leaves[10:]),
    ]
    return {
        "entities": entities,
        "relationships": relationships,
        "communities": communities,
        "community_reports": [
            {"id": "rep0", "community": 0, "level": 0, "title": "The Hub Sector"},
        ],
    }


@pytest.fixture
def hub_graph() -> GraphModel:
    records = hub_records()
    return GraphModel.from_records(
        records["entities"],
        records["relationships"],
        records["communities"],
        records["community_reports"],
    )


@pytest.fixture
def data_dir(tmp_path):
    """A directory of JSON artifacts for the hub graph."""
    records = hub_records()
    (tmp_path / "entities.json").write_text(json.dumps(records["entities"]))
    (tmp_path / "relationships.json").write_text(json.dumps(records["relationships"]))
    (tmp_path / "communities.json").write_text(json.dumps(records["communities"]))
    (tmp_path / "community_reports.json").write_text(json.dumps(records["community_reports"]))
    return tmp_path


def make_node(nid, x=0.0, y=0.0, z=0.0) -> Node3D:
    return Node3D(
        id=nid, human_readable_id=nid, title=nid.upper(), type="PERSON",
        description="", text_unit_ids=[], frequency=0, degree=0, x=x, y=y, z=z,
    )
