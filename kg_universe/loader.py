"""
Artifact loader - Reads a knowledge graph from a directory of JSON files.

The layout core never touches files; the service and the CLI use this
module to turn persisted artifacts into a GraphModel.

Expected files:
- entities.json
- relationships.json
- communities.json
- community_reports.json (optional; supplies community titles)
"""

import json
import logging
from pathlib import Path

from .models import GraphModel


logger = logging.getLogger(__name__)

ENTITIES_FILE = "entities.json"
RELATIONSHIPS_FILE = "relationships.json"
COMMUNITIES_FILE = "communities.json"
REPORTS_FILE = "community_reports.json"


def _read_records(path: Path) -> list[dict]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path.name} must contain a JSON array")
    return data


def load_graph_directory(directory: str | Path) -> GraphModel:
    """
    Load a GraphModel from a directory of JSON artifacts.

    Raises:
        FileNotFoundError: If the directory or a required file is missing
        ValueError: If a file is not a JSON array of records
    """
    root = Path(directory).expanduser()
    if not root.is_dir():
        raise FileNotFoundError(f"Data directory not found: {root}")

    for name in (ENTITIES_FILE, RELATIONSHIPS_FILE, COMMUNITIES_FILE):
        if not (root / name).exists():
            raise FileNotFoundError(f"Missing artifact: {root / name}")

    try:
        entities = _read_records(root / ENTITIES_FILE)
        relationships = _read_records(root / RELATIONSHIPS_FILE)
        communities = _read_records(root / COMMUNITIES_FILE)
        reports = _read_records(root / REPORTS_FILE) if (root / REPORTS_FILE).exists() else []
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {root}: {e}")

    graph = GraphModel.from_records(entities, relationships, communities, reports)
    logger.info(
        f"Loaded graph from {root}: {len(graph.entities)} entities, "
        f"{len(graph.relationships)} relationships, {len(graph.communities)} communities"
    )
    return graph
