"""
Knowledge Universe Backend - FastAPI Application

This is the main entry point for the layout service.
It provides:
- REST API for loading graphs, running layouts and tuning forces at runtime
- Inspection endpoints (node details, community subtrees, search, bounds)
- WebSocket endpoint for real-time layout notifications
- CORS configuration for local frontend development
"""
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from kg_universe.config import ForceConfigUpdate
from kg_universe.logging_config import setup_logging
from kg_universe.views import hero_link_ids

from .layout_manager import layout_manager
from .websocket_manager import ws_manager


logger = logging.getLogger("kg_universe.backend")

DATA_DIR = os.environ.get("KG_UNIVERSE_DATA_DIR")
LOG_LEVEL = os.environ.get("KG_UNIVERSE_LOG_LEVEL", "INFO")


# --- Async change notification ---
# Bridge between sync LayoutManager callbacks and async WebSocket broadcasts

_change_event: Optional[asyncio.Event] = None


def on_layout_change():
    """Callback for layout changes - sets event for async handler."""
    if _change_event is not None:
        _change_event.set()


async def change_broadcaster(event: asyncio.Event):
    """Background task that broadcasts changes to WebSocket clients."""
    while True:
        await event.wait()
        event.clear()
        await ws_manager.notify_layout_updated(
            layout_manager.generation,
            layout_manager.layout is not None,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup/shutdown tasks."""
    global _change_event
    _change_event = asyncio.Event()
    try:
        setup_logging(LOG_LEVEL)
    except ValueError as e:
        setup_logging(logging.INFO)
        logger.warning(f"{e}; falling back to INFO")

    layout_manager.on_change(on_layout_change)

    if DATA_DIR:
        try:
            layout_manager.load_directory(DATA_DIR)
        except (FileNotFoundError, ValueError) as e:
            logger.warning(f"Could not load {DATA_DIR}: {e}")

    broadcaster_task = asyncio.create_task(change_broadcaster(_change_event))

    yield

    broadcaster_task.cancel()
    try:
        await broadcaster_task
    except asyncio.CancelledError:
        pass


# --- FastAPI App ---

app = FastAPI(
    title="Knowledge Universe API",
    description="3D layout service for knowledge graphs",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_layout():
    if layout_manager.layout is None:
        raise HTTPException(status_code=409, detail="No layout available; run POST /api/layout first")
    return layout_manager.layout


# --- Health Check ---

@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "connections": ws_manager.connection_count}


@app.get("/api/state")
async def get_state():
    """Get the current service state."""
    return layout_manager.get_state()


# --- Graph Loading ---

class GraphPayload(BaseModel):
    entities: list[dict[str, Any]] = Field(default_factory=list)
    relationships: list[dict[str, Any]] = Field(default_factory=list)
    communities: list[dict[str, Any]] = Field(default_factory=list)
    community_reports: list[dict[str, Any]] = Field(default_factory=list)


@app.post("/api/graph")
async def load_graph(payload: GraphPayload):
    """Load a graph from inline artifact records."""
    try:
        graph = layout_manager.load_records(payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "success": True,
        "entities": len(graph.entities),
        "relationships": len(graph.relationships),
        "communities": len(graph.communities),
    }


class OpenGraphRequest(BaseModel):
    directory: str


@app.post("/api/graph/open")
async def open_graph(request: OpenGraphRequest):
    """Load a graph from a directory of JSON artifacts."""
    try:
        graph = layout_manager.load_directory(request.directory)
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Failed to load graph: {e}")
    return {
        "success": True,
        "entities": len(graph.entities),
        "relationships": len(graph.relationships),
        "communities": len(graph.communities),
    }


@app.get("/api/graph/validate")
async def validate_graph():
    """Validate the loaded graph and return issues."""
    try:
        return layout_manager.validate()
    except LookupError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.get("/api/graph/summary")
async def graph_summary():
    """Get a structural summary of the loaded graph."""
    try:
        return layout_manager.summary()
    except LookupError as e:
        raise HTTPException(status_code=409, detail=str(e))


# --- Layout ---

class RunLayoutRequest(BaseModel):
    config: Optional[ForceConfigUpdate] = None


@app.post("/api/layout")
async def run_layout(request: RunLayoutRequest):
    """Run a fresh layout over the loaded graph."""
    try:
        layout = await layout_manager.run_layout(request.config)
    except LookupError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if layout is None:
        raise HTTPException(status_code=409, detail="Layout run was superseded by a newer request")
    return {"success": True, "generation": layout_manager.generation, "layout": layout.to_json_dict()}


@app.get("/api/layout")
async def get_layout(
    entity_types: Optional[list[str]] = Query(default=None),
    level: Optional[int] = Query(default=None),
    min_weight: float = Query(default=0),
):
    """Get the published layout, optionally filtered, with its top-weighted links."""
    _require_layout()
    layout = layout_manager.filtered_layout(entity_types, level, min_weight)
    return {
        "generation": layout_manager.generation,
        "layout": layout.to_json_dict(),
        "hero_link_ids": sorted(hero_link_ids(layout.links)),
    }


@app.patch("/api/layout/config")
async def update_config(update: ForceConfigUpdate):
    """Change force parameters; the current layout re-settles without a reset."""
    layout = await layout_manager.update_config(update)
    return {
        "success": True,
        "config": layout_manager.config.model_dump(),
        "relaid": layout is not None,
    }


@app.get("/api/layout/bounds")
async def layout_bounds():
    """Get the extent of the layout and a framing camera position."""
    _require_layout()
    return layout_manager.bounds()


# --- Inspection ---

# Search endpoint MUST be before the parameterized route
@app.get("/api/nodes/search")
async def search_nodes(q: str = Query(default="")):
    """Search laid-out nodes by title or description."""
    _require_layout()
    nodes = layout_manager.search(q)
    return {"count": len(nodes), "nodes": [n.to_json_dict() for n in nodes]}


@app.get("/api/nodes/{node_id}")
async def get_node(node_id: str, isolator: bool = Query(default=True)):
    """Get a node with its community context and connected links."""
    _require_layout()
    result = layout_manager.inspect_node(node_id, isolator=isolator)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Node not found: {node_id}")
    return result


@app.get("/api/communities/{community_id}/subtree")
async def community_subtree(community_id: str):
    """Get the full hierarchy subtree under a community's root ancestor."""
    _require_layout()
    communities = layout_manager.subtree(community_id)
    if communities is None:
        raise HTTPException(status_code=404, detail=f"Community not found: {community_id}")
    return {
        "count": len(communities),
        "communities": [c.to_json_dict() for c in communities],
    }


# --- WebSocket ---

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    Clients receive layout_updated messages when a new layout is published.
    """
    await ws_manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text('{"type": "pong"}')
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(websocket)


# --- Run with uvicorn ---

def run():
    """Start the service with uvicorn on the local port."""
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8765)


if __name__ == "__main__":
    run()
