"""
API Tests
=========

Exercises the FastAPI service end to end through the test client.
"""

import pytest
from fastapi.testclient import TestClient

from backend.layout_manager import layout_manager
from backend.main import app

from .conftest import hub_records


@pytest.fixture
def client():
    layout_manager.reset()
    with TestClient(app) as c:
        yield c


@pytest.fixture
def laid_out(client):
    assert client.post("/api/graph", json=hub_records()).status_code == 200
    response = client.post("/api/layout", json={})
    assert response.status_code == 200
    return client


class TestGraphLoading:

    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    def test_initial_state(self, client):
        state = client.get("/api/state").json()
        assert state["graph_loaded"] is False
        assert state["layout"] is None
        assert state["config"]["spread_3d"] == 150

    def test_load_inline_graph(self, client):
        response = client.post("/api/graph", json=hub_records())
        assert response.json() == {
            "success": True, "entities": 13, "relationships": 12, "communities": 3,
        }
        assert client.get("/api/state").json()["graph_loaded"] is True

    def test_open_directory(self, client, data_dir):
        response = client.post("/api/graph/open", json={"directory": str(data_dir)})
        assert response.status_code == 200
        assert client.get("/api/state").json()["source"] == str(data_dir)

    def test_open_missing_directory(self, client, tmp_path):
        response = client.post("/api/graph/open", json={"directory": str(tmp_path / "nope")})
        assert response.status_code == 404

    def test_validate_and_summary(self, client):
        assert client.get("/api/graph/validate").status_code == 409
        client.post("/api/graph", json=hub_records())

        validation = client.get("/api/graph/validate").json()
        assert validation["summary"]["valid"] is True
        summary = client.get("/api/graph/summary").json()
        assert summary["total_entities"] == 13


class TestLayout:

    def test_layout_requires_graph(self, client):
        assert client.post("/api/layout", json={}).status_code == 409
        assert client.get("/api/layout").status_code == 409

    def test_run_layout(self, laid_out):
        data = laid_out.get("/api/layout").json()
        assert len(data["layout"]["nodes"]) == 13
        assert len(data["layout"]["links"]) == 12
        assert data["generation"] == layout_manager.generation

    def test_run_layout_with_config(self, client):
        client.post("/api/graph", json=hub_records())
        response = client.post("/api/layout", json={"config": {"spread_3d": 80}})
        assert response.status_code == 200
        assert client.get("/api/state").json()["config"]["spread_3d"] == 80

    def test_filtered_layout(self, laid_out):
        data = laid_out.get("/api/layout", params={"entity_types": ["EVENT"]}).json()
        assert len(data["layout"]["nodes"]) == 12
        assert data["layout"]["links"] == []

        data = laid_out.get("/api/layout", params={"level": 2}).json()
        assert {n["id"] for n in data["layout"]["nodes"]} == {"leaf10", "leaf11"}
        assert data["hero_link_ids"] == []

    def test_hero_links(self, laid_out):
        data = laid_out.get("/api/layout").json()
        assert data["hero_link_ids"] == sorted(f"r{i}" for i in range(12))

    def test_update_config_relays(self, laid_out):
        generation = layout_manager.generation
        response = laid_out.patch("/api/layout/config", json={"charge_strength": -50})
        assert response.json()["relaid"] is True
        assert response.json()["config"]["charge_strength"] == -50
        assert layout_manager.generation == generation

    def test_update_config_without_layout(self, client):
        response = client.patch("/api/layout/config", json={"spread_3d": 120})
        assert response.status_code == 200
        assert response.json()["relaid"] is False

    def test_update_config_rejects_unknown(self, client):
        assert client.patch("/api/layout/config", json={"gravity": 1}).status_code == 422

    def test_bounds(self, laid_out):
        bounds = laid_out.get("/api/layout/bounds").json()
        assert set(bounds) == {"center", "size", "camera_position"}

    def test_loading_new_graph_drops_layout(self, laid_out):
        laid_out.post("/api/graph", json=hub_records())
        assert laid_out.get("/api/layout").status_code == 409


class TestInspection:

    def test_node_details(self, laid_out):
        data = laid_out.get("/api/nodes/leaf11").json()
        assert data["node"]["id"] == "leaf11"
        assert data["community"]["level_label"] == "Subsystem"
        assert data["community"]["parents"] == ["1"]
        assert data["community"]["visible_communities"] == ["0", "1", "2"]
        assert [l["id"] for l in data["links"]] == ["r11"]
        assert data["community"]["hierarchy_node_ids"] == sorted(["hub"] + [f"leaf{i}" for i in range(12)])

    def test_node_details_without_isolator(self, laid_out):
        data = laid_out.get("/api/nodes/hub", params={"isolator": False}).json()
        assert set(data["community"]["visible_communities"]) == {"0", "1", "2"}
        assert len(data["community"]["hierarchy_node_ids"]) == 13

    def test_unknown_node(self, laid_out):
        assert laid_out.get("/api/nodes/ghost").status_code == 404

    def test_search(self, laid_out):
        data = laid_out.get("/api/nodes/search", params={"q": "leaf1"}).json()
        assert data["count"] == 3

    def test_subtree(self, laid_out):
        data = laid_out.get("/api/communities/2/subtree").json()
        assert [c["human_readable_id"] for c in data["communities"]] == ["0", "1", "2"]
        assert data["communities"][0]["computed_hierarchy"]["child_ids"] == ["1"]

    def test_subtree_unknown(self, laid_out):
        assert laid_out.get("/api/communities/99/subtree").status_code == 404


def test_websocket_ping(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("ping")
        assert ws.receive_json() == {"type": "pong"}


def test_websocket_layout_updates(client):
    with client.websocket_connect("/ws") as ws:
        client.post("/api/graph", json=hub_records())
        message = ws.receive_json()
        assert message["type"] == "layout_updated"
        assert message["generation"] == layout_manager.generation
        assert message["has_layout"] is False
