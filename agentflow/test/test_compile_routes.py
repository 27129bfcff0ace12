import pytest
from fastapi.testclient import TestClient

from agentflow.server.config import ServerConfig
from agentflow.server.main import create_app

SCENARIO = {
    "name": "Summarize",
    "nodes": [
        {"id": "in", "type": "input", "name": "UserText"},
        {"id": "ag", "type": "llm-agent", "name": "Summarizer", "instruction": "Summarize input"},
        {"id": "out", "type": "output", "name": "Result"},
    ],
    "edges": [
        {"id": "e1", "source": "in", "target": "ag"},
        {"id": "e2", "source": "ag", "target": "out"},
    ],
}


@pytest.fixture
def client():
    return TestClient(create_app(ServerConfig(max_nodes=10)))


class TestMetaRoutes:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_node_kinds(self, client):
        response = client.get("/api/node-kinds")
        assert response.status_code == 200
        kinds = {entry["type"]: entry for entry in response.json()}
        assert kinds["llm-agent"]["inputs"] == ["default"]
        assert kinds["conditional"]["outputs"] == ["true", "false"]
        assert kinds["router"]["dynamicOutputs"] is True

    def test_targets(self, client):
        assert client.get("/api/targets").json() == {
            "default": "agentflow",
            "targets": ["adk", "agentflow"],
        }


class TestCompileRoute:

    def test_compiles(self, client):
        response = client.post("/api/compile", json={"workflow": SCENARIO})
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["warnings"] == []
        assert "Workflow: summarize" in body["source"]
        assert "steps=[usertext, summarizer, result]" in body["source"]

    def test_module_name_and_target(self, client):
        response = client.post(
            "/api/compile",
            json={"workflow": SCENARIO, "moduleName": "agent", "target": "adk"},
        )
        body = response.json()
        assert body["ok"] is True
        assert "Workflow: agent" in body["source"]
        assert "root_agent = SequentialAgent(" in body["source"]

    def test_validation_errors_are_a_normal_response(self, client):
        workflow = {
            "nodes": [{"id": "in", "type": "input"}, {"id": "a", "type": "llm-agent"}],
            "edges": [{"id": "e1", "source": "in", "target": "a"}],
        }
        response = client.post("/api/compile", json={"workflow": workflow})
        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is False
        assert body["diagnostics"] == [{
            "severity": "error",
            "code": "missing-config",
            "message": "llm-agent 'a' requires 'instruction'",
            "nodeId": "a",
        }]

    def test_malformed_document(self, client):
        response = client.post("/api/compile", json={"workflow": {"nodes": "x", "edges": []}})
        assert response.status_code == 400
        assert "nodes must be a list" in response.json()["detail"]

    def test_missing_workflow_field(self, client):
        assert client.post("/api/compile", json={}).status_code == 422

    def test_unknown_target(self, client):
        response = client.post("/api/compile", json={"workflow": SCENARIO, "target": "langgraph"})
        assert response.status_code == 400
        assert "langgraph" in response.json()["detail"]

    def test_node_ceiling(self):
        client = TestClient(create_app(ServerConfig(max_nodes=2)))
        response = client.post("/api/compile", json={"workflow": SCENARIO})
        assert response.status_code == 413
        body = response.json()
        assert body["ok"] is False
        assert [d["code"] for d in body["diagnostics"]] == ["too-many-nodes"]


class TestServerConfig:

    def test_defaults(self):
        config = ServerConfig.from_env({})
        assert config == ServerConfig()

    def test_overrides(self):
        config = ServerConfig.from_env({
            "AGENTFLOW_MAX_NODES": "50",
            "AGENTFLOW_DEFAULT_TARGET": "adk",
            "AGENTFLOW_CORS_ORIGINS": "http://localhost:5173, http://127.0.0.1:5173",
            "AGENTFLOW_PORT": "9000",
        })
        assert config.max_nodes == 50
        assert config.default_target == "adk"
        assert config.cors_origins == ("http://localhost:5173", "http://127.0.0.1:5173")
        assert config.port == 9000

    @pytest.mark.parametrize("env", [
        {"AGENTFLOW_MAX_NODES": "lots"},
        {"AGENTFLOW_MAX_NODES": "0"},
        {"AGENTFLOW_DEFAULT_TARGET": "langgraph"},
    ])
    def test_bad_values(self, env):
        with pytest.raises(ValueError):
            ServerConfig.from_env(env)
