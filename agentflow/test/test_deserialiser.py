import json

import pytest

from agentflow.compiler.deserialiser import graph_to_json, json_to_graph
from agentflow.compiler.schema import validate_document
from agentflow.core.Types import NodeKind
from agentflow.errors import SchemaError


@pytest.fixture
def document():
    return {
        "id": "wf-summarize",
        "name": "Summarize",
        "nodes": [
            {"id": "in", "type": "input", "name": "UserText", "position": {"x": 0, "y": 10}},
            {
                "id": "ag",
                "type": "llm-agent",
                "name": "Summarizer",
                "instruction": "flat value",
                "data": {"instruction": "Summarize input", "label": "ignored"},
                "selected": True,
            },
            {"id": "out", "type": "output", "data": {"label": "Result"}},
        ],
        "edges": [
            {"id": "e1", "source": "in", "target": "ag", "sourceHandle": None},
            {"id": "e2", "source": "ag", "target": "out", "sourceHandle": "", "targetHandle": None},
        ],
    }


class TestJsonToGraph:

    def test_nodes_and_config(self, document):
        graph, name = json_to_graph(document)
        assert name == "Summarize"
        assert len(graph) == 3

        agent = graph.get_node("ag")
        assert agent.kind is NodeKind.AGENT
        # `data` overrides flat fields; editor bookkeeping is dropped
        assert agent.config["instruction"] == "Summarize input"
        assert "selected" not in agent.config
        assert agent.name == "Summarizer"

        assert graph.get_node("in").position == (0.0, 10.0)
        assert graph.get_node("out").name == "Result"

    def test_config_is_read_only(self, document):
        graph, _ = json_to_graph(document)
        with pytest.raises(TypeError):
            graph.get_node("ag").config["model"] = "other"

    def test_empty_handles_mean_unset(self, document):
        graph, _ = json_to_graph(document)
        assert [e.source_port for e in graph.edges] == [None, None]
        assert graph.edges[1].to_port == "default"

    def test_name_falls_back_to_id_then_default(self, document):
        del document["name"]
        assert json_to_graph(document)[1] == "wf-summarize"
        del document["id"]
        assert json_to_graph(document)[1] == "workflow"

    def test_reads_files(self, document, tmp_path):
        path = tmp_path / "summarize.json"
        path.write_text(json.dumps(document))
        graph, name = json_to_graph(path)
        assert name == "Summarize"
        assert [n.id for n in graph.nodes] == ["in", "ag", "out"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            json_to_graph(tmp_path / "nope.json")

    def test_invalid_json_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{\"nodes\": [")
        with pytest.raises(SchemaError, match="invalid JSON"):
            json_to_graph(str(path))

    def test_graph_problems_are_left_to_the_validator(self, document):
        document["edges"].append({"id": "e1", "source": "ag", "target": "ghost"})
        graph, _ = json_to_graph(document)
        assert len(graph.edges) == 3


class TestGraphToJson:

    def test_round_trip(self, document):
        graph, name = json_to_graph(document)
        again, again_name = json_to_graph(graph_to_json(graph, name))
        assert again_name == name
        assert again.nodes == graph.nodes
        assert again.edges == graph.edges

    def test_output_is_json_safe(self, document):
        graph, name = json_to_graph(document)
        payload = graph_to_json(graph, name)
        json.dumps(payload)
        assert payload["nodes"][1]["type"] == "llm-agent"


class TestSchema:

    @pytest.mark.parametrize("data,fragment", [
        ([], "JSON object"),
        ({"nodes": []}, "'edges'"),
        ({"nodes": {}, "edges": []}, "nodes must be a list"),
        ({"nodes": [], "edges": [], "name": 3}, "workflow name"),
        ({"nodes": ["x"], "edges": []}, "nodes[0]"),
        ({"nodes": [{"id": "a"}], "edges": []}, "'type'"),
        ({"nodes": [{"id": "", "type": "input"}], "edges": []}, "non-empty"),
        ({"nodes": [{"id": "a", "type": "teleporter"}], "edges": []}, "unknown node type 'teleporter'"),
        ({"nodes": [{"id": "a", "type": "input", "data": []}], "edges": []}, "data must be an object"),
        ({"nodes": [{"id": "a", "type": "input", "position": {"x": 1, "y": "2"}}], "edges": []},
         "position.y"),
        ({"nodes": [], "edges": [{"id": "e1", "source": "a"}]}, "'target'"),
        ({"nodes": [], "edges": [{"id": "e1", "source": "a", "target": 2}]}, "edges[0].target"),
        ({"nodes": [], "edges": [{"id": "e1", "source": "a", "target": "b", "sourceHandle": 1}]},
         "sourceHandle"),
    ])
    def test_rejects(self, data, fragment):
        with pytest.raises(SchemaError) as excinfo:
            validate_document(data)
        assert fragment in str(excinfo.value)

    def test_schema_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            json_to_graph({"nodes": "x", "edges": []})
