import pytest

from agentflow.core.Types import FieldType, NodeKind
from agentflow.errors import CompilerInternalError
from agentflow.noderegistry import (
    NODE_REGISTRY,
    config_schema_for,
    default_output_port,
    describe_registry,
    effective_source_port,
    get_kind_spec,
    ports_for,
    resolved_config,
    route_labels,
)


class TestNodeKind:

    def test_from_wire_round_trips_every_kind(self):
        for kind in NodeKind:
            assert NodeKind.from_wire(kind.value) is kind

    def test_from_wire_rejects_unknown_names(self):
        with pytest.raises(ValueError):
            NodeKind.from_wire("teleporter")

    def test_container_kinds(self):
        containers = {k for k in NodeKind if k.is_container()}
        assert containers == {
            NodeKind.SEQUENTIAL, NodeKind.PARALLEL, NodeKind.CONDITIONAL,
            NodeKind.LOOP, NodeKind.ROUTER,
        }


class TestFieldType:

    @pytest.mark.parametrize("value,field_type,expected", [
        ("x", FieldType.STRING, True),
        (3, FieldType.INT, True),
        (True, FieldType.INT, False),
        (2.5, FieldType.NUMBER, True),
        (False, FieldType.NUMBER, False),
        ({}, FieldType.DICT, True),
        ([], FieldType.LIST, True),
        ("3", FieldType.INT, False),
    ])
    def test_validate(self, value, field_type, expected):
        assert FieldType.validate(value, field_type) is expected


class TestRegistry:

    def test_every_kind_is_catalogued(self):
        assert set(NODE_REGISTRY) == set(NodeKind)

    def test_unknown_kind_is_an_internal_error(self):
        with pytest.raises(CompilerInternalError):
            get_kind_spec("llm-agent")

    def test_agent_ports_and_schema(self):
        ports = ports_for(NodeKind.AGENT)
        assert ports.input_names() == ["default"]
        assert ports.output_names() == ["default"]

        schema = {f.name: f for f in config_schema_for(NodeKind.AGENT)}
        assert schema["instruction"].required
        assert schema["model"].default == "gemini-2.0-flash-exp"
        # common fields come first
        assert [f.name for f in config_schema_for(NodeKind.AGENT)][:2] == ["name", "description"]

    def test_input_has_no_inputs_and_output_has_no_outputs(self):
        assert ports_for(NodeKind.INPUT).inputs == ()
        assert ports_for(NodeKind.OUTPUT).outputs == ()

    def test_branching_ports(self):
        assert ports_for(NodeKind.CONDITIONAL).output_names() == ["true", "false"]
        assert ports_for(NodeKind.LOOP).output_names() == ["loop", "exit"]
        assert ports_for(NodeKind.API_CALL).output_names() == ["success", "error"]
        assert ports_for(NodeKind.VALIDATOR).output_names() == ["valid", "invalid"]

    def test_parallel_ports_follow_branch_count(self):
        assert ports_for(NodeKind.PARALLEL).output_names() == ["default", "out1", "out2"]
        assert ports_for(NodeKind.PARALLEL, {"branchCount": 3}).output_names() == [
            "default", "out1", "out2", "out3",
        ]

    def test_router_ports_follow_routing_rules(self):
        assert ports_for(NodeKind.ROUTER).output_names() == ["route0", "route1"]
        rules = [{"condition": "billing"}, {"condition": "tech"}, {"condition": ""}]
        assert ports_for(NodeKind.ROUTER, {"routingRules": rules}).output_names() == [
            "route0", "route1", "route2",
        ]
        assert route_labels({"routingRules": rules}) == [
            ("route0", "billing"), ("route1", "tech"), ("route2", "route2"),
        ]

    def test_default_output_port(self):
        assert default_output_port(NodeKind.AGENT) == "default"
        assert default_output_port(NodeKind.API_CALL) == "success"
        assert default_output_port(NodeKind.VALIDATOR) == "valid"
        assert default_output_port(NodeKind.CONDITIONAL) is None
        assert default_output_port(NodeKind.LOOP) is None
        assert effective_source_port(NodeKind.LOOP, "exit") == "exit"
        assert effective_source_port(NodeKind.API_CALL, None) == "success"

    def test_resolved_config_fills_defaults_without_touching_input(self):
        config = {"instruction": "hi"}
        resolved = resolved_config(NodeKind.AGENT, config)
        assert resolved["model"] == "gemini-2.0-flash-exp"
        assert "model" not in config

        loop = resolved_config(NodeKind.LOOP, {"loopCount": 2})
        assert loop["loopType"] == "fixed-count"

    def test_describe_registry_is_json_safe(self):
        import json

        catalogue = describe_registry()
        assert [entry["type"] for entry in catalogue] == [k.value for k in NodeKind]
        json.dumps(catalogue)

        loop = next(e for e in catalogue if e["type"] == "loop")
        count = next(f for f in loop["fields"] if f["name"] == "loopCount")
        assert count["requiredWhen"] == ["loopType", "fixed-count"]
