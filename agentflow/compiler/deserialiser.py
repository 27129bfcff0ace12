"""
Workflow Compiler — JSON Deserialiser
=====================================
Converts a saved workflow document (file or dict) into the immutable Graph
snapshot the compiler works on.

Pipeline
--------
    workflow.json  →  [deserialiser.json_to_graph]  →  Graph
    Graph          →  [compiler.compile_graph]      →  CompileResult

See compiler/schema.py for the document format.

Node configuration
------------------
The editor stores each node's configuration fields flat on the node object;
ReactFlow exports nest them under `data`. Both are accepted: flat fields are
read first and `data` fields override them. ReactFlow bookkeeping keys
(selection state, measured size) are dropped. A ReactFlow `label` is used as
the node name when no `name` is set.
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Tuple, Union

from agentflow.core.GraphPrimitives import Edge, Graph, Node
from agentflow.core.Types import NodeKind

from .schema import validate_document, validate_file

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_NAME = "workflow"

# Keys on a node object that are not configuration.
_NODE_META_KEYS = frozenset({
    "id", "type", "position", "data",
    "selected", "dragging", "width", "height", "positionAbsolute", "measured",
})


def _parse_node(spec: Dict[str, Any]) -> Node:
    config: Dict[str, Any] = {k: v for k, v in spec.items() if k not in _NODE_META_KEYS}
    config.update(spec.get("data") or {})
    if not config.get("name") and isinstance(config.get("label"), str):
        config["name"] = config["label"]

    position = spec.get("position")
    if position is not None:
        position = (float(position["x"]), float(position["y"]))

    return Node(
        id=spec["id"],
        kind=NodeKind.from_wire(spec["type"]),
        config=MappingProxyType(config),
        position=position,
    )


def _parse_edge(spec: Dict[str, Any]) -> Edge:
    return Edge(
        id=spec["id"],
        source=spec["source"],
        target=spec["target"],
        source_port=spec.get("sourceHandle") or None,
        target_port=spec.get("targetHandle") or None,
    )


# ── Public entry point ────────────────────────────────────────────────────────

def json_to_graph(source: Union[str, Path, Dict[str, Any]]) -> Tuple[Graph, str]:
    """
    Parse a workflow document and return (Graph, workflow name).

    Args:
        source: One of:
            - A file path (str or Path) to a JSON file.
            - A pre-parsed dict matching the document schema.

    Raises:
        FileNotFoundError: If a path is given and the file does not exist.
        SchemaError: If the document is malformed.
    """
    if isinstance(source, (str, Path)):
        data = validate_file(source)
    else:
        validate_document(source)
        data = source

    nodes = [_parse_node(spec) for spec in data["nodes"]]
    edges = [_parse_edge(spec) for spec in data["edges"]]
    name = data.get("name") or data.get("id") or DEFAULT_WORKFLOW_NAME

    graph = Graph(nodes, edges)
    logger.debug("Loaded workflow '%s': %r", name, graph)
    return graph, name


def graph_to_json(graph: Graph, name: str = DEFAULT_WORKFLOW_NAME) -> Dict[str, Any]:
    """Inverse of json_to_graph, using the flat node layout."""
    nodes = []
    for node in graph.nodes:
        spec: Dict[str, Any] = {"id": node.id, "type": node.kind.value}
        if node.position is not None:
            spec["position"] = {"x": node.position[0], "y": node.position[1]}
        spec.update(node.config)
        nodes.append(spec)
    edges = [
        {
            "id": e.id,
            "source": e.source,
            "target": e.target,
            "sourceHandle": e.source_port,
            "targetHandle": e.target_port,
        }
        for e in graph.edges
    ]
    return {"name": name, "nodes": nodes, "edges": edges}


__all__ = ["DEFAULT_WORKFLOW_NAME", "graph_to_json", "json_to_graph"]
