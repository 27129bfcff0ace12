"""
Workflow Compiler — Document Schema + Validator
===============================================
Defines the JSON document the editor saves and sends for compilation, and a
lightweight structural check that runs without any third-party JSON Schema
library.

Document format
---------------

    {
      "id":   "wf-support",                     // workflow id (str, optional)
      "name": "Support Bot",                    // human label (str, optional)
      "nodes": [
        {
          "id":   "node_1",                     // (str, required)
          "type": "llm-agent",                  // wire name of a NodeKind (str, required)
          "position": {"x": 120, "y": 80},      // layout only (object, optional)
          "name": "Summarizer",                 // config fields sit flat on the node...
          "instruction": "Summarize input",
          "data": {"model": "gemini-2.0-flash-exp"}   // ...or under ReactFlow's `data`
        }
      ],
      "edges": [
        {
          "id": "e1",                           // (str, required)
          "source": "node_1",                   // (str, required)
          "target": "node_2",                   // (str, required)
          "sourceHandle": "true",               // output port (str | null, optional)
          "targetHandle": null                  // input port (str | null, optional)
        }
      ]
    }

Only the document's shape is checked here. Duplicate ids, dangling edges,
bad ports and missing configuration are graph-level problems; the validator
reports them as diagnostics against node ids.
"""

from __future__ import annotations

import json
from numbers import Real
from pathlib import Path
from typing import Any, Dict, List, Union

from agentflow.core.Types import NodeKind
from agentflow.errors import SchemaError

KNOWN_NODE_TYPES = frozenset(kind.value for kind in NodeKind)


# ── Validation helpers ────────────────────────────────────────────────────────

def _require(condition: bool, message: str) -> None:
    if not condition:
        raise SchemaError(message)


def _require_keys(obj: Dict, keys: List[str], context: str) -> None:
    for key in keys:
        _require(key in obj, f"{context}: missing required field '{key}'")


def _optional_port(edge: Dict[str, Any], key: str, ctx: str) -> None:
    value = edge.get(key)
    _require(value is None or isinstance(value, str), f"{ctx}.{key} must be a string or null")


# ── Public validator ─────────────────────────────────────────────────────────

def validate_document(data: Any) -> None:
    """
    Validate a parsed workflow document.

    Raises:
        SchemaError: On any structural violation.
    """
    _require(isinstance(data, dict), "workflow JSON must be a JSON object at the top level")
    _require_keys(data, ["nodes", "edges"], "workflow root")

    _require(isinstance(data["nodes"], list), "nodes must be a list")
    _require(isinstance(data["edges"], list), "edges must be a list")
    for key in ("id", "name"):
        if data.get(key) is not None:
            _require(isinstance(data[key], str), f"workflow {key} must be a string")

    # ── Validate nodes ──────────────────────────────────────────────────────

    for i, node in enumerate(data["nodes"]):
        ctx = f"nodes[{i}]"
        _require(isinstance(node, dict), f"{ctx}: each node must be a JSON object")
        _require_keys(node, ["id", "type"], ctx)
        _require(isinstance(node["id"], str) and node["id"] != "", f"{ctx}.id must be a non-empty string")
        _require(isinstance(node["type"], str), f"{ctx}.type must be a string")
        _require(
            node["type"] in KNOWN_NODE_TYPES,
            f"{ctx}: unknown node type '{node['type']}'",
        )

        if node.get("data") is not None:
            _require(isinstance(node["data"], dict), f"{ctx}.data must be an object")

        position = node.get("position")
        if position is not None:
            _require(isinstance(position, dict), f"{ctx}.position must be an object")
            for axis in ("x", "y"):
                _require(
                    isinstance(position.get(axis), Real) and not isinstance(position.get(axis), bool),
                    f"{ctx}.position.{axis} must be a number",
                )

    # ── Validate edges ──────────────────────────────────────────────────────

    for i, edge in enumerate(data["edges"]):
        ctx = f"edges[{i}]"
        _require(isinstance(edge, dict), f"{ctx}: each edge must be a JSON object")
        _require_keys(edge, ["id", "source", "target"], ctx)

        for field in ("id", "source", "target"):
            _require(isinstance(edge[field], str), f"{ctx}.{field} must be a string")

        _optional_port(edge, "sourceHandle", ctx)
        _optional_port(edge, "targetHandle", ctx)


def validate_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load and validate a workflow JSON file.

    Returns:
        The parsed dict on success.

    Raises:
        FileNotFoundError: If the file does not exist.
        SchemaError: If the file is not valid JSON or the structure is invalid.
    """
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise SchemaError(f"{path}: invalid JSON: {exc}") from exc
    validate_document(data)
    return data


__all__ = ["KNOWN_NODE_TYPES", "SchemaError", "validate_document", "validate_file"]
