"""
Compiler REST routes.

All routes are mounted under /api by main.py.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agentflow.compiler import compile_graph, too_many_nodes
from agentflow.compiler.deserialiser import json_to_graph
from agentflow.compiler.templates import PROFILES, sanitize_identifier
from agentflow.errors import SchemaError
from agentflow.noderegistry import describe_registry

logger = logging.getLogger(__name__)

router = APIRouter()


# ── GET /node-kinds ───────────────────────────────────────────────────────────

@router.get("/node-kinds")
async def node_kinds() -> List[Dict[str, Any]]:
    return describe_registry()


# ── GET /targets ──────────────────────────────────────────────────────────────

@router.get("/targets")
async def targets(request: Request) -> Dict[str, Any]:
    return {
        "default": request.app.state.config.default_target,
        "targets": sorted(PROFILES),
    }


# ── POST /compile ─────────────────────────────────────────────────────────────

class CompileBody(BaseModel):
    workflow: Dict[str, Any]
    moduleName: Optional[str] = None
    target: Optional[str] = None


# Plain `def`: compilation is CPU-bound, so FastAPI runs it in its threadpool.
@router.post("/compile")
def compile_workflow(body: CompileBody, request: Request) -> Any:
    config = request.app.state.config

    try:
        graph, workflow_name = json_to_graph(body.workflow)
    except SchemaError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    # Only built-in profiles over HTTP; profile files are a CLI feature.
    target = body.target or config.default_target
    if target not in PROFILES:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown target '{target}'; expected one of {', '.join(sorted(PROFILES))}",
        )

    ceiling = too_many_nodes(graph, config.max_nodes)
    if ceiling is not None:
        logger.warning("Rejected workflow '%s': %s", workflow_name, ceiling.message)
        return JSONResponse(
            status_code=413,
            content={"ok": False, "diagnostics": [ceiling.to_dict()]},
        )

    module_name = body.moduleName or sanitize_identifier(workflow_name, "workflow")
    result = compile_graph(graph, module_name=module_name, profile=PROFILES[target])
    return result.to_dict()
