"""
agentflow Workflow Compiler
===========================
Compiles a workflow Graph into deterministic source text for a multi-agent
framework.

Pipeline:
    Graph          →  [validator]  →  ValidatedGraph (+ warnings)
    ValidatedGraph →  [resolver]   →  IRBlock
    IRBlock        →  [emitter]    →  Python source str

Public API
----------
    from agentflow.compiler import compile_graph

    result = compile_graph(graph, module_name="support_bot")
    if result.ok:
        print(result.source)
    else:
        for diagnostic in result.diagnostics:
            print(diagnostic)

User mistakes never raise: they come back as diagnostics. Anything raised
below this entry point is a compiler bug; it is logged and reported as a
single internal-error diagnostic.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

from agentflow.errors import ProfileError

from . import diagnostics as codes
from .diagnostics import Diagnostic, Severity
from .emitter import emit
from .resolver import Resolver
from .templates import TargetProfile, load_profile
from .validator import validate_graph

if TYPE_CHECKING:
    from agentflow.core.GraphPrimitives import Graph

logger = logging.getLogger(__name__)


@dataclass
class CompileResult:
    ok: bool
    source: Optional[str] = None
    warnings: List[Diagnostic] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {
                "ok": True,
                "source": self.source,
                "warnings": [d.to_dict() for d in self.warnings],
            }
        return {"ok": False, "diagnostics": [d.to_dict() for d in self.diagnostics]}


def too_many_nodes(graph: "Graph", max_nodes: Optional[int]) -> Optional[Diagnostic]:
    """Node-count ceiling check applied by callers before compiling."""
    if max_nodes is None or len(graph) <= max_nodes:
        return None
    return Diagnostic(
        Severity.ERROR,
        codes.TOO_MANY_NODES,
        f"workflow has {len(graph)} nodes; the limit is {max_nodes}",
    )


def compile_graph(
    graph: "Graph",
    module_name: str = "workflow",
    profile: Union[None, str, TargetProfile] = None,
    max_nodes: Optional[int] = None,
) -> CompileResult:
    """
    Validate, resolve and emit a workflow graph.

    Args:
        graph:        Immutable Graph snapshot; never modified.
        module_name:  Embedded in the output header and the root container.
        profile:      TargetProfile, built-in profile name or profile .json path.
                      An unknown or malformed profile is reported as an
                      invalid-target diagnostic.
        max_nodes:    Optional node-count ceiling.

    Returns:
        CompileResult; `ok` is False when any error diagnostic was produced.
    """
    try:
        target = load_profile(profile)
    except ProfileError as exc:
        logger.info("Compilation of '%s' refused: %s", module_name, exc)
        return CompileResult(
            ok=False, diagnostics=[Diagnostic(Severity.ERROR, codes.INVALID_TARGET, str(exc))]
        )

    ceiling = too_many_nodes(graph, max_nodes)
    if ceiling is not None:
        return CompileResult(ok=False, diagnostics=[ceiling])

    try:
        validation = validate_graph(graph)
        if not validation.ok:
            logger.info(
                "Compilation of '%s' blocked by %d error(s)", module_name, len(validation.errors)
            )
            return CompileResult(ok=False, diagnostics=validation.diagnostics)

        root = Resolver(validation.validated).resolve()
        source = emit(root, module_name=module_name, profile=target)
    except Exception:
        logger.exception("Internal error while compiling '%s'", module_name)
        internal = Diagnostic(
            Severity.ERROR,
            codes.INTERNAL_ERROR,
            "internal compiler error; the workflow could not be compiled",
        )
        return CompileResult(ok=False, diagnostics=[internal])

    warnings = list(validation.validated.warnings)
    logger.info("Compiled '%s' (%d warning(s))", module_name, len(warnings))
    return CompileResult(ok=True, source=source, warnings=warnings, diagnostics=warnings)


__all__ = ["CompileResult", "compile_graph", "too_many_nodes"]
