"""
Workflow Compiler — Graph Validator
===================================
Checks a Graph snapshot for structural correctness before any IR is built.

Checks, in order (every check runs; nothing stops at the first problem):

  ┌───┬──────────────────────┬──────────┬──────────────────────────────────┐
  │ # │ check                │ severity │ codes                            │
  ├───┼──────────────────────┼──────────┼──────────────────────────────────┤
  │ 0 │ identity             │ error    │ duplicate-node, duplicate-edge   │
  │ 1 │ config completeness  │ error    │ missing-config, invalid-config   │
  │ 2 │ edge ports           │ error    │ dangling-edge, invalid-port      │
  │ 3 │ reachability         │ warning  │ unreachable-node (no-entry: err) │
  │ 4 │ cycle legality       │ error    │ illegal-cycle                    │
  │ 5 │ branch completeness  │ warning  │ unterminated-branch              │
  └───┴──────────────────────┴──────────┴──────────────────────────────────┘

A graph with zero error diagnostics is wrapped in a ValidatedGraph, the
only input the Resolver accepts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from agentflow.core.GraphPrimitives import Edge, Graph, Node
from agentflow.core.Types import FieldType, NodeKind
from agentflow.noderegistry.NodeRegistry import (
    config_schema_for,
    effective_source_port,
    ports_for,
    route_labels,
)

from . import diagnostics as codes
from .diagnostics import Diagnostic, DiagnosticCollector

logger = logging.getLogger(__name__)


# ── Results ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ValidatedGraph:
    """A Graph that passed validation, plus the warnings it carries."""
    graph: Graph
    warnings: Tuple[Diagnostic, ...] = ()


@dataclass
class ValidationResult:
    validated: Optional[ValidatedGraph]
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.validated is not None

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if not d.is_error]


# ── Entry point ──────────────────────────────────────────────────────────────

def validate_graph(graph: Graph) -> ValidationResult:
    """
    Run every structural check over `graph` and collect all diagnostics.

    Returns:
        ValidationResult whose `validated` is set only when no check
        produced an error.
    """
    validator = GraphValidator(graph)
    return validator.run()


class GraphValidator:

    def __init__(self, graph: Graph):
        self.graph = graph
        self.diag = DiagnosticCollector()
        # Edges whose endpoints and ports are sound; later checks only walk these.
        self._sound_edges: List[Edge] = []

    def run(self) -> ValidationResult:
        self._check_identity()
        self._check_config()
        self._check_edges()
        self._check_reachability()
        self._check_cycles()
        self._check_branches()

        diagnostics = self.diag.all()
        logger.debug(
            "Validated %r: %d error(s), %d warning(s)",
            self.graph, len(self.diag.errors), len(self.diag.warnings),
        )
        if self.diag.has_errors:
            return ValidationResult(validated=None, diagnostics=diagnostics)
        return ValidationResult(
            validated=ValidatedGraph(self.graph, tuple(self.diag.warnings)),
            diagnostics=diagnostics,
        )

    # ── 0. identity ────────────────────────────────────────────────────────

    def _check_identity(self) -> None:
        seen: Set[str] = set()
        for node in self.graph.nodes:
            if node.id in seen:
                self.diag.error(codes.DUPLICATE_NODE, f"duplicate node id '{node.id}'", node.id)
            seen.add(node.id)

        seen_edges: Set[str] = set()
        for edge in self.graph.edges:
            if edge.id in seen_edges:
                self.diag.error(codes.DUPLICATE_EDGE, f"duplicate edge id '{edge.id}'")
            seen_edges.add(edge.id)

    # ── 1. config completeness ─────────────────────────────────────────────

    def _check_config(self) -> None:
        for node in self.graph.nodes:
            config = node.config
            for spec in config_schema_for(node.kind):
                value = config.get(spec.name)
                required = spec.required or self._conditionally_required(node, spec.required_when)

                if value is None or (spec.type == FieldType.STRING and value == ""):
                    if required:
                        self.diag.error(
                            codes.MISSING_CONFIG,
                            f"{node.kind.value} '{node.name}' requires '{spec.name}'",
                            node.id,
                        )
                    continue

                problem = self._field_problem(value, spec)
                if problem:
                    self.diag.error(
                        codes.INVALID_CONFIG,
                        f"{node.kind.value} '{node.name}': '{spec.name}' {problem}",
                        node.id,
                    )

    @staticmethod
    def _conditionally_required(node: Node, required_when) -> bool:
        if not required_when:
            return False
        field_name, expected = required_when
        actual = node.config.get(field_name)
        if actual is None:
            # fall back to the schema default for the controlling field
            for spec in config_schema_for(node.kind):
                if spec.name == field_name:
                    actual = spec.default
                    break
        return actual == expected

    @staticmethod
    def _field_problem(value, spec) -> Optional[str]:
        if not FieldType.validate(value, spec.type):
            return f"must be of type {spec.type.value}, got {type(value).__name__}"
        if spec.choices and value not in spec.choices:
            return f"must be one of {', '.join(spec.choices)}; got '{value}'"
        if spec.minimum is not None and value < spec.minimum:
            return f"must be at least {spec.minimum:g}; got {value}"
        return None

    # ── 2. edge ports ──────────────────────────────────────────────────────

    def _check_edges(self) -> None:
        for edge in self.graph.edges:
            source = self.graph.get_node(edge.source)
            target = self.graph.get_node(edge.target)

            dangling = False
            for end, node in (("source", source), ("target", target)):
                if node is None:
                    node_ref = edge.source if end == "source" else edge.target
                    self.diag.error(
                        codes.DANGLING_EDGE,
                        f"edge '{edge.id}' {end} '{node_ref}' is not in the graph",
                    )
                    dangling = True
            if dangling:
                continue

            sound = True
            out_ports = ports_for(source.kind, source.config).output_names()
            port = effective_source_port(source.kind, edge.source_port)
            if port is None:
                self.diag.error(
                    codes.INVALID_PORT,
                    f"edge '{edge.id}' must name an output port of {source.kind.value} "
                    f"'{source.name}' ({', '.join(out_ports) or 'none'})",
                    source.id,
                )
                sound = False
            elif port not in out_ports:
                self.diag.error(
                    codes.INVALID_PORT,
                    f"edge '{edge.id}': {source.kind.value} '{source.name}' has no output port '{port}'",
                    source.id,
                )
                sound = False

            in_ports = ports_for(target.kind, target.config).input_names()
            if edge.to_port not in in_ports:
                self.diag.error(
                    codes.INVALID_PORT,
                    f"edge '{edge.id}': {target.kind.value} '{target.name}' has no input port "
                    f"'{edge.to_port}'",
                    target.id,
                )
                sound = False

            if sound:
                self._sound_edges.append(edge)

    def _successors(self) -> Dict[str, List[str]]:
        succ: Dict[str, List[str]] = {nid: [] for nid in self.graph.node_ids()}
        for edge in sorted(self._sound_edges, key=lambda e: e.id):
            succ[edge.source].append(edge.target)
        return succ

    # ── 3. reachability ────────────────────────────────────────────────────

    def _check_reachability(self) -> None:
        if not len(self.graph):
            return

        entries = entry_nodes(self.graph)
        if not entries:
            self.diag.error(
                codes.NO_ENTRY,
                "workflow has no entry node (add an Input node or a node without incoming edges)",
            )
            return

        succ = self._successors()
        reached: Set[str] = set()
        stack = [n.id for n in entries]
        while stack:
            nid = stack.pop()
            if nid in reached:
                continue
            reached.add(nid)
            stack.extend(succ.get(nid, []))

        for nid in self.graph.node_ids():
            if nid not in reached:
                node = self.graph.get_node(nid)
                self.diag.warning(
                    codes.UNREACHABLE_NODE,
                    f"{node.kind.value} '{node.name}' is not reachable from any entry node",
                    nid,
                )

    # ── 4. cycle legality ──────────────────────────────────────────────────

    def _check_cycles(self) -> None:
        succ = self._successors()
        for component in strongly_connected_components(succ):
            members = set(component)
            if len(members) == 1:
                (only,) = members
                if only not in succ.get(only, []):
                    continue
            if not self._legal_cycle(members):
                first = sorted(members)[0]
                names = ", ".join(self.graph.get_node(n).name for n in sorted(members))
                self.diag.error(
                    codes.ILLEGAL_CYCLE,
                    f"illegal cycle through {names}: cycles must be enclosed in a loop container body",
                    first,
                )

    def _legal_cycle(self, members: Set[str]) -> bool:
        """
        A cyclic component is legal when some Loop node in it owns the whole
        component as its body, nothing inside the body escapes except back
        to the loop head, and whatever cycles remain without that head are
        themselves legal (nested loops).
        """
        loops = sorted(
            nid for nid in members
            if self.graph.get_node(nid).kind == NodeKind.LOOP
        )
        for head in loops:
            body = loop_body(self.graph, head, self._sound_edges)
            if not members <= body | {head}:
                continue
            if self._boundary_broken(head, body, members):
                continue

            inner = members - {head}
            inner_succ = {
                nid: [t for t in targets if t in inner]
                for nid, targets in self._successors().items()
                if nid in inner
            }
            legal = True
            for component in strongly_connected_components(inner_succ):
                nested = set(component)
                if len(nested) == 1:
                    (only,) = nested
                    if only not in inner_succ.get(only, []):
                        continue
                if not self._legal_cycle(nested):
                    legal = False
                    break
            if legal:
                return True
        return False

    def _boundary_broken(self, head: str, body: Set[str], members: Set[str]) -> bool:
        # the cycle may only be entered through the loop head
        for edge in self._sound_edges:
            if edge.target in members and edge.target != head:
                if edge.source not in body and edge.source != head:
                    return True
        # and the body may only be left through the exit port
        exit_region = reachable_from_port(self.graph, head, "exit", self._sound_edges)
        return bool(exit_region & body)

    # ── 5. branch completeness ─────────────────────────────────────────────

    def _check_branches(self) -> None:
        for node in self.graph.nodes:
            if node.kind == NodeKind.CONDITIONAL:
                ports = [("true", "true"), ("false", "false")]
            elif node.kind == NodeKind.ROUTER:
                ports = route_labels(node.config)
            else:
                continue

            terminated = node.config.get("terminatedPorts") or ()
            used = {
                effective_source_port(node.kind, e.source_port)
                for e in self.graph.get_outgoing(node.id)
            }
            for port, label in ports:
                if port in used or port in terminated:
                    continue
                shown = port if label == port else f"{port} ({label})"
                self.diag.warning(
                    codes.UNTERMINATED_BRANCH,
                    f"{node.kind.value} '{node.name}' port '{shown}' has no outgoing edge; "
                    f"the branch compiles to a no-op",
                    node.id,
                )


# ── Graph helpers shared with the Resolver ──────────────────────────────────

def entry_nodes(graph: Graph) -> List[Node]:
    """Input nodes, or nodes without incoming edges when there are none. Sorted by id."""
    inputs = [n for n in graph.nodes if n.kind == NodeKind.INPUT]
    if not inputs:
        inputs = [n for n in graph.nodes if not graph.get_incoming(n.id)]
    unique: Dict[str, Node] = {}
    for node in inputs:
        unique.setdefault(node.id, node)
    return [unique[k] for k in sorted(unique)]


def loop_body(graph: Graph, head: str, edges: Optional[Iterable[Edge]] = None) -> Set[str]:
    """Nodes reachable from the loop head's `loop` port without passing through the head."""
    return reachable_from_port(graph, head, "loop", edges)


def reachable_from_port(
    graph: Graph, head: str, port: str, edges: Optional[Iterable[Edge]] = None
) -> Set[str]:
    if edges is None:
        edges = graph.edges
    succ: Dict[str, List[str]] = {}
    starts: List[str] = []
    for edge in edges:
        succ.setdefault(edge.source, []).append(edge.target)
        if edge.source == head and edge.source_port == port:
            starts.append(edge.target)

    body: Set[str] = set()
    stack = [s for s in starts if s != head]
    while stack:
        nid = stack.pop()
        if nid in body or nid == head:
            continue
        body.add(nid)
        stack.extend(succ.get(nid, []))
    return body


def strongly_connected_components(succ: Dict[str, List[str]]) -> List[List[str]]:
    """
    Tarjan's algorithm. Nodes are visited in sorted id order so the
    component list is deterministic.
    """
    index_of: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    components: List[List[str]] = []
    counter = [0]

    def visit(nid: str) -> None:
        index_of[nid] = lowlink[nid] = counter[0]
        counter[0] += 1
        stack.append(nid)
        on_stack.add(nid)

        for nxt in succ.get(nid, []):
            if nxt not in succ:
                continue
            if nxt not in index_of:
                visit(nxt)
                lowlink[nid] = min(lowlink[nid], lowlink[nxt])
            elif nxt in on_stack:
                lowlink[nid] = min(lowlink[nid], index_of[nxt])

        if lowlink[nid] == index_of[nid]:
            component = []
            while True:
                top = stack.pop()
                on_stack.discard(top)
                component.append(top)
                if top == nid:
                    break
            components.append(sorted(component))

    for nid in sorted(succ):
        if nid not in index_of:
            visit(nid)
    return components
