"""
Workflow Compiler — Topology Resolver
=====================================
Maps a ValidatedGraph → IRBlock: the nested execution structure the emitter
renders.

Walk
----
Resolution starts at the entry nodes (ascending id) and follows edges
forward, building one chain per entry. Within a chain:

  • Leaf kinds append a Leaf and continue along their default port.
  • Fan-out from a non-parallel node continues each successor chain in turn,
    ordered by ascending edge id.
  • A node with more than one producer (a merge point) ends the chain: its
    own chain is resolved once, memoised, and appended as the same Sequence
    object wherever a producer reaches it.
  • When sibling chains are spliced into one list, their shared blocks are
    held back and appended once, after every sibling (the join point).
  • A back edge into an enclosing loop head ends the chain.

Containers
----------
  Sequential   Sequence(container=node, items=<downstream chain>)
  Parallel     one member per outgoing edge target; join strategy from config
  Conditional  Branch(true=<true port chain>, false=<false port chain>)
  Router       Switch with routes in port-index order (route0, route1, ...)
  Loop         Loop(body=<loop port chain up to the head>), then the exit chain
  ApiCall /    Leaf followed by an outcome Branch when the failure port
  Validator    (error / invalid) is wired; otherwise a plain Leaf

Layout position is never consulted. The Resolver does not fail on validated
input; an impossible state raises CompilerInternalError.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from agentflow.core.GraphPrimitives import DEFAULT_PORT, Edge, Node
from agentflow.core.Types import NodeKind
from agentflow.errors import CompilerInternalError
from agentflow.noderegistry.NodeRegistry import (
    OUTCOME_PORTS,
    effective_source_port,
    resolved_config,
    route_labels,
)

from .ir import (
    Branch,
    IRBlock,
    JoinStrategy,
    Leaf,
    Loop,
    LoopKind,
    Parallel,
    Route,
    Sequence,
    Switch,
    describe,
    walk,
)
from .validator import ValidatedGraph, entry_nodes, loop_body

logger = logging.getLogger(__name__)

_NO_STOP: FrozenSet[str] = frozenset()


def resolve(validated: ValidatedGraph) -> IRBlock:
    """Build the root IRBlock for a validated graph."""
    return Resolver(validated).resolve()


class Resolver:
    def __init__(self, validated: ValidatedGraph):
        if not isinstance(validated, ValidatedGraph):
            raise CompilerInternalError(
                f"Resolver requires a ValidatedGraph, got {type(validated).__name__}"
            )
        self.graph = validated.graph

        # node id → port → outgoing edges, each list in ascending edge-id order
        self._ports: Dict[str, Dict[str, List[Edge]]] = {}
        for edge in sorted(self.graph.edges, key=lambda e: e.id):
            source = self.graph.get_node(edge.source)
            port = effective_source_port(source.kind, edge.source_port)
            self._ports.setdefault(edge.source, {}).setdefault(port, []).append(edge)

        self._reachable = self._forward_reachable()
        self._back_edges = self._find_back_edges()
        self._producers = self._count_producers()

        self._shared: Dict[str, Sequence] = {}
        self._active: Set[str] = set()

    # ── Graph facts ───────────────────────────────────────────────────────

    def _forward_reachable(self) -> Set[str]:
        seen: Set[str] = set()
        stack = [n.id for n in entry_nodes(self.graph)]
        while stack:
            nid = stack.pop()
            if nid in seen:
                continue
            seen.add(nid)
            for edges in self._ports.get(nid, {}).values():
                stack.extend(e.target for e in edges)
        return seen

    def _find_back_edges(self) -> Set[str]:
        back: Set[str] = set()
        for node in self.graph.nodes:
            if node.kind != NodeKind.LOOP:
                continue
            body = loop_body(self.graph, node.id)
            for edge in self.graph.get_incoming(node.id):
                if edge.source in body or edge.source == node.id:
                    back.add(edge.id)
        return back

    def _count_producers(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for edge in self.graph.edges:
            if edge.id in self._back_edges or edge.source not in self._reachable:
                continue
            counts[edge.target] = counts.get(edge.target, 0) + 1
        return counts

    def _is_merge(self, node_id: str) -> bool:
        return self._producers.get(node_id, 0) > 1

    def _targets(self, node_id: str, port: str) -> List[str]:
        targets: List[str] = []
        for edge in self._ports.get(node_id, {}).get(port, []):
            if edge.target not in targets:
                targets.append(edge.target)
        return targets

    def _all_targets(self, node_id: str) -> List[str]:
        edges = sorted(
            (e for port_edges in self._ports.get(node_id, {}).values() for e in port_edges),
            key=lambda e: e.id,
        )
        targets: List[str] = []
        for edge in edges:
            if edge.target not in targets:
                targets.append(edge.target)
        return targets

    def _node(self, node_id: str) -> Node:
        node = self.graph.get_node(node_id)
        if node is None:
            raise CompilerInternalError(f"Resolver reached unknown node '{node_id}'")
        return node

    # ── Public API ────────────────────────────────────────────────────────

    def resolve(self) -> IRBlock:
        chains = [self._chain(entry.id, _NO_STOP) for entry in entry_nodes(self.graph)]
        root = Sequence(items=self._splice(chains))
        logger.debug("Resolved IR: %s", describe(root))
        return root

    # ── Chains ────────────────────────────────────────────────────────────

    def _chain(self, start: str, stop: FrozenSet[str], shared_head: bool = False) -> List[IRBlock]:
        items: List[IRBlock] = []
        entered: List[str] = []
        current: Optional[str] = start
        try:
            while current is not None:
                if current in stop:
                    break
                if self._is_merge(current) and not (shared_head and current == start):
                    items.append(self._shared_chain(current, stop))
                    break
                if current in self._active:
                    raise CompilerInternalError(
                        f"Resolver re-entered node '{current}'; the graph has an unchecked cycle"
                    )
                self._active.add(current)
                entered.append(current)

                blocks, nexts = self._resolve_node(self._node(current), stop)
                items.extend(blocks)

                if len(nexts) == 1:
                    current = nexts[0]
                    continue
                # fan-out outside a Parallel container runs each successor chain in edge-id order
                items.extend(self._splice([self._chain(nxt, stop) for nxt in nexts]))
                current = None
        finally:
            for nid in entered:
                self._active.discard(nid)
        return items

    def _shared_chain(self, node_id: str, stop: FrozenSet[str]) -> Sequence:
        shared = self._shared.get(node_id)
        if shared is None:
            logger.debug("Merge point '%s': resolving shared chain", node_id)
            shared = Sequence(items=self._chain(node_id, stop, shared_head=True), key=node_id)
            self._shared[node_id] = shared
        return shared

    @staticmethod
    def _splice(chains: List[List[IRBlock]]) -> List[IRBlock]:
        """
        Concatenate sibling chains. A shared block ends every chain that reaches
        it, so each one is taken out and appended once after all siblings. A
        shared block already nested inside another held one is dropped here.
        """
        items: List[IRBlock] = []
        held: Dict[str, Sequence] = {}
        for chain in chains:
            for block in chain:
                if isinstance(block, Sequence) and block.key:
                    held.setdefault(block.key, block)
                else:
                    items.append(block)
        nested = {
            inner.key
            for shared in held.values()
            for inner in walk(shared)
            if inner is not shared and isinstance(inner, Sequence) and inner.key
        }
        items.extend(shared for key, shared in held.items() if key not in nested)
        return items

    def _arm(self, node_id: str, port: str, stop: FrozenSet[str]) -> Sequence:
        """The chain(s) hanging off one output port, as a single Sequence."""
        items = self._splice([self._chain(t, stop) for t in self._targets(node_id, port)])
        if len(items) == 1 and isinstance(items[0], Sequence) and items[0].key:
            return items[0]
        return Sequence(items=items)

    # ── Per-kind construction ─────────────────────────────────────────────

    def _resolve_node(self, node: Node, stop: FrozenSet[str]) -> Tuple[List[IRBlock], List[str]]:
        """Return (blocks for this node, ids the enclosing chain continues with)."""
        kind = node.kind
        config = resolved_config(kind, node.config)

        if kind == NodeKind.SEQUENTIAL:
            chains = [self._chain(t, stop) for t in self._targets(node.id, DEFAULT_PORT)]
            return [Sequence(items=self._splice(chains), container=node)], []

        if kind == NodeKind.PARALLEL:
            return [self._parallel(node, config, stop)], []

        if kind == NodeKind.CONDITIONAL:
            branch = Branch(
                node=node,
                condition=config.get("condition", ""),
                true_branch=self._arm(node.id, "true", stop),
                false_branch=self._arm(node.id, "false", stop),
            )
            return [branch], []

        if kind == NodeKind.ROUTER:
            routes = [
                Route(label=label, port=port, block=self._arm(node.id, port, stop))
                for port, label in route_labels(node.config)
            ]
            return [Switch(node=node, routes=routes)], []

        if kind == NodeKind.LOOP:
            loop = Loop(
                node=node,
                body=self._arm(node.id, "loop", stop | {node.id}),
                loop_kind=LoopKind(config["loopType"]),
                params=self._loop_params(config),
            )
            return [loop], self._targets(node.id, "exit")

        if kind in OUTCOME_PORTS:
            primary, failure = OUTCOME_PORTS[kind]
            if not self._targets(node.id, failure):
                return [Leaf(node)], self._targets(node.id, primary)
            outcome = Branch(
                node=node,
                condition=primary,
                true_branch=self._arm(node.id, primary, stop),
                false_branch=self._arm(node.id, failure, stop),
                outcome_port=primary,
            )
            return [Leaf(node), outcome], []

        if kind in _LEAF_KINDS:
            return [Leaf(node)], self._targets(node.id, DEFAULT_PORT)

        raise CompilerInternalError(f"Resolver has no rule for node kind {kind!r}")

    def _parallel(self, node: Node, config: Dict, stop: FrozenSet[str]) -> Parallel:
        members: List[IRBlock] = []
        for target in self._all_targets(node.id):
            chain = self._chain(target, stop)
            if len(chain) == 1:
                members.append(chain[0])
            elif chain:
                members.append(Sequence(items=chain))

        return Parallel(
            container=node,
            members=members,
            join_strategy=JoinStrategy(config["joinStrategy"]),
        )

    @staticmethod
    def _loop_params(config: Dict) -> Dict:
        loop_type = config["loopType"]
        params: Dict = {}
        if loop_type == LoopKind.FIXED_COUNT.value:
            params["count"] = config.get("loopCount")
        elif loop_type == LoopKind.WHILE.value:
            params["condition"] = config.get("loopCondition")
        else:
            params["items"] = config.get("loopItems")
        if config.get("maxIterations") is not None:
            params["max_iterations"] = config["maxIterations"]
        return params


_LEAF_KINDS = frozenset({
    NodeKind.AGENT,
    NodeKind.INPUT,
    NodeKind.OUTPUT,
    NodeKind.DATABASE,
    NodeKind.FILE_OP,
    NodeKind.TRANSFORM,
    NodeKind.DELAY,
    NodeKind.DEBUG,
    NodeKind.VARIABLE,
})

# Every kind needs a construction rule.
_covered = _LEAF_KINDS | set(OUTCOME_PORTS) | {
    NodeKind.SEQUENTIAL, NodeKind.PARALLEL, NodeKind.CONDITIONAL, NodeKind.ROUTER, NodeKind.LOOP,
}
assert _covered == set(NodeKind), f"Resolver misses kinds: {set(NodeKind) - _covered}"
del _covered
