"""
Workflow Compiler — Intermediate Representation
================================================
IRBlock is the hierarchical, container-aware form of a validated graph:

    Graph  →  [validator]  →  ValidatedGraph
                                  ↓
                             [resolver]  →  IRBlock (root)
                                               ↓
                                          [emitter]  →  source str

Block variants:
  Leaf      one node with no container semantics
  Sequence  ordered children; `container` is set for Sequential nodes,
            `key` is set when the block is shared by several producers
  Parallel  concurrent members joined by a JoinStrategy
  Branch    two-way split (Conditional node, or an outcome split)
  Switch    N-way split (Router node), routes in port-index order
  Loop      repeated body with its kind and parameters

Blocks are built fresh for every compilation. A block reachable from more
than one parent is the same object in each (the IR is a DAG); the emitter
renders it once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

from agentflow.core.GraphPrimitives import Node


class JoinStrategy(str, Enum):
    WAIT_FOR_ALL = "wait-for-all"
    RACE = "race"


class LoopKind(str, Enum):
    FIXED_COUNT = "fixed-count"
    WHILE = "while"
    FOR_EACH = "for-each"


# ── Blocks ───────────────────────────────────────────────────────────────────

@dataclass(eq=False)
class Leaf:
    node: Node

    @property
    def key(self) -> str:
        return self.node.id


@dataclass(eq=False)
class Sequence:
    items: List["IRBlock"] = field(default_factory=list)
    container: Optional[Node] = None   # the Sequential node, if any
    key: Optional[str] = None          # merge-node id for shared chains

    def __len__(self) -> int:
        return len(self.items)


@dataclass(eq=False)
class Parallel:
    container: Node
    members: List["IRBlock"] = field(default_factory=list)
    join_strategy: JoinStrategy = JoinStrategy.WAIT_FOR_ALL

    @property
    def key(self) -> str:
        return self.container.id


@dataclass(eq=False)
class Branch:
    node: Node
    condition: str
    true_branch: "IRBlock"
    false_branch: "IRBlock"
    # Set for ApiCall/Validator splits: the primary port the condition tests.
    outcome_port: Optional[str] = None

    @property
    def key(self) -> str:
        suffix = "#outcome" if self.outcome_port else ""
        return self.node.id + suffix


@dataclass(eq=False)
class Route:
    label: str
    port: str
    block: "IRBlock"


@dataclass(eq=False)
class Switch:
    node: Node
    routes: List[Route] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.node.id


@dataclass(eq=False)
class Loop:
    node: Node
    body: "IRBlock"
    loop_kind: LoopKind = LoopKind.FIXED_COUNT
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.node.id


IRBlock = Union[Leaf, Sequence, Parallel, Branch, Switch, Loop]


# ── Traversal helpers ────────────────────────────────────────────────────────

def children(block: IRBlock) -> List[IRBlock]:
    if isinstance(block, Sequence):
        return list(block.items)
    if isinstance(block, Parallel):
        return list(block.members)
    if isinstance(block, Branch):
        return [block.true_branch, block.false_branch]
    if isinstance(block, Switch):
        return [r.block for r in block.routes]
    if isinstance(block, Loop):
        return [block.body]
    return []


def walk(block: IRBlock) -> Iterator[IRBlock]:
    """Depth-first, pre-order. Shared blocks are yielded once."""
    seen = set()

    def visit(b: IRBlock) -> Iterator[IRBlock]:
        if id(b) in seen:
            return
        seen.add(id(b))
        yield b
        for child in children(b):
            yield from visit(child)

    yield from visit(block)


def leaf_ids(block: IRBlock) -> List[str]:
    return [b.node.id for b in walk(block) if isinstance(b, Leaf)]


def describe(block: IRBlock) -> str:
    """
    Compact structural rendering, e.g.

        Sequence[Leaf(in), Parallel(fan, wait-for-all)[Leaf(a), Leaf(b)]]
    """
    if isinstance(block, Leaf):
        return f"Leaf({block.node.id})"
    if isinstance(block, Sequence):
        head = f"Sequential({block.container.id})" if block.container else "Sequence"
        return f"{head}[{', '.join(describe(c) for c in block.items)}]"
    if isinstance(block, Parallel):
        inner = ", ".join(describe(m) for m in block.members)
        return f"Parallel({block.container.id}, {block.join_strategy.value})[{inner}]"
    if isinstance(block, Branch):
        return (
            f"Branch({block.node.id})"
            f"[true={describe(block.true_branch)}, false={describe(block.false_branch)}]"
        )
    if isinstance(block, Switch):
        inner = ", ".join(f"{r.port}={describe(r.block)}" for r in block.routes)
        return f"Switch({block.node.id})[{inner}]"
    if isinstance(block, Loop):
        return f"Loop({block.node.id}, {block.loop_kind.value})[{describe(block.body)}]"
    raise TypeError(f"Not an IR block: {block!r}")
