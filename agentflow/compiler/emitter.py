"""
Workflow Compiler — Source Emitter
==================================
Converts a root IRBlock into a complete Python module for the target
framework described by a TargetProfile.

Output structure
----------------
    \"\"\"
    Workflow: <module name>
    ...
    \"\"\"

    <profile imports>


    # ── Constructs ─────────────────────────────
    # UserText (input)
    usertext = Step(...)

    # Summarizer (llm-agent)
    summarizer = Agent(..., after=usertext)
    ...

    # ── Workflow ───────────────────────────────
    workflow = Sequential(name=..., steps=[usertext, summarizer, ...])

    __all__ = ["workflow"]

    <profile entrypoint>

Rules
-----
  • Children are rendered before the construct that references them.
  • Each leaf after the first in a sequence names its predecessor through
    the profile's upstream keyword (`after=`).
  • Parallel members are ordered by head node id; branch, switch and loop
    arms are nested Sequential constructs.
  • A shared block (a merge point reached by several producers) is rendered
    once; every later reference reuses its identifier. Its head carries no
    `after=`, and it is never the upstream of the item that follows it.
  • Identifiers are allocated in pre-order, so a name collision is resolved
    the same way on every run. No timestamps are written.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from agentflow.errors import CompilerInternalError
from agentflow.noderegistry.NodeRegistry import OUTCOME_PORTS

from .ir import Branch, IRBlock, Leaf, Loop, Parallel, Sequence, Switch
from .templates import (
    DEFAULT_PROFILE,
    OUTCOME_BRANCH_TEMPLATE,
    CodeWriter,
    IdentifierAllocator,
    TargetProfile,
    get_template,
    literal,
    one_line,
    sanitize_identifier,
)

logger = logging.getLogger(__name__)


def _rule(title: str) -> str:
    return f"# ── {title} {'─' * max(0, 72 - len(title))}"


# ── File header ───────────────────────────────────────────────────────────────

def _header(module_name: str) -> List[str]:
    shown = one_line(module_name).replace("\\", "/").replace('"', "'")
    return [
        '"""',
        f"Workflow: {shown}",
        "",
        "Generated by agentflow from a workflow graph.",
        "Do not edit by hand; recompile the graph to regenerate.",
        '"""',
        "",
    ]


def _imports(profile: TargetProfile) -> List[str]:
    lines = list(profile.imports)
    if lines:
        lines.extend(["", ""])
    return lines


def _exports(profile: TargetProfile) -> List[str]:
    return ["", f'__all__ = ["{profile.root_identifier}"]']


def _entrypoint(profile: TargetProfile) -> List[str]:
    if not profile.entrypoint:
        return []
    return ["", ""] + [line.replace("{root}", profile.root_identifier) for line in profile.entrypoint]


# ── Block rendering ──────────────────────────────────────────────────────────

def head_id(block: IRBlock) -> str:
    """Id of the first node a block runs; used to order parallel members."""
    if isinstance(block, Leaf):
        return block.node.id
    if isinstance(block, Sequence):
        if block.container is not None:
            return block.container.id
        return head_id(block.items[0]) if block.items else ""
    if isinstance(block, Parallel):
        return block.container.id
    return block.node.id


def _head_label(block: IRBlock) -> str:
    if isinstance(block, Leaf):
        return block.node.name
    if isinstance(block, Sequence):
        if block.container is not None:
            return block.container.name
        return _head_label(block.items[0]) if block.items else "empty"
    if isinstance(block, Parallel):
        return block.container.name
    return block.node.name


class BlockRenderer:
    """Walks the IR once, writing one construct per node and per named chain."""

    def __init__(self, profile: TargetProfile):
        self.profile = profile
        self.writer = CodeWriter()
        self.idents = IdentifierAllocator(profile.reserved_names() | {"__all__"})
        self._shared: Dict[str, str] = {}      # shared Sequence key → identifier
        self._node_idents: Dict[str, str] = {}  # block key → identifier
        self._rendered: Set[str] = set()

    # ── references ────────────────────────────────────────────────────────

    def ref(self, block: IRBlock, upstream: Optional[str] = None) -> str:
        """Render `block` if needed and return the identifier that refers to it."""
        if isinstance(block, Sequence) and block.key:
            return self._shared_ref(block)

        if isinstance(block, Leaf):
            ident = self._claim(block.key, block.node.name)
            get_template(block.node.kind).render(
                self.writer, block.node, ident, self.profile, upstream=upstream
            )
            self.writer.blank()
            return ident

        if isinstance(block, Sequence):
            if block.container is None:
                return self._named_sequence(block, f"{_head_label(block)} branch")
            ident = self._claim(block.container.id, block.container.name)
            parts = {"children": self._list(self.items(block.items))}
            get_template(block.container.kind).render(
                self.writer, block.container, ident, self.profile, parts=parts, upstream=upstream
            )
            self.writer.blank()
            return ident

        if isinstance(block, Parallel):
            return self._parallel(block, upstream)
        if isinstance(block, Branch):
            return self._branch(block, upstream)
        if isinstance(block, Switch):
            return self._switch(block, upstream)
        if isinstance(block, Loop):
            return self._loop(block, upstream)

        raise CompilerInternalError(f"Emitter cannot render {type(block).__name__}")

    def items(self, items: List[IRBlock]) -> List[str]:
        """Render sequence items in order, chaining each one to its predecessor."""
        refs: List[str] = []
        previous: Optional[str] = None
        for item in items:
            ident = self.ref(item, upstream=previous)
            refs.append(ident)
            # a shared block has producers elsewhere; it is nobody's upstream here
            previous = None if isinstance(item, Sequence) and item.key else ident
        return refs

    def _claim(self, key: str, label: str) -> str:
        if key in self._rendered:
            raise CompilerInternalError(f"IR block '{key}' reached the emitter twice")
        self._rendered.add(key)
        ident = self.idents.allocate(label)
        self._node_idents[key] = ident
        return ident

    # ── sequences ─────────────────────────────────────────────────────────

    def _shared_ref(self, block: Sequence) -> str:
        ident = self._shared.get(block.key)
        if ident is not None:
            return ident
        if len(block.items) == 1:
            ident = self.ref(block.items[0])
        else:
            ident = self._named_sequence(block, f"{_head_label(block)} chain")
        self._shared[block.key] = ident
        return ident

    def _named_sequence(self, block: Sequence, label: str) -> str:
        ident = self.idents.allocate(label)
        refs = self.items(block.items)
        self.writer.call(
            ident,
            self.profile.construct("sequence"),
            [("name", literal(self.profile.display_name(label, ident))), self.children_arg(refs)],
        )
        self.writer.blank()
        return ident

    def arm(self, block: IRBlock, owner_label: str, owner_ident: str, suffix: str) -> str:
        """Inline Sequential expression for a branch, route or loop body."""
        if not isinstance(block, Sequence):
            raise CompilerInternalError(f"Arm '{suffix}' of '{owner_ident}' is not a Sequence")
        if block.key:
            return self._shared_ref(block)
        refs = self.items(block.items)
        name = literal(self.profile.display_name(f"{owner_label} {suffix}", f"{owner_ident}_{suffix}"))
        kw, value = self.children_arg(refs)
        return f"{self.profile.construct('sequence')}(name={name}, {kw}={value})"

    def children_arg(self, refs: List[str]):
        return (self.profile.keyword("children") or "steps", self._list(refs))

    @staticmethod
    def _list(refs: List[str]) -> str:
        return "[" + ", ".join(refs) + "]"

    # ── containers ────────────────────────────────────────────────────────

    def _parallel(self, block: Parallel, upstream: Optional[str]) -> str:
        node = block.container
        ident = self._claim(block.key, node.name)
        members = []
        for member in sorted(block.members, key=head_id):
            members.append(self.ref(member))
        parts = {"members": self._list(members), "join": block.join_strategy.value}
        get_template(node.kind).render(
            self.writer, node, ident, self.profile, parts=parts, upstream=upstream
        )
        self.writer.blank()
        return ident

    def _branch(self, block: Branch, upstream: Optional[str]) -> str:
        node = block.node
        if block.outcome_port:
            step = self._node_idents.get(node.id) or sanitize_identifier(node.name)
            label = f"{node.name} outcome"
            ident = self._claim(block.key, label)
            primary, failure = OUTCOME_PORTS[node.kind]
            parts = {
                "condition": f"{step}.outcome == '{primary}'",
                "if_true": self.arm(block.true_branch, node.name, ident, primary),
                "if_false": self.arm(block.false_branch, node.name, ident, failure),
            }
            OUTCOME_BRANCH_TEMPLATE.render(
                self.writer, node, ident, self.profile, parts=parts, upstream=upstream, label=label
            )
            self.writer.blank()
            return ident

        ident = self._claim(block.key, node.name)
        parts = {
            "condition": block.condition,
            "if_true": self.arm(block.true_branch, node.name, ident, "true"),
            "if_false": self.arm(block.false_branch, node.name, ident, "false"),
        }
        get_template(node.kind).render(
            self.writer, node, ident, self.profile, parts=parts, upstream=upstream
        )
        self.writer.blank()
        return ident

    def _switch(self, block: Switch, upstream: Optional[str]) -> str:
        node = block.node
        ident = self._claim(block.key, node.name)
        routes = []
        for route in block.routes:
            arm = self.arm(route.block, node.name, ident, route.port)
            routes.append(f"({literal(route.label)}, {arm})")
        parts = {"routes": self._list(routes)}
        get_template(node.kind).render(
            self.writer, node, ident, self.profile, parts=parts, upstream=upstream
        )
        self.writer.blank()
        return ident

    def _loop(self, block: Loop, upstream: Optional[str]) -> str:
        node = block.node
        ident = self._claim(block.key, node.name)
        body = self.arm(block.body, node.name, ident, "body")
        if self.profile.body_as_list:
            body = f"[{body}]"
        get_template(node.kind).render(
            self.writer, node, ident, self.profile, parts={"body": body}, upstream=upstream
        )
        self.writer.blank()
        return ident


# ── Main sections ────────────────────────────────────────────────────────────

def _constructs(renderer: BlockRenderer) -> List[str]:
    body = renderer.writer.lines()
    if not body:
        return []
    return [_rule("Constructs")] + body


def _root(renderer: BlockRenderer, module_name: str, refs: List[str]) -> List[str]:
    profile = renderer.profile
    w = CodeWriter()
    w.writeln(_rule("Workflow"))
    label = profile.display_name(module_name, sanitize_identifier(module_name, "workflow"))
    w.call(
        profile.root_identifier,
        profile.construct("sequence"),
        [("name", literal(label)), renderer.children_arg(refs)],
    )
    return w.lines()


# ── Public API ────────────────────────────────────────────────────────────────

def emit(root: IRBlock, module_name: str = "workflow", profile: Optional[TargetProfile] = None) -> str:
    """
    Emit a complete Python module from a root IRBlock.

    Args:
        root:        The IR produced by the Resolver.
        module_name: Used in the header and as the root container's name.
        profile:     Target framework; defaults to the agentflow profile.

    Returns:
        Python source code as a single string. The same IR always yields
        byte-identical output.
    """
    profile = profile or DEFAULT_PROFILE
    renderer = BlockRenderer(profile)
    # top-level items become the root container's children
    if isinstance(root, Sequence) and not root.key and root.container is None:
        refs = renderer.items(root.items)
    else:
        refs = [renderer.ref(root)]

    sections: List[List[str]] = [
        _header(module_name),
        _imports(profile),
        _constructs(renderer),
        _root(renderer, module_name, refs),
        _exports(profile),
        _entrypoint(profile),
    ]

    lines: List[str] = []
    for section in sections:
        lines.extend(section)

    source = "\n".join(lines) + "\n"
    logger.debug(
        "Emitted %d line(s) for '%s' with the %s profile", len(lines), module_name, profile.name
    )
    return source
