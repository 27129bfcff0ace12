"""
Workflow Compiler — Node Code Templates
=======================================
A NodeTemplate renders one node into a named construct of the target
framework:

    <ident> = <Construct>(
        name=...,
        <kind specific arguments>,
        after=<upstream ident>,
    )

Which construct and which keyword names are used comes from a TargetProfile,
so the same IR can be retargeted by swapping the profile:

  role        agentflow     adk
  ──────────  ────────────  ───────────────
  agent       Agent         LlmAgent
  step        Step          Step
  sequence    Sequential    SequentialAgent
  parallel    Parallel      ParallelAgent
  branch      Branch        Branch
  switch      Switch        Switch
  loop        Loop          LoopAgent

Container templates receive their already-rendered children as `parts`
(python expressions keyed by slot); the emitter renders children first.

Adding a new node kind
----------------------
1. Add it to NodeKind and the NodeRegistry.
2. Subclass NodeTemplate (or StepTemplate) and override arguments().
3. Register it in TEMPLATE_REGISTRY. The registry is checked against
   NodeKind at import time.
"""

from __future__ import annotations

import json
import keyword
import logging
import math
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from agentflow.core.GraphPrimitives import Node
from agentflow.core.Types import NodeKind
from agentflow.errors import CompilerInternalError, ProfileError
from agentflow.noderegistry.NodeRegistry import OUTCOME_PORTS, get_kind_spec, resolved_config

logger = logging.getLogger(__name__)


# ── Code writer ───────────────────────────────────────────────────────────────

class CodeWriter:
    """Simple indented string accumulator."""

    def __init__(self, indent: int = 0):
        self._lines: List[str] = []
        self._indent = indent

    def writeln(self, line: str = "") -> "CodeWriter":
        if line:
            self._lines.append("    " * self._indent + line)
        else:
            self._lines.append("")
        return self

    def blank(self) -> "CodeWriter":
        return self.writeln()

    def comment(self, text: str) -> "CodeWriter":
        return self.writeln(f"# {text}")

    def push(self) -> "CodeWriter":
        self._indent += 1
        return self

    def pop(self) -> "CodeWriter":
        self._indent = max(0, self._indent - 1)
        return self

    def call(self, target: str, constructor: str, args: List[Tuple[str, str]]) -> "CodeWriter":
        """Emit `target = constructor(k=v, ...)`, one keyword argument per line."""
        if not args:
            return self.writeln(f"{target} = {constructor}()")
        self.writeln(f"{target} = {constructor}(")
        self.push()
        for name, value in args:
            self.writeln(f"{name}={value},")
        self.pop()
        return self.writeln(")")

    def lines(self) -> List[str]:
        return self._lines

    def result(self) -> str:
        return "\n".join(self._lines)


# ── Literals and identifiers ─────────────────────────────────────────────────

def literal(value: Any) -> str:
    """Render a JSON-like config value as a Python literal. Dict keys are sorted."""
    if value is None or isinstance(value, bool):
        return repr(value)
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return f'float("{value}")'
        return repr(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ", ".join(f"{literal(str(k))}: {literal(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(literal(v) for v in value) + "]"
    raise CompilerInternalError(f"Cannot render {type(value).__name__} as a literal")


def one_line(text: str) -> str:
    return " ".join(str(text).split())


_NON_IDENT = re.compile(r"[^0-9a-z_]+")
_UNDERSCORES = re.compile(r"_+")


def sanitize_identifier(name: str, fallback: str = "node") -> str:
    """
    Derive a valid Python identifier from a user-facing name.

        "User Text"  -> "user_text"
        "2nd pass"   -> "node_2nd_pass"
        "class"      -> "class_"
    """
    ident = _NON_IDENT.sub("_", str(name).strip().lower())
    ident = _UNDERSCORES.sub("_", ident).strip("_")
    if not ident:
        ident = fallback
    if ident[0].isdigit():
        ident = f"{fallback}_{ident}"
    if keyword.iskeyword(ident):
        ident += "_"
    return ident


class IdentifierAllocator:
    """Hands out unique identifiers; collisions get `_2`, `_3`, ... in first-seen order."""

    def __init__(self, reserved: Iterable[str] = ()):
        self._taken: Set[str] = set(reserved)

    def allocate(self, name: str, fallback: str = "node") -> str:
        base = sanitize_identifier(name, fallback)
        ident = base
        n = 1
        while ident in self._taken:
            n += 1
            ident = f"{base}_{n}"
        self._taken.add(ident)
        return ident


# ── Target profile ───────────────────────────────────────────────────────────

ROLES = ("agent", "step", "sequence", "parallel", "branch", "switch", "loop")

# Keyword slots a profile may rename. A slot mapped to None is left out of the
# emitted call.
KEYWORD_SLOTS = (
    "children", "branches", "join", "upstream", "condition", "if_true", "if_false",
    "routes", "body", "loop_kind", "count", "loop_condition", "items", "max_iterations",
)


@dataclass(frozen=True)
class TargetProfile:
    """Construct and keyword names of one target framework."""
    name: str
    imports: Tuple[str, ...]
    constructs: Mapping[str, str]
    keywords: Mapping[str, Optional[str]]
    root_identifier: str = "workflow"
    # Lines appended after __all__; "{root}" is replaced by the root identifier.
    entrypoint: Tuple[str, ...] = ()
    reserved: Tuple[str, ...] = ()
    # Use the generated identifier as the construct's `name` (frameworks that
    # require identifier-like names) instead of the user-facing node name.
    identifier_names: bool = False
    # Wrap a loop body in a list (`sub_agents=[body]`).
    body_as_list: bool = False

    def construct(self, role: str) -> str:
        try:
            return self.constructs[role]
        except KeyError:
            raise CompilerInternalError(f"Profile '{self.name}' has no construct for role '{role}'")

    def keyword(self, slot: str) -> Optional[str]:
        return self.keywords.get(slot)

    def reserved_names(self) -> Set[str]:
        names = set(self.reserved)
        names.update(self.constructs.values())
        names.add(self.root_identifier)
        return names

    def display_name(self, label: str, ident: str) -> str:
        return ident if self.identifier_names else label


AGENTFLOW_PROFILE = TargetProfile(
    name="agentflow",
    imports=("from agentflow_runtime import Agent, Branch, Loop, Parallel, Sequential, Step, Switch, run",),
    constructs={
        "agent": "Agent",
        "step": "Step",
        "sequence": "Sequential",
        "parallel": "Parallel",
        "branch": "Branch",
        "switch": "Switch",
        "loop": "Loop",
    },
    keywords={
        "children": "steps",
        "branches": "branches",
        "join": "join",
        "upstream": "after",
        "condition": "condition",
        "if_true": "if_true",
        "if_false": "if_false",
        "routes": "routes",
        "body": "body",
        "loop_kind": "kind",
        "count": "count",
        "loop_condition": "condition",
        "items": "items",
        "max_iterations": "max_iterations",
    },
    root_identifier="workflow",
    entrypoint=('if __name__ == "__main__":', "    run({root})"),
    reserved=("run",),
)

ADK_PROFILE = TargetProfile(
    name="adk",
    imports=(
        "from google.adk.agents import LlmAgent, LoopAgent, ParallelAgent, SequentialAgent",
        "from agentflow_runtime.adk import Branch, Step, Switch",
    ),
    constructs={
        "agent": "LlmAgent",
        "step": "Step",
        "sequence": "SequentialAgent",
        "parallel": "ParallelAgent",
        "branch": "Branch",
        "switch": "Switch",
        "loop": "LoopAgent",
    },
    keywords={
        "children": "sub_agents",
        "branches": "sub_agents",
        "join": None,
        "upstream": None,
        "condition": "condition",
        "if_true": "if_true",
        "if_false": "if_false",
        "routes": "routes",
        "body": "sub_agents",
        "loop_kind": None,
        "count": "max_iterations",
        "loop_condition": "condition",
        "items": "items",
        "max_iterations": "max_iterations",
    },
    root_identifier="root_agent",
    identifier_names=True,
    body_as_list=True,
)

PROFILES: Dict[str, TargetProfile] = {
    AGENTFLOW_PROFILE.name: AGENTFLOW_PROFILE,
    ADK_PROFILE.name: ADK_PROFILE,
}

DEFAULT_PROFILE = AGENTFLOW_PROFILE

_PROFILE_KEYS = {
    "base", "name", "imports", "constructs", "keywords", "rootIdentifier",
    "entrypoint", "reserved", "identifierNames", "bodyAsList",
}


def profile_from_dict(data: Mapping[str, Any], source: str = "<profile>") -> TargetProfile:
    """
    Build a profile from JSON overrides on top of a built-in base:

        {"base": "agentflow", "constructs": {"agent": "MyAgent"},
         "imports": ["from my_runtime import *"]}
    """
    if not isinstance(data, Mapping):
        raise ProfileError(f"{source}: profile must be a JSON object")
    unknown = sorted(set(data) - _PROFILE_KEYS)
    if unknown:
        raise ProfileError(f"{source}: unknown profile keys: {', '.join(unknown)}")

    base_name = data.get("base", DEFAULT_PROFILE.name)
    base = PROFILES.get(base_name)
    if base is None:
        raise ProfileError(f"{source}: unknown base profile '{base_name}'")

    constructs = dict(base.constructs)
    constructs.update(_string_map(data.get("constructs", {}), "constructs", source))
    bad_roles = sorted(set(constructs) - set(ROLES))
    if bad_roles:
        raise ProfileError(f"{source}: unknown construct roles: {', '.join(bad_roles)}")

    keywords = dict(base.keywords)
    keywords.update(_string_map(data.get("keywords", {}), "keywords", source, allow_null=True))
    bad_slots = sorted(set(keywords) - set(KEYWORD_SLOTS))
    if bad_slots:
        raise ProfileError(f"{source}: unknown keyword slots: {', '.join(bad_slots)}")

    entrypoint = data.get("entrypoint", list(base.entrypoint))
    return replace(
        base,
        name=str(data.get("name", Path(source).stem if source != "<profile>" else base.name)),
        imports=tuple(_string_list(data.get("imports", list(base.imports)), "imports", source)),
        constructs=constructs,
        keywords=keywords,
        root_identifier=sanitize_identifier(data.get("rootIdentifier", base.root_identifier)),
        entrypoint=tuple(_string_list(entrypoint or [], "entrypoint", source)),
        reserved=tuple(_string_list(data.get("reserved", list(base.reserved)), "reserved", source)),
        identifier_names=bool(data.get("identifierNames", base.identifier_names)),
        body_as_list=bool(data.get("bodyAsList", base.body_as_list)),
    )


def _string_map(value, key: str, source: str, allow_null: bool = False) -> Dict[str, Optional[str]]:
    if not isinstance(value, Mapping):
        raise ProfileError(f"{source}: '{key}' must be an object")
    for k, v in value.items():
        if v is None and allow_null:
            continue
        if not isinstance(v, str) or not v.isidentifier() or keyword.iskeyword(v):
            raise ProfileError(f"{source}: '{key}.{k}' must be an identifier that is not a keyword")
    return dict(value)


def _string_list(value, key: str, source: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ProfileError(f"{source}: '{key}' must be a list of strings")
    return value


def load_profile(target: Union[None, str, Path, TargetProfile] = None) -> TargetProfile:
    """Resolve a built-in profile name or a path to a JSON profile file."""
    if target is None:
        return DEFAULT_PROFILE
    if isinstance(target, TargetProfile):
        return target

    key = str(target)
    if key in PROFILES:
        return PROFILES[key]

    path = Path(key)
    if path.suffix != ".json" or not path.is_file():
        raise ProfileError(
            f"Unknown target '{key}': expected one of {', '.join(sorted(PROFILES))} "
            f"or a profile .json file"
        )
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ProfileError(f"{path}: invalid JSON: {exc}") from exc

    profile = profile_from_dict(data, source=str(path))
    logger.info("Loaded target profile '%s' from %s", profile.name, path)
    return profile


# ── Base template ─────────────────────────────────────────────────────────────

class NodeTemplate:
    """
    Base class; subclasses override `arguments()`.

    `parts` carries pre-rendered child expressions for container kinds:
    children, members, join, if_true, if_false, routes, body.
    """

    role = "step"

    def arguments(
        self, node: Node, config: Dict[str, Any], profile: TargetProfile, parts: Dict[str, str]
    ) -> List[Tuple[Optional[str], str]]:
        return []

    def render(
        self,
        writer: CodeWriter,
        node: Node,
        ident: str,
        profile: TargetProfile,
        parts: Optional[Dict[str, str]] = None,
        upstream: Optional[str] = None,
        label: Optional[str] = None,
    ) -> None:
        config = resolved_config(node.kind, node.config)
        label = label if label is not None else node.name

        args: List[Tuple[str, str]] = [("name", literal(profile.display_name(label, ident)))]
        seen = {"name"}
        for name, value in self.arguments(node, config, profile, parts or {}):
            # unmapped slots are dropped; the first argument wins a shared keyword
            if name is None or name in seen:
                continue
            seen.add(name)
            args.append((name, value))

        upstream_kw = profile.keyword("upstream")
        if upstream and upstream_kw and upstream_kw not in seen:
            args.append((upstream_kw, upstream))

        writer.comment(f"{one_line(label)} ({node.kind.value})")
        self.annotate(writer, node, config, profile, parts or {})
        writer.call(ident, profile.construct(self.role), args)

    def annotate(self, writer, node, config, profile, parts) -> None:
        """Extra comment lines above the construct."""
        pass


# ── Leaf templates ───────────────────────────────────────────────────────────

class AgentTemplate(NodeTemplate):
    """LLM agent: model, instruction and optional description."""

    role = "agent"

    def arguments(self, node, config, profile, parts):
        args = [
            ("model", literal(config["model"])),
            ("instruction", literal(config.get("instruction", ""))),
        ]
        if config.get("description"):
            args.append(("description", literal(config["description"])))
        return args


class StepTemplate(NodeTemplate):
    """
    Generic non-agent step. The kind's own config fields are passed through
    as a dict literal, in schema order, with defaults filled in.
    """

    # config fields that steer compilation and never reach the target
    _COMPILE_ONLY = frozenset({"terminatedPorts"})

    def step_config(self, node: Node, config: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for spec in get_kind_spec(node.kind).fields:
            if spec.name in self._COMPILE_ONLY:
                continue
            if config.get(spec.name) is not None:
                out[spec.name] = config[spec.name]
        return out

    def arguments(self, node, config, profile, parts):
        args = [
            ("kind", literal(node.kind.value)),
            ("config", literal(self.step_config(node, config))),
        ]
        if config.get("description"):
            args.append(("description", literal(config["description"])))
        return args


class OutcomeStepTemplate(StepTemplate):
    """ApiCall / Validator: a step that reports one of two outcomes."""

    def arguments(self, node, config, profile, parts):
        args = super().arguments(node, config, profile, parts)
        args.append(("outcomes", literal(list(OUTCOME_PORTS[node.kind]))))
        return args


class DelayTemplate(StepTemplate):
    def arguments(self, node, config, profile, parts):
        args = super().arguments(node, config, profile, parts)
        seconds = config["delayAmount"] * _DELAY_SCALE[config["delayUnit"]]
        args.append(("seconds", literal(seconds)))
        return args


_DELAY_SCALE = {"seconds": 1, "minutes": 60, "hours": 3600}


# ── Container templates ──────────────────────────────────────────────────────

class SequentialTemplate(NodeTemplate):
    role = "sequence"

    def arguments(self, node, config, profile, parts):
        return [(profile.keyword("children"), parts.get("children", "[]"))]


class ParallelTemplate(NodeTemplate):
    """Concurrent members; the join strategy is always stated explicitly."""

    role = "parallel"

    def arguments(self, node, config, profile, parts):
        return [
            (profile.keyword("branches"), parts.get("members", "[]")),
            (profile.keyword("join"), literal(parts.get("join", config["joinStrategy"]))),
        ]

    def annotate(self, writer, node, config, profile, parts):
        if profile.keyword("join") is None:
            writer.comment(f"join: {parts.get('join', config['joinStrategy'])}")


class ConditionalTemplate(NodeTemplate):
    role = "branch"

    def arguments(self, node, config, profile, parts):
        return [
            (profile.keyword("condition"), literal(parts.get("condition", config.get("condition", "")))),
            (profile.keyword("if_true"), parts["if_true"]),
            (profile.keyword("if_false"), parts["if_false"]),
        ]


class RouterTemplate(NodeTemplate):
    """Routes are (label, block) pairs in port-index order."""

    role = "switch"

    def arguments(self, node, config, profile, parts):
        return [(profile.keyword("routes"), parts.get("routes", "[]"))]


class LoopTemplate(NodeTemplate):
    role = "loop"

    _PARAM_SLOTS = (
        ("count", "count"),
        ("condition", "loop_condition"),
        ("items", "items"),
        ("max_iterations", "max_iterations"),
    )

    def arguments(self, node, config, profile, parts):
        args = [(profile.keyword("loop_kind"), literal(config["loopType"]))]
        params = {
            "count": config.get("loopCount"),
            "condition": config.get("loopCondition"),
            "items": config.get("loopItems"),
            "max_iterations": config.get("maxIterations"),
        }
        active = _LOOP_PARAMS[config["loopType"]] + ("max_iterations",)
        for param, slot in self._PARAM_SLOTS:
            if param in active and params[param] is not None:
                args.append((profile.keyword(slot), literal(params[param])))
        args.append((profile.keyword("body"), parts["body"]))
        return args


_LOOP_PARAMS = {
    "fixed-count": ("count",),
    "while": ("condition",),
    "for-each": ("items",),
}


class OutcomeBranchTemplate(ConditionalTemplate):
    """The success / failure split after an ApiCall or Validator step."""

    def annotate(self, writer, node, config, profile, parts):
        primary, failure = OUTCOME_PORTS[node.kind]
        writer.comment(f"outcome split: {primary} / {failure}")


# ── Registry ──────────────────────────────────────────────────────────────────

_STEP = StepTemplate()

TEMPLATE_REGISTRY: Dict[NodeKind, NodeTemplate] = {
    NodeKind.AGENT:       AgentTemplate(),
    NodeKind.SEQUENTIAL:  SequentialTemplate(),
    NodeKind.PARALLEL:    ParallelTemplate(),
    NodeKind.CONDITIONAL: ConditionalTemplate(),
    NodeKind.LOOP:        LoopTemplate(),
    NodeKind.ROUTER:      RouterTemplate(),
    NodeKind.INPUT:       _STEP,
    NodeKind.OUTPUT:      _STEP,
    NodeKind.API_CALL:    OutcomeStepTemplate(),
    NodeKind.VALIDATOR:   OutcomeStepTemplate(),
    NodeKind.DATABASE:    _STEP,
    NodeKind.FILE_OP:     _STEP,
    NodeKind.TRANSFORM:   _STEP,
    NodeKind.DELAY:       DelayTemplate(),
    NodeKind.DEBUG:       _STEP,
    NodeKind.VARIABLE:    _STEP,
}

OUTCOME_BRANCH_TEMPLATE = OutcomeBranchTemplate()

_missing = [k.value for k in NodeKind if k not in TEMPLATE_REGISTRY]
assert not _missing, f"No code template for node kinds: {_missing}"
del _missing


def get_template(kind: NodeKind) -> NodeTemplate:
    template = TEMPLATE_REGISTRY.get(kind)
    if template is None:
        raise CompilerInternalError(f"No code template registered for node kind {kind!r}")
    return template
