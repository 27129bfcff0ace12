from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Tuple
import logging

from ..core.GraphPrimitives import DEFAULT_PORT
from ..core.Types import FieldType, NodeKind, PortDirection
from ..errors import CompilerInternalError

logger = logging.getLogger(__name__)

# =========================================================================================
# STATIC NODE CATALOGUE
#
# One entry per NodeKind: the named ports an edge may attach to and the
# configuration fields the property panel edits. The table is fixed at import
# time; the compiler never consults anything that can change between runs.
# =========================================================================================


class PortSpec(NamedTuple):
    name: str
    direction: PortDirection
    label: str = ""


class FieldSpec(NamedTuple):
    name: str
    type: FieldType
    required: bool = False
    default: Any = None
    choices: Optional[Tuple[str, ...]] = None
    # (field, value): the field becomes required when `field` resolves to `value`
    required_when: Optional[Tuple[str, str]] = None
    minimum: Optional[float] = None


class PortSignature(NamedTuple):
    inputs: Tuple[PortSpec, ...]
    outputs: Tuple[PortSpec, ...]

    def input_names(self) -> List[str]:
        return [p.name for p in self.inputs]

    def output_names(self) -> List[str]:
        return [p.name for p in self.outputs]


class KindSpec(NamedTuple):
    kind: NodeKind
    inputs: Tuple[PortSpec, ...]
    outputs: Tuple[PortSpec, ...]
    fields: Tuple[FieldSpec, ...]
    description: str = ""
    # Computes the output ports from the node config for kinds whose port
    # count is user-configurable (Router, Parallel).
    dynamic_outputs: Optional[Callable[[Mapping[str, Any]], Tuple[PortSpec, ...]]] = None


def _in(name: str = DEFAULT_PORT, label: str = "") -> PortSpec:
    return PortSpec(name, PortDirection.INPUT, label)


def _out(name: str = DEFAULT_PORT, label: str = "") -> PortSpec:
    return PortSpec(name, PortDirection.OUTPUT, label)


DEFAULT_MODEL = "gemini-2.0-flash-exp"
DEFAULT_BRANCH_COUNT = 2
DEFAULT_ROUTE_COUNT = 2

# Fields every node carries regardless of kind.
COMMON_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("name", FieldType.STRING),
    FieldSpec("description", FieldType.STRING),
)

# Ports that split an ordinary step into a success path and a failure path.
# (primary, failure); the primary port doubles as the default port.
OUTCOME_PORTS: Dict[NodeKind, Tuple[str, str]] = {
    NodeKind.API_CALL:  ("success", "error"),
    NodeKind.VALIDATOR: ("valid", "invalid"),
}


# ── Dynamic port helpers ─────────────────────────────────────────────────────

def _positive_int(value: Any, fallback: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return fallback


def route_labels(config: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """
    Return [(port_name, label), ...] for a Router node, in port-index order.

    The route count follows the configured routing rules when present,
    otherwise `routeCount`. Each label is the rule's condition when one is
    given, else the port name itself.
    """
    rules = config.get("routingRules")
    if isinstance(rules, (list, tuple)) and rules:
        count = len(rules)
    else:
        rules = []
        count = _positive_int(config.get("routeCount"), DEFAULT_ROUTE_COUNT)

    labels: List[Tuple[str, str]] = []
    for i in range(count):
        port = f"route{i}"
        label = port
        if i < len(rules) and isinstance(rules[i], Mapping):
            condition = rules[i].get("condition")
            if isinstance(condition, str) and condition.strip():
                label = condition
        labels.append((port, label))
    return labels


def _router_outputs(config: Mapping[str, Any]) -> Tuple[PortSpec, ...]:
    return tuple(_out(port, label) for port, label in route_labels(config))


def _parallel_outputs(config: Mapping[str, Any]) -> Tuple[PortSpec, ...]:
    count = _positive_int(config.get("branchCount"), DEFAULT_BRANCH_COUNT)
    return (_out(),) + tuple(_out(f"out{i}") for i in range(1, count + 1))


# ── The catalogue ────────────────────────────────────────────────────────────

_STEP_IO = ((_in(),), (_out(),))

NODE_REGISTRY: Dict[NodeKind, KindSpec] = {

    NodeKind.AGENT: KindSpec(
        NodeKind.AGENT, *_STEP_IO,
        fields=(
            FieldSpec("instruction", FieldType.STRING, required=True),
            FieldSpec("model", FieldType.STRING, default=DEFAULT_MODEL),
        ),
        description="LLM agent driven by a natural-language instruction",
    ),

    NodeKind.SEQUENTIAL: KindSpec(
        NodeKind.SEQUENTIAL, *_STEP_IO,
        fields=(),
        description="Runs its downstream chain in order",
    ),

    NodeKind.PARALLEL: KindSpec(
        NodeKind.PARALLEL,
        inputs=(_in(),),
        outputs=(),
        fields=(
            FieldSpec("joinStrategy", FieldType.STRING, default="wait-for-all",
                      choices=("wait-for-all", "race")),
            FieldSpec("branchCount", FieldType.INT, default=DEFAULT_BRANCH_COUNT, minimum=1),
        ),
        description="Runs each outgoing branch concurrently",
        dynamic_outputs=_parallel_outputs,
    ),

    NodeKind.CONDITIONAL: KindSpec(
        NodeKind.CONDITIONAL,
        inputs=(_in(),),
        outputs=(_out("true"), _out("false")),
        fields=(
            FieldSpec("condition", FieldType.STRING, required=True),
            FieldSpec("conditionType", FieldType.STRING, default="equals",
                      choices=("equals", "contains", "greater", "less", "exists")),
            FieldSpec("terminatedPorts", FieldType.LIST, default=()),
        ),
        description="Two-way branch on a condition",
    ),

    NodeKind.LOOP: KindSpec(
        NodeKind.LOOP,
        inputs=(_in(),),
        outputs=(_out("loop", "body"), _out("exit")),
        fields=(
            FieldSpec("loopType", FieldType.STRING, default="fixed-count",
                      choices=("fixed-count", "while", "for-each")),
            FieldSpec("loopCount", FieldType.INT, required_when=("loopType", "fixed-count"),
                      minimum=1),
            FieldSpec("loopCondition", FieldType.STRING, required_when=("loopType", "while")),
            FieldSpec("loopItems", FieldType.STRING, required_when=("loopType", "for-each")),
            FieldSpec("maxIterations", FieldType.INT, minimum=1),
        ),
        description="Repeats the body reachable from its loop port",
    ),

    NodeKind.INPUT: KindSpec(
        NodeKind.INPUT,
        inputs=(),
        outputs=(_out(),),
        fields=(
            FieldSpec("inputType", FieldType.STRING, default="text",
                      choices=("text", "number", "file", "json")),
            FieldSpec("placeholder", FieldType.STRING),
        ),
        description="Workflow entry point",
    ),

    NodeKind.OUTPUT: KindSpec(
        NodeKind.OUTPUT,
        inputs=(_in(),),
        outputs=(),
        fields=(
            FieldSpec("outputFormat", FieldType.STRING, default="text",
                      choices=("text", "json", "table", "chart")),
        ),
        description="Workflow result sink",
    ),

    NodeKind.API_CALL: KindSpec(
        NodeKind.API_CALL,
        inputs=(_in(),),
        outputs=(_out("success"), _out("error")),
        fields=(
            FieldSpec("apiUrl", FieldType.STRING, required=True),
            FieldSpec("apiMethod", FieldType.STRING, default="GET",
                      choices=("GET", "POST", "PUT", "DELETE")),
            FieldSpec("apiHeaders", FieldType.DICT),
            FieldSpec("apiBody", FieldType.STRING),
        ),
        description="HTTP request",
    ),

    NodeKind.DATABASE: KindSpec(
        NodeKind.DATABASE, *_STEP_IO,
        fields=(
            FieldSpec("dbType", FieldType.STRING, default="mysql",
                      choices=("mysql", "postgres", "mongodb", "sqlite")),
            FieldSpec("dbQuery", FieldType.STRING, required=True),
            FieldSpec("dbOperation", FieldType.STRING, default="select",
                      choices=("select", "insert", "update", "delete")),
        ),
        description="Database query",
    ),

    NodeKind.FILE_OP: KindSpec(
        NodeKind.FILE_OP, *_STEP_IO,
        fields=(
            FieldSpec("fileOperation", FieldType.STRING, default="read",
                      choices=("read", "write", "append", "delete")),
            FieldSpec("filePath", FieldType.STRING, required=True),
            FieldSpec("fileFormat", FieldType.STRING, default="txt",
                      choices=("txt", "json", "csv", "xml")),
        ),
        description="File system operation",
    ),

    NodeKind.TRANSFORM: KindSpec(
        NodeKind.TRANSFORM, *_STEP_IO,
        fields=(
            FieldSpec("transformType", FieldType.STRING, default="map",
                      choices=("map", "filter", "reduce", "sort", "group")),
            FieldSpec("transformScript", FieldType.STRING),
        ),
        description="Data transformation",
    ),

    NodeKind.VALIDATOR: KindSpec(
        NodeKind.VALIDATOR,
        inputs=(_in(),),
        outputs=(_out("valid"), _out("invalid")),
        fields=(
            FieldSpec("validationType", FieldType.STRING, default="required",
                      choices=("required", "format", "range", "custom")),
            FieldSpec("validationRules", FieldType.STRING),
        ),
        description="Data validation with valid / invalid outcomes",
    ),

    NodeKind.ROUTER: KindSpec(
        NodeKind.ROUTER,
        inputs=(_in(),),
        outputs=(),
        fields=(
            FieldSpec("routingRules", FieldType.LIST, default=()),
            FieldSpec("routeCount", FieldType.INT, default=DEFAULT_ROUTE_COUNT, minimum=1),
            FieldSpec("terminatedPorts", FieldType.LIST, default=()),
        ),
        description="N-way branch; one output port per route",
        dynamic_outputs=_router_outputs,
    ),

    NodeKind.DELAY: KindSpec(
        NodeKind.DELAY, *_STEP_IO,
        fields=(
            FieldSpec("delayAmount", FieldType.NUMBER, required=True, minimum=0),
            FieldSpec("delayUnit", FieldType.STRING, default="seconds",
                      choices=("seconds", "minutes", "hours")),
        ),
        description="Pause before continuing",
    ),

    NodeKind.DEBUG: KindSpec(
        NodeKind.DEBUG, *_STEP_IO,
        fields=(
            FieldSpec("message", FieldType.STRING),
        ),
        description="Logs the value passing through",
    ),

    NodeKind.VARIABLE: KindSpec(
        NodeKind.VARIABLE, *_STEP_IO,
        fields=(
            FieldSpec("variableName", FieldType.STRING, required=True),
            FieldSpec("variableValue", FieldType.STRING),
            FieldSpec("variableType", FieldType.STRING, default="string",
                      choices=("string", "number", "boolean", "array", "object")),
        ),
        description="Binds a named workflow variable",
    ),
}

# Every kind must be catalogued; a gap here is a build error, not a runtime surprise.
_missing = [k.value for k in NodeKind if k not in NODE_REGISTRY]
assert not _missing, f"NodeRegistry is missing kinds: {_missing}"
del _missing


# ── Lookups ──────────────────────────────────────────────────────────────────

def get_kind_spec(kind: NodeKind) -> KindSpec:
    spec = NODE_REGISTRY.get(kind)
    if spec is None:
        raise CompilerInternalError(f"Unknown node kind: {kind!r}")
    return spec


def ports_for(kind: NodeKind, config: Optional[Mapping[str, Any]] = None) -> PortSignature:
    spec = get_kind_spec(kind)
    outputs = spec.outputs
    if spec.dynamic_outputs is not None:
        outputs = spec.dynamic_outputs(config or {})
    return PortSignature(inputs=spec.inputs, outputs=outputs)


def config_schema_for(kind: NodeKind) -> List[FieldSpec]:
    return list(COMMON_FIELDS) + list(get_kind_spec(kind).fields)


def default_output_port(kind: NodeKind) -> Optional[str]:
    """The port an edge without an explicit source port attaches to."""
    if kind in OUTCOME_PORTS:
        return OUTCOME_PORTS[kind][0]
    if kind in (NodeKind.CONDITIONAL, NodeKind.ROUTER, NodeKind.LOOP, NodeKind.OUTPUT):
        return None
    return DEFAULT_PORT


def resolved_config(kind: NodeKind, config: Mapping[str, Any]) -> Dict[str, Any]:
    """Config with schema defaults filled in for absent (or None) fields."""
    result: Dict[str, Any] = dict(config)
    for field in config_schema_for(kind):
        if result.get(field.name) is None and field.default is not None:
            default = field.default
            result[field.name] = list(default) if isinstance(default, tuple) else default
    return result


def describe_registry() -> List[Dict[str, Any]]:
    """JSON-safe catalogue for palette and property-form rendering."""
    catalogue = []
    for kind in NodeKind:
        spec = NODE_REGISTRY[kind]
        ports = ports_for(kind)
        catalogue.append({
            "type": kind.value,
            "description": spec.description,
            "container": kind.is_container(),
            "dynamicOutputs": spec.dynamic_outputs is not None,
            "inputs": ports.input_names(),
            "outputs": ports.output_names(),
            "fields": [
                {
                    "name": f.name,
                    "type": f.type.value,
                    "required": f.required,
                    "requiredWhen": list(f.required_when) if f.required_when else None,
                    "default": list(f.default) if isinstance(f.default, tuple) else f.default,
                    "choices": list(f.choices) if f.choices else None,
                }
                for f in config_schema_for(kind)
            ],
        })
    logger.debug("Described %d node kinds", len(catalogue))
    return catalogue


def effective_source_port(kind: NodeKind, port: Optional[str]) -> Optional[str]:
    """Map an edge's (possibly unset) source port to the port it attaches to."""
    return port if port else default_output_port(kind)
