from enum import Enum, auto
from typing import Any


class PortDirection(Enum):
    INPUT = auto()
    OUTPUT = auto()


class FieldType(Enum):
    STRING = "string"
    INT = "int"
    NUMBER = "number"
    BOOL = "bool"
    DICT = "dict"
    LIST = "list"

    @staticmethod
    def validate(value: Any, field_type: 'FieldType') -> bool:
        # bool is an int subclass; never let True/False pass as a count
        if field_type == FieldType.STRING:
            return isinstance(value, str)
        elif field_type == FieldType.INT:
            return isinstance(value, int) and not isinstance(value, bool)
        elif field_type == FieldType.NUMBER:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        elif field_type == FieldType.BOOL:
            return isinstance(value, bool)
        elif field_type == FieldType.DICT:
            return isinstance(value, dict)
        elif field_type == FieldType.LIST:
            return isinstance(value, (list, tuple))

        return False


class NodeKind(Enum):
    """Node kinds known to the editor palette. Values are the wire names."""

    AGENT = "llm-agent"
    SEQUENTIAL = "sequential-workflow"
    PARALLEL = "parallel-workflow"
    CONDITIONAL = "conditional"
    LOOP = "loop"
    INPUT = "input"
    OUTPUT = "output"
    API_CALL = "api-call"
    DATABASE = "database"
    FILE_OP = "file-operations"
    TRANSFORM = "data-transform"
    VALIDATOR = "validator"
    ROUTER = "router"
    DELAY = "delay"
    DEBUG = "debug"
    VARIABLE = "variable"

    @staticmethod
    def from_wire(name: str) -> 'NodeKind':
        for kind in NodeKind:
            if kind.value == name:
                return kind
        raise ValueError(f"Unknown node kind '{name}'")

    def is_container(self) -> bool:
        return self in CONTAINER_KINDS


CONTAINER_KINDS = frozenset({
    NodeKind.SEQUENTIAL,
    NodeKind.PARALLEL,
    NodeKind.CONDITIONAL,
    NodeKind.LOOP,
    NodeKind.ROUTER,
})
