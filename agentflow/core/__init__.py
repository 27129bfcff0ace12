from .GraphPrimitives import DEFAULT_PORT, Edge, Graph, Node
from .Types import FieldType, NodeKind, PortDirection
