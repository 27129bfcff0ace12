from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple
from collections import defaultdict
from types import MappingProxyType

from .Types import NodeKind

# Port name used when an edge leaves its port unspecified.
DEFAULT_PORT = "default"


# Using NamedTuple for immutability and simple hashability
class Node(NamedTuple):
    id: str
    kind: NodeKind
    config: Mapping[str, Any] = MappingProxyType({})

    # Layout only; never consulted by the compiler
    position: Optional[Tuple[float, float]] = None

    @property
    def name(self) -> str:
        name = self.config.get("name")
        if isinstance(name, str) and name.strip():
            return name
        return self.id

    def __repr__(self):
        return f"Node({self.id}:{self.kind.value})"


class Edge(NamedTuple):
    id: str
    source: str
    target: str
    source_port: Optional[str] = None
    target_port: Optional[str] = None

    @property
    def to_port(self) -> str:
        return self.target_port or DEFAULT_PORT

    def __repr__(self):
        return f"Edge({self.id}: {self.source}.{self.source_port or '*'} -> {self.target}.{self.to_port})"


class Graph:
    """
    Read-only snapshot of a workflow document: nodes plus directed edges.

    The snapshot keeps nodes and edges in the order they were supplied,
    duplicates included, so the validator can report them. Lookups by id
    resolve to the first occurrence. Adjacency indexes are built once at
    construction and only ever read afterwards.
    """

    def __init__(self, nodes: Iterable[Node] = (), edges: Iterable[Edge] = ()):
        self._nodes: Tuple[Node, ...] = tuple(nodes)
        self._edges: Tuple[Edge, ...] = tuple(edges)

        self._node_index: Dict[str, Node] = {}
        for node in self._nodes:
            self._node_index.setdefault(node.id, node)

        self._outgoing: Dict[str, List[Edge]] = defaultdict(list)
        self._incoming: Dict[str, List[Edge]] = defaultdict(list)
        for edge in self._edges:
            self._outgoing[edge.source].append(edge)
            self._incoming[edge.target].append(edge)

    @property
    def nodes(self) -> Tuple[Node, ...]:
        return self._nodes

    @property
    def edges(self) -> Tuple[Edge, ...]:
        return self._edges

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self):
        return f"Graph(nodes={len(self._nodes)}, edges={len(self._edges)})"

    def node_ids(self) -> List[str]:
        return list(self._node_index)

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._node_index.get(node_id)

    # Ports are returned raw; the registry decides what an unset port means.
    def get_outgoing(self, node_id: str) -> List[Edge]:
        return list(self._outgoing.get(node_id, []))

    def get_incoming(self, node_id: str) -> List[Edge]:
        return list(self._incoming.get(node_id, []))
