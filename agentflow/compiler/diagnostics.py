"""
Structured diagnostics produced by the validator and surfaced to the editor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


# Diagnostic codes
MISSING_CONFIG      = "missing-config"
INVALID_CONFIG      = "invalid-config"
DUPLICATE_NODE      = "duplicate-node"
DUPLICATE_EDGE      = "duplicate-edge"
DANGLING_EDGE       = "dangling-edge"
INVALID_PORT        = "invalid-port"
NO_ENTRY            = "no-entry"
UNREACHABLE_NODE    = "unreachable-node"
ILLEGAL_CYCLE       = "illegal-cycle"
UNTERMINATED_BRANCH = "unterminated-branch"
TOO_MANY_NODES      = "too-many-nodes"
INVALID_TARGET      = "invalid-target"
INTERNAL_ERROR      = "internal-error"


@dataclass(frozen=True)
class Diagnostic:
    severity: Severity
    code: str
    message: str
    node_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "nodeId": self.node_id,
        }

    def __str__(self) -> str:
        where = f" [{self.node_id}]" if self.node_id else ""
        return f"{self.severity.value}: {self.code}{where}: {self.message}"


@dataclass
class DiagnosticCollector:
    """Accumulates diagnostics in the order the checks produce them."""

    _items: List[Diagnostic] = field(default_factory=list)

    def error(self, code: str, message: str, node_id: Optional[str] = None) -> Diagnostic:
        return self._add(Diagnostic(Severity.ERROR, code, message, node_id))

    def warning(self, code: str, message: str, node_id: Optional[str] = None) -> Diagnostic:
        return self._add(Diagnostic(Severity.WARNING, code, message, node_id))

    def _add(self, diagnostic: Diagnostic) -> Diagnostic:
        self._items.append(diagnostic)
        return diagnostic

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self._items)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self._items if d.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self._items if not d.is_error]

    def all(self) -> List[Diagnostic]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)
