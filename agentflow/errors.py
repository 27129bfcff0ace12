"""
Shared exception hierarchy for the workflow compiler.

User-facing problems with a workflow (missing configuration, bad ports,
illegal cycles) are never raised; they are reported as diagnostics.
Only the conditions below surface as exceptions.
"""


class CompilerError(Exception):
    """Base class for all compiler related errors."""


class CompilerInternalError(CompilerError):
    """A compiler contract was violated (unknown kind, resolver invariant, missing template)."""


class SchemaError(CompilerError, ValueError):
    """Raised when a workflow document fails structural validation."""


class ProfileError(CompilerError, ValueError):
    """Raised when a target profile name or profile file cannot be resolved."""
