"""
Exceptions for the resource graph.

Construction-time errors (configuration and graph errors) are raised before
anything is submitted, so nothing has been touched when they surface.
Reconciliation errors are collected per declaration by the reconciler.
"""


class InfraError(Exception):
    """Base exception for infrastructure errors."""

    pass


class ConfigurationError(InfraError):
    """Required configuration is missing or invalid."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = missing or []


class GraphError(InfraError):
    """Base exception for graph construction errors."""

    pass


class DuplicateNameError(GraphError):
    """A logical name or binding name is already used in the graph."""

    pass


class UnknownFieldError(GraphError):
    """A field is not part of the resource type's schema."""

    pass


class UnknownDeclarationError(GraphError):
    """A reference points at a logical name that was never declared."""

    pass


class CycleError(GraphError):
    """Dependency edges form a cycle."""

    def __init__(self, message: str, cycle: list[str] | None = None):
        super().__init__(message)
        self.cycle = cycle or []


class SealedGraphError(GraphError):
    """The graph was finalized and can no longer change."""

    pass


class LockedStateError(InfraError):
    """Another run holds the state of this graph. Retry after backoff."""

    def __init__(self, message: str, holder: str | None = None):
        super().__init__(message)
        self.holder = holder


class ReconciliationError(InfraError):
    """The engine could not realize a declaration."""

    def __init__(self, declaration: str, cause: BaseException):
        super().__init__(f"{declaration}: {cause}")
        self.declaration = declaration
        self.cause = cause
