"""
Provider-agnostic resource graphs for the portfolio infrastructure.

A deployable unit (the platform, or one app) is built as a ``ResourceGraph``
of typed declarations, optional subsystems and output bindings, then handed
to an engine for reconciliation. App units read the platform's outputs
through a ``StackReference``.
"""

from .compose import EMPTY, ConditionalSubsystem, Empty, compose_if
from .config import AppConfig, InfraSettings, PlatformConfig
from .engine import BaseEngine, DeploymentReport, Engine, Reconciler
from .errors import (
    ConfigurationError,
    CycleError,
    DuplicateNameError,
    GraphError,
    InfraError,
    LockedStateError,
    ReconciliationError,
    SealedGraphError,
    UnknownDeclarationError,
    UnknownFieldError,
)
from .graph import GraphState, ResourceGraph
from .naming import PriorityAllocator, priority
from .option import ABSENT, Absent, Option, Present
from .resources import REGION, Apply, OutputBinding, Pseudo, Ref, ResourceDeclaration
from .state import OutputStore, ParameterStore, SnapshotStore, StackReference, StateLock

__all__ = [
    # Graph
    "ResourceGraph",
    "GraphState",
    "ResourceDeclaration",
    "OutputBinding",
    "Ref",
    "Apply",
    "Pseudo",
    "REGION",
    # Composition
    "compose_if",
    "ConditionalSubsystem",
    "Empty",
    "EMPTY",
    # Naming
    "priority",
    "PriorityAllocator",
    # Options
    "Option",
    "Present",
    "Absent",
    "ABSENT",
    # Configuration
    "AppConfig",
    "PlatformConfig",
    "InfraSettings",
    # State and reconciliation
    "OutputStore",
    "ParameterStore",
    "SnapshotStore",
    "StackReference",
    "StateLock",
    "Engine",
    "BaseEngine",
    "Reconciler",
    "DeploymentReport",
    # Errors
    "InfraError",
    "ConfigurationError",
    "GraphError",
    "DuplicateNameError",
    "UnknownFieldError",
    "UnknownDeclarationError",
    "CycleError",
    "SealedGraphError",
    "LockedStateError",
    "ReconciliationError",
]
