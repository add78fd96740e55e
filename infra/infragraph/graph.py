"""
Resource graph builder.

A ``ResourceGraph`` is one deployable unit: an ordered list of declarations,
the bindings it exposes, and its lifecycle state. Building never contacts an
external system; ``finalize`` checks references, derives dependency edges,
orders declarations topologically and seals the graph.

Usage:
    graph = ResourceGraph("portfolio-dev")
    vpc = graph.declare("portfolio-dev-vpc", types.VPC, {"CidrBlock": "10.0.0.0/16"})
    graph.declare("portfolio-dev-igw", types.INTERNET_GATEWAY, {}, depends_on=[vpc])
    graph.expose("vpcId", vpc, "id")
    ordered = graph.finalize()
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from infragraph.compose import ConditionalSubsystem
from infragraph.errors import (
    CycleError,
    DuplicateNameError,
    GraphError,
    SealedGraphError,
    UnknownDeclarationError,
    UnknownFieldError,
)
from infragraph.logging import get_logger
from infragraph.resources import OutputBinding, Ref, ResourceDeclaration, collect_refs
from infragraph.types import REF_FIELD, ResourceType

logger = get_logger(__name__)


class GraphState(str, Enum):
    """Lifecycle of one deployable graph within a run."""

    BUILDING = "building"
    FINALIZED = "finalized"
    SUBMITTED = "submitted"
    RECONCILING = "reconciling"
    SETTLED = "settled"
    FAILED = "failed"


_TRANSITIONS: dict[GraphState, set[GraphState]] = {
    GraphState.BUILDING: {GraphState.FINALIZED},
    GraphState.FINALIZED: {GraphState.SUBMITTED},
    GraphState.SUBMITTED: {GraphState.RECONCILING},
    GraphState.RECONCILING: {GraphState.SETTLED, GraphState.FAILED},
    GraphState.SETTLED: set(),
    GraphState.FAILED: set(),
}


@dataclass(frozen=True)
class Annotation:
    """A message attached to a declaration by a validation aspect."""

    declaration: str
    level: str
    message: str


class Annotations:
    """Collects annotations for one declaration."""

    def __init__(self, graph: ResourceGraph, declaration: ResourceDeclaration) -> None:
        self._graph = graph
        self._declaration = declaration

    def add_info(self, message: str) -> None:
        self._add("info", message)

    def add_warning(self, message: str) -> None:
        self._add("warning", message)

    def _add(self, level: str, message: str) -> None:
        annotation = Annotation(self._declaration.logical_name, level, message)
        self._graph.annotations.append(annotation)
        log = logger.warning if level == "warning" else logger.info
        log(
            "declaration_annotated",
            graph=self._graph.name,
            declaration=annotation.declaration,
            message=message,
        )


class Aspect(Protocol):
    """Visitor run over every declaration during finalization."""

    def visit(self, declaration: ResourceDeclaration, annotations: Annotations) -> None: ...


class ResourceGraph:
    """Named, ordered set of resource declarations for one deployable unit."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.state = GraphState.BUILDING
        self.annotations: list[Annotation] = []
        self._declarations: dict[str, ResourceDeclaration] = {}
        self._bindings: dict[str, OutputBinding] = {}
        self._subsystems: list[ConditionalSubsystem] = []
        self._open_subsystems: list[ConditionalSubsystem] = []
        self._aspects: list[Aspect] = []
        self._edges: dict[str, set[str]] = {}
        self._ordered: list[ResourceDeclaration] | None = None

    def __repr__(self) -> str:
        return f"ResourceGraph({self.name!r}, state={self.state.value}, declarations={len(self)})"

    def __len__(self) -> int:
        return len(self._declarations)

    def __contains__(self, logical_name: object) -> bool:
        return logical_name in self._declarations

    # =================================================================
    # Building
    # =================================================================

    def declare(
        self,
        logical_name: str,
        resource_type: ResourceType,
        inputs: Mapping[str, Any] | None = None,
        depends_on: Iterable[ResourceDeclaration | str] = (),
    ) -> ResourceDeclaration:
        """
        Add a declaration to the graph.

        Raises:
            DuplicateNameError: If ``logical_name`` is already declared
            SealedGraphError: If the graph was finalized
        """
        self._ensure_building()
        if logical_name in self._declarations:
            raise DuplicateNameError(
                f"Declaration {logical_name!r} already exists in graph {self.name!r}"
            )

        current = self._open_subsystems[-1] if self._open_subsystems else None
        declaration = ResourceDeclaration(
            logical_name=logical_name,
            type=resource_type,
            inputs=dict(inputs or {}),
            depends_on=tuple(_name_of(dep) for dep in depends_on),
            subsystem=current.name if current else None,
        )
        self._declarations[logical_name] = declaration
        if current is not None:
            current.declarations.append(declaration)

        logger.debug(
            "declaration_added",
            graph=self.name,
            declaration=logical_name,
            type=resource_type.tag,
            subsystem=declaration.subsystem,
        )
        return declaration

    def ref(self, logical_name: str, field_name: str = REF_FIELD) -> Ref:
        """Forward reference to a declaration that may not exist yet."""
        declaration = self._declarations.get(logical_name)
        if declaration is not None:
            return declaration.ref(field_name)
        return Ref(logical_name, field_name)

    def expose(
        self,
        binding_name: str,
        source: ResourceDeclaration | str,
        field_path: str = REF_FIELD,
        kind: str = "string",
    ) -> OutputBinding:
        """
        Expose a declaration field under ``binding_name``.

        Raises:
            UnknownFieldError: If ``field_path`` is not in the source type's schema
            DuplicateNameError: If the binding name is taken
        """
        if isinstance(source, ResourceDeclaration):
            source.ref(field_path)
        elif source in self._declarations:
            self._declarations[source].ref(field_path)
        return self._add_binding(
            OutputBinding(name=binding_name, source=_name_of(source), field=field_path, kind=kind)
        )

    def expose_value(self, binding_name: str, value: Any, kind: str = "string") -> OutputBinding:
        """Expose a derived value (which may contain refs) under ``binding_name``."""
        return self._add_binding(OutputBinding(name=binding_name, value=value, kind=kind))

    @contextmanager
    def subsystem(self, name: str) -> Iterator[ConditionalSubsystem]:
        """
        Record everything declared inside the block as one subsystem.

        If the block raises, everything it declared or exposed (nested
        subsystems included) is removed before the error propagates.
        """
        self._ensure_building()
        subsystem = ConditionalSubsystem(name)
        checkpoint = (len(self._declarations), len(self._bindings), len(self._subsystems))
        self._open_subsystems.append(subsystem)
        try:
            yield subsystem
        except Exception:
            self._rollback(*checkpoint)
            logger.warning("subsystem_discarded", graph=self.name, subsystem=name)
            raise
        finally:
            self._open_subsystems.pop()
        self._subsystems.append(subsystem)
        logger.info(
            "subsystem_included",
            graph=self.name,
            subsystem=name,
            declarations=len(subsystem.declarations),
        )

    def add_aspect(self, aspect: Aspect) -> None:
        self._aspects.append(aspect)

    # =================================================================
    # Inspection
    # =================================================================

    @property
    def declarations(self) -> tuple[ResourceDeclaration, ...]:
        """Declarations in the order they were declared."""
        return tuple(self._declarations.values())

    @property
    def bindings(self) -> Mapping[str, OutputBinding]:
        return dict(self._bindings)

    @property
    def subsystems(self) -> list[str]:
        return [subsystem.name for subsystem in self._subsystems]

    @property
    def ordered(self) -> list[ResourceDeclaration]:
        """Declarations in dependency order. Only available once finalized."""
        if self._ordered is None:
            raise GraphError(f"Graph {self.name!r} has not been finalized")
        return list(self._ordered)

    def get(self, logical_name: str) -> ResourceDeclaration:
        if logical_name not in self._declarations:
            raise UnknownDeclarationError(
                f"No declaration named {logical_name!r} in graph {self.name!r}"
            )
        return self._declarations[logical_name]

    def dependencies(self, logical_name: str) -> set[str]:
        """Direct predecessors of a declaration (explicit and implicit)."""
        if self._ordered is None:
            raise GraphError(f"Graph {self.name!r} has not been finalized")
        return set(self._edges[logical_name])

    def find(self, type_tag: str) -> list[ResourceDeclaration]:
        """All declarations of one type, in declaration order."""
        return [d for d in self._declarations.values() if d.type.tag == type_tag]

    # =================================================================
    # Finalization
    # =================================================================

    def finalize(self) -> list[ResourceDeclaration]:
        """
        Check references, order declarations and seal the graph.

        Raises:
            UnknownDeclarationError: If a ref or dependency names no declaration
            UnknownFieldError: If a ref names a field outside the target's schema
            CycleError: If dependency edges form a cycle
        """
        self._ensure_building()

        edges: dict[str, set[str]] = {}
        for declaration in self._declarations.values():
            predecessors = set(declaration.depends_on)
            for ref in collect_refs(dict(declaration.inputs)):
                self._check_ref(ref, declaration.logical_name)
                predecessors.add(ref.target)
            for name in predecessors:
                if name not in self._declarations:
                    raise UnknownDeclarationError(
                        f"{declaration.logical_name!r} depends on undeclared {name!r}"
                    )
            edges[declaration.logical_name] = predecessors

        for binding in self._bindings.values():
            for ref in collect_refs(binding.expression):
                self._check_ref(ref, f"binding {binding.name}")

        self._ordered = self._toposort(edges)
        self._edges = edges

        for aspect in self._aspects:
            for declaration in self._ordered:
                aspect.visit(declaration, Annotations(self, declaration))

        self.transition(GraphState.FINALIZED)
        logger.info(
            "graph_finalized",
            graph=self.name,
            declarations=len(self._ordered),
            bindings=len(self._bindings),
            subsystems=self.subsystems,
        )
        return list(self._ordered)

    def transition(self, state: GraphState) -> None:
        """Move to ``state``, rejecting transitions the lifecycle does not allow."""
        if state not in _TRANSITIONS[self.state]:
            raise GraphError(
                f"Graph {self.name!r} cannot move from {self.state.value} to {state.value}"
            )
        self.state = state

    def _check_ref(self, ref: Ref, owner: str) -> None:
        target = self._declarations.get(ref.target)
        if target is None:
            raise UnknownDeclarationError(f"{owner!r} references undeclared {ref.target!r}")
        if not target.type.has_field(ref.field):
            raise UnknownFieldError(
                f"{owner!r} references unknown field {ref.field!r} of {ref.target!r} "
                f"({target.type.tag})"
            )

    def _toposort(self, edges: dict[str, set[str]]) -> list[ResourceDeclaration]:
        # Kahn's algorithm; ties are broken by declaration order so the
        # result is identical across runs.
        position = {name: index for index, name in enumerate(self._declarations)}
        remaining = {name: len(preds) for name, preds in edges.items()}
        successors: dict[str, list[str]] = {name: [] for name in edges}
        for name, preds in edges.items():
            for pred in preds:
                successors[pred].append(name)

        ready = [position[name] for name, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        names = list(self._declarations)
        ordered: list[ResourceDeclaration] = []

        while ready:
            name = names[heapq.heappop(ready)]
            ordered.append(self._declarations[name])
            for succ in successors[name]:
                remaining[succ] -= 1
                if remaining[succ] == 0:
                    heapq.heappush(ready, position[succ])

        if len(ordered) != len(names):
            stuck = {name for name, count in remaining.items() if count > 0}
            cycle = _find_cycle(stuck, edges)
            raise CycleError(
                f"Dependency cycle in graph {self.name!r}: {' -> '.join(cycle)}",
                cycle=cycle,
            )
        return ordered

    def _add_binding(self, binding: OutputBinding) -> OutputBinding:
        self._ensure_building()
        if binding.name in self._bindings:
            raise DuplicateNameError(
                f"Binding {binding.name!r} already exists in graph {self.name!r}"
            )
        current = self._open_subsystems[-1] if self._open_subsystems else None
        if current is not None:
            binding = OutputBinding(
                name=binding.name,
                source=binding.source,
                field=binding.field,
                value=binding.value,
                kind=binding.kind,
                subsystem=current.name,
            )
            current.bindings[binding.name] = binding
        self._bindings[binding.name] = binding
        return binding

    def _rollback(self, declarations: int, bindings: int, subsystems: int) -> None:
        # Declarations and bindings are only ever appended while building
        self._declarations = dict(list(self._declarations.items())[:declarations])
        self._bindings = dict(list(self._bindings.items())[:bindings])
        del self._subsystems[subsystems:]

    def _ensure_building(self) -> None:
        if self.state is not GraphState.BUILDING:
            raise SealedGraphError(f"Graph {self.name!r} is {self.state.value} and cannot change")


def _name_of(item: ResourceDeclaration | str) -> str:
    return item.logical_name if isinstance(item, ResourceDeclaration) else item


def _find_cycle(stuck: set[str], edges: dict[str, set[str]]) -> list[str]:
    """Walk predecessor edges inside ``stuck`` until a node repeats."""
    start = min(stuck)
    path: list[str] = []
    seen: dict[str, int] = {}
    node = start
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = min(pred for pred in edges[node] if pred in stuck)
    cycle = path[seen[node] :]
    cycle.reverse()
    return [*cycle, cycle[0]]
