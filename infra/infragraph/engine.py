"""
Reconciliation of a finalized graph through an engine.

The engine is whatever realizes declarations (the CDK renderer in
``stacks.graph_stack``, or a fake in tests). The reconciler owns the parts
around it: the state lock, the lifecycle transitions, dependency order,
partial failure, and the snapshot of exposed outputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from infragraph.documents import serialize
from infragraph.errors import GraphError, ReconciliationError
from infragraph.graph import GraphState, ResourceGraph
from infragraph.logging import get_logger
from infragraph.resources import Pseudo, Ref, ResourceDeclaration, resolve_value
from infragraph.state import SnapshotStore, StateLock

logger = get_logger(__name__)


class Engine(Protocol):
    """Realizes declarations one at a time, in dependency order."""

    def reconcile(self, declaration: ResourceDeclaration, inputs: dict[str, Any]) -> dict[str, Any]:
        """Create or update ``declaration``; return its field values."""
        ...

    def pseudo(self, value: Pseudo) -> Any:
        """Value of an engine-supplied pseudo parameter."""
        ...

    def serialize(self, value: Any) -> Any:
        """Turn resolved inputs into the engine's wire format."""
        ...

    def publish(self, name: str, value: Any, kind: str) -> Any:
        """Record an exposed binding; return the value to snapshot."""
        ...


class BaseEngine:
    """Defaults for engines that take plain serialized data."""

    pseudo_values: dict[str, Any] = {}

    def reconcile(self, declaration: ResourceDeclaration, inputs: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def pseudo(self, value: Pseudo) -> Any:
        if value.name not in self.pseudo_values:
            raise KeyError(f"Engine has no value for {value.name}")
        return self.pseudo_values[value.name]

    def serialize(self, value: Any) -> Any:
        return serialize(value)

    def publish(self, name: str, value: Any, kind: str) -> Any:
        # Snapshots hold strings; lists are stored comma-joined.
        if kind == "list" and isinstance(value, list):
            return ",".join(str(item) for item in value)
        return value


@dataclass
class DeploymentReport:
    """Outcome of one reconciliation run."""

    graph: str
    state: GraphState
    settled: list[str] = field(default_factory=list)
    failed: list[ReconciliationError] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    snapshot_path: Path | None = None

    @property
    def success(self) -> bool:
        return self.state is GraphState.SETTLED

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def summary(self) -> str:
        lines = [f"{self.graph}: {self.state.value}"]
        lines += [f"  settled  {name}" for name in self.settled]
        lines += [f"  failed   {error.declaration}: {error.cause}" for error in self.failed]
        lines += [f"  skipped  {name}" for name in self.skipped]
        return "\n".join(lines)


class Reconciler:
    """
    Drives a finalized graph through SUBMITTED, RECONCILING and a final state.

    Declarations are applied in topological order. When the engine fails on
    one, its transitive dependents are skipped while independent declarations
    continue; the run then ends FAILED with every failure listed.
    """

    def __init__(
        self,
        engine: Engine,
        state_dir: Path | str,
        store: SnapshotStore | None = None,
    ) -> None:
        self.engine = engine
        self.state_dir = Path(state_dir)
        self.store = store

    def run(self, graph: ResourceGraph) -> DeploymentReport:
        """
        Reconcile ``graph`` while holding its state lock.

        Raises:
            LockedStateError: If another run holds the graph's state
            GraphError: If the graph was not finalized
        """
        if graph.state is not GraphState.FINALIZED:
            raise GraphError(f"Graph {graph.name!r} must be finalized before reconciliation")

        with StateLock(self.state_dir, graph.name):
            return self._run(graph)

    def _run(self, graph: ResourceGraph) -> DeploymentReport:
        ordered = graph.ordered
        graph.transition(GraphState.SUBMITTED)
        logger.info("graph_submitted", graph=graph.name, declarations=len(ordered))

        graph.transition(GraphState.RECONCILING)
        report = DeploymentReport(graph=graph.name, state=graph.state)
        values: dict[str, dict[str, Any]] = {}
        blocked: set[str] = set()

        def lookup_ref(ref: Ref) -> Any:
            return values[ref.target][ref.field]

        for declaration in ordered:
            name = declaration.logical_name
            if graph.dependencies(name) & blocked:
                blocked.add(name)
                report.skipped.append(name)
                logger.warning("declaration_skipped", graph=graph.name, declaration=name)
                continue

            try:
                inputs = resolve_value(dict(declaration.inputs), lookup_ref, self.engine.pseudo)
                attributes = self.engine.reconcile(declaration, self.engine.serialize(inputs))
                missing = declaration.type.fields - set(attributes)
                if missing:
                    raise ReconciliationError(
                        name, KeyError(f"engine returned no value for {sorted(missing)}")
                    )
            except Exception as e:
                error = e if isinstance(e, ReconciliationError) else ReconciliationError(name, e)
                blocked.add(name)
                report.failed.append(error)
                logger.error(
                    "declaration_failed", graph=graph.name, declaration=name, error=str(e)
                )
                continue

            values[name] = attributes
            report.settled.append(name)
            logger.debug("declaration_settled", graph=graph.name, declaration=name)

        for binding in graph.bindings.values():
            if binding.source is not None and binding.source in blocked:
                continue
            try:
                value = resolve_value(binding.expression, lookup_ref, self.engine.pseudo)
            except KeyError:
                continue
            report.outputs[binding.name] = self.engine.publish(
                binding.name, self.engine.serialize(value), binding.kind
            )

        final = GraphState.FAILED if report.failed else GraphState.SETTLED
        graph.transition(final)
        report.state = final

        if report.success and self.store is not None:
            report.snapshot_path = self.store.write(graph.name, report.outputs)

        log = logger.info if report.success else logger.error
        log(
            "graph_reconciled",
            graph=graph.name,
            state=final.value,
            settled=len(report.settled),
            failed=[error.declaration for error in report.failed],
            skipped=report.skipped,
        )
        return report


__all__ = ["BaseEngine", "DeploymentReport", "Engine", "Reconciler"]
