"""
Tests for reconciliation of finalized graphs.
"""

import pytest

from infragraph import types
from infragraph.documents import AsJson, Base64, Join, PolicyDocument, PolicyStatement
from infragraph.engine import Reconciler
from infragraph.errors import GraphError, LockedStateError
from infragraph.graph import GraphState, ResourceGraph
from infragraph.resources import REGION
from infragraph.state import StateLock
from tests.factories import FakeEngine


def _graph() -> ResourceGraph:
    graph = ResourceGraph("portfolio-dev")
    vpc = graph.declare("vpc", types.VPC, {"CidrBlock": "10.0.0.0/16"})
    subnets = [
        graph.declare(f"subnet-{i}", types.SUBNET, {"VpcId": vpc.id, "CidrBlock": f"10.0.{i}.0/24"})
        for i in range(2)
    ]
    graph.declare("logs", types.LOG_GROUP, {"LogGroupName": "/ecs/portfolio-dev"})
    graph.expose("vpcId", vpc)
    graph.expose_value("publicSubnetIds", [s.id for s in subnets], kind="list")
    graph.expose_value("region", REGION)
    graph.finalize()
    return graph


class TestReconciler:
    """Tests for the reconciliation lifecycle."""

    def test_settles_in_dependency_order(self, engine, state_dir):
        """Test that every declaration is reconciled after its dependencies."""
        graph = _graph()

        report = Reconciler(engine, state_dir).run(graph)

        assert report.success
        assert report.exit_code == 0
        assert graph.state is GraphState.SETTLED
        assert engine.reconciled == ["vpc", "subnet-0", "subnet-1", "logs"]

    def test_refs_are_resolved_before_submission(self, engine, state_dir):
        """Test that the engine receives resolved field values."""
        Reconciler(engine, state_dir).run(_graph())

        assert engine.inputs["subnet-0"]["VpcId"] == "vpc.id"

    def test_outputs_are_published(self, engine, state_dir):
        """Test that bindings resolve, with list kinds comma-joined."""
        report = Reconciler(engine, state_dir).run(_graph())

        assert report.outputs == {
            "vpcId": "vpc.id",
            "publicSubnetIds": "subnet-0.id,subnet-1.id",
            "region": "us-east-1",
        }

    def test_snapshot_written_on_success(self, engine, state_dir, store):
        """Test that a successful run records its outputs for stack references."""
        report = Reconciler(engine, state_dir, store=store).run(_graph())

        assert report.snapshot_path == store.path_for("portfolio-dev")
        assert store.read("portfolio-dev")["vpcId"] == "vpc.id"

    def test_partial_failure_skips_dependents(self, state_dir, store):
        """Test that a failure blocks dependents while independent work continues."""
        engine = FakeEngine(fail={"vpc"})
        graph = _graph()

        report = Reconciler(engine, state_dir, store=store).run(graph)

        assert not report.success
        assert report.exit_code == 1
        assert graph.state is GraphState.FAILED
        assert [e.declaration for e in report.failed] == ["vpc"]
        assert report.skipped == ["subnet-0", "subnet-1"]
        assert report.settled == ["logs"]
        assert "vpcId" not in report.outputs
        assert not store.exists("portfolio-dev")

    def test_summary_lists_every_declaration(self, state_dir):
        """Test that the summary separates settled, failed and skipped."""
        report = Reconciler(FakeEngine(fail={"vpc"}), state_dir).run(_graph())

        summary = report.summary()

        assert summary.splitlines()[0] == "portfolio-dev: failed"
        assert "failed   vpc: engine rejected vpc" in summary
        assert "skipped  subnet-0" in summary
        assert "settled  logs" in summary

    def test_missing_attributes_fail_declaration(self, state_dir):
        """Test that an engine must return every field of the type."""

        class ForgetfulEngine(FakeEngine):
            def reconcile(self, declaration, inputs):
                return {"id": declaration.logical_name}

        report = Reconciler(ForgetfulEngine(), state_dir).run(_graph())

        assert "vpc" in [e.declaration for e in report.failed]

    def test_requires_finalized_graph(self, engine, state_dir):
        """Test that building graphs cannot be submitted."""
        graph = ResourceGraph("portfolio-dev")

        with pytest.raises(GraphError):
            Reconciler(engine, state_dir).run(graph)

    def test_locked_state_fails_fast(self, engine, state_dir):
        """Test that a concurrent run is rejected without touching the engine."""
        graph = _graph()

        with StateLock(state_dir, "portfolio-dev"):
            with pytest.raises(LockedStateError):
                Reconciler(engine, state_dir).run(graph)

        assert engine.reconciled == []
        assert graph.state is GraphState.FINALIZED

    def test_documents_serialized_at_boundary(self, engine, state_dir):
        """Test that typed documents reach the engine as plain data."""
        graph = ResourceGraph("docs")
        graph.declare(
            "role",
            types.ROLE,
            {
                "Policy": AsJson(PolicyDocument((PolicyStatement(actions=("s3:GetObject",)),))),
                "UserData": Base64(Join("", ("echo ", REGION))),
            },
        )
        graph.finalize()

        Reconciler(engine, state_dir).run(graph)

        inputs = engine.inputs["role"]
        assert inputs["Policy"] == (
            '{"Version": "2012-10-17", "Statement": '
            '[{"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}]}'
        )
        assert inputs["UserData"] == "ZWNobyB1cy1lYXN0LTE="
