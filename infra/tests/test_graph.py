"""
Tests for the resource graph builder.
"""

import pytest

from infragraph import types
from infragraph.documents import SecurityGroupRule
from infragraph.errors import (
    CycleError,
    DuplicateNameError,
    GraphError,
    SealedGraphError,
    UnknownDeclarationError,
    UnknownFieldError,
)
from infragraph.graph import GraphState, ResourceGraph
from infragraph.resources import REGION, Apply, Ref


def _build_network(graph: ResourceGraph) -> None:
    vpc = graph.declare("vpc", types.VPC, {"CidrBlock": "10.0.0.0/16"})
    graph.declare(
        "subnet",
        types.SUBNET,
        {"VpcId": vpc.id, "CidrBlock": "10.0.0.0/24", "AvailabilityZone": REGION},
    )
    graph.declare(
        "sg",
        types.SECURITY_GROUP,
        {
            "VpcId": vpc.id,
            "SecurityGroupIngress": [SecurityGroupRule("tcp", 443, 443, cidr_ip="0.0.0.0/0")],
            "GroupName": Apply(str.upper, vpc.id),
        },
    )
    graph.expose("vpcId", vpc)


class TestDeclare:
    """Tests for adding declarations."""

    def test_declare_returns_declaration(self):
        """Test that declare records name, type and inputs."""
        graph = ResourceGraph("test")
        vpc = graph.declare("vpc", types.VPC, {"CidrBlock": "10.0.0.0/16"})

        assert vpc.logical_name == "vpc"
        assert vpc.type is types.VPC
        assert vpc.inputs["CidrBlock"] == "10.0.0.0/16"
        assert "vpc" in graph
        assert len(graph) == 1

    def test_inputs_are_read_only(self):
        """Test that declarations cannot be mutated after declare."""
        graph = ResourceGraph("test")
        vpc = graph.declare("vpc", types.VPC, {"CidrBlock": "10.0.0.0/16"})

        with pytest.raises(TypeError):
            vpc.inputs["CidrBlock"] = "10.1.0.0/16"

    def test_duplicate_name_raises(self):
        """Test that a logical name can only be declared once."""
        graph = ResourceGraph("test")
        graph.declare("vpc", types.VPC)

        with pytest.raises(DuplicateNameError):
            graph.declare("vpc", types.VPC)

    def test_duplicate_binding_raises(self):
        """Test that a binding name can only be exposed once."""
        graph = ResourceGraph("test")
        vpc = graph.declare("vpc", types.VPC)
        graph.expose("vpcId", vpc)

        with pytest.raises(DuplicateNameError):
            graph.expose_value("vpcId", "vpc-123")

    def test_ref_unknown_field_raises(self):
        """Test that refs are checked against the type schema."""
        graph = ResourceGraph("test")
        vpc = graph.declare("vpc", types.VPC)

        with pytest.raises(UnknownFieldError):
            vpc.ref("LoadBalancerArn")

    def test_expose_unknown_field_raises(self):
        """Test that exposed fields are checked against the type schema."""
        graph = ResourceGraph("test")
        vpc = graph.declare("vpc", types.VPC)

        with pytest.raises(UnknownFieldError):
            graph.expose("vpcArn", vpc, "Arn")

    def test_forward_ref(self):
        """Test that graph.ref can point at a declaration made later."""
        graph = ResourceGraph("test")
        ref = graph.ref("vpc")

        assert ref == Ref("vpc", "id")


class TestFinalize:
    """Tests for ordering, checks and sealing."""

    def test_dependencies_come_first(self):
        """Test that a forward ref is ordered after its target."""
        graph = ResourceGraph("test")
        graph.declare("subnet", types.SUBNET, {"VpcId": graph.ref("vpc")})
        graph.declare("vpc", types.VPC)

        ordered = graph.finalize()

        assert [d.logical_name for d in ordered] == ["vpc", "subnet"]

    def test_independent_declarations_keep_declaration_order(self):
        """Test that ties are broken by declaration order."""
        graph = ResourceGraph("test")
        for name in ["c", "a", "b"]:
            graph.declare(name, types.LOG_GROUP)

        assert [d.logical_name for d in graph.finalize()] == ["c", "a", "b"]

    def test_implicit_and_explicit_edges(self):
        """Test that refs and depends_on both become edges."""
        graph = ResourceGraph("test")
        vpc = graph.declare("vpc", types.VPC)
        igw = graph.declare("igw", types.INTERNET_GATEWAY)
        graph.declare("route", types.ROUTE, {"GatewayId": igw.id}, depends_on=[vpc])
        graph.finalize()

        assert graph.dependencies("route") == {"vpc", "igw"}

    def test_refs_inside_documents_and_apply(self):
        """Test that refs nested in documents and Apply are found."""
        graph = ResourceGraph("test")
        _build_network(graph)
        graph.finalize()

        assert graph.dependencies("sg") == {"vpc"}
        assert graph.dependencies("subnet") == {"vpc"}

    def test_cycle_raises(self):
        """Test that a dependency cycle fails finalization."""
        graph = ResourceGraph("test")
        graph.declare("a", types.LOG_GROUP, depends_on=["b"])
        graph.declare("b", types.LOG_GROUP, {"Name": graph.ref("a")})

        with pytest.raises(CycleError) as exc_info:
            graph.finalize()

        cycle = exc_info.value.cycle
        assert set(cycle) == {"a", "b"}
        assert cycle[0] == cycle[-1]
        assert graph.state is GraphState.BUILDING

    def test_undeclared_ref_raises(self):
        """Test that refs to names never declared fail finalization."""
        graph = ResourceGraph("test")
        graph.declare("subnet", types.SUBNET, {"VpcId": graph.ref("vpc")})

        with pytest.raises(UnknownDeclarationError):
            graph.finalize()

    def test_undeclared_dependency_raises(self):
        """Test that explicit dependencies are checked too."""
        graph = ResourceGraph("test")
        graph.declare("route", types.ROUTE, depends_on=["attachment"])

        with pytest.raises(UnknownDeclarationError):
            graph.finalize()

    def test_forward_ref_to_unknown_field_raises(self):
        """Test that forward refs are schema-checked at finalization."""
        graph = ResourceGraph("test")
        graph.declare("subnet", types.SUBNET, {"VpcId": graph.ref("vpc", "DNSName")})
        graph.declare("vpc", types.VPC)

        with pytest.raises(UnknownFieldError):
            graph.finalize()

    def test_finalized_graph_is_sealed(self):
        """Test that nothing can be added after finalize."""
        graph = ResourceGraph("test")
        vpc = graph.declare("vpc", types.VPC)
        graph.finalize()

        assert graph.state is GraphState.FINALIZED
        with pytest.raises(SealedGraphError):
            graph.declare("igw", types.INTERNET_GATEWAY)
        with pytest.raises(SealedGraphError):
            graph.expose("vpcId", vpc)

    def test_ordered_requires_finalize(self):
        """Test that order is not available while building."""
        graph = ResourceGraph("test")

        with pytest.raises(GraphError):
            graph.ordered

    def test_invalid_transition_raises(self):
        """Test that the lifecycle cannot skip states."""
        graph = ResourceGraph("test")
        graph.finalize()

        with pytest.raises(GraphError):
            graph.transition(GraphState.SETTLED)

    def test_identical_builds_are_equal(self):
        """Test that building twice gives equal declaration lists."""
        first, second = ResourceGraph("test"), ResourceGraph("test")
        _build_network(first)
        _build_network(second)

        assert first.declarations == second.declarations
        assert first.finalize() == second.finalize()


class TestAspects:
    """Tests for aspects run during finalization."""

    def test_aspect_visits_every_declaration_in_order(self):
        """Test that aspects see declarations in dependency order."""
        visited = []

        class Recorder:
            def visit(self, declaration, annotations):
                visited.append(declaration.logical_name)
                annotations.add_info(f"saw {declaration.logical_name}")

        graph = ResourceGraph("test")
        graph.declare("subnet", types.SUBNET, {"VpcId": graph.ref("vpc")})
        graph.declare("vpc", types.VPC)
        graph.add_aspect(Recorder())
        graph.finalize()

        assert visited == ["vpc", "subnet"]
        assert [a.message for a in graph.annotations] == ["saw vpc", "saw subnet"]
        assert {a.level for a in graph.annotations} == {"info"}
