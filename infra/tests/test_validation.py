"""
Tests for validation aspects.
"""

from infragraph import types
from infragraph.documents import SecurityGroupRule
from infragraph.graph import ResourceGraph
from stacks.platform_stack import build_platform_graph
from stacks.validation import add_validation_aspects


def _messages(graph: ResourceGraph, level: str | None = None) -> list[str]:
    return [a.message for a in graph.annotations if level is None or a.level == level]


class TestProductionReadinessAspect:
    """Tests for HA and deletion protection checks."""

    def test_single_task_service_annotated(self):
        """Test that a one-task service gets an HA note."""
        graph = ResourceGraph("test")
        graph.declare("service", types.SERVICE, {"DesiredCount": 1})
        add_validation_aspects(graph)
        graph.finalize()

        assert any("desired_count >= 2" in m for m in _messages(graph, "info"))

    def test_two_task_service_not_annotated(self):
        """Test that an HA service passes."""
        graph = ResourceGraph("test")
        graph.declare("service", types.SERVICE, {"DesiredCount": 2})
        add_validation_aspects(graph)
        graph.finalize()

        assert graph.annotations == []

    def test_database_without_deletion_protection(self, platform_config):
        """Test that the platform database is flagged."""
        graph = build_platform_graph(platform_config)
        add_validation_aspects(graph)
        graph.finalize()

        assert any("DeletionProtection" in m for m in _messages(graph))

    def test_checks_can_be_disabled(self, platform_config):
        """Test that the aspects respect their switches."""
        graph = build_platform_graph(platform_config)
        add_validation_aspects(
            graph,
            enforce_ha=False,
            enforce_deletion_protection=False,
            enable_security_checks=False,
        )
        graph.finalize()

        assert graph.annotations == []


class TestSecurityAspect:
    """Tests for world-open security group checks."""

    def test_platform_ports_are_allowed(self, platform_config):
        """Test that HTTP, HTTPS and WireGuard do not raise warnings."""
        graph = build_platform_graph(platform_config.model_copy(update={"enable_tailscale": True}))
        add_validation_aspects(graph)
        graph.finalize()

        assert _messages(graph, "warning") == []

    def test_open_ssh_is_flagged(self):
        """Test that SSH open to the world is a warning."""
        graph = ResourceGraph("test")
        graph.declare(
            "sg",
            types.SECURITY_GROUP,
            {"SecurityGroupIngress": [SecurityGroupRule("tcp", 22, 22, cidr_ip="0.0.0.0/0")]},
        )
        add_validation_aspects(graph)
        graph.finalize()

        assert _messages(graph, "warning") == ["Ingress tcp 22-22 is open to 0.0.0.0/0"]

    def test_open_port_range_is_flagged(self):
        """Test that a world-open range is flagged even if it includes 443."""
        graph = ResourceGraph("test")
        graph.declare(
            "sg",
            types.SECURITY_GROUP,
            {"SecurityGroupIngress": [SecurityGroupRule("tcp", 0, 65535, cidr_ip="0.0.0.0/0")]},
        )
        add_validation_aspects(graph)
        graph.finalize()

        assert len(_messages(graph, "warning")) == 1
