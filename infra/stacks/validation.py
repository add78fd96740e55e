"""
Validation aspects for pre-deployment checks.

These aspects run during ``ResourceGraph.finalize()`` and add info or
warning annotations, catching issues before anything is deployed.

Usage:
    from stacks.validation import add_validation_aspects
    add_validation_aspects(graph)
    graph.finalize()
"""

from __future__ import annotations

from infragraph import types
from infragraph.documents import SecurityGroupRule
from infragraph.graph import Annotations, ResourceGraph
from infragraph.resources import ResourceDeclaration

# Ports the platform deliberately exposes: HTTP, HTTPS, Tailscale WireGuard
PUBLIC_PORTS = frozenset({80, 443, 41641})


class ProductionReadinessAspect:
    """
    Validates production-readiness requirements for declared resources.

    Checks:
    - ECS services run at least 2 tasks for HA
    - Databases have deletion protection enabled
    """

    def __init__(self, enforce_ha: bool = True, enforce_deletion_protection: bool = True):
        self._enforce_ha = enforce_ha
        self._enforce_deletion_protection = enforce_deletion_protection

    def visit(self, declaration: ResourceDeclaration, annotations: Annotations) -> None:
        # ECS: a single task means downtime on every deployment or Spot reclaim
        if self._enforce_ha and declaration.type is types.SERVICE:
            if declaration.inputs.get("DesiredCount", 1) < 2:
                annotations.add_info("Ensure ECS service has desired_count >= 2 for production HA")

        if self._enforce_deletion_protection and declaration.type is types.DB_INSTANCE:
            if not declaration.inputs.get("DeletionProtection", False):
                annotations.add_info("Ensure DeletionProtection=True for production databases")


class SecurityAspect:
    """
    Validates security requirements for declared resources.

    Checks:
    - Security groups only open 80/443/41641 to the world
    """

    def visit(self, declaration: ResourceDeclaration, annotations: Annotations) -> None:
        if declaration.type is not types.SECURITY_GROUP:
            return
        for rule in declaration.inputs.get("SecurityGroupIngress", []):
            if not isinstance(rule, SecurityGroupRule) or not rule.open_to_world:
                continue
            if rule.from_port != rule.to_port or rule.from_port not in PUBLIC_PORTS:
                annotations.add_warning(
                    f"Ingress {rule.protocol} {rule.from_port}-{rule.to_port} is open to 0.0.0.0/0"
                )


def add_validation_aspects(
    graph: ResourceGraph,
    enforce_ha: bool = True,
    enforce_deletion_protection: bool = True,
    enable_security_checks: bool = True,
) -> None:
    """
    Add validation aspects to a graph.

    Args:
        graph: The graph to add aspects to (before ``finalize``)
        enforce_ha: Whether to check for high-availability configurations
        enforce_deletion_protection: Whether to check for deletion protection
        enable_security_checks: Whether to run security-related validations
    """
    graph.add_aspect(
        ProductionReadinessAspect(
            enforce_ha=enforce_ha,
            enforce_deletion_protection=enforce_deletion_protection,
        )
    )

    if enable_security_checks:
        graph.add_aspect(SecurityAspect())
