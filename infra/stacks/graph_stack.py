"""
CDK rendering of a resource graph.

``GraphStack`` is a plain CDK ``Stack`` whose contents come from a finalized
``ResourceGraph``: the reconciler walks the graph in dependency order and
``CdkEngine`` adds one ``CfnResource`` per declaration and one ``CfnOutput``
per exposed binding. Each binding is also written to SSM as
``/{stack}/{binding}``, which is where ``ParameterStore`` reads other
stacks' outputs from; output logical IDs are the binding names, so
``cdk deploy --outputs-file`` writes a file ``SnapshotStore`` can read too.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from aws_cdk import Aws, CfnOutput, CfnResource, Fn, Stack, Token
from aws_cdk import aws_ssm as ssm
from constructs import Construct

from infragraph.documents import serialize
from infragraph.engine import BaseEngine, DeploymentReport, Reconciler
from infragraph.graph import ResourceGraph
from infragraph.logging import get_logger
from infragraph.naming import logical_id
from infragraph.resources import ResourceDeclaration
from infragraph.state import parameter_name
from infragraph.types import REF_FIELD

logger = get_logger(__name__)


def _as_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)) and not Token.is_unresolved(value):
        return str(value)
    return value


class CdkEngine(BaseEngine):
    """Realizes declarations as raw CloudFormation resources in one stack."""

    def __init__(self, stack: Stack) -> None:
        self.stack = stack
        self.pseudo_values = {"AWS::Region": Aws.REGION}
        self.resources: dict[str, CfnResource] = {}

    def reconcile(self, declaration: ResourceDeclaration, inputs: dict[str, Any]) -> dict[str, Any]:
        resource = CfnResource(
            self.stack,
            declaration.logical_name,
            type=declaration.type.tag,
            properties=inputs,
        )
        resource.override_logical_id(logical_id(declaration.logical_name))

        # Edges carried by tokens are tracked by CDK; explicit ones are not
        for name in declaration.depends_on:
            resource.add_dependency(self.resources[name])
        self.resources[declaration.logical_name] = resource

        attributes: dict[str, Any] = {REF_FIELD: resource.ref}
        for attribute in declaration.type.attributes:
            attributes[attribute] = resource.get_att(attribute).to_string()
        return attributes

    def serialize(self, value: Any) -> Any:
        return serialize(
            value,
            base64=Fn.base64,
            join=lambda separator, parts: Fn.join(separator, [_as_string(p) for p in parts]),
            to_json=self.stack.to_json_string,
        )

    def publish(self, name: str, value: Any, kind: str) -> Any:
        if kind == "list" and isinstance(value, list):
            value = Fn.join(",", [_as_string(item) for item in value])
        value = _as_string(value)
        CfnOutput(
            self.stack,
            name,
            value=value,
            export_name=f"{self.stack.stack_name}-{name}",
        )
        # SSM rejects empty values
        if value != "":
            ssm.StringParameter(
                self.stack,
                f"{name}Parameter",
                parameter_name=parameter_name(self.stack.stack_name, name),
                string_value=value,
            )
        return value


class GraphStack(Stack):
    """
    Renders one finalized graph into a CDK stack.

    Reconciliation happens while the stack is constructed; the outcome is
    kept on ``self.report``. A failed report means the template is
    incomplete and must not be deployed.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        graph: ResourceGraph,
        state_dir: Path | str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.graph = graph
        self.engine = CdkEngine(self)
        self.report: DeploymentReport = Reconciler(self.engine, state_dir).run(graph)

        logger.info(
            "graph_rendered",
            stack=self.stack_name,
            resources=len(self.engine.resources),
            outputs=sorted(self.report.outputs),
        )
