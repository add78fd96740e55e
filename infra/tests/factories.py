"""
Test doubles and canned data for graph and stack tests.

    from tests.factories import FakeEngine, platform_snapshot
"""

from typing import Any

from infragraph.engine import BaseEngine
from infragraph.resources import ResourceDeclaration

PLATFORM_STACK = "portfolio-dev"
REGION = "us-east-1"

DATABASE_OUTPUTS = {
    "dbEndpoint": "portfolio-dev-postgres.abc123.us-east-1.rds.amazonaws.com",
    "dbPort": "5432",
    "dbName": "portfolio",
    "dbUsername": "portfolio_admin",
    "dbPasswordSecretArn": "arn:aws:secretsmanager:us-east-1:123456789012:secret:portfolio-dev/db-password",
    "dbSecurityGroupId": "sg-db",
}


def platform_snapshot(**extra: str) -> dict[str, str]:
    """Outputs of a platform deployment without optional subsystems."""
    outputs = {
        "vpcId": "vpc-0abc",
        "publicSubnetIds": "subnet-pub0,subnet-pub1",
        "privateSubnetIds": "subnet-priv0,subnet-priv1",
        "defaultSecurityGroupId": "sg-default",
        "albArn": "arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/portfolio-dev-alb/1",
        "albDnsName": "portfolio-dev-alb-1.us-east-1.elb.amazonaws.com",
        "albZoneId": "Z35SXDOTRQ7X7K",
        "albSecurityGroupId": "sg-alb",
        "httpListenerArn": "arn:aws:elasticloadbalancing:us-east-1:123456789012:listener/app/portfolio-dev-alb/1/http",
        "httpsListenerArn": "arn:aws:elasticloadbalancing:us-east-1:123456789012:listener/app/portfolio-dev-alb/1/https",
        "certificateArn": "arn:aws:acm:us-east-1:123456789012:certificate/abc",
        "hostedZoneId": "Z0123456789",
        "domainName": "example.com",
        "clusterArn": "arn:aws:ecs:us-east-1:123456789012:cluster/portfolio-dev-cluster",
        "clusterName": "portfolio-dev-cluster",
        "taskExecutionRoleArn": "arn:aws:iam::123456789012:role/portfolio-dev-task-execution-role",
        "taskRoleArn": "arn:aws:iam::123456789012:role/portfolio-dev-task-role",
        "logGroupName": "/ecs/portfolio-dev",
        "region": REGION,
        "environment": "dev",
    }
    outputs.update(extra)
    return outputs


class FakeEngine(BaseEngine):
    """Engine that records what it was asked to do and returns fake attributes."""

    def __init__(self, fail: set[str] | None = None) -> None:
        self.pseudo_values = {"AWS::Region": REGION}
        self.fail = fail or set()
        self.reconciled: list[str] = []
        self.inputs: dict[str, dict[str, Any]] = {}

    def reconcile(self, declaration: ResourceDeclaration, inputs: dict[str, Any]) -> dict[str, Any]:
        name = declaration.logical_name
        if name in self.fail:
            raise RuntimeError(f"engine rejected {name}")
        self.reconciled.append(name)
        self.inputs[name] = inputs
        return {field: f"{name}.{field}" for field in declaration.type.fields}
