"""
Platform output resolver for app stacks.

App stacks never look at platform resources directly. They read the
platform's last deployed outputs through a ``StackReference``
and receive them as a ``PlatformOutputs`` value.

Output keys (SSM parameters ``/{platform}/{key}`` written by the platform stack):
    vpcId, publicSubnetIds, privateSubnetIds, defaultSecurityGroupId
    albArn, albDnsName, albZoneId, albSecurityGroupId
    httpListenerArn, httpsListenerArn, certificateArn, hostedZoneId
    clusterArn, clusterName, taskExecutionRoleArn, taskRoleArn
    logGroupName, region, environment, domainName
    dbEndpoint?, dbPort?, dbName?, dbUsername?, dbPasswordSecretArn?, dbSecurityGroupId?
    tailscaleInstanceId?, tailscalePrivateIp?, tailscalePublicIp?,
    tailscaleSecurityGroupId?, tailscaleAuthKeySecretArn?

Keys marked ``?`` only exist when the matching platform subsystem was on.
List values are stored comma-joined.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, fields
from typing import Any

from infragraph.logging import get_logger
from infragraph.option import ABSENT, Option
from infragraph.state import OutputStore, StackReference

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlatformOutputs:
    """Outputs of the platform stack as seen by an app stack."""

    # Network
    vpc_id: str
    public_subnet_ids: list[str]
    private_subnet_ids: list[str]
    default_security_group_id: str

    # ALB
    alb_arn: str
    alb_dns_name: str
    alb_zone_id: str
    alb_security_group_id: str
    http_listener_arn: str
    https_listener_arn: str

    # DNS
    certificate_arn: str
    hosted_zone_id: str
    domain_name: str

    # ECS
    cluster_arn: str
    cluster_name: str
    task_execution_role_arn: str
    task_role_arn: str
    log_group_name: str

    region: str
    environment: str

    # Database (only when the shared database is enabled)
    db_endpoint: Option[str] = ABSENT
    db_port: Option[str] = ABSENT
    db_name: Option[str] = ABSENT
    db_username: Option[str] = ABSENT
    db_password_secret_arn: Option[str] = ABSENT
    db_security_group_id: Option[str] = ABSENT

    # Tailscale (only when the subnet router is enabled)
    tailscale_instance_id: Option[str] = ABSENT
    tailscale_private_ip: Option[str] = ABSENT
    tailscale_public_ip: Option[str] = ABSENT
    tailscale_security_group_id: Option[str] = ABSENT
    tailscale_auth_key_secret_arn: Option[str] = ABSENT

    @property
    def has_database(self) -> bool:
        return bool(self.db_endpoint)


LIST_OUTPUTS = frozenset({"public_subnet_ids", "private_subnet_ids"})
OPTIONAL_OUTPUTS = frozenset(
    f.name for f in fields(PlatformOutputs) if f.name.startswith(("db_", "tailscale_"))
)


def binding_name(field_name: str) -> str:
    """``public_subnet_ids`` -> ``publicSubnetIds``."""
    head, *rest = field_name.split("_")
    return head + "".join(part.capitalize() for part in rest)


PLATFORM_OUTPUTS: dict[str, str] = {
    f.name: binding_name(f.name) for f in fields(PlatformOutputs)
}


class InfraResolver:
    """
    Resolves platform outputs for one app stack.

    Usage:
        resolver = InfraResolver(config.platform_stack_ref, ParameterStore())
        outputs = await resolver.get_platform_outputs()
        if outputs.db_endpoint:
            ...
    """

    def __init__(self, platform_stack_ref: str, store: OutputStore) -> None:
        self.reference = StackReference(platform_stack_ref, store)
        self._outputs: PlatformOutputs | None = None

    @property
    def platform_stack_ref(self) -> str:
        return self.reference.stack_name

    async def get_platform_outputs(self) -> PlatformOutputs:
        """
        Load every platform output.

        Caches the result for repeated calls.

        Raises:
            ConfigurationError: If the platform has no outputs or lacks a required one
        """
        if self._outputs is not None:
            return self._outputs

        names = list(PLATFORM_OUTPUTS)
        values = await asyncio.gather(*(self._resolve(name) for name in names))
        self._outputs = PlatformOutputs(**dict(zip(names, values, strict=True)))

        logger.info(
            "platform_outputs_resolved",
            platform=self.platform_stack_ref,
            database=self._outputs.has_database,
            tailscale=bool(self._outputs.tailscale_instance_id),
        )
        return self._outputs

    async def _resolve(self, field_name: str) -> Any:
        binding = PLATFORM_OUTPUTS[field_name]
        if field_name in OPTIONAL_OUTPUTS:
            return (await self.reference.resolve(binding)).map(str)

        value = await self.reference.require(binding)
        if field_name in LIST_OUTPUTS:
            return [item for item in str(value).split(",") if item]
        return str(value)
