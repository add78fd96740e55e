"""
Typed documents used as declaration inputs.

Policy documents, container definitions and similar payloads are built as
frozen dataclasses and stay typed inside the graph. ``serialize`` turns them
into the plain dicts (or JSON strings, for ``AsJson``) that the engine
receives, and is only called at submission time.
"""

from __future__ import annotations

import base64 as _base64
import dataclasses
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

# =============================================================================
# IAM
# =============================================================================


@dataclass(frozen=True)
class PolicyStatement:
    actions: tuple[str, ...]
    resources: Any = "*"
    effect: str = "Allow"
    principal: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        statement: dict[str, Any] = {"Effect": self.effect}
        if self.principal is not None:
            statement["Principal"] = dict(self.principal)
        statement["Action"] = list(self.actions) if len(self.actions) > 1 else self.actions[0]
        if self.resources is not None:
            statement["Resource"] = self.resources
        return statement


@dataclass(frozen=True)
class PolicyDocument:
    statements: tuple[PolicyStatement, ...]
    version: str = "2012-10-17"

    def to_dict(self) -> dict[str, Any]:
        return {"Version": self.version, "Statement": list(self.statements)}


@dataclass(frozen=True)
class InlinePolicy:
    name: str
    document: PolicyDocument

    def to_dict(self) -> dict[str, Any]:
        return {"PolicyName": self.name, "PolicyDocument": self.document}


def assume_role_policy(service: str) -> PolicyDocument:
    """Trust policy letting an AWS service assume a role."""
    return PolicyDocument(
        statements=(
            PolicyStatement(
                actions=("sts:AssumeRole",),
                principal={"Service": service},
                resources=None,
            ),
        )
    )


# =============================================================================
# Networking
# =============================================================================


@dataclass(frozen=True)
class SecurityGroupRule:
    protocol: str
    from_port: int
    to_port: int
    cidr_ip: str | None = None
    source_security_group_id: Any = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        rule: dict[str, Any] = {
            "IpProtocol": self.protocol,
            "FromPort": self.from_port,
            "ToPort": self.to_port,
        }
        if self.cidr_ip is not None:
            rule["CidrIp"] = self.cidr_ip
        if self.source_security_group_id is not None:
            rule["SourceSecurityGroupId"] = self.source_security_group_id
        if self.description is not None:
            rule["Description"] = self.description
        return rule

    @property
    def open_to_world(self) -> bool:
        return self.cidr_ip == "0.0.0.0/0"


ALLOW_ALL_EGRESS = SecurityGroupRule(protocol="-1", from_port=0, to_port=0, cidr_ip="0.0.0.0/0")


@dataclass(frozen=True)
class Tag:
    key: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"Key": self.key, "Value": self.value}


def tag_list(tags: Mapping[str, Any], **extra: Any) -> list[Tag]:
    merged = {**tags, **extra}
    return [Tag(key, value) for key, value in merged.items()]


# =============================================================================
# Load balancing
# =============================================================================


@dataclass(frozen=True)
class FixedResponseAction:
    status_code: str = "404"
    content_type: str = "text/plain"
    message_body: str = "Not Found"

    def to_dict(self) -> dict[str, Any]:
        return {
            "Type": "fixed-response",
            "FixedResponseConfig": {
                "StatusCode": self.status_code,
                "ContentType": self.content_type,
                "MessageBody": self.message_body,
            },
        }


@dataclass(frozen=True)
class ForwardAction:
    target_group_arn: Any

    def to_dict(self) -> dict[str, Any]:
        return {"Type": "forward", "TargetGroupArn": self.target_group_arn}


@dataclass(frozen=True)
class HostHeaderCondition:
    hosts: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"Field": "host-header", "HostHeaderConfig": {"Values": list(self.hosts)}}


# =============================================================================
# Containers
# =============================================================================


@dataclass(frozen=True)
class PortMapping:
    container_port: int
    protocol: str = "tcp"

    def to_dict(self) -> dict[str, Any]:
        return {"ContainerPort": self.container_port, "Protocol": self.protocol}


@dataclass(frozen=True)
class KeyValuePair:
    name: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"Name": self.name, "Value": self.value}


@dataclass(frozen=True)
class ContainerSecret:
    name: str
    value_from: Any

    def to_dict(self) -> dict[str, Any]:
        return {"Name": self.name, "ValueFrom": self.value_from}


@dataclass(frozen=True)
class LogConfiguration:
    group: Any
    region: Any
    stream_prefix: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "LogDriver": "awslogs",
            "Options": {
                "awslogs-group": self.group,
                "awslogs-region": self.region,
                "awslogs-stream-prefix": self.stream_prefix,
            },
        }


@dataclass(frozen=True)
class HealthCheck:
    command: tuple[str, ...]
    interval: int = 30
    timeout: int = 5
    retries: int = 3
    start_period: int = 60

    def to_dict(self) -> dict[str, Any]:
        return {
            "Command": list(self.command),
            "Interval": self.interval,
            "Timeout": self.timeout,
            "Retries": self.retries,
            "StartPeriod": self.start_period,
        }


def http_health_check(port: int, path: str) -> HealthCheck:
    return HealthCheck(command=("CMD-SHELL", f"curl -f http://localhost:{port}{path} || exit 1"))


@dataclass(frozen=True)
class ContainerDefinition:
    name: str
    image: Any
    essential: bool = True
    port_mappings: tuple[PortMapping, ...] = ()
    environment: tuple[KeyValuePair, ...] = ()
    secrets: tuple[ContainerSecret, ...] = ()
    command: tuple[Any, ...] = ()
    log_configuration: LogConfiguration | None = None
    health_check: HealthCheck | None = None

    def to_dict(self) -> dict[str, Any]:
        definition: dict[str, Any] = {
            "Name": self.name,
            "Image": self.image,
            "Essential": self.essential,
        }
        if self.port_mappings:
            definition["PortMappings"] = list(self.port_mappings)
        if self.environment:
            definition["Environment"] = list(self.environment)
        if self.secrets:
            definition["Secrets"] = list(self.secrets)
        if self.command:
            definition["Command"] = list(self.command)
        if self.log_configuration is not None:
            definition["LogConfiguration"] = self.log_configuration
        if self.health_check is not None:
            definition["HealthCheck"] = self.health_check
        return definition

    def env(self) -> dict[str, Any]:
        """Environment entries as a plain mapping."""
        return {pair.name: pair.value for pair in self.environment}


@dataclass(frozen=True)
class CapacityProviderStrategyItem:
    capacity_provider: str
    weight: int
    base: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "CapacityProvider": self.capacity_provider,
            "Weight": self.weight,
            "Base": self.base,
        }


SPOT_WITH_ON_DEMAND_BASE: tuple[CapacityProviderStrategyItem, ...] = (
    CapacityProviderStrategyItem("FARGATE_SPOT", weight=1, base=0),
    CapacityProviderStrategyItem("FARGATE", weight=0, base=1),
)


# =============================================================================
# Registry and scaling
# =============================================================================


@dataclass(frozen=True)
class LifecycleRule:
    priority: int
    description: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        # ECR lifecycle policy text uses camelCase keys.
        return {
            "rulePriority": self.priority,
            "description": self.description,
            "selection": {
                "tagStatus": "any",
                "countType": "imageCountMoreThan",
                "countNumber": self.count,
            },
            "action": {"type": "expire"},
        }


@dataclass(frozen=True)
class LifecyclePolicy:
    rules: tuple[LifecycleRule, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"rules": list(self.rules)}


KEEP_LAST_10_IMAGES = LifecyclePolicy(
    rules=(LifecycleRule(priority=1, description="Keep last 10 images", count=10),)
)


@dataclass(frozen=True)
class ScheduledAction:
    name: str
    schedule: str
    timezone: str
    min_capacity: int
    max_capacity: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "ScheduledActionName": self.name,
            "Schedule": self.schedule,
            "Timezone": self.timezone,
            "ScalableTargetAction": {
                "MinCapacity": self.min_capacity,
                "MaxCapacity": self.max_capacity,
            },
        }


def daily_at(hour: int) -> str:
    """Application Auto Scaling cron expression for ``hour``:00 every day."""
    return f"cron(0 {hour} * * ? *)"


# =============================================================================
# Boundary serialization
# =============================================================================


@dataclass(frozen=True)
class AsJson:
    """Serialize the wrapped document to a JSON string at the boundary."""

    document: Any


@dataclass(frozen=True)
class Base64:
    """Base64-encode the wrapped string at the boundary."""

    value: Any


@dataclass(frozen=True)
class Join:
    """Join string parts at the boundary (parts may be engine tokens)."""

    separator: str
    parts: tuple[Any, ...] = field(default_factory=tuple)


def _default_base64(value: str) -> str:
    return _base64.b64encode(value.encode("utf-8")).decode("ascii")


def _default_join(separator: str, parts: list[Any]) -> str:
    return separator.join(str(part) for part in parts)


def serialize(
    value: Any,
    *,
    base64: Callable[[Any], Any] = _default_base64,
    join: Callable[[str, list[Any]], Any] = _default_join,
    to_json: Callable[[Any], Any] = json.dumps,
) -> Any:
    """
    Convert documents to plain data.

    ``base64``, ``join`` and ``to_json`` let an engine substitute its own
    intrinsics when values contain unresolved tokens.
    """

    def _serialize(item: Any) -> Any:
        if isinstance(item, AsJson):
            return to_json(_serialize(item.document))
        if isinstance(item, Base64):
            return base64(_serialize(item.value))
        if isinstance(item, Join):
            return join(item.separator, [_serialize(part) for part in item.parts])
        if hasattr(item, "to_dict") and dataclasses.is_dataclass(item):
            return _serialize(item.to_dict())
        if isinstance(item, Mapping):
            return {key: _serialize(v) for key, v in item.items()}
        if isinstance(item, (list, tuple)):
            return [_serialize(v) for v in item]
        return item

    return _serialize(value)
