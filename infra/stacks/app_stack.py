"""
Application stack - ECR, Fargate service and routing for one app.

Deploys onto the shared platform:
- ECR repository ``{project}/{app}`` (keeps the last 10 images)
- Target group + host-based listener rule on the platform's HTTPS listener
- Route53 alias record ``{subdomain}.{domain}`` pointing at the ALB
- Fargate task definition and service (Spot by default)

Optional pieces:
- Database wiring: DB_* environment and DB_PASSWORD secret, only when the
  platform outputs include the database
- Cloudflare tunnel sidecar (``tunnelTokenSecretArn``)
- Scheduled scaling to zero outside ``scaleUpHour``..``scaleDownHour``
"""

from __future__ import annotations

from infragraph import types
from infragraph.compose import ConditionalSubsystem, compose_if
from infragraph.config import AppConfig
from infragraph.documents import (
    ALLOW_ALL_EGRESS,
    KEEP_LAST_10_IMAGES,
    SPOT_WITH_ON_DEMAND_BASE,
    AsJson,
    ContainerDefinition,
    ContainerSecret,
    ForwardAction,
    HostHeaderCondition,
    Join,
    KeyValuePair,
    LogConfiguration,
    PortMapping,
    ScheduledAction,
    SecurityGroupRule,
    daily_at,
    http_health_check,
    tag_list,
)
from infragraph.errors import ConfigurationError
from infragraph.graph import ResourceGraph
from infragraph.logging import get_logger
from infragraph.naming import (
    PriorityAllocator,
    database_name,
    host_name,
    public_url,
    repository_name,
    resource_name,
)

from .infra_resolver import InfraResolver, PlatformOutputs
from .listener_rules import ListenerRules

logger = get_logger(__name__)

CLOUDFLARED_IMAGE = "cloudflare/cloudflared:latest"
DEFAULT_DB_PORT = "5432"
DEFAULT_DB_USER = "portfolio_admin"


class AppStack:
    """
    Builds the graph for one application.

    The platform outputs are already resolved when this runs, so building
    is synchronous; ``build_app_graph`` does the awaiting.
    """

    def __init__(
        self,
        config: AppConfig,
        platform: PlatformOutputs,
        priorities: PriorityAllocator | None = None,
    ) -> None:
        self.config = config
        self.platform = platform
        self.app_name = config.app_name
        self.tags = config.tags
        self.domain_name = config.domain_name or platform.domain_name
        self.priorities = priorities or PriorityAllocator()
        self.graph = ResourceGraph(resource_name(config.project_name, config.app_name))

        self._build_repository()
        self._build_routing()
        self._build_task_definition()
        self._build_service()

        self.scheduled_scaling = compose_if(
            config.enable_scheduled_scaling, self._build_scheduled_scaling
        )

        self._build_outputs()

    # =====================================================================
    # ECR Repository
    # =====================================================================

    def _build_repository(self) -> None:
        self.repository = self.graph.declare(
            f"{self.app_name}-repo",
            types.REPOSITORY,
            {
                "RepositoryName": repository_name(self.config.project_name, self.app_name),
                "ImageTagMutability": "MUTABLE",
                "ImageScanningConfiguration": {"ScanOnPush": True},
                "LifecyclePolicy": {"LifecyclePolicyText": AsJson(KEEP_LAST_10_IMAGES)},
                "EmptyOnDelete": True,
                "Tags": tag_list(self.tags),
            },
        )

    # =====================================================================
    # Security group, target group, listener rule and DNS
    # =====================================================================

    def _build_routing(self) -> None:
        graph, app, config, platform = self.graph, self.app_name, self.config, self.platform

        self.security_group = graph.declare(
            f"{app}-sg",
            types.SECURITY_GROUP,
            {
                "GroupDescription": f"Security group for {app}",
                "VpcId": platform.vpc_id,
                "SecurityGroupIngress": [
                    SecurityGroupRule(
                        "tcp",
                        config.container_port,
                        config.container_port,
                        source_security_group_id=platform.alb_security_group_id,
                        description="Traffic from the ALB",
                    )
                ],
                "SecurityGroupEgress": [ALLOW_ALL_EGRESS],
                "Tags": tag_list(self.tags, Name=f"{app}-sg"),
            },
        )

        self.target_group = graph.declare(
            f"{app}-tg",
            types.TARGET_GROUP,
            {
                # Target group names are limited to 32 characters
                "Name": f"{app}-tg"[:32],
                "TargetType": "ip",
                "Protocol": "HTTP",
                "Port": config.container_port,
                "VpcId": platform.vpc_id,
                "HealthCheckEnabled": True,
                "HealthCheckPath": config.health_check_path,
                "HealthCheckIntervalSeconds": 30,
                "HealthCheckTimeoutSeconds": 5,
                "HealthyThresholdCount": 2,
                "UnhealthyThresholdCount": 3,
                "Matcher": {"HttpCode": "200"},
                "TargetGroupAttributes": [
                    {"Key": "deregistration_delay.timeout_seconds", "Value": "30"},
                ],
                "Tags": tag_list(self.tags),
            },
        )

        try:
            if config.listener_rule_priority is not None:
                self.priorities.reserve(config.listener_rule_priority, owner=config.subdomain)
                self.listener_rule_priority = config.listener_rule_priority
            else:
                self.listener_rule_priority = self.priorities.allocate(config.subdomain)
        except ValueError as e:
            raise ConfigurationError(f"Listener rule priority for {app}: {e}") from e

        self.host = host_name(config.subdomain, self.domain_name)
        self.listener_rule = graph.declare(
            f"{app}-listener-rule",
            types.LISTENER_RULE,
            {
                "ListenerArn": platform.https_listener_arn,
                "Priority": self.listener_rule_priority,
                "Conditions": [HostHeaderCondition((self.host,))],
                "Actions": [ForwardAction(self.target_group.id)],
            },
        )

        graph.declare(
            f"{app}-dns",
            types.RECORD_SET,
            {
                "HostedZoneId": platform.hosted_zone_id,
                "Name": self.host,
                "Type": "A",
                "AliasTarget": {
                    "DNSName": platform.alb_dns_name,
                    "HostedZoneId": platform.alb_zone_id,
                    "EvaluateTargetHealth": True,
                },
            },
        )

    # =====================================================================
    # ECS Task Definition
    # =====================================================================

    def _container_environment(self) -> tuple[KeyValuePair, ...]:
        config, platform = self.config, self.platform
        env = [
            KeyValuePair("NODE_ENV", "production"),
            KeyValuePair("PORT", str(config.container_port)),
        ]

        # Absent database outputs mean no DB_* entries at all
        db_host = platform.db_endpoint.map(lambda endpoint: endpoint.split(":")[0])
        if db_host:
            env += [
                KeyValuePair("DB_HOST", db_host.value),
                KeyValuePair("DB_PORT", platform.db_port.unwrap_or(DEFAULT_DB_PORT)),
                KeyValuePair("DB_NAME", database_name(self.app_name)),
                KeyValuePair("DB_USER", platform.db_username.unwrap_or(DEFAULT_DB_USER)),
            ]
        return tuple(env)

    def _container_secrets(self) -> tuple[ContainerSecret, ...]:
        secret_arn = self.platform.db_password_secret_arn
        if not secret_arn:
            return ()
        return (ContainerSecret("DB_PASSWORD", secret_arn.value),)

    def _build_task_definition(self) -> None:
        config, platform, app = self.config, self.platform, self.app_name

        self.app_container = ContainerDefinition(
            name=app,
            image=Join(":", (self.repository.ref("RepositoryUri"), config.image_tag)),
            port_mappings=(PortMapping(config.container_port),),
            environment=self._container_environment(),
            secrets=self._container_secrets(),
            log_configuration=LogConfiguration(
                platform.log_group_name, platform.region, stream_prefix=app
            ),
            health_check=http_health_check(config.container_port, config.health_check_path),
        )
        containers = [self.app_container]

        if config.tunnel_token_secret_arn:
            # cloudflared reads the token from TUNNEL_TOKEN
            containers.append(
                ContainerDefinition(
                    name="cloudflared",
                    image=CLOUDFLARED_IMAGE,
                    command=("tunnel", "--no-autoupdate", "run"),
                    secrets=(ContainerSecret("TUNNEL_TOKEN", config.tunnel_token_secret_arn),),
                    log_configuration=LogConfiguration(
                        platform.log_group_name, platform.region, stream_prefix="cloudflared"
                    ),
                )
            )
        self.containers = tuple(containers)

        self.task_definition = self.graph.declare(
            f"{app}-task",
            types.TASK_DEFINITION,
            {
                "Family": app,
                "Cpu": str(config.cpu),
                "Memory": str(config.memory),
                "NetworkMode": "awsvpc",
                "RequiresCompatibilities": ["FARGATE"],
                "ExecutionRoleArn": platform.task_execution_role_arn,
                "TaskRoleArn": platform.task_role_arn,
                "ContainerDefinitions": list(self.containers),
                "Tags": tag_list(self.tags),
            },
        )

    # =====================================================================
    # ECS Service
    # =====================================================================

    def _build_service(self) -> None:
        config, platform, app = self.config, self.platform, self.app_name

        placement: dict[str, object]
        if config.use_fargate_spot:
            placement = {"CapacityProviderStrategy": list(SPOT_WITH_ON_DEMAND_BASE)}
        else:
            placement = {"LaunchType": "FARGATE"}

        self.service = self.graph.declare(
            f"{app}-service",
            types.SERVICE,
            {
                "ServiceName": app,
                "Cluster": platform.cluster_arn,
                "TaskDefinition": self.task_definition.id,
                "DesiredCount": config.desired_count,
                **placement,
                "NetworkConfiguration": {
                    "AwsvpcConfiguration": {
                        "Subnets": list(platform.public_subnet_ids),
                        "SecurityGroups": [
                            self.security_group.ref("GroupId"),
                            platform.default_security_group_id,
                        ],
                        # Public subnets without NAT: tasks need a public IP to pull images
                        "AssignPublicIp": "ENABLED",
                    }
                },
                "LoadBalancers": [
                    {
                        "ContainerName": app,
                        "ContainerPort": config.container_port,
                        "TargetGroupArn": self.target_group.id,
                    }
                ],
                "HealthCheckGracePeriodSeconds": 60,
                "DeploymentConfiguration": {
                    "MinimumHealthyPercent": 50,
                    "MaximumPercent": 200,
                    "DeploymentCircuitBreaker": {"Enable": True, "Rollback": True},
                },
                "PropagateTags": "SERVICE",
                "Tags": tag_list(self.tags),
            },
            # The target group must be attached to the listener first
            depends_on=[self.listener_rule],
        )

    # =====================================================================
    # Scheduled scaling (optional)
    # =====================================================================

    def _build_scheduled_scaling(self) -> ConditionalSubsystem:
        config, app = self.config, self.app_name

        with self.graph.subsystem("scheduled-scaling") as subsystem:
            self.graph.declare(
                f"{app}-scalable-target",
                types.SCALABLE_TARGET,
                {
                    "ServiceNamespace": "ecs",
                    "ScalableDimension": "ecs:service:DesiredCount",
                    "ResourceId": Join(
                        "/", ("service", self.platform.cluster_name, self.service.ref("Name"))
                    ),
                    "MinCapacity": 0,
                    "MaxCapacity": config.desired_count,
                    "ScheduledActions": [
                        ScheduledAction(
                            name=f"{app}-scale-up",
                            schedule=daily_at(config.scale_up_hour),
                            timezone=config.schedule_timezone,
                            min_capacity=config.desired_count,
                            max_capacity=config.desired_count,
                        ),
                        ScheduledAction(
                            name=f"{app}-scale-down",
                            schedule=daily_at(config.scale_down_hour),
                            timezone=config.schedule_timezone,
                            min_capacity=0,
                            max_capacity=0,
                        ),
                    ],
                },
            )
        return subsystem

    # =====================================================================
    # Outputs
    # =====================================================================

    def _build_outputs(self) -> None:
        self.graph.expose_value("appUrl", public_url(self.config.subdomain, self.domain_name))
        self.graph.expose("ecrRepositoryUrl", self.repository, "RepositoryUri")
        self.graph.expose("serviceName", self.service, "Name")
        self.graph.expose("serviceArn", self.service, "ServiceArn")
        self.graph.expose_value("listenerRulePriority", str(self.listener_rule_priority))


async def build_app_graph(
    config: AppConfig,
    resolver: InfraResolver,
    priorities: PriorityAllocator | None = None,
    listener_rules: ListenerRules | None = None,
) -> ResourceGraph:
    """
    Resolve the platform's outputs, then build (but do not finalize) the app graph.

    Without ``priorities``, the allocator is seeded from ``listener_rules``
    (the rules already on the platform's HTTPS listener) when given.

    Raises:
        ConfigurationError: If the platform outputs are missing or incomplete,
            or no listener rule priority is free
    """
    platform = await resolver.get_platform_outputs()
    if priorities is None and listener_rules is not None:
        priorities = await listener_rules.allocator(
            platform.https_listener_arn,
            host=host_name(config.subdomain, config.domain_name or platform.domain_name),
            owner=config.subdomain,
        )
    stack = AppStack(config, platform, priorities)
    logger.info(
        "app_graph_built",
        app=config.app_name,
        platform=resolver.platform_stack_ref,
        database=platform.has_database,
        priority=stack.listener_rule_priority,
        declarations=len(stack.graph),
    )
    return stack.graph
