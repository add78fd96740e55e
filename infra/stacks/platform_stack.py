"""
Platform stack - shared network, load balancer, cluster and optional database.

Every app stack deploys onto this platform and reads its outputs through a
stack reference, so the binding names exposed here are a stable contract
(see ``stacks.infra_resolver.PLATFORM_OUTPUTS``).

Optional subsystems:
- certificate: declared only when no ``certificateArn`` is configured
- database: shared Postgres instance (``enableSharedDatabase``)
- tailscale: subnet router for private VPC access (``enableTailscale``)
"""

from __future__ import annotations

from infragraph import types
from infragraph.compose import ConditionalSubsystem, compose_if
from infragraph.config import PlatformConfig
from infragraph.documents import (
    ALLOW_ALL_EGRESS,
    SPOT_WITH_ON_DEMAND_BASE,
    Base64,
    FixedResponseAction,
    InlinePolicy,
    Join,
    PolicyDocument,
    PolicyStatement,
    SecurityGroupRule,
    assume_role_policy,
    tag_list,
)
from infragraph.graph import ResourceGraph
from infragraph.resources import REGION, ResourceDeclaration

VPC_CIDR = "10.0.0.0/16"
AZ_SUFFIXES = ("a", "b")
DB_PORT = 5432
DB_NAME = "portfolio"
DB_USERNAME = "portfolio_admin"
TAILSCALE_PORT = 41641
TLS_POLICY = "ELBSecurityPolicy-TLS13-1-2-2021-06"
AL2023_ARM_AMI = "{{resolve:ssm:/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-arm64}}"


class PlatformStack:
    """
    Builds the platform graph.

    Attributes mirror the pieces app stacks care about (``vpc``, ``alb``,
    ``cluster``...) so tests and callers can inspect them directly.
    """

    def __init__(self, config: PlatformConfig) -> None:
        self.config = config
        self.name = config.name
        self.tags = config.tags
        self.graph = ResourceGraph(self.name)

        self._build_network()
        self._build_dns()
        self._build_load_balancer()
        self._build_cluster()

        # =================================================================
        # Optional subsystems (order is fixed)
        # =================================================================

        self.database = compose_if(config.enable_shared_database, self._build_database)
        self.tailscale = compose_if(config.enable_tailscale, self._build_tailscale)

        self._build_logging()
        self._expose_metadata()

    # =====================================================================
    # Network
    # =====================================================================

    def _build_network(self) -> None:
        graph, name = self.graph, self.name

        self.vpc = graph.declare(
            f"{name}-vpc",
            types.VPC,
            {
                "CidrBlock": VPC_CIDR,
                "EnableDnsHostnames": True,
                "EnableDnsSupport": True,
                "Tags": tag_list(self.tags, Name=f"{name}-vpc"),
            },
        )

        igw = graph.declare(
            f"{name}-igw",
            types.INTERNET_GATEWAY,
            {"Tags": tag_list(self.tags, Name=f"{name}-igw")},
        )
        attachment = graph.declare(
            f"{name}-igw-attachment",
            types.GATEWAY_ATTACHMENT,
            {"VpcId": self.vpc.id, "InternetGatewayId": igw.id},
        )

        # Two AZs: the ALB requires subnets in at least two
        self.public_subnets: list[ResourceDeclaration] = []
        self.private_subnets: list[ResourceDeclaration] = []
        for i, suffix in enumerate(AZ_SUFFIXES):
            availability_zone = Join("", (REGION, suffix))
            self.public_subnets.append(
                graph.declare(
                    f"{name}-public-{i}",
                    types.SUBNET,
                    {
                        "VpcId": self.vpc.id,
                        "CidrBlock": f"10.0.{i}.0/24",
                        "AvailabilityZone": availability_zone,
                        "MapPublicIpOnLaunch": True,
                        "Tags": tag_list(self.tags, Name=f"{name}-public-{i}"),
                    },
                )
            )
            self.private_subnets.append(
                graph.declare(
                    f"{name}-private-{i}",
                    types.SUBNET,
                    {
                        "VpcId": self.vpc.id,
                        "CidrBlock": f"10.0.{i + 10}.0/24",
                        "AvailabilityZone": availability_zone,
                        "Tags": tag_list(self.tags, Name=f"{name}-private-{i}"),
                    },
                )
            )

        route_table = graph.declare(
            f"{name}-public-rt",
            types.ROUTE_TABLE,
            {"VpcId": self.vpc.id, "Tags": tag_list(self.tags, Name=f"{name}-public-rt")},
        )
        graph.declare(
            f"{name}-public-default-route",
            types.ROUTE,
            {
                "RouteTableId": route_table.id,
                "DestinationCidrBlock": "0.0.0.0/0",
                "GatewayId": igw.id,
            },
            depends_on=[attachment],
        )
        for i, subnet in enumerate(self.public_subnets):
            graph.declare(
                f"{name}-public-rta-{i}",
                types.ROUTE_TABLE_ASSOCIATION,
                {"SubnetId": subnet.id, "RouteTableId": route_table.id},
            )

        # No NAT gateway; tasks run in the public subnets

        self.default_security_group = graph.declare(
            f"{name}-default-sg",
            types.SECURITY_GROUP,
            {
                "GroupDescription": "Default security group for internal communication",
                "VpcId": self.vpc.id,
                "SecurityGroupEgress": [ALLOW_ALL_EGRESS],
                "Tags": tag_list(self.tags, Name=f"{name}-default-sg"),
            },
        )
        # Self-referencing ingress has to be its own resource
        graph.declare(
            f"{name}-default-sg-self-ingress",
            types.SECURITY_GROUP_INGRESS,
            {
                "GroupId": self.default_security_group.ref("GroupId"),
                "IpProtocol": "-1",
                "SourceSecurityGroupId": self.default_security_group.ref("GroupId"),
                "Description": "Members of the group talk to each other",
            },
        )

        graph.expose("vpcId", self.vpc)
        graph.expose_value(
            "publicSubnetIds", [subnet.id for subnet in self.public_subnets], kind="list"
        )
        graph.expose_value(
            "privateSubnetIds", [subnet.id for subnet in self.private_subnets], kind="list"
        )
        graph.expose("defaultSecurityGroupId", self.default_security_group, "GroupId")

    # =====================================================================
    # DNS and certificate
    # =====================================================================

    def _build_dns(self) -> None:
        self.graph.expose_value("hostedZoneId", self.config.hosted_zone_id)

        self.certificate = compose_if(self.config.certificate_arn is None, self._build_certificate)
        if not self.certificate:
            self.graph.expose_value("certificateArn", self.config.certificate_arn)
        self.certificate_arn = self.certificate.get("certificateArn").unwrap_or(
            self.config.certificate_arn
        )

    def _build_certificate(self) -> ConditionalSubsystem:
        domain = self.config.domain_name
        with self.graph.subsystem("certificate") as subsystem:
            certificate = self.graph.declare(
                f"{self.name}-cert",
                types.CERTIFICATE,
                {
                    "DomainName": f"*.{domain}",
                    "SubjectAlternativeNames": [domain],
                    "ValidationMethod": "DNS",
                    "DomainValidationOptions": [
                        {"DomainName": domain, "HostedZoneId": self.config.hosted_zone_id}
                    ],
                    "Tags": tag_list(self.tags, Name=f"{self.name}-cert"),
                },
            )
            self.graph.expose("certificateArn", certificate)
        return subsystem

    # =====================================================================
    # Application Load Balancer
    # =====================================================================

    def _build_load_balancer(self) -> None:
        graph, name = self.graph, self.name

        self.alb_security_group = graph.declare(
            f"{name}-alb-sg",
            types.SECURITY_GROUP,
            {
                "GroupDescription": "Security group for Application Load Balancer",
                "VpcId": self.vpc.id,
                "SecurityGroupIngress": [
                    SecurityGroupRule("tcp", 80, 80, cidr_ip="0.0.0.0/0", description="HTTP"),
                    SecurityGroupRule("tcp", 443, 443, cidr_ip="0.0.0.0/0", description="HTTPS"),
                ],
                "SecurityGroupEgress": [ALLOW_ALL_EGRESS],
                "Tags": tag_list(self.tags, Name=f"{name}-alb-sg"),
            },
        )

        self.alb = graph.declare(
            f"{name}-alb",
            types.LOAD_BALANCER,
            {
                # ALB names are limited to 32 characters
                "Name": f"{name}-alb"[:32],
                "Scheme": "internet-facing",
                "Type": "application",
                "SecurityGroups": [self.alb_security_group.ref("GroupId")],
                "Subnets": [subnet.id for subnet in self.public_subnets],
                "LoadBalancerAttributes": [
                    {"Key": "deletion_protection.enabled", "Value": "false"},
                ],
                "Tags": tag_list(self.tags, Name=f"{name}-alb"),
            },
        )

        # Both listeners answer 404; apps add host-based rules
        self.http_listener = graph.declare(
            f"{name}-http-listener",
            types.LISTENER,
            {
                "LoadBalancerArn": self.alb.id,
                "Port": 80,
                "Protocol": "HTTP",
                "DefaultActions": [FixedResponseAction()],
            },
        )
        self.https_listener = graph.declare(
            f"{name}-https-listener",
            types.LISTENER,
            {
                "LoadBalancerArn": self.alb.id,
                "Port": 443,
                "Protocol": "HTTPS",
                "SslPolicy": TLS_POLICY,
                "Certificates": [{"CertificateArn": self.certificate_arn}],
                "DefaultActions": [FixedResponseAction()],
            },
        )

        graph.expose("albArn", self.alb)
        graph.expose("albDnsName", self.alb, "DNSName")
        graph.expose("albZoneId", self.alb, "CanonicalHostedZoneID")
        graph.expose("httpListenerArn", self.http_listener)
        graph.expose("httpsListenerArn", self.https_listener)
        graph.expose("albSecurityGroupId", self.alb_security_group, "GroupId")

    # =====================================================================
    # ECS Cluster and roles
    # =====================================================================

    def _build_cluster(self) -> None:
        graph, name = self.graph, self.name

        self.cluster = graph.declare(
            f"{name}-cluster",
            types.CLUSTER,
            {
                "ClusterName": f"{name}-cluster",
                # Container insights adds cost; enable per environment if needed
                "ClusterSettings": [{"Name": "containerInsights", "Value": "disabled"}],
                "Tags": tag_list(self.tags),
            },
        )
        graph.declare(
            f"{name}-capacity-providers",
            types.CLUSTER_CAPACITY_PROVIDERS,
            {
                "Cluster": self.cluster.id,
                "CapacityProviders": ["FARGATE", "FARGATE_SPOT"],
                "DefaultCapacityProviderStrategy": list(SPOT_WITH_ON_DEMAND_BASE),
            },
        )

        # Execution role: ECS pulls images, writes logs and reads secrets
        self.task_execution_role = graph.declare(
            f"{name}-task-execution-role",
            types.ROLE,
            {
                "AssumeRolePolicyDocument": assume_role_policy("ecs-tasks.amazonaws.com"),
                "ManagedPolicyArns": [
                    "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
                ],
                "Policies": [
                    InlinePolicy(
                        "secrets-read",
                        PolicyDocument(
                            (PolicyStatement(actions=("secretsmanager:GetSecretValue",)),)
                        ),
                    )
                ],
                "Tags": tag_list(self.tags),
            },
        )

        # Task role: what the application itself may do
        self.task_role = graph.declare(
            f"{name}-task-role",
            types.ROLE,
            {
                "AssumeRolePolicyDocument": assume_role_policy("ecs-tasks.amazonaws.com"),
                "Policies": [
                    InlinePolicy(
                        "task-logs",
                        PolicyDocument(
                            (
                                PolicyStatement(
                                    actions=("logs:CreateLogStream", "logs:PutLogEvents")
                                ),
                            )
                        ),
                    )
                ],
                "Tags": tag_list(self.tags),
            },
        )

        graph.expose("clusterArn", self.cluster, "Arn")
        graph.expose("clusterName", self.cluster)
        graph.expose("taskExecutionRoleArn", self.task_execution_role, "Arn")
        graph.expose("taskRoleArn", self.task_role, "Arn")

    # =====================================================================
    # Database (optional)
    # =====================================================================

    def _build_database(self) -> ConditionalSubsystem:
        graph, name, config = self.graph, self.name, self.config

        with graph.subsystem("database") as subsystem:
            subnet_group = graph.declare(
                f"{name}-subnet-group",
                types.DB_SUBNET_GROUP,
                {
                    "DBSubnetGroupDescription": f"Private subnets for {name}",
                    "SubnetIds": [subnet.id for subnet in self.private_subnets],
                    "Tags": tag_list(self.tags, Name=f"{name}-subnet-group"),
                },
            )

            db_security_group = graph.declare(
                f"{name}-db-sg",
                types.SECURITY_GROUP,
                {
                    "GroupDescription": "Security group for RDS PostgreSQL",
                    "VpcId": self.vpc.id,
                    "SecurityGroupIngress": [
                        SecurityGroupRule(
                            "tcp",
                            DB_PORT,
                            DB_PORT,
                            source_security_group_id=self.default_security_group.ref("GroupId"),
                        )
                    ],
                    "SecurityGroupEgress": [ALLOW_ALL_EGRESS],
                    "Tags": tag_list(self.tags, Name=f"{name}-db-sg"),
                },
            )

            password_secret = graph.declare(
                f"{name}-db-secret",
                types.SECRET,
                {
                    "Name": f"{name}/db-password",
                    "GenerateSecretString": {
                        "PasswordLength": 32,
                        # Characters RDS rejects in master passwords
                        "ExcludeCharacters": "\"@/\\ '",
                    },
                    "Tags": tag_list(self.tags),
                },
            )

            database = graph.declare(
                f"{name}-postgres",
                types.DB_INSTANCE,
                {
                    "DBInstanceIdentifier": f"{name}-postgres",
                    "Engine": "postgres",
                    "EngineVersion": "15",
                    "DBInstanceClass": config.db_instance_class,
                    "AllocatedStorage": str(config.db_allocated_storage),
                    "DBName": DB_NAME,
                    "MasterUsername": DB_USERNAME,
                    "MasterUserPassword": Join(
                        "", ("{{resolve:secretsmanager:", password_secret.id, "}}")
                    ),
                    "DBSubnetGroupName": subnet_group.id,
                    "VPCSecurityGroups": [db_security_group.ref("GroupId")],
                    "PubliclyAccessible": False,
                    "DeletionProtection": False,
                    "BackupRetentionPeriod": 7,
                    "PreferredBackupWindow": "03:00-04:00",
                    "PreferredMaintenanceWindow": "mon:04:00-mon:05:00",
                    "StorageEncrypted": True,
                    "EnablePerformanceInsights": False,
                    "Tags": tag_list(self.tags, Name=f"{name}-postgres"),
                },
            )

            graph.expose("dbEndpoint", database, "Endpoint.Address")
            graph.expose("dbPort", database, "Endpoint.Port")
            graph.expose_value("dbName", DB_NAME)
            graph.expose_value("dbUsername", DB_USERNAME)
            graph.expose("dbPasswordSecretArn", password_secret)
            graph.expose("dbSecurityGroupId", db_security_group, "GroupId")
        return subsystem

    # =====================================================================
    # Tailscale subnet router (optional)
    # =====================================================================

    def _build_tailscale(self) -> ConditionalSubsystem:
        graph, name, config = self.graph, self.name, self.config

        with graph.subsystem("tailscale") as subsystem:
            security_group = graph.declare(
                f"{name}-tailscale-sg",
                types.SECURITY_GROUP,
                {
                    "GroupDescription": "Security group for Tailscale subnet router",
                    "VpcId": self.vpc.id,
                    "SecurityGroupIngress": [
                        SecurityGroupRule(
                            "udp",
                            TAILSCALE_PORT,
                            TAILSCALE_PORT,
                            cidr_ip="0.0.0.0/0",
                            description="Tailscale WireGuard",
                        ),
                        SecurityGroupRule(
                            "tcp", 22, 22, cidr_ip=VPC_CIDR, description="SSH from VPC"
                        ),
                    ],
                    "SecurityGroupEgress": [ALLOW_ALL_EGRESS],
                    "Tags": tag_list(self.tags, Name=f"{name}-tailscale-sg"),
                },
            )

            auth_key_secret = graph.declare(
                f"{name}-tailscale-auth-key",
                types.SECRET,
                {
                    "Name": f"{name}/tailscale-auth-key",
                    "Description": "Tailscale auth key for subnet router",
                    "Tags": tag_list(self.tags),
                },
            )

            role = graph.declare(
                f"{name}-tailscale-role",
                types.ROLE,
                {
                    "AssumeRolePolicyDocument": assume_role_policy("ec2.amazonaws.com"),
                    "ManagedPolicyArns": ["arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"],
                    "Policies": [
                        InlinePolicy(
                            "tailscale-auth-key-read",
                            PolicyDocument(
                                (
                                    PolicyStatement(
                                        actions=("secretsmanager:GetSecretValue",),
                                        resources=auth_key_secret.id,
                                    ),
                                )
                            ),
                        )
                    ],
                    "Tags": tag_list(self.tags),
                },
            )

            instance_profile = graph.declare(
                f"{name}-tailscale-profile",
                types.INSTANCE_PROFILE,
                {"Roles": [role.id]},
            )

            instance = graph.declare(
                f"{name}-tailscale",
                types.INSTANCE,
                {
                    "ImageId": AL2023_ARM_AMI,
                    "InstanceType": config.tailscale_instance_type,
                    "SubnetId": self.public_subnets[0].id,
                    "SecurityGroupIds": [security_group.ref("GroupId")],
                    "IamInstanceProfile": instance_profile.id,
                    # Required for routing traffic on behalf of the VPC
                    "SourceDestCheck": False,
                    "MetadataOptions": {"HttpTokens": "required", "HttpEndpoint": "enabled"},
                    "UserData": Base64(
                        tailscale_user_data(name, [VPC_CIDR], auth_key_secret.id)
                    ),
                    "BlockDeviceMappings": [
                        {
                            "DeviceName": "/dev/xvda",
                            "Ebs": {"VolumeSize": 30, "VolumeType": "gp3", "Encrypted": True},
                        }
                    ],
                    "Tags": tag_list(self.tags, Name=f"{name}-tailscale-router"),
                },
            )

            graph.expose("tailscaleInstanceId", instance)
            graph.expose("tailscalePrivateIp", instance, "PrivateIp")
            graph.expose("tailscalePublicIp", instance, "PublicIp")
            graph.expose("tailscaleSecurityGroupId", security_group, "GroupId")
            graph.expose("tailscaleAuthKeySecretArn", auth_key_secret)
        return subsystem

    # =====================================================================
    # Logs and metadata
    # =====================================================================

    def _build_logging(self) -> None:
        self.log_group = self.graph.declare(
            f"{self.name}-logs",
            types.LOG_GROUP,
            {
                "LogGroupName": f"/ecs/{self.name}",
                "RetentionInDays": self.config.log_retention_days,
                "Tags": tag_list(self.tags),
            },
        )
        self.graph.expose("logGroupName", self.log_group)

    def _expose_metadata(self) -> None:
        self.graph.expose_value("region", REGION)
        self.graph.expose_value("environment", self.config.environment)
        self.graph.expose_value("domainName", self.config.domain_name)


def tailscale_user_data(name: str, advertised_routes: list[str], secret_id: object) -> Join:
    """Boot script: enable forwarding, install Tailscale, join with the stored key."""
    routes = ",".join(advertised_routes)
    head = (
        "#!/bin/bash\n"
        "set -e\n"
        "\n"
        "echo 'net.ipv4.ip_forward = 1' | tee -a /etc/sysctl.d/99-tailscale.conf\n"
        "echo 'net.ipv6.conf.all.forwarding = 1' | tee -a /etc/sysctl.d/99-tailscale.conf\n"
        "sysctl -p /etc/sysctl.d/99-tailscale.conf\n"
        "\n"
        "dnf config-manager --add-repo "
        "https://pkgs.tailscale.com/stable/amazon-linux/2023/tailscale.repo\n"
        "dnf install -y tailscale\n"
        "systemctl enable --now tailscaled\n"
        "sleep 5\n"
        "\n"
        "AUTH_KEY=$(aws secretsmanager get-secret-value --secret-id "
    )
    tail = (
        " --query SecretString --output text)\n"
        "\n"
        f'tailscale up --authkey="$AUTH_KEY" --advertise-routes={routes} '
        f"--accept-dns=false --hostname={name}-subnet-router\n"
    )
    return Join("", (head, secret_id, " --region ", REGION, tail))


def build_platform_graph(config: PlatformConfig) -> ResourceGraph:
    """Build (but do not finalize) the platform graph."""
    return PlatformStack(config).graph
