"""
Resource type schemas.

A ``ResourceType`` pairs a CloudFormation type tag with the attribute names a
declaration of that type exposes. ``id`` is the value CloudFormation returns
for ``Ref``; everything else is a ``Fn::GetAtt`` attribute.
"""

from __future__ import annotations

from dataclasses import dataclass, field

REF_FIELD = "id"


@dataclass(frozen=True)
class ResourceType:
    """Type tag plus the attribute schema of one kind of resource."""

    tag: str
    attributes: frozenset[str] = field(default_factory=frozenset)

    def has_field(self, name: str) -> bool:
        return name == REF_FIELD or name in self.attributes

    @property
    def fields(self) -> frozenset[str]:
        return self.attributes | {REF_FIELD}


def register(tag: str, *attributes: str) -> ResourceType:
    return ResourceType(tag=tag, attributes=frozenset(attributes))


# Network
VPC = register("AWS::EC2::VPC", "CidrBlock", "DefaultSecurityGroup", "VpcId")
INTERNET_GATEWAY = register("AWS::EC2::InternetGateway", "InternetGatewayId")
GATEWAY_ATTACHMENT = register("AWS::EC2::VPCGatewayAttachment")
SUBNET = register("AWS::EC2::Subnet", "AvailabilityZone", "SubnetId")
ROUTE_TABLE = register("AWS::EC2::RouteTable", "RouteTableId")
ROUTE = register("AWS::EC2::Route")
ROUTE_TABLE_ASSOCIATION = register("AWS::EC2::SubnetRouteTableAssociation")
SECURITY_GROUP = register("AWS::EC2::SecurityGroup", "GroupId", "VpcId")
SECURITY_GROUP_INGRESS = register("AWS::EC2::SecurityGroupIngress")
INSTANCE = register("AWS::EC2::Instance", "PrivateIp", "PublicIp", "AvailabilityZone")

# DNS and certificates
CERTIFICATE = register("AWS::CertificateManager::Certificate")
RECORD_SET = register("AWS::Route53::RecordSet")

# Load balancing
LOAD_BALANCER = register(
    "AWS::ElasticLoadBalancingV2::LoadBalancer",
    "LoadBalancerArn",
    "DNSName",
    "CanonicalHostedZoneID",
    "LoadBalancerFullName",
)
LISTENER = register("AWS::ElasticLoadBalancingV2::Listener", "ListenerArn")
LISTENER_RULE = register("AWS::ElasticLoadBalancingV2::ListenerRule", "RuleArn")
TARGET_GROUP = register(
    "AWS::ElasticLoadBalancingV2::TargetGroup", "TargetGroupArn", "TargetGroupFullName"
)

# Containers
CLUSTER = register("AWS::ECS::Cluster", "Arn")
CLUSTER_CAPACITY_PROVIDERS = register("AWS::ECS::ClusterCapacityProviderAssociations")
TASK_DEFINITION = register("AWS::ECS::TaskDefinition", "TaskDefinitionArn")
SERVICE = register("AWS::ECS::Service", "Name", "ServiceArn")
REPOSITORY = register("AWS::ECR::Repository", "Arn", "RepositoryUri")
SCALABLE_TARGET = register("AWS::ApplicationAutoScaling::ScalableTarget")

# Identity and secrets
ROLE = register("AWS::IAM::Role", "Arn", "RoleId")
INSTANCE_PROFILE = register("AWS::IAM::InstanceProfile", "Arn")
SECRET = register("AWS::SecretsManager::Secret", "Id")

# Data
DB_SUBNET_GROUP = register("AWS::RDS::DBSubnetGroup")
DB_INSTANCE = register(
    "AWS::RDS::DBInstance", "Endpoint.Address", "Endpoint.Port", "DBInstanceArn"
)

# Logs
LOG_GROUP = register("AWS::Logs::LogGroup", "Arn")
