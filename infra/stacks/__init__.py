"""Platform and app stacks for the portfolio infrastructure."""

from .app_stack import AppStack, build_app_graph
from .infra_resolver import InfraResolver, PlatformOutputs
from .listener_rules import ListenerRules
from .platform_stack import PlatformStack, build_platform_graph

__all__ = [
    "AppStack",
    "InfraResolver",
    "ListenerRules",
    "PlatformOutputs",
    "PlatformStack",
    "build_app_graph",
    "build_platform_graph",
]
