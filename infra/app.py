#!/usr/bin/env python3
"""
AWS CDK app entry point for the portfolio infrastructure.

One run synthesizes one unit, chosen by context:

    cdk deploy -c unit=platform -c environment=dev -c domainName=example.com \\
        -c hostedZoneId=Z123

    cdk deploy -c unit=app -c appName=checkout-api -c subdomain=checkout \\
        -c platformStackRef=portfolio-dev

Every stack writes its outputs to SSM under ``/{stack}/``; app units read the
platform's from there and seed their listener rule priority from the rules
already on the platform's HTTPS listener. For offline runs, set
``INFRA_OUTPUT_BACKEND=local`` (outputs from ``$INFRA_SNAPSHOT_DIR``, the
``--outputs-file`` of the platform deploy) and ``INFRA_READ_LISTENER_RULES=false``.
"""

import asyncio
import sys

import aws_cdk as cdk

from infragraph.config import AppConfig, InfraSettings, PlatformConfig
from infragraph.errors import InfraError
from infragraph.graph import ResourceGraph
from infragraph.logging import bind_contextvars, configure_logging, get_logger
from infragraph.state import OutputStore, ParameterStore, SnapshotStore
from stacks.app_stack import build_app_graph
from stacks.graph_stack import GraphStack
from stacks.infra_resolver import InfraResolver
from stacks.listener_rules import ListenerRules
from stacks.platform_stack import build_platform_graph
from stacks.validation import add_validation_aspects

UNITS = ("platform", "app")

logger = get_logger("app")


def context_values(app: cdk.App, keys: list[str]) -> dict[str, object]:
    """Context values for ``keys`` (missing keys are left out)."""
    values = {}
    for key in keys:
        value = app.node.try_get_context(key)
        if value is not None:
            values[key] = value
    return values


def output_store(settings: InfraSettings, region: str) -> OutputStore:
    if settings.output_backend == "local":
        return SnapshotStore(settings.snapshot_dir)
    return ParameterStore(region=region, endpoint_url=settings.aws_endpoint_url)


def build_graph(
    app: cdk.App, unit: str, settings: InfraSettings, env: cdk.Environment
) -> ResourceGraph:
    if unit == "platform":
        platform_config = PlatformConfig.from_mapping(
            context_values(app, _context_keys(PlatformConfig))
        )
        bind_contextvars(stack=platform_config.name)
        return build_platform_graph(platform_config)

    app_config = AppConfig.from_mapping(context_values(app, _context_keys(AppConfig)))
    resolver = InfraResolver(app_config.platform_stack_ref, output_store(settings, env.region))
    listener_rules = None
    if settings.read_listener_rules:
        listener_rules = ListenerRules(region=env.region, endpoint_url=settings.aws_endpoint_url)
    bind_contextvars(stack=f"{app_config.project_name}-{app_config.app_name}")
    return asyncio.run(build_app_graph(app_config, resolver, listener_rules=listener_rules))


def _context_keys(model: type) -> list[str]:
    return [field.alias or name for name, field in model.model_fields.items()]


def main() -> int:
    settings = InfraSettings()
    configure_logging(json_format=settings.log_json, log_level=settings.log_level)

    app = cdk.App()
    unit = app.node.try_get_context("unit") or "platform"
    if unit not in UNITS:
        logger.error("unknown_unit", unit=unit, expected=list(UNITS))
        return 2

    # Environment configuration
    env = cdk.Environment(
        account=app.node.try_get_context("account"),
        region=app.node.try_get_context("region") or "us-east-1",
    )

    try:
        graph = build_graph(app, unit, settings, env)
        add_validation_aspects(graph)
        graph.finalize()
        stack = GraphStack(app, graph.name, graph=graph, state_dir=settings.state_dir, env=env)
    except InfraError as e:
        logger.error("unit_build_failed", unit=unit, error=str(e))
        return 1

    print(stack.report.summary(), file=sys.stderr)
    if not stack.report.success:
        return stack.report.exit_code

    app.synth()
    return 0


if __name__ == "__main__":
    sys.exit(main())
