"""
Rules already attached to the platform's HTTPS listener.

Every app deploys on its own, so the priority allocator for one app has to
start from the priorities the listener already carries:

    rules = ListenerRules(region=platform.region)
    priorities = await rules.allocator(
        platform.https_listener_arn, host=host_name(subdomain, domain), owner=subdomain
    )

A rule whose host header is the app's own host keeps its priority; every
other rule's priority is taken.
"""

from __future__ import annotations

import asyncio
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from infragraph.errors import ConfigurationError
from infragraph.logging import get_logger
from infragraph.naming import DEFAULT_PRIORITY_RANGE, PriorityAllocator

logger = get_logger(__name__)


def host_headers(rule: dict[str, Any]) -> list[str]:
    """Host header values a DescribeRules rule matches on."""
    hosts: list[str] = []
    for condition in rule.get("Conditions", []):
        if condition.get("Field") != "host-header":
            continue
        config = condition.get("HostHeaderConfig") or {}
        hosts.extend(config.get("Values") or condition.get("Values") or [])
    return hosts


class ListenerRules:
    """Reads listener rules through the ELBv2 API."""

    # Timeout configuration for ELBv2 API calls
    CONNECT_TIMEOUT = 5  # seconds to establish connection
    READ_TIMEOUT = 30  # seconds to wait for response

    def __init__(self, region: str | None = None, endpoint_url: str | None = None) -> None:
        self.region = region
        self.endpoint_url = endpoint_url
        self._client = None

    @property
    def client(self):
        """Lazy-load boto3 client with timeout configuration."""
        if self._client is None:
            import boto3
            from botocore.config import Config

            config = Config(
                connect_timeout=self.CONNECT_TIMEOUT,
                read_timeout=self.READ_TIMEOUT,
                retries={"max_attempts": 3},
            )
            client_kwargs: dict[str, Any] = {
                "config": config,
                "region_name": self.region,
                "endpoint_url": self.endpoint_url,
            }
            # Remove None values to let boto3 use defaults
            client_kwargs = {k: v for k, v in client_kwargs.items() if v is not None}

            self._client = boto3.client("elbv2", **client_kwargs)
        return self._client

    def read(self, listener_arn: str) -> list[dict[str, Any]]:
        """
        Every rule on the listener, the default rule included.

        Raises:
            ConfigurationError: If the rules cannot be read
        """
        rules: list[dict[str, Any]] = []
        request: dict[str, Any] = {"ListenerArn": listener_arn}
        try:
            while True:
                response = self.client.describe_rules(**request)
                rules.extend(response.get("Rules", []))
                marker = response.get("NextMarker")
                if not marker:
                    break
                request["Marker"] = marker
        except (BotoCoreError, ClientError) as e:
            raise ConfigurationError(
                f"Cannot read rules of listener {listener_arn}: {e}"
            ) from e
        return rules

    async def allocator(
        self,
        listener_arn: str,
        host: str,
        owner: str,
        lower_bound: int = DEFAULT_PRIORITY_RANGE[0],
        upper_bound: int = DEFAULT_PRIORITY_RANGE[1],
    ) -> PriorityAllocator:
        """
        Allocator seeded with the listener's priorities.

        A rule matching ``host`` is reserved for ``owner``, so allocating for
        ``owner`` again returns the priority it already has.
        """
        rules = await asyncio.to_thread(self.read, listener_arn)
        priorities = PriorityAllocator(lower_bound, upper_bound)
        for rule in rules:
            if rule.get("IsDefault") or rule.get("Priority") == "default":
                continue
            hosts = host_headers(rule)
            priorities.reserve(
                int(rule["Priority"]),
                owner=owner if host in hosts else ",".join(hosts) or rule.get("RuleArn"),
            )

        logger.info(
            "listener_priorities_loaded",
            listener=listener_arn,
            taken=sorted(priorities.taken),
        )
        return priorities
