"""
Tests for reading the rules on the platform's HTTPS listener.
"""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from infragraph.errors import ConfigurationError
from stacks.listener_rules import ListenerRules, host_headers

LISTENER_ARN = "arn:aws:elasticloadbalancing:us-east-1:123456789012:listener/app/portfolio-dev-alb/1/https"


def _rule(priority: str, *hosts: str) -> dict:
    return {
        "RuleArn": f"arn:rule/{priority}",
        "Priority": priority,
        "IsDefault": priority == "default",
        "Conditions": [{"Field": "host-header", "HostHeaderConfig": {"Values": list(hosts)}}]
        if hosts
        else [],
    }


class TestHostHeaders:
    """Tests for extracting host conditions."""

    def test_host_header_config(self):
        """Test the current condition shape."""
        assert host_headers(_rule("1000", "api.example.com")) == ["api.example.com"]

    def test_legacy_values_and_other_fields(self):
        """Test that plain Values are read and non-host conditions ignored."""
        rule = {
            "Conditions": [
                {"Field": "path-pattern", "Values": ["/api/*"]},
                {"Field": "host-header", "Values": ["old.example.com"]},
            ]
        }

        assert host_headers(rule) == ["old.example.com"]


class TestListenerRules:
    """Tests for DescribeRules paging and allocator seeding."""

    def setup_method(self):
        self.mock_client = MagicMock()
        self.rules = ListenerRules()
        self.rules._client = self.mock_client  # Inject mock directly

    def test_read_follows_markers(self):
        """Test that every page of rules is read."""
        self.mock_client.describe_rules.side_effect = [
            {"Rules": [_rule("1000", "a.example.com")], "NextMarker": "page-2"},
            {"Rules": [_rule("default")]},
        ]

        rules = self.rules.read(LISTENER_ARN)

        assert [rule["Priority"] for rule in rules] == ["1000", "default"]
        second_call = self.mock_client.describe_rules.call_args_list[1]
        assert second_call.kwargs == {"ListenerArn": LISTENER_ARN, "Marker": "page-2"}

    def test_client_error_raises(self):
        """Test that AWS errors surface as configuration errors."""
        self.mock_client.describe_rules.side_effect = ClientError(
            {"Error": {"Code": "ListenerNotFound", "Message": "gone"}}, "DescribeRules"
        )

        with pytest.raises(ConfigurationError, match="Cannot read rules"):
            self.rules.read(LISTENER_ARN)

    @pytest.mark.asyncio
    async def test_allocator_reserves_existing_priorities(self):
        """Test that other rules are taken and the own rule stays with its owner."""
        self.mock_client.describe_rules.return_value = {
            "Rules": [
                _rule("1000", "api.example.com"),
                _rule("1001", "web.example.com"),
                _rule("5"),
                _rule("default"),
            ]
        }

        priorities = await self.rules.allocator(LISTENER_ARN, host="web.example.com", owner="web")

        assert priorities.taken == {
            1000: "api.example.com",
            1001: "web",
            5: "arn:rule/5",
        }
        assert priorities.allocate("web") == 1001
