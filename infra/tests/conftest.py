"""
Shared pytest fixtures for infrastructure tests.

Snapshots and locks live under ``tmp_path``; nothing here touches AWS.
"""

import pytest

from infragraph.config import AppConfig, PlatformConfig
from infragraph.logging import clear_contextvars
from infragraph.state import SnapshotStore
from stacks.infra_resolver import InfraResolver
from tests.factories import DATABASE_OUTPUTS, PLATFORM_STACK, FakeEngine, platform_snapshot


@pytest.fixture(autouse=True)
def _clear_log_context():
    yield
    clear_contextvars()


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "snapshots")


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def platform_config() -> PlatformConfig:
    return PlatformConfig.from_mapping(
        {
            "environment": "dev",
            "domainName": "example.com",
            "hostedZoneId": "Z0123456789",
        }
    )


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig.from_mapping(
        {
            "appName": "my-app",
            "subdomain": "my-app",
            "platformStackRef": PLATFORM_STACK,
            "containerPort": 3000,
            "useFargateSpot": True,
            "enableScheduledScaling": False,
        }
    )


@pytest.fixture
def resolver(store) -> InfraResolver:
    """Resolver over a platform snapshot that never included the database."""
    store.write(PLATFORM_STACK, platform_snapshot())
    return InfraResolver(PLATFORM_STACK, store)


@pytest.fixture
def database_resolver(store) -> InfraResolver:
    """Resolver over a platform snapshot with the shared database."""
    store.write(PLATFORM_STACK, platform_snapshot(**DATABASE_OUTPUTS))
    return InfraResolver(PLATFORM_STACK, store)
