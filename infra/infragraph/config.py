"""
Configuration for deployable units.

Unit configuration is read from a flat mapping (CDK context) with camelCase
keys and turned into an immutable model that builders receive explicitly.
Missing required keys fail the run before anything is declared.

Process-level settings (where snapshots and locks live, log format) come
from the environment via pydantic-settings.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from infragraph.errors import ConfigurationError

ModelT = TypeVar("ModelT", bound="UnitConfig")


class UnitConfig(BaseModel):
    """Base for per-unit configuration models."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def from_mapping(cls: type[ModelT], values: Mapping[str, Any]) -> ModelT:
        """
        Build the config from a flat key/value mapping.

        Raises:
            ConfigurationError: If required keys are missing or a value is invalid
        """
        # CDK context values may be None when a key is passed without a value
        cleaned = {key: value for key, value in values.items() if value is not None}
        try:
            return cls.model_validate(cleaned)
        except ValidationError as e:
            missing = [
                str(error["loc"][0]) for error in e.errors() if error["type"] == "missing"
            ]
            if missing:
                raise ConfigurationError(
                    f"Missing required configuration: {', '.join(missing)}",
                    missing=missing,
                ) from e
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def required_keys(cls) -> list[str]:
        return [
            field.alias or name
            for name, field in cls.model_fields.items()
            if field.is_required()
        ]


class PlatformConfig(UnitConfig):
    """Shared platform: network, load balancer, cluster, optional database."""

    environment: str
    domain_name: str
    hosted_zone_id: str
    project_name: str = "portfolio"
    enable_shared_database: bool = True
    db_instance_class: str = "db.t4g.micro"
    db_allocated_storage: int = Field(default=20, ge=20)
    certificate_arn: str | None = None
    enable_tailscale: bool = False
    tailscale_instance_type: str = "t4g.nano"
    log_retention_days: int = 14

    @property
    def name(self) -> str:
        """Prefix for every platform resource, ``{project}-{environment}``."""
        return f"{self.project_name}-{self.environment}"

    @property
    def tags(self) -> dict[str, str]:
        return {
            "Project": self.project_name,
            "Environment": self.environment,
            "ManagedBy": "cdk",
        }


class AppConfig(UnitConfig):
    """One application deployed onto the platform."""

    app_name: str
    subdomain: str
    platform_stack_ref: str
    project_name: str = "portfolio"
    cpu: int = 256
    memory: int = 512
    desired_count: int = Field(default=1, ge=0)
    container_port: int = Field(default=3000, ge=1, le=65535)
    use_fargate_spot: bool = True
    enable_scheduled_scaling: bool = False
    scale_up_hour: int = Field(default=6, ge=0, le=23)
    scale_down_hour: int = Field(default=22, ge=0, le=23)
    schedule_timezone: str = "UTC"
    health_check_path: str = "/health"
    listener_rule_priority: int | None = Field(default=None, ge=1, le=50000)
    image_tag: str = "latest"
    tunnel_token_secret_arn: str | None = None
    domain_name: str | None = None

    @model_validator(mode="after")
    def _check_schedule(self) -> AppConfig:
        if self.enable_scheduled_scaling and self.scale_up_hour == self.scale_down_hour:
            raise ValueError("scaleUpHour and scaleDownHour must differ")
        return self

    @property
    def tags(self) -> dict[str, str]:
        return {"Project": self.project_name, "App": self.app_name, "ManagedBy": "cdk"}


class InfraSettings(BaseSettings):
    """Environment-based settings for a deployment run."""

    # "ssm" reads other stacks' outputs from Parameter Store; "local" from
    # the snapshot files in snapshot_dir
    output_backend: Literal["ssm", "local"] = "ssm"
    snapshot_dir: Path = Path("snapshots")
    state_dir: Path = Path(".infra-state")
    # Seed listener rule priorities from the live HTTPS listener
    read_listener_rules: bool = True
    aws_endpoint_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(env_prefix="INFRA_", env_file=".env", extra="ignore")
