"""
Stack outputs, stack references and state locks.

Every deployed graph leaves its exposed bindings somewhere other units can
read them back through a ``StackReference``:

- ``ParameterStore``: one SSM parameter per binding under ``/{stack}/``,
  written by ``GraphStack`` next to its CloudFormation outputs. This is
  what deployments use.
- ``SnapshotStore``: JSON files in the shape written by
  ``cdk deploy --outputs-file``, for local runs and tests:

    {"portfolio-dev": {"vpcId": "vpc-0abc", "publicSubnetIds": "subnet-1,subnet-2"}}
"""

from __future__ import annotations

import asyncio
import json
import os
import socket
from pathlib import Path
from typing import Any, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from infragraph.errors import ConfigurationError, LockedStateError
from infragraph.logging import get_logger
from infragraph.option import ABSENT, Option, Present

logger = get_logger(__name__)


class OutputStore(Protocol):
    """Where a stack reference loads another stack's outputs from."""

    async def load(self, stack_name: str) -> dict[str, Any]:
        """All outputs of ``stack_name``, keyed by binding name."""
        ...


def parameter_name(stack_name: str, binding_name: str) -> str:
    """``("portfolio-dev", "vpcId")`` -> ``/portfolio-dev/vpcId``."""
    return f"/{stack_name}/{binding_name}"


class ParameterStore:
    """
    Stack outputs kept in SSM Parameter Store.

    Each binding is a ``String`` parameter named ``/{stack}/{binding}``; a
    binding the stack did not produce has no parameter and resolves to
    ``ABSENT``.
    """

    # Timeout configuration for SSM API calls
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

            self._client = boto3.client("ssm", **client_kwargs)
        return self._client

    def path_for(self, stack_name: str) -> str:
        return f"/{stack_name}"

    def read(self, stack_name: str) -> dict[str, Any]:
        """
        Read one stack's outputs.

        Raises:
            ConfigurationError: If the stack has no parameters or SSM cannot be read
        """
        path = self.path_for(stack_name)
        outputs: dict[str, Any] = {}
        try:
            paginator = self.client.get_paginator("get_parameters_by_path")
            for page in paginator.paginate(Path=path, Recursive=False):
                for parameter in page.get("Parameters", []):
                    outputs[parameter["Name"].rsplit("/", 1)[-1]] = parameter["Value"]
        except (BotoCoreError, ClientError) as e:
            raise ConfigurationError(f"Cannot read parameters under {path}: {e}") from e

        if not outputs:
            raise ConfigurationError(
                f"No parameters for stack {stack_name!r} under {path}; deploy it first"
            )
        return outputs

    async def load(self, stack_name: str) -> dict[str, Any]:
        return await asyncio.to_thread(self.read, stack_name)


class SnapshotStore:
    """Directory of per-stack snapshot files."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def path_for(self, stack_name: str) -> Path:
        return self.directory / f"{stack_name}.json"

    def exists(self, stack_name: str) -> bool:
        return self.path_for(stack_name).exists()

    def read(self, stack_name: str) -> dict[str, Any]:
        """
        Read one stack's outputs.

        Raises:
            ConfigurationError: If the stack has no snapshot or it is malformed
        """
        path = self.path_for(stack_name)
        try:
            payload = json.loads(path.read_text())
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"No snapshot for stack {stack_name!r} at {path}; deploy it first"
            ) from e
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Snapshot {path} is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise ConfigurationError(f"Snapshot {path} must be a JSON object")
        outputs = payload.get(stack_name, payload)
        if not isinstance(outputs, dict):
            raise ConfigurationError(f"Snapshot {path} has no outputs for {stack_name!r}")
        return outputs

    def write(self, stack_name: str, outputs: dict[str, Any]) -> Path:
        """Replace one stack's snapshot atomically."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(stack_name)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps({stack_name: outputs}, indent=2, sort_keys=True))
        tmp_path.replace(path)
        logger.info("snapshot_written", stack=stack_name, path=str(path), outputs=len(outputs))
        return path

    async def load(self, stack_name: str) -> dict[str, Any]:
        return await asyncio.to_thread(self.read, stack_name)


class StackReference:
    """
    Read-only link to another stack's last deployed outputs.

    Outputs are loaded once, on first ``resolve``; every caller awaits the
    same load.
    """

    def __init__(self, stack_name: str, store: OutputStore) -> None:
        self.stack_name = stack_name
        self.store = store
        self._outputs: dict[str, Any] | None = None
        self._lock = asyncio.Lock()

    async def outputs(self) -> dict[str, Any]:
        if self._outputs is None:
            async with self._lock:
                if self._outputs is None:
                    self._outputs = await self.store.load(self.stack_name)
                    logger.info(
                        "stack_outputs_loaded",
                        stack=self.stack_name,
                        outputs=sorted(self._outputs),
                    )
        return self._outputs

    async def resolve(self, binding_name: str) -> Option[Any]:
        """
        Value of ``binding_name`` from the referenced stack.

        Returns ``ABSENT`` when the binding was not produced by the last
        deployment (for example, an optional subsystem that was off).
        """
        outputs = await self.outputs()
        value = outputs.get(binding_name)
        if value is None or value == "":
            return ABSENT
        return Present(value)

    async def require(self, binding_name: str) -> Any:
        """
        Value of a binding that every deployment of the referenced stack has.

        Raises:
            ConfigurationError: If the binding is absent
        """
        value = await self.resolve(binding_name)
        if not value:
            raise ConfigurationError(
                f"Stack {self.stack_name!r} has no output {binding_name!r}"
            )
        return value.value


class StateLock:
    """
    Exclusive ownership of one graph's state for the duration of a run.

    Acquisition never waits: if another run holds the lock,
    ``LockedStateError`` is raised immediately. A lock left behind by a
    process on this host that no longer exists is taken over.

    The lock is a file under ``state_dir``, so it only excludes runs on the
    same host, and under CDK it covers synthesis only: ``cdk deploy`` applies
    the template after this process exits. Concurrent updates of one
    deployed stack are rejected by CloudFormation itself.

    Usage:
        with StateLock(settings.state_dir, "portfolio-dev"):
            reconciler.run(graph)
    """

    def __init__(self, state_dir: Path | str, stack_name: str) -> None:
        self.path = Path(state_dir) / f"{stack_name}.lock"
        self.stack_name = stack_name
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        holder = f"{socket.gethostname()}:{os.getpid()}"
        try:
            fd = self._create()
        except FileExistsError as e:
            current = self._read_holder()
            if not holder_is_stale(current):
                raise self._locked(current) from e
            logger.warning("state_lock_stale", stack=self.stack_name, holder=current)
            self.path.unlink(missing_ok=True)
            try:
                fd = self._create()
            except FileExistsError as retry_error:
                raise self._locked(self._read_holder()) from retry_error
        with os.fdopen(fd, "w") as handle:
            handle.write(holder)
        self._held = True
        logger.debug("state_lock_acquired", stack=self.stack_name, holder=holder)

    def release(self) -> None:
        if not self._held:
            return
        self.path.unlink(missing_ok=True)
        self._held = False
        logger.debug("state_lock_released", stack=self.stack_name)

    def _create(self) -> int:
        return os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)

    def _locked(self, holder: str | None) -> LockedStateError:
        return LockedStateError(
            f"State of {self.stack_name!r} is locked by {holder or 'another run'}",
            holder=holder,
        )

    def _read_holder(self) -> str | None:
        try:
            return self.path.read_text().strip() or None
        except FileNotFoundError:
            return None

    def __enter__(self) -> StateLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def holder_is_stale(holder: str | None) -> bool:
    """True if ``holder`` (``host:pid``) ran on this host and has exited."""
    if holder is None:
        return False
    host, _, pid = holder.rpartition(":")
    if host != socket.gethostname() or not pid.isdigit():
        return False
    try:
        os.kill(int(pid), 0)
    except ProcessLookupError:
        return True
    except PermissionError:
        # Alive, owned by another user
        return False
    return False
