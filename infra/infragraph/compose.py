"""
Conditional subsystems.

A subsystem is a named bundle of declarations and bindings that either
exists completely in the final graph or not at all. Builders are only called
when their flag is set:

    database = compose_if(config.enable_shared_database, lambda: build_database(graph))
    if database:
        ...
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from infragraph.option import ABSENT, Option, Present

if TYPE_CHECKING:
    from infragraph.resources import OutputBinding, ResourceDeclaration


class ConditionalSubsystem:
    """Declarations and bindings recorded while a subsystem was open."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.declarations: list[ResourceDeclaration] = []
        self.bindings: dict[str, OutputBinding] = {}
        self.values: dict[str, Any] = {}

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"ConditionalSubsystem({self.name!r}, declarations={len(self.declarations)})"

    def get(self, key: str) -> Option[Any]:
        """Look up a builder-provided value or a binding expression."""
        if key in self.values:
            return Present(self.values[key])
        if key in self.bindings:
            return Present(self.bindings[key].expression)
        return ABSENT

    def provide(self, key: str, value: Any) -> None:
        """Record a value (usually a ref) for consumers of the subsystem."""
        self.values[key] = value


class Empty:
    """Result of a subsystem whose gate was off."""

    _instance: Empty | None = None

    def __new__(cls) -> Empty:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "EMPTY"

    def get(self, key: str) -> Option[Any]:
        return ABSENT


EMPTY = Empty()


def compose_if(
    flag: bool, build: Callable[[], ConditionalSubsystem]
) -> ConditionalSubsystem | Empty:
    """Run ``build`` only when ``flag`` is true."""
    if not flag:
        return EMPTY
    return build()
