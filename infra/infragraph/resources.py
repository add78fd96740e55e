"""
Resource declarations, output bindings and deferred values.

Declarations are pure data. Inputs may contain values that are not known
while the graph is being built:

    Ref      a field of another declaration (possibly declared later)
    Apply    a function over refs, evaluated once every ref is known
    Pseudo   an engine-supplied value such as the deployment region

``resolve_value`` replaces deferred values using lookups supplied by the
reconciler; ``collect_refs`` finds the refs that become implicit dependency
edges.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from infragraph.errors import UnknownFieldError
from infragraph.types import REF_FIELD, ResourceType


@dataclass(frozen=True)
class Ref:
    """Reference to ``field`` of the declaration named ``target``."""

    target: str
    field: str = REF_FIELD

    def __str__(self) -> str:
        return f"${{{self.target}.{self.field}}}"


@dataclass(frozen=True)
class Pseudo:
    """Value supplied by the engine at reconciliation time."""

    name: str


REGION = Pseudo("AWS::Region")


def _fn_key(fn: Callable[..., Any]) -> tuple:
    closure = tuple(cell.cell_contents for cell in (getattr(fn, "__closure__", None) or ()))
    code = getattr(fn, "__code__", fn)
    return (getattr(fn, "__module__", None), getattr(fn, "__qualname__", repr(fn)), code, closure)


class Apply:
    """Deferred call of ``fn`` with resolved ``args``."""

    __slots__ = ("fn", "args")

    def __init__(self, fn: Callable[..., Any], *args: Any) -> None:
        self.fn = fn
        self.args = args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Apply):
            return NotImplemented
        return _fn_key(self.fn) == _fn_key(other.fn) and self.args == other.args

    def __hash__(self) -> int:
        return hash((_fn_key(self.fn)[:2], len(self.args)))

    def __repr__(self) -> str:
        name = getattr(self.fn, "__qualname__", repr(self.fn))
        return f"Apply({name}, {', '.join(repr(a) for a in self.args)})"


@dataclass(frozen=True)
class ResourceDeclaration:
    """A request to create and manage one infrastructure object."""

    logical_name: str
    type: ResourceType
    inputs: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    subsystem: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.inputs, MappingProxyType):
            object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceDeclaration):
            return NotImplemented
        return (
            self.logical_name == other.logical_name
            and self.type == other.type
            and dict(self.inputs) == dict(other.inputs)
            and self.depends_on == other.depends_on
            and self.subsystem == other.subsystem
        )

    def __hash__(self) -> int:
        return hash((self.logical_name, self.type.tag))

    def ref(self, field_name: str = REF_FIELD) -> Ref:
        """Reference one of this declaration's fields."""
        if not self.type.has_field(field_name):
            raise UnknownFieldError(
                f"{self.type.tag} has no field {field_name!r} "
                f"(declaration {self.logical_name!r})"
            )
        return Ref(self.logical_name, field_name)

    @property
    def id(self) -> Ref:
        return Ref(self.logical_name, REF_FIELD)


@dataclass(frozen=True)
class OutputBinding:
    """
    A named, read-only value exposed by a graph.

    Either ``source``/``field`` point at a declaration, or ``value`` holds a
    derived value (which may itself contain refs).
    """

    name: str
    source: str | None = None
    field: str | None = None
    value: Any = None
    kind: str = "string"
    subsystem: str | None = None

    @property
    def expression(self) -> Any:
        if self.source is not None:
            return Ref(self.source, self.field or REF_FIELD)
        return self.value


def _is_document(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def collect_refs(value: Any) -> Iterator[Ref]:
    """Yield every ``Ref`` nested inside ``value``."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, Apply):
        for arg in value.args:
            yield from collect_refs(arg)
    elif isinstance(value, Pseudo):
        return
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from collect_refs(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from collect_refs(item)
    elif _is_document(value):
        for f in dataclasses.fields(value):
            yield from collect_refs(getattr(value, f.name))


def resolve_value(
    value: Any,
    lookup_ref: Callable[[Ref], Any],
    lookup_pseudo: Callable[[Pseudo], Any],
) -> Any:
    """Replace deferred values in ``value``, keeping its structure."""

    def _resolve(item: Any) -> Any:
        if isinstance(item, Ref):
            return lookup_ref(item)
        if isinstance(item, Pseudo):
            return lookup_pseudo(item)
        if isinstance(item, Apply):
            return item.fn(*(_resolve(arg) for arg in item.args))
        if isinstance(item, Mapping):
            return {key: _resolve(v) for key, v in item.items()}
        if isinstance(item, list):
            return [_resolve(v) for v in item]
        if isinstance(item, tuple):
            return tuple(_resolve(v) for v in item)
        if _is_document(item):
            changes = {f.name: _resolve(getattr(item, f.name)) for f in dataclasses.fields(item)}
            return dataclasses.replace(item, **changes)
        return item

    return _resolve(value)
