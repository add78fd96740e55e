"""
Option type for values that may be absent.

Cross-stack outputs produced inside an optional subsystem are carried as
``Present(value)`` or ``ABSENT`` from the platform snapshot all the way into
container environment entries, so every consumer checks presence explicitly.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class Absent:
    """Marker for a value that does not exist."""

    _instance: Absent | None = None

    def __new__(cls) -> Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    @property
    def is_present(self) -> bool:
        return False

    def map(self, fn: Callable[[Any], Any]) -> Absent:
        return self

    def unwrap_or(self, default: U) -> U:
        return default


ABSENT = Absent()


@dataclass(frozen=True)
class Present(Generic[T]):
    """A value that exists."""

    value: T

    def __bool__(self) -> bool:
        return True

    @property
    def is_present(self) -> bool:
        return True

    def map(self, fn: Callable[[T], U]) -> Present[U]:
        return Present(fn(self.value))

    def unwrap_or(self, default: Any) -> T:
        return self.value


Option = Present[T] | Absent
