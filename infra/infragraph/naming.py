"""
Deterministic naming and listener-rule priorities.

Every function here is pure: identical inputs give identical identifiers on
every run, which keeps re-deployments idempotent.

The priority hash is the Java/JavaScript string hash: for each UTF-16 code
unit, ``h = h * 31 + code``, wrapped to a 32-bit signed integer after each
step. The bounded result is ``abs(h) % (upper - lower) + lower``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from infragraph.logging import get_logger

logger = get_logger(__name__)

# ALB listener rule priorities must be in 1..50000; the low range is left
# for rules managed by hand.
DEFAULT_PRIORITY_RANGE = (1000, 50000)

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def _to_int32(value: int) -> int:
    value &= _INT32_MASK
    return value - 0x100000000 if value & _INT32_SIGN else value


def _utf16_code_units(value: str) -> Iterable[int]:
    # Lone surrogates are single code units
    encoded = value.encode("utf-16-be", "surrogatepass")
    for index in range(0, len(encoded), 2):
        yield (encoded[index] << 8) | encoded[index + 1]


def string_hash(value: str) -> int:
    """32-bit signed rolling hash of ``value``."""
    result = 0
    for code in _utf16_code_units(value):
        result = _to_int32(result * 31 + code)
    return result


def priority(value: str, lower_bound: int, upper_bound: int) -> int:
    """
    Map ``value`` to a stable integer in ``[lower_bound, upper_bound)``.

    Does not guarantee uniqueness; use ``PriorityAllocator`` when several
    values share one listener.
    """
    if lower_bound >= upper_bound:
        raise ValueError(f"lower_bound ({lower_bound}) must be below upper_bound ({upper_bound})")
    return abs(string_hash(value)) % (upper_bound - lower_bound) + lower_bound


class PriorityAllocator:
    """
    Hands out unique priorities within one scope (one listener).

    Collisions are resolved by linear probing: the next free integer after
    the hashed slot, wrapping back to ``lower_bound``.
    """

    def __init__(
        self,
        lower_bound: int = DEFAULT_PRIORITY_RANGE[0],
        upper_bound: int = DEFAULT_PRIORITY_RANGE[1],
        taken: Iterable[int] = (),
    ) -> None:
        if lower_bound >= upper_bound:
            raise ValueError(
                f"lower_bound ({lower_bound}) must be below upper_bound ({upper_bound})"
            )
        self.lower_bound = lower_bound
        self.upper_bound = upper_bound
        self._taken: dict[int, str | None] = {p: None for p in taken}

    @property
    def taken(self) -> dict[int, str | None]:
        return dict(self._taken)

    def reserve(self, value: int, owner: str | None = None) -> None:
        """Mark an explicit priority as used (again, for the same owner)."""
        if value in self._taken and (owner is None or self._taken[value] != owner):
            raise ValueError(f"Priority {value} is already taken by {self._taken[value]!r}")
        self._taken[value] = owner

    def allocate(self, value: str) -> int:
        """Priority for ``value``, probing past slots taken by other values."""
        for existing, owner in self._taken.items():
            if owner == value:
                return existing

        size = self.upper_bound - self.lower_bound
        start = priority(value, self.lower_bound, self.upper_bound)
        candidate = start
        for _ in range(size):
            if candidate not in self._taken:
                break
            candidate += 1
            if candidate >= self.upper_bound:
                candidate = self.lower_bound
        else:
            raise ValueError(
                f"No free priority in [{self.lower_bound}, {self.upper_bound})"
            )

        if candidate != start:
            logger.warning(
                "priority_collision_resolved",
                value=value,
                hashed=start,
                allocated=candidate,
            )
        self._taken[candidate] = value
        return candidate


def resource_name(*parts: str) -> str:
    """Join name parts with ``-``, skipping empty ones."""
    return "-".join(part for part in parts if part)


def repository_name(platform: str, app: str) -> str:
    """Registry path for an app image, ``{platform}/{app}``."""
    return f"{platform}/{app}"


def database_name(app: str) -> str:
    """Postgres database name for an app (hyphens are not allowed)."""
    return app.replace("-", "_")


def public_url(subdomain: str, domain_name: str) -> str:
    return f"https://{subdomain}.{domain_name}"


def host_name(subdomain: str, domain_name: str) -> str:
    return f"{subdomain}.{domain_name}"


def logical_id(name: str) -> str:
    """``portfolio-dev-vpc`` -> ``PortfolioDevVpc`` (CloudFormation logical ID)."""
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^A-Za-z0-9]+", name))
