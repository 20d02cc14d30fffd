"""Module and service version parsing and ordering."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from genoring_cli.errors import InvalidVersion

VERSION_REGEX = re.compile(r"^\s*(\d+)(?:\.(\d+))?(alpha|beta|dev)?\s*$", re.IGNORECASE)

# Higher rank is more stable.
STABILITY_RANK = {"dev": 0, "alpha": 1, "beta": 2, "": 3}


class Ordering(Enum):
    """Result of a version comparison."""

    LESS = -1
    EQUAL = 0
    GREATER = 1


@dataclass(frozen=True)
class Version:
    """A parsed ``major[.minor][stability]`` version."""

    major: int
    minor: int = 0
    stability: str = ""

    @classmethod
    def parse(cls, value: Any) -> "Version":
        """
        Parse a version string.

        YAML descriptors often hold versions as floats (``1.0``) or ints, so
        any scalar is accepted and stringified first.

        Args:
            value: Version string such as ``2.1``, ``1.0beta`` or ``3``

        Returns:
            Parsed Version

        Raises:
            InvalidVersion: If the value does not follow the version format
        """
        if isinstance(value, Version):
            return value
        if value is None or isinstance(value, bool):
            raise InvalidVersion(str(value))
        match = VERSION_REGEX.match(str(value))
        if not match:
            raise InvalidVersion(str(value))
        major, minor, stability = match.groups()
        return cls(
            major=int(major),
            minor=int(minor) if minor is not None else 0,
            stability=(stability or "").lower(),
        )

    def sort_key(self):
        return (self.major, self.minor, STABILITY_RANK[self.stability])

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}{self.stability}"


def compare(a: Any, b: Any) -> Ordering:
    """
    Compare two versions.

    Args:
        a: First version (string or Version)
        b: Second version (string or Version)

    Returns:
        Ordering of ``a`` relative to ``b``

    Raises:
        InvalidVersion: If either version is malformed
    """
    key_a = Version.parse(a).sort_key()
    key_b = Version.parse(b).sort_key()
    if key_a < key_b:
        return Ordering.LESS
    if key_a > key_b:
        return Ordering.GREATER
    return Ordering.EQUAL


def satisfies(version: Any, operator: Optional[str], bound: Any) -> bool:
    """
    Check a version against a bound such as ``>= 2.1``.

    An empty operator means equality, as in ``REQUIRES mod 2.0``.
    """
    if bound is None:
        return True
    result = compare(version, bound)
    operator = operator or "="
    if operator == "=":
        return result == Ordering.EQUAL
    if operator == "<":
        return result == Ordering.LESS
    if operator == "<=":
        return result != Ordering.GREATER
    if operator == ">":
        return result == Ordering.GREATER
    if operator == ">=":
        return result != Ordering.LESS
    raise ValueError(f"Unsupported version operator: {operator}")


def is_upgrade(installed: Any, available: Any) -> bool:
    """Return True when ``available`` is strictly newer than ``installed``."""
    if installed in (None, ""):
        return True
    return compare(available, installed) == Ordering.GREATER
