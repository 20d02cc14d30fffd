"""Parser for module dependency lines."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

from genoring_cli.errors import InvalidVersion, MalformedConstraint
from genoring_cli.modules.versions import Version

PROFILES = ("dev", "staging", "prod", "backend", "offline")
# "online" in a dependency line stands for any site profile.
ONLINE_PROFILES = ("dev", "staging", "prod")
MODULE_NAME = r"[a-z][a-z0-9_]*"
SERVICE_NAME = r"[a-z][a-z0-9\-]*"
VOLUME_NAME = SERVICE_NAME

MODULE_NAME_REGEX = re.compile(rf"^{MODULE_NAME}$")
SERVICE_NAME_REGEX = re.compile(rf"^{SERVICE_NAME}$")

_PROFILE = "(?:{0})".format("|".join(PROFILES + ("online",)))
LINE_REGEX = re.compile(
    rf"^(?:(?P<profiles>{_PROFILE}(?:\s*,\s*{_PROFILE})*)\s*:)?"
    r"\s*(?:(?P<service>[a-z0-9\-_]+)\s+)?"
    r"(?P<relation>REQUIRES|CONFLICTS|BEFORE|AFTER)"
    r"\s+(?P<targets>\S.*)$"
)
TARGET_REGEX = re.compile(
    rf"^(?P<module>{MODULE_NAME})"
    r"(?:\s+(?P<operator>[<>]?=?)\s*(?P<major>\d+)(?:\.(?P<minor>\d+))?"
    r"(?P<stability>alpha|beta|dev)?)?"
    rf"(?:\s+(?P<element>{SERVICE_NAME}))?$"
)
OR_REGEX = re.compile(r"\s+[oO][rR]\s+")


class Relation(str, Enum):
    """Kind of relation a constraint expresses."""

    REQUIRES = "REQUIRES"
    CONFLICTS = "CONFLICTS"
    BEFORE = "BEFORE"
    AFTER = "AFTER"


@dataclass(frozen=True)
class DependencyConstraint:
    """One fully-qualified constraint against a target module."""

    source_module: str
    relation: Relation
    target_module: str
    version_operator: Optional[str] = None
    version: Optional[Version] = None
    element: Optional[str] = None
    source_service: Optional[str] = None
    profiles: Tuple[str, ...] = ()
    kind: str = "services"

    @property
    def has_version_bound(self) -> bool:
        return self.version is not None

    def describe_bound(self) -> str:
        """Human readable version bound, e.g. ``>= 2.1``."""
        if self.version is None:
            return ""
        return f"{self.version_operator} {self.version}"

    def applies_to(self, profile: Optional[str]) -> bool:
        """Whether the constraint is in scope for the given profile."""
        if not self.profiles or profile is None:
            return True
        return profile in self.profiles


@dataclass(frozen=True)
class ConstraintGroup:
    """
    A parsed dependency line.

    Holds one constraint, or several alternatives joined with ``OR`` of which
    at least one must be satisfied (REQUIRES only).
    """

    line: str
    source_module: str
    relation: Relation
    alternatives: Tuple[DependencyConstraint, ...]
    source_service: Optional[str] = None
    profiles: Tuple[str, ...] = ()
    kind: str = "services"

    @property
    def is_disjunction(self) -> bool:
        return len(self.alternatives) > 1

    @property
    def target_modules(self) -> Tuple[str, ...]:
        return tuple(c.target_module for c in self.alternatives)

    def applies_to(self, profile: Optional[str]) -> bool:
        if not self.profiles or profile is None:
            return True
        return profile in self.profiles

    def __iter__(self):
        return iter(self.alternatives)


def parse_constraint(line: str, module: str, kind: str = "services") -> ConstraintGroup:
    """
    Parse a dependency line of a module descriptor.

    Syntax::

        [PROFILE[,PROFILE...]:][SERVICE] RELATION TARGET [OR TARGET]...
        TARGET := module [[op] major[.minor][stability]] [service_or_volume]

    Args:
        line: The raw dependency line
        module: Name of the module declaring the line
        kind: ``services`` or ``volumes``, the descriptor section it comes from

    Returns:
        Parsed ConstraintGroup

    Raises:
        MalformedConstraint: If the line does not match the grammar
    """
    if not isinstance(line, str):
        raise MalformedConstraint(str(line), module, "dependency must be a string")
    text = line.strip()
    match = LINE_REGEX.match(text)
    if not match:
        raise MalformedConstraint(line, module)

    relation = Relation(match.group("relation"))
    profiles: Tuple[str, ...] = ()
    for name in re.split(r"\s*,\s*", match.group("profiles") or ""):
        for profile in ONLINE_PROFILES if name == "online" else (name,):
            if profile and profile not in profiles:
                profiles += (profile,)
    service = match.group("service")
    if service is not None and not SERVICE_NAME_REGEX.match(service):
        raise MalformedConstraint(line, module, f"invalid service name '{service}'")

    parts = OR_REGEX.split(match.group("targets").strip())
    if len(parts) > 1 and relation != Relation.REQUIRES:
        raise MalformedConstraint(line, module, "OR is only allowed with REQUIRES")

    alternatives = []
    for part in parts:
        target = TARGET_REGEX.match(part.strip())
        if not target:
            raise MalformedConstraint(line, module, f"cannot parse '{part.strip()}'")
        version = None
        operator = None
        if target.group("major") is not None:
            raw = target.group("major")
            if target.group("minor") is not None:
                raw += "." + target.group("minor")
            raw += target.group("stability") or ""
            try:
                version = Version.parse(raw)
            except InvalidVersion as e:
                raise MalformedConstraint(line, module, str(e)) from e
            operator = target.group("operator") or "="
        alternatives.append(
            DependencyConstraint(
                source_module=module,
                relation=relation,
                target_module=target.group("module"),
                version_operator=operator,
                version=version,
                element=target.group("element"),
                source_service=service,
                profiles=profiles,
                kind=kind,
            )
        )

    return ConstraintGroup(
        line=text,
        source_module=module,
        relation=relation,
        alternatives=tuple(alternatives),
        source_service=service,
        profiles=profiles,
        kind=kind,
    )


def parse_constraints(
    lines: Iterable[str], module: str, kind: str = "services"
) -> Tuple[ConstraintGroup, ...]:
    """Parse every dependency line of one descriptor section."""
    return tuple(parse_constraint(line, module, kind) for line in lines or ())
