"""Descriptor types for GenoRing modules, services, volumes and alternatives."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from genoring_cli.modules.constraints import ConstraintGroup, Relation


class FragmentKind(str, Enum):
    """Kind of service fragment file."""

    BASE = "base"
    MERGE = "merge"
    OVERRIDE = "override"

    @classmethod
    def from_filename(cls, filename: str) -> Tuple[str, "FragmentKind"]:
        """
        Split a fragment file name into its service name and kind.

        Args:
            filename: File name such as ``genoring-proxy.merge.yml``

        Returns:
            Tuple of (service name, fragment kind)
        """
        stem = filename[: -len(".yml")]
        for kind in (cls.MERGE, cls.OVERRIDE):
            suffix = f".{kind.value}"
            if stem.endswith(suffix):
                return stem[: -len(suffix)], kind
        return stem, cls.BASE


class VolumeSharing(str, Enum):
    """How a volume is shared between modules."""

    SHARED = "shared"
    EXPOSED = "exposed"
    PRIVATE = "private"


@dataclass
class ServiceFragment:
    """A base, merge or override payload read from a fragment file."""

    service: str
    module: str
    kind: FragmentKind
    path: Path
    payload: Dict[str, Any]
    version_tag: str = "v1.0"


@dataclass
class ServiceDescriptor:
    """A service declared by a module."""

    name: str
    module: str
    human_name: str = ""
    description: str = ""
    version: str = ""
    index: int = 0
    fragment: Optional[ServiceFragment] = None

    @property
    def profiles(self) -> Tuple[str, ...]:
        """Compose profiles the service runs under. Empty means always."""
        if self.fragment is None:
            return ()
        profiles = self.fragment.payload.get("profiles") or ()
        if isinstance(profiles, str):
            profiles = [profiles]
        return tuple(str(p) for p in profiles)

    def runs_in(self, profile: Optional[str]) -> bool:
        """Whether the service is part of the given profile."""
        return not self.profiles or profile is None or profile in self.profiles


@dataclass
class VolumeDescriptor:
    """A volume declared by a module."""

    name: str
    module: str
    human_name: str = ""
    description: str = ""
    sharing: VolumeSharing = VolumeSharing.SHARED
    mapping: Optional[str] = None
    definition: Optional[Dict[str, Any]] = None


@dataclass
class AlternativeDescriptor:
    """A set of service substitutions, additions and removals a module offers."""

    name: str
    module: str
    human_name: str = ""
    description: str = ""
    substitute: Dict[str, str] = field(default_factory=dict)
    add: List[str] = field(default_factory=list)
    remove: List[str] = field(default_factory=list)


@dataclass
class ModuleDescriptor:
    """Everything the registry knows about one module."""

    name: str
    path: Path
    human_name: str = ""
    description: str = ""
    version: str = ""
    services: List[ServiceDescriptor] = field(default_factory=list)
    volumes: List[VolumeDescriptor] = field(default_factory=list)
    alternatives: List[AlternativeDescriptor] = field(default_factory=list)
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    constraints: Tuple[ConstraintGroup, ...] = ()
    fragments: List[ServiceFragment] = field(default_factory=list)
    alt_fragments: Dict[str, ServiceFragment] = field(default_factory=dict)

    @property
    def hooks_dir(self) -> Path:
        return self.path / "hooks"

    @property
    def env_dir(self) -> Path:
        return self.path / "env"

    @property
    def service_names(self) -> List[str]:
        return [service.name for service in self.services]

    @property
    def volume_names(self) -> List[str]:
        return [volume.name for volume in self.volumes]

    def get_service(self, name: str) -> Optional[ServiceDescriptor]:
        for service in self.services:
            if service.name == name:
                return service
        return None

    def get_alternative(self, name: str) -> Optional[AlternativeDescriptor]:
        for alternative in self.alternatives:
            if alternative.name == name:
                return alternative
        return None

    def constraints_of(self, *relations: Relation) -> List[ConstraintGroup]:
        """Constraint groups of the given relation kinds, in declaration order."""
        return [group for group in self.constraints if group.relation in relations]

    def fragments_of(self, kind: FragmentKind) -> List[ServiceFragment]:
        return [fragment for fragment in self.fragments if fragment.kind == kind]
