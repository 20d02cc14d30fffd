"""Composition of module fragments into a single deployment descriptor."""

import copy
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from genoring_cli.context import Context
from genoring_cli.errors import CompositionError
from genoring_cli.modules.base import FragmentKind, ServiceDescriptor, ServiceFragment
from genoring_cli.modules.constraints import PROFILES
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.modules.resolver import Resolution

logger = logging.getLogger(__name__)

EXPOSED_PREFIX = "${GENORING_VOLUMES_DIR}/"
NAMED_VOLUME_REGEX = re.compile(r"^([\w\-]+):")


def merge_data(target: Any, merge: Any) -> Any:
    """
    Recursively merge ``merge`` into ``target``.

    Maps are merged key by key, lists are concatenated, and any other
    combination lets the merge value replace the target value. Inputs are
    never mutated.
    """
    if merge is None:
        return copy.deepcopy(target)
    if target is None:
        return copy.deepcopy(merge)
    if isinstance(target, dict) and isinstance(merge, dict):
        merged = copy.deepcopy(target)
        for key, value in merge.items():
            if key in merged:
                merged[key] = merge_data(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    if isinstance(target, list) and isinstance(merge, list):
        return copy.deepcopy(target) + copy.deepcopy(merge)
    return copy.deepcopy(merge)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def override_data(target: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply a shallow override to ``target``.

    Only keys already present are touched: an empty value removes the key,
    anything else (lists included) replaces it.
    """
    result = copy.deepcopy(target)
    for key, value in (override or {}).items():
        if key not in result:
            continue
        if _is_empty(value):
            del result[key]
        else:
            result[key] = copy.deepcopy(value)
    return result


@dataclass
class DeploymentDescriptor:
    """The unified, fully composed deployment."""

    project: str
    services: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    volumes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    profiles: Dict[str, List[str]] = field(default_factory=dict)
    external_volumes: List[str] = field(default_factory=list)

    @property
    def order(self) -> List[str]:
        return list(self.services.keys())

    def to_compose(self) -> Dict[str, Any]:
        compose: Dict[str, Any] = {"services": copy.deepcopy(self.services)}
        compose["volumes"] = copy.deepcopy(self.volumes)
        return compose

    def dump(self) -> str:
        """Serialize as a docker compose file. Same input, same bytes."""
        header = (
            "# GenoRing docker compose file\n"
            f"# COMPOSE_PROJECT_NAME={self.project}\n"
            "# WARNING: This file is auto-generated by genoring. Any direct\n"
            "# modification may be lost when it is regenerated.\n"
        )
        body = yaml.safe_dump(
            self.to_compose(), default_flow_style=False, sort_keys=False, allow_unicode=True
        )
        return header + body


class DescriptorCompositor:
    """
    Builds the deployment descriptor from a resolution.

    Each service starts from its base fragment (or the alternative fragment
    substituted for it); the ``.merge`` and ``.override`` fragments of active
    modules are then applied in discovery order, lexical by module then by
    file name.
    """

    def __init__(self, ctx: Context, registry: ModuleRegistry):
        self.ctx = ctx
        self.registry = registry

    def compose(self, resolution: Resolution) -> DeploymentDescriptor:
        """
        Compose the descriptor for the resolved modules.

        Args:
            resolution: Output of the dependency resolver

        Returns:
            Fully composed DeploymentDescriptor

        Raises:
            CompositionError: If a service has no base definition
        """
        active = sorted(resolution.modules)
        patches = self._collect_patches(active)
        by_name = {service.name: service for service in resolution.services}

        descriptor = DeploymentDescriptor(project=self.ctx.project)
        volumes: Dict[str, Dict[str, Any]] = {}

        for module_name in active:
            module = self.registry.require(module_name)
            for volume in module.volumes:
                if volume.definition is None:
                    continue
                if volume.name in volumes:
                    raise CompositionError(
                        f"Volume '{volume.name}' is defined by more than one module"
                    )
                definition = copy.deepcopy(volume.definition)
                if self.ctx.no_exposed_volumes and "driver" in definition:
                    definition = {"external": True}
                    descriptor.external_volumes.append(volume.name)
                volumes[volume.name] = definition

        for service in resolution.services:
            if service.fragment is None:
                raise CompositionError(f"Service '{service.name}' has no base definition")
            definition = copy.deepcopy(service.fragment.payload)
            definition.pop("depends_on", None)
            for fragment in patches.get(service.name, []):
                if fragment.kind == FragmentKind.MERGE:
                    definition = merge_data(definition, fragment.payload)
                else:
                    definition = override_data(definition, fragment.payload)
                definition.pop("depends_on", None)

            if self.ctx.no_exposed_volumes:
                definition = self._unexpose_volumes(definition, volumes, descriptor)
            for volume_name in self._named_volumes(definition):
                volumes.setdefault(volume_name, {})

            definition["container_name"] = self.ctx.container_name(service.name)
            depends_on = {}
            for predecessor in resolution.predecessors.get(service.name, []):
                if self._starts_with(service, by_name[predecessor], resolution.profile):
                    depends_on[predecessor] = {"condition": "service_started"}
            if depends_on:
                definition["depends_on"] = depends_on
            descriptor.services[service.name] = definition

        for volume_name in sorted(volumes):
            definition = volumes[volume_name] or {}
            definition["name"] = self.ctx.volume_name(volume_name)
            descriptor.volumes[volume_name] = definition

        # Patches may add or replace profiles: read them from the composed services.
        for profile in PROFILES:
            descriptor.profiles[profile] = [
                name for name, definition in descriptor.services.items()
                if self._runs_in(definition, profile)
            ]
        return descriptor

    @staticmethod
    def _runs_in(definition: Dict[str, Any], profile: str) -> bool:
        profiles = definition.get("profiles") or ()
        if isinstance(profiles, str):
            profiles = [profiles]
        return not profiles or profile in [str(p) for p in profiles]

    def _collect_patches(self, active: List[str]) -> Dict[str, List[ServiceFragment]]:
        patches: Dict[str, List[ServiceFragment]] = {}
        for module_name in active:
            module = self.registry.require(module_name)
            for fragment in module.fragments:
                if fragment.kind == FragmentKind.BASE:
                    continue
                patches.setdefault(fragment.service, []).append(fragment)
        return patches

    @staticmethod
    def _starts_with(service: ServiceDescriptor, predecessor: ServiceDescriptor,
                     profile: Optional[str]) -> bool:
        """Whether ``predecessor`` exists wherever ``service`` runs."""
        if profile is not None:
            return predecessor.runs_in(profile)
        if not predecessor.profiles:
            return True
        if not service.profiles:
            return False
        return set(service.profiles) <= set(predecessor.profiles)

    @staticmethod
    def _named_volumes(definition: Dict[str, Any]) -> List[str]:
        names = []
        for entry in definition.get("volumes") or []:
            if isinstance(entry, str):
                match = NAMED_VOLUME_REGEX.match(entry)
                if match:
                    names.append(match.group(1))
            elif isinstance(entry, dict) and entry.get("type") == "volume" and entry.get("source"):
                names.append(str(entry["source"]))
        return names

    def _unexpose_volumes(self, definition: Dict[str, Any], volumes: Dict[str, Dict[str, Any]],
                          descriptor: DeploymentDescriptor) -> Dict[str, Any]:
        """Turn ``${GENORING_VOLUMES_DIR}/a/b:/x`` mounts into external named volumes."""
        if not definition.get("volumes"):
            return definition
        rewritten = []
        for entry in definition["volumes"]:
            if isinstance(entry, str) and entry.startswith(EXPOSED_PREFIX):
                local, sep, rest = entry[len(EXPOSED_PREFIX):].partition(":")
                volume_name = "genoring-volume-" + local.strip().rstrip("/").replace("/", "-")
                entry = f"{volume_name}{sep}{rest}"
                volumes[volume_name] = {"external": True}
                if volume_name not in descriptor.external_volumes:
                    descriptor.external_volumes.append(volume_name)
            rewritten.append(entry)
        definition["volumes"] = rewritten
        return definition

    def write(self, descriptor: DeploymentDescriptor, path: Optional[Path] = None) -> Path:
        """Write the descriptor atomically to the compose file."""
        target = Path(path or self.ctx.compose_file)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_text(descriptor.dump())
        tmp.replace(target)
        logger.debug("Wrote %s", target)
        return target
