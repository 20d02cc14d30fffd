"""Module registry for discovering and loading GenoRing modules."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from genoring_cli.errors import (
    DuplicateModule,
    InvalidModule,
    InvalidVersion,
    MalformedConstraint,
    UnknownModule,
)
from genoring_cli.modules.base import (
    AlternativeDescriptor,
    FragmentKind,
    ModuleDescriptor,
    ServiceDescriptor,
    ServiceFragment,
    VolumeDescriptor,
    VolumeSharing,
)
from genoring_cli.modules.constraints import (
    MODULE_NAME_REGEX,
    SERVICE_NAME_REGEX,
    parse_constraints,
)
from genoring_cli.modules.versions import Version

logger = logging.getLogger(__name__)

FRAGMENT_HEADER_REGEX = re.compile(r"^#\s*(v\d+(?:\.\d+)?)\s*$")


def read_fragment(path: Path, module: str) -> Tuple[str, Dict[str, Any]]:
    """
    Read a service fragment file and its mandatory version header.

    Args:
        path: Fragment file path
        module: Owning module name, used in error reports

    Returns:
        Tuple of (version tag, payload)

    Raises:
        InvalidModule: If the header is missing or the payload is not a mapping
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidModule(module, f"fragment '{path.name}' is not readable: {e}") from e
    first_line = next((line for line in text.splitlines() if line.strip()), "")
    header = FRAGMENT_HEADER_REGEX.match(first_line.strip())
    if not header:
        raise InvalidModule(module, f"fragment '{path.name}' has no version header (# v1.0)")
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise InvalidModule(module, f"fragment '{path.name}' is not valid YAML: {e}") from e
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidModule(module, f"fragment '{path.name}' must contain a mapping")
    return header.group(1), payload


class ModuleRegistry:
    """
    Registry for discovering and loading GenoRing modules.

    Modules are directories named after the module under one or more module
    roots. Discovery is two-pass: the first pass collects every module name so
    that constraints may reference modules declared later; the second pass
    loads descriptors and checks constraint targets against the full name set.
    A module that fails to load is recorded as invalid and left out of the
    catalog, it never aborts the registry.
    """

    def __init__(self, module_dirs: Iterable[Path]) -> None:
        """
        Initialize the module registry.

        Args:
            module_dirs: Module root directories, searched in order

        Raises:
            DuplicateModule: If two roots provide a module with the same name
        """
        self.module_dirs = [Path(d) for d in module_dirs]
        self._modules: Dict[str, ModuleDescriptor] = {}
        self._invalid: Dict[str, InvalidModule] = {}
        self._unknown_targets: List[Tuple[str, str, str]] = []
        self._discover_modules()

    def _scan_names(self) -> Dict[str, Path]:
        """First pass: map every module name to its directory."""
        found: Dict[str, List[Path]] = {}
        for root in self.module_dirs:
            if not root.is_dir():
                logger.debug("Module directory %s does not exist", root)
                continue
            for entry in sorted(root.iterdir(), key=lambda p: p.name):
                if entry.is_dir() and MODULE_NAME_REGEX.match(entry.name):
                    found.setdefault(entry.name, []).append(entry)
        for name, paths in found.items():
            if len(paths) > 1:
                raise DuplicateModule(name, [str(p) for p in paths])
        return {name: paths[0] for name, paths in sorted(found.items())}

    def _discover_modules(self) -> None:
        """Discover and load available modules."""
        names = self._scan_names()
        for name, path in names.items():
            try:
                self._modules[name] = self._load_module(name, path)
            except InvalidModule as e:
                logger.warning("%s", e)
                self._invalid[name] = e

        # Second pass: constraint targets against the full name set.
        for module in self._modules.values():
            for group in module.constraints:
                for constraint in group:
                    if constraint.target_module not in names:
                        logger.warning(
                            "Module '%s' references unknown module '%s' in '%s'",
                            module.name,
                            constraint.target_module,
                            group.line,
                        )
                        self._unknown_targets.append(
                            (module.name, constraint.target_module, group.line)
                        )

    def _load_module(self, name: str, path: Path) -> ModuleDescriptor:
        descriptor_path = path / f"{name}.yml"
        if not descriptor_path.is_file():
            raise InvalidModule(name, f"missing descriptor file '{descriptor_path.name}'")
        try:
            with open(descriptor_path, "r", encoding="utf-8") as f:
                info = yaml.safe_load(f) or {}
        except (OSError, UnicodeDecodeError) as e:
            raise InvalidModule(name, f"descriptor is not readable: {e}") from e
        except yaml.YAMLError as e:
            raise InvalidModule(name, f"descriptor is not valid YAML: {e}") from e
        if not isinstance(info, dict):
            raise InvalidModule(name, "descriptor must contain a mapping")

        if "version" not in info:
            raise InvalidModule(name, "descriptor has no version")
        try:
            version = str(Version.parse(info["version"]))
        except InvalidVersion as e:
            raise InvalidModule(name, str(e)) from e

        module = ModuleDescriptor(
            name=name,
            path=path,
            human_name=str(info.get("name") or name),
            description=str(info.get("description") or ""),
            version=version,
        )
        module.services = self._load_services(module, info.get("services") or {})
        module.volumes = self._load_volumes(module, info.get("volumes") or {})
        module.alternatives = self._load_alternatives(module, info.get("alternatives") or {})
        self._load_fragments(module)
        self._load_dependencies(module, info.get("dependencies") or {})
        return module

    def _load_services(self, module: ModuleDescriptor, services: Any) -> List[ServiceDescriptor]:
        if not isinstance(services, dict):
            raise InvalidModule(module.name, "'services' must be a mapping")
        loaded = []
        for index, (service_name, service_info) in enumerate(services.items()):
            if not SERVICE_NAME_REGEX.match(str(service_name)):
                raise InvalidModule(module.name, f"invalid service name '{service_name}'")
            service_info = service_info or {}
            if not isinstance(service_info, dict):
                raise InvalidModule(module.name, f"service '{service_name}' must be a mapping")
            service_version = ""
            if service_info.get("version") is not None:
                try:
                    service_version = str(Version.parse(service_info["version"]))
                except InvalidVersion as e:
                    raise InvalidModule(module.name, str(e)) from e
            loaded.append(
                ServiceDescriptor(
                    name=service_name,
                    module=module.name,
                    human_name=str(service_info.get("name") or service_name),
                    description=str(service_info.get("description") or ""),
                    version=service_version or module.version,
                    index=index,
                )
            )
        return loaded

    def _load_volumes(self, module: ModuleDescriptor, volumes: Any) -> List[VolumeDescriptor]:
        if not isinstance(volumes, dict):
            raise InvalidModule(module.name, "'volumes' must be a mapping")
        loaded = []
        for volume_name, volume_info in volumes.items():
            if not SERVICE_NAME_REGEX.match(str(volume_name)):
                raise InvalidModule(module.name, f"invalid volume name '{volume_name}'")
            volume_info = volume_info or {}
            if not isinstance(volume_info, dict):
                raise InvalidModule(module.name, f"volume '{volume_name}' must be a mapping")
            try:
                sharing = VolumeSharing(volume_info.get("type") or "shared")
            except ValueError as e:
                raise InvalidModule(
                    module.name, f"volume '{volume_name}' has invalid type '{volume_info.get('type')}'"
                ) from e
            definition = None
            definition_path = module.path / "volumes" / f"{volume_name}.yml"
            if definition_path.is_file():
                try:
                    with open(definition_path, "r", encoding="utf-8") as f:
                        definition = yaml.safe_load(f) or {}
                except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
                    raise InvalidModule(
                        module.name, f"volume definition '{definition_path.name}' is not readable: {e}"
                    ) from e
                if not isinstance(definition, dict):
                    raise InvalidModule(
                        module.name, f"volume definition '{definition_path.name}' must contain a mapping"
                    )
            loaded.append(
                VolumeDescriptor(
                    name=volume_name,
                    module=module.name,
                    human_name=str(volume_info.get("name") or volume_name),
                    description=str(volume_info.get("description") or ""),
                    sharing=sharing,
                    mapping=volume_info.get("mapping"),
                    definition=definition,
                )
            )
        return loaded

    def _load_alternatives(
        self, module: ModuleDescriptor, alternatives: Any
    ) -> List[AlternativeDescriptor]:
        if not isinstance(alternatives, dict):
            raise InvalidModule(module.name, "'alternatives' must be a mapping")
        loaded = []
        for alt_name, alt_info in alternatives.items():
            alt_info = alt_info or {}
            if not isinstance(alt_info, dict):
                raise InvalidModule(module.name, f"alternative '{alt_name}' must be a mapping")
            #"substitue" is the historical spelling found in descriptors.
            substitute = alt_info.get("substitute") or alt_info.get("substitue") or {}
            if not isinstance(substitute, dict):
                raise InvalidModule(module.name, f"alternative '{alt_name}' substitutions must be a mapping")
            loaded.append(
                AlternativeDescriptor(
                    name=str(alt_name),
                    module=module.name,
                    human_name=str(alt_info.get("name") or alt_name),
                    description=str(alt_info.get("description") or ""),
                    substitute={str(k): str(v) for k, v in substitute.items()},
                    add=[str(s) for s in alt_info.get("add") or []],
                    remove=[str(s) for s in alt_info.get("remove") or []],
                )
            )
        return loaded

    def _load_fragments(self, module: ModuleDescriptor) -> None:
        services_dir = module.path / "services"
        if services_dir.is_dir():
            for path in sorted(services_dir.glob("*.yml"), key=lambda p: p.name):
                if path.name.startswith(".") or not path.is_file():
                    continue
                service, kind = FragmentKind.from_filename(path.name)
                if not SERVICE_NAME_REGEX.match(service):
                    raise InvalidModule(module.name, f"invalid fragment file name '{path.name}'")
                tag, payload = read_fragment(path, module.name)
                module.fragments.append(
                    ServiceFragment(service, module.name, kind, path, payload, tag)
                )
            alt_dir = services_dir / "alt"
            if alt_dir.is_dir():
                for path in sorted(alt_dir.glob("*.yml"), key=lambda p: p.name):
                    service = path.name[: -len(".yml")]
                    tag, payload = read_fragment(path, module.name)
                    module.alt_fragments[service] = ServiceFragment(
                        service, module.name, FragmentKind.BASE, path, payload, tag
                    )

        bases = {f.service: f for f in module.fragments_of(FragmentKind.BASE)}
        for service in module.services:
            if service.name not in bases:
                raise InvalidModule(module.name, f"service '{service.name}' has no base fragment")
            service.fragment = bases.pop(service.name)
        # Base fragments the descriptor does not list still belong to the module.
        for service_name, fragment in bases.items():
            module.services.append(
                ServiceDescriptor(
                    name=service_name,
                    module=module.name,
                    human_name=service_name,
                    version=module.version,
                    index=len(module.services),
                    fragment=fragment,
                )
            )

        for alternative in module.alternatives:
            for substitute in list(alternative.substitute.values()) + alternative.add:
                if substitute not in module.alt_fragments:
                    raise InvalidModule(
                        module.name,
                        f"alternative '{alternative.name}' needs services/alt/{substitute}.yml",
                    )

    def _load_dependencies(self, module: ModuleDescriptor, dependencies: Any) -> None:
        if not isinstance(dependencies, dict):
            raise InvalidModule(module.name, "'dependencies' must be a mapping")
        groups = []
        for kind in ("services", "volumes"):
            lines = dependencies.get(kind) or []
            if not isinstance(lines, list):
                raise InvalidModule(module.name, f"'dependencies.{kind}' must be a list")
            module.dependencies[kind] = [str(line) for line in lines]
            try:
                groups.extend(parse_constraints(lines, module.name, kind))
            except MalformedConstraint as e:
                raise InvalidModule(module.name, str(e)) from e
        known_services = set(module.service_names)
        for alternative in module.alternatives:
            known_services.update(alternative.substitute.values())
            known_services.update(alternative.add)
        for group in groups:
            if group.source_service and group.source_service not in known_services:
                raise InvalidModule(
                    module.name,
                    f"dependency '{group.line}' refers to unknown service '{group.source_service}'",
                )
        module.constraints = tuple(groups)

    def get_module(self, name: str) -> Optional[ModuleDescriptor]:
        """
        Get a module descriptor by name.

        Args:
            name: Module name

        Returns:
            ModuleDescriptor or None if not found or invalid
        """
        return self._modules.get(name)

    def require(self, name: str) -> ModuleDescriptor:
        """
        Get a module descriptor, failing when it is not usable.

        Raises:
            UnknownModule: If the module does not exist
            InvalidModule: If the module exists but failed to load
        """
        if name in self._invalid:
            raise self._invalid[name]
        module = self._modules.get(name)
        if module is None:
            raise UnknownModule(name)
        return module

    def list_modules(self) -> List[str]:
        """List all valid module names, lexically sorted."""
        return sorted(self._modules.keys())

    def modules(self) -> List[ModuleDescriptor]:
        return [self._modules[name] for name in self.list_modules()]

    def is_available(self, name: str) -> bool:
        """Check if a module is available."""
        return name in self._modules

    @property
    def invalid_modules(self) -> Dict[str, InvalidModule]:
        return dict(self._invalid)

    @property
    def unknown_targets(self) -> List[Tuple[str, str, str]]:
        """(module, unknown target module, dependency line) annotations."""
        return list(self._unknown_targets)

    def service_owner(self, service: str) -> Optional[str]:
        """Name of the module that declares a service, if any."""
        for module in self.modules():
            if service in module.service_names:
                return module.name
        return None

    def reload(self) -> None:
        """Reload module discovery."""
        self._modules.clear()
        self._invalid.clear()
        self._unknown_targets.clear()
        self._discover_modules()
