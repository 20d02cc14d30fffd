"""Dependency resolution and service ordering for enabled modules."""

import heapq
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from genoring_cli.errors import (
    CompositionError,
    ConflictingModules,
    DependencyCycle,
    UnsatisfiedDependency,
    VersionMismatch,
)
from genoring_cli.modules.base import AlternativeDescriptor, ModuleDescriptor, ServiceDescriptor
from genoring_cli.modules.constraints import ConstraintGroup, DependencyConstraint, Relation
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.modules.versions import satisfies

logger = logging.getLogger(__name__)

# Outcomes of evaluating a single REQUIRES branch.
SATISFIED = "satisfied"
ABSENT = "absent"
BAD_VERSION = "version"
NO_ELEMENT = "element"


@dataclass
class Resolution:
    """
    Result of a successful resolution.

    Attributes:
        profile: Profile the resolution was computed for (None means all)
        modules: Active modules in hook order
        services: Active services in startup order
        predecessors: For each service, the services that must start first
        added: Modules pulled in automatically to satisfy requirements
        alternatives: Active alternatives per module
        warnings: Non-fatal findings, such as ambiguous OR requirements
    """

    profile: Optional[str]
    modules: List[str]
    services: List[ServiceDescriptor]
    predecessors: Dict[str, List[str]] = field(default_factory=dict)
    added: List[str] = field(default_factory=list)
    alternatives: Dict[str, List[AlternativeDescriptor]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def service_names(self) -> List[str]:
        return [service.name for service in self.services]

    def services_of(self, module: str) -> List[ServiceDescriptor]:
        return [service for service in self.services if service.module == module]

    def module_of(self, service: str) -> Optional[str]:
        for descriptor in self.services:
            if descriptor.name == service:
                return descriptor.module
        return None


def effective_services(
    modules: Iterable[ModuleDescriptor],
    alternatives: Iterable[AlternativeDescriptor] = (),
) -> Dict[str, ServiceDescriptor]:
    """
    Services provided by a set of modules once alternatives are applied.

    A substitution keeps the service name and owner but takes its definition
    from the alternative's fragment. Additions introduce new services owned by
    the module offering the alternative; removals drop services.

    Raises:
        CompositionError: If two modules provide the same service
    """
    modules = list(modules)
    by_name = {module.name: module for module in modules}
    services: Dict[str, ServiceDescriptor] = {}
    for module in sorted(modules, key=lambda m: m.name):
        for service in module.services:
            if service.name in services:
                raise CompositionError(
                    f"Service '{service.name}' is defined by both "
                    f"'{services[service.name].module}' and '{module.name}'"
                )
            services[service.name] = service

    for alternative in alternatives:
        owner = by_name[alternative.module]
        for service_name, substitute in alternative.substitute.items():
            if service_name in services:
                services[service_name] = replace(
                    services[service_name], fragment=owner.alt_fragments[substitute]
                )
            else:
                logger.warning(
                    "Alternative '%s' of module '%s' substitutes unavailable service '%s'",
                    alternative.name,
                    alternative.module,
                    service_name,
                )
        for added in alternative.add:
            if added in services:
                raise CompositionError(
                    f"Alternative '{alternative.name}' adds service '{added}' "
                    f"already defined by '{services[added].module}'"
                )
            services[added] = ServiceDescriptor(
                name=added,
                module=alternative.module,
                human_name=added,
                version=owner.version,
                index=len(owner.services) + alternative.add.index(added),
                fragment=owner.alt_fragments[added],
            )
        for removed in alternative.remove:
            services.pop(removed, None)
    return services


def stable_topological_sort(
    nodes: Mapping[str, Tuple],
    edges: Mapping[str, Iterable[str]],
) -> Tuple[List[str], List[str]]:
    """
    Kahn's algorithm with a deterministic tie-break.

    Args:
        nodes: Node name to sort key; among ready nodes the smallest key wins
        edges: Node name to the nodes that must come after it

    Returns:
        Tuple of (ordered nodes, nodes left over because of cycles)
    """
    indegree = {node: 0 for node in nodes}
    for source, targets in edges.items():
        for target in set(targets):
            indegree[target] += 1

    ready = [(nodes[node], node) for node, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: List[str] = []
    while ready:
        _, current = heapq.heappop(ready)
        ordered.append(current)
        for target in sorted(set(edges.get(current, ()))):
            indegree[target] -= 1
            if indegree[target] == 0:
                heapq.heappush(ready, (nodes[target], target))

    done = set(ordered)
    remaining = [node for node in nodes if node not in done]
    return ordered, remaining


def cycle_members(remaining: Iterable[str], edges: Mapping[str, Iterable[str]]) -> Set[str]:
    """Reduce leftover Kahn nodes to those that sit on a cycle path."""
    members = set(remaining)
    changed = True
    while changed:
        changed = False
        for node in list(members):
            if not any(target in members for target in edges.get(node, ())):
                members.discard(node)
                changed = True
    return members


class DependencyResolver:
    """
    Validates module constraints and orders services for startup.

    Args:
        registry: Loaded module registry
        profile: Profile in effect. Constraints scoped to other profiles are
            ignored. None applies every constraint.
        enabled_alternatives: Alternative names enabled per module
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        profile: Optional[str] = None,
        enabled_alternatives: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self.registry = registry
        self.profile = profile
        self.enabled_alternatives = {
            module: list(names) for module, names in (enabled_alternatives or {}).items()
        }

    def resolve(
        self,
        active: Iterable[str],
        candidates: Optional[Iterable[str]] = None,
    ) -> Resolution:
        """
        Resolve the set of modules the operator wants enabled.

        Args:
            active: Modules that must be active
            candidates: Modules that may be pulled in to satisfy a REQUIRES
                constraint. When None, an unmet requirement is an error.

        Returns:
            Resolution with modules in hook order and services in startup order

        Raises:
            UnknownModule: If an active module does not exist
            InvalidModule: If an active module failed to load
            UnsatisfiedDependency: If a requirement has no active target
            VersionMismatch: If a requirement's only active target is out of bounds
            ConflictingModules: If two active modules conflict
            DependencyCycle: If BEFORE/AFTER edges form a cycle
            CompositionError: If two modules provide the same service
        """
        active_set = set()
        for name in active:
            self.registry.require(name)
            active_set.add(name)
        warnings: List[str] = []
        added = self._expand_requirements(
            active_set, set(candidates) if candidates is not None else None, warnings
        )
        self._check_conflicts(active_set)

        modules = [self.registry.require(name) for name in sorted(active_set)]
        alternatives = self._active_alternatives(modules)
        services = effective_services(
            modules, [alt for alts in alternatives.values() for alt in alts]
        )
        ordered_services, predecessors = self._order_services(modules, services)
        hook_order = self._order_modules(modules, ordered_services)

        return Resolution(
            profile=self.profile,
            modules=hook_order,
            services=ordered_services,
            predecessors=predecessors,
            added=added,
            alternatives=alternatives,
            warnings=warnings,
        )

    def _active_alternatives(
        self, modules: List[ModuleDescriptor]
    ) -> Dict[str, List[AlternativeDescriptor]]:
        alternatives: Dict[str, List[AlternativeDescriptor]] = {}
        for module in modules:
            for alt_name in self.enabled_alternatives.get(module.name, []):
                alternative = module.get_alternative(alt_name)
                if alternative is None:
                    logger.warning(
                        "Enabled alternative '%s' is not provided by module '%s'",
                        alt_name,
                        module.name,
                    )
                    continue
                alternatives.setdefault(module.name, []).append(alternative)
        return alternatives

    def _provides(self, target: ModuleDescriptor, element: str, kind: str) -> bool:
        if kind == "volumes":
            return element in target.volume_names
        names = set(target.service_names)
        for alternative in target.alternatives:
            names.update(alternative.add)
            names.update(alternative.substitute.values())
        return element in names

    def _evaluate(self, constraint: DependencyConstraint, active: Set[str]) -> str:
        if constraint.target_module not in active:
            return ABSENT
        target = self.registry.require(constraint.target_module)
        if constraint.element and not self._provides(target, constraint.element, constraint.kind):
            return NO_ELEMENT
        if constraint.version is not None and not satisfies(
            target.version, constraint.version_operator, constraint.version
        ):
            return BAD_VERSION
        return SATISFIED

    def _expand_requirements(
        self,
        active: Set[str],
        candidates: Optional[Set[str]],
        warnings: List[str],
    ) -> List[str]:
        added: List[str] = []
        queue = sorted(active)
        while queue:
            module = self.registry.require(queue.pop(0))
            for group in module.constraints_of(Relation.REQUIRES):
                if not group.applies_to(self.profile):
                    continue
                pulled = self._check_requirement(module, group, active, candidates, warnings)
                if pulled:
                    active.add(pulled)
                    added.append(pulled)
                    queue.append(pulled)
        return added

    def _check_requirement(
        self,
        module: ModuleDescriptor,
        group: ConstraintGroup,
        active: Set[str],
        candidates: Optional[Set[str]],
        warnings: List[str],
    ) -> Optional[str]:
        outcomes = [(constraint, self._evaluate(constraint, active)) for constraint in group]
        if any(outcome == SATISFIED for _, outcome in outcomes):
            if group.is_disjunction and any(outcome == BAD_VERSION for _, outcome in outcomes):
                message = (
                    f"Module '{module.name}': '{group.line}' is met by one branch while "
                    f"another enabled branch is out of its version bounds"
                )
                logger.warning(message)
                warnings.append(message)
            return None

        if candidates is not None:
            for constraint, outcome in outcomes:
                if outcome != ABSENT or constraint.target_module not in candidates:
                    continue
                if not self.registry.is_available(constraint.target_module):
                    continue
                if self._evaluate(constraint, active | {constraint.target_module}) == SATISFIED:
                    logger.debug(
                        "Adding module '%s' required by '%s'",
                        constraint.target_module,
                        module.name,
                    )
                    return constraint.target_module

        for constraint, outcome in outcomes:
            if outcome == BAD_VERSION:
                target = self.registry.require(constraint.target_module)
                raise VersionMismatch(
                    module.name,
                    constraint.target_module,
                    constraint.describe_bound(),
                    target.version,
                )
        missing = []
        for constraint, outcome in outcomes:
            if outcome == NO_ELEMENT:
                missing.append(f"{constraint.target_module} ({constraint.element})")
            else:
                missing.append(constraint.target_module)
        raise UnsatisfiedDependency(module.name, missing, group.line)

    def _check_conflicts(self, active: Set[str]) -> None:
        for name in sorted(active):
            module = self.registry.require(name)
            for group in module.constraints_of(Relation.CONFLICTS):
                if not group.applies_to(self.profile):
                    continue
                for constraint in group:
                    if constraint.target_module == name:
                        continue
                    if self._evaluate(constraint, active) == SATISFIED:
                        raise ConflictingModules(name, constraint.target_module, group.line)

    def _order_services(
        self,
        modules: List[ModuleDescriptor],
        services: Dict[str, ServiceDescriptor],
    ) -> Tuple[List[ServiceDescriptor], Dict[str, List[str]]]:
        active_names = {module.name for module in modules}
        owned: Dict[str, List[str]] = {}
        for service in services.values():
            owned.setdefault(service.module, []).append(service.name)

        edges: Dict[str, Set[str]] = {name: set() for name in services}
        for module in modules:
            for group in module.constraints_of(Relation.BEFORE, Relation.AFTER):
                if not group.applies_to(self.profile):
                    continue
                if group.source_service:
                    sources = [group.source_service] if group.source_service in services else []
                else:
                    sources = owned.get(module.name, [])
                for constraint in group:
                    if constraint.target_module not in active_names:
                        continue
                    if constraint.element:
                        targets = [constraint.element] if constraint.element in services else []
                    else:
                        targets = owned.get(constraint.target_module, [])
                    for source in sources:
                        for target in targets:
                            if source == target:
                                continue
                            if group.relation == Relation.BEFORE:
                                edges[source].add(target)
                            else:
                                edges[target].add(source)

        keys = {
            name: (service.index, service.module, name) for name, service in services.items()
        }
        ordered, remaining = stable_topological_sort(keys, edges)
        if remaining:
            members = cycle_members(remaining, edges) or set(remaining)
            raise DependencyCycle(
                [services[name].module for name in members], members
            )

        predecessors: Dict[str, List[str]] = {name: [] for name in services}
        for source, targets in edges.items():
            for target in targets:
                predecessors[target].append(source)
        position = {name: i for i, name in enumerate(ordered)}
        for name in predecessors:
            predecessors[name].sort(key=lambda n: position[n])
        return [services[name] for name in ordered], predecessors

    def _order_modules(
        self,
        modules: List[ModuleDescriptor],
        ordered_services: List[ServiceDescriptor],
    ) -> List[str]:
        rank: Dict[str, int] = {}
        for position, service in enumerate(ordered_services):
            rank.setdefault(service.module, position)
        fallback = len(ordered_services)
        keys = {module.name: (rank.get(module.name, fallback), module.name) for module in modules}

        edges: Dict[str, Set[str]] = {module.name: set() for module in modules}
        for module in modules:
            for group in module.constraints_of(Relation.REQUIRES):
                if not group.applies_to(self.profile):
                    continue
                for constraint in group:
                    target = constraint.target_module
                    if target in edges and target != module.name:
                        edges[target].add(module.name)

        ordered, remaining = stable_topological_sort(keys, edges)
        while remaining:
            # Mutual requirements: release the best ranked module of the cycle.
            head = min(remaining, key=lambda name: keys[name])
            logger.debug("Breaking requirement cycle at module '%s'", head)
            sub_edges = {
                name: {t for t in targets if t in remaining and t != head}
                for name, targets in edges.items()
                if name in remaining
            }
            ordered.append(head)
            rest = {name: keys[name] for name in remaining if name != head}
            sub_ordered, remaining = stable_topological_sort(
                rest, {name: targets for name, targets in sub_edges.items() if name != head}
            )
            ordered.extend(sub_ordered)
        return ordered
