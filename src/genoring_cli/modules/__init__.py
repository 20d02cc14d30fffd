"""
Module system for GenoRing.

Modules are directories providing service fragments, volumes, hooks and
dependency constraints. They are discovered by the registry, validated and
ordered by the resolver, then composed into a single deployment descriptor.
"""

from genoring_cli.modules.base import ModuleDescriptor
from genoring_cli.modules.registry import ModuleRegistry
from genoring_cli.modules.resolver import DependencyResolver, Resolution

__all__ = ["DependencyResolver", "ModuleDescriptor", "ModuleRegistry", "Resolution"]
