"""
Builtin node kinds.

Events, logic, math, strings, data, time, debug and script kinds that every
editor palette starts with. Plugins add further kinds through
``NodeRegistry.register`` at any time.
"""

from blockflow.library import arithmetic, data, debug, events, logic, script, strings, timing
from blockflow.registry import NodeRegistry

MODULES = (events, logic, arithmetic, strings, data, timing, debug, script)


def register_builtins(registry: NodeRegistry) -> NodeRegistry:
    """
    Register every builtin kind into ``registry``.

    Returns:
        The same registry, for chaining
    """
    for module in MODULES:
        for behavior in module.KINDS:
            registry.register_from_decorator(behavior)
    for definition in events.DEFINITIONS:
        registry.register(definition)
    return registry


def default_registry() -> NodeRegistry:
    """A fresh registry holding the builtin kinds."""
    return register_builtins(NodeRegistry())


__all__ = ["register_builtins", "default_registry"]
