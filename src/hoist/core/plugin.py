"""Helpers used to add engines and registries to hoist."""
from importlib import import_module
from typing import List, Type, cast

from attrs import define

from hoist.core.engine import Engine
from hoist.core.errors import ConfigError
from hoist.core.registry import Registry


@define(frozen=True, kw_only=True)
class Plugin:
    """A hoist plugin that provides engines and registry types."""

    namespace: str
    engines: List[Type[Engine]]
    registries: List[Type[Registry]]


def load_plugin(module: str) -> Plugin:
    """Loads a plugin that exposes engines and registries in a submodule
    `register`.

    Arguments:
        module: import path of the plugin.

    Raises:
        ConfigError: if the plugin cannot be imported.
    """
    try:
        register = import_module(f"{module}.register")

    except ImportError as exc:
        raise ConfigError(f"cannot load plugin {module}", cause=exc) from exc

    engines = cast(List[Type[Engine]], getattr(register, "engines", lambda: [])())
    registries = cast(List[Type[Registry]], getattr(register, "registries", lambda: [])())

    return Plugin(
        namespace=register.namespace(),
        engines=list(engines),
        registries=list(registries),
    )
