"""Definition of the context capturing all the data needed to run hoist."""
from typing import Dict, Optional, Type

from attrs import define
from cattrs import structure
from cattrs.errors import ClassValidationError

from hoist.core.config import Config
from hoist.core.engine import Engine
from hoist.core.errors import ConfigError
from hoist.core.plugin import load_plugin
from hoist.core.registry import Registry


@define(frozen=True, kw_only=True)
class Context:
    """Contains all the data needed to run any hoist command.

    Arguments:
        config: hoist's configuration.
        revision: the commit SHA used to tag the images.
        engine: the container engine used to build and push images.
        registries: the configured registries indexed by name.
        commit_time: the commit timestamp, used for reproducible builds.
    """

    config: Config
    revision: str
    engine: Engine
    registries: Dict[str, Registry]
    commit_time: Optional[int] = None

    def registry(self, name: str) -> Registry:
        """Gets a configured registry.

        Raises:
            ConfigError: if the registry is not configured.
        """
        try:
            return self.registries[name]

        except KeyError as exc:
            raise ConfigError(f"unknown registry {name}", registry=name) from exc


def make_registry(name: str, registry_type: Type[Registry], options: dict) -> Registry:
    """Instantiates a registry from its configuration options.

    Raises:
        ConfigError: if the options do not match the registry type.
    """
    try:
        return structure({**options, "name": name}, registry_type)

    except (ClassValidationError, KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid options for registry {name}", registry=name, cause=exc) from exc


def load_context(
    config: Config,
    revision: str,
    commit_time: Optional[int] = None,
) -> Context:
    """Prepares the context to be used in hoist.

    Arguments:
        config: hoist's configuration.
        revision: the revision used to tag the images.
        commit_time: the revision's commit timestamp, if known.

    Returns:
        The context.
    """
    engines: Dict[str, Type[Engine]] = {}
    registry_types: Dict[str, Type[Registry]] = {}

    for plugin_path in config.plugins:
        plugin = load_plugin(plugin_path)

        for engine in plugin.engines:
            name = engine.spec_name()
            if name in engines:
                raise ConfigError(f"engine with name {name} is already present")

            engines[name] = engine

        for registry_type in plugin.registries:
            name = registry_type.spec_name()
            if name in registry_types:
                raise ConfigError(f"registry type with name {name} is already present")

            registry_types[name] = registry_type

    if config.engine not in engines:
        raise ConfigError(f"unknown engine {config.engine}")

    registries = {}
    for name, registry_config in config.registries.items():
        if registry_config.type not in registry_types:
            raise ConfigError(f"unknown registry type {registry_config.type}", registry=name)

        registries[name] = make_registry(
            name, registry_types[registry_config.type], registry_config.options
        )

    return Context(
        config=config,
        revision=revision,
        engine=engines[config.engine](),
        registries=registries,
        commit_time=commit_time,
    )
