"""Functions and data structures used to represent and manage hoist
configuration."""
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
from attrs import define, field
from cattrs import structure
from cattrs.errors import ClassValidationError

from hoist.core.errors import ConfigError


@define(frozen=True, kw_only=True)
class ProjectConfig:
    """Configuration for a project.

    Arguments:
        repo_path: path to the project's repository.
    """

    repo_path: str


@define(frozen=True, kw_only=True)
class RetryConfig:
    """Configuration for retrying transient network failures.

    Arguments:
        attempts: maximum number of attempts, including the first one.
        base_delay: seconds to wait before the first retry.
        max_delay: upper bound for the wait between two attempts.
        multiplier: growth factor of the wait after each failed attempt.
    """

    attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0


@define(frozen=True, kw_only=True)
class RegistryConfig:
    """Configuration for a destination registry.

    Arguments:
        type: the registry type as registered by a plugin (i.e. `aws_ecr`).
        options: arguments passed to the registry type.
    """

    type: str
    options: Dict[str, Any] = field(factory=dict)


@define(frozen=True, kw_only=True)
class AppConfig:
    """Configuration for an application to build and publish.

    Arguments:
        path: build context directory, relative to the project's repository.
        repository: the repository name used for the image.
        dockerfile: path to the Dockerfile, relative to the build context.
        tags: fixed tags to use. If empty, the image is tagged with the revision.
        tag_prefix: string prepended to the revision tag (i.e. `rev-`).
        registries: registries where the image gets published by default.
        build_args: build arguments passed to the engine.
        labels: labels attached to the image.
    """

    path: str
    repository: str
    dockerfile: str = "Dockerfile"
    tags: List[str] = field(factory=list)
    tag_prefix: str = ""
    registries: List[str] = field(factory=list)
    build_args: Dict[str, str] = field(factory=dict)
    labels: Dict[str, str] = field(factory=dict)


@define(frozen=True, kw_only=True)
class Config:
    """hoist's configuration.

    Arguments:
        project: the project containing the applications.
        plugins: all the plugins to load.
        engine: name of the engine used to build and push images.
        retry: retry settings for network operations.
        registries: destination registries indexed by name.
        apps: applications indexed by name.
    """

    project: ProjectConfig
    plugins: List[str] = field(factory=list)
    engine: str = "docker"
    retry: RetryConfig = field(factory=RetryConfig)
    registries: Dict[str, RegistryConfig] = field(factory=dict)
    apps: Dict[str, AppConfig] = field(factory=dict)

    def app(self, name: str) -> AppConfig:
        """Gets the configuration of an application.

        Raises:
            ConfigError: if the application is not defined.
        """
        try:
            return self.apps[name]

        except KeyError as exc:
            raise ConfigError(f"unknown app {name}", app=name) from exc


def validate_config(config: Config) -> Config:
    """Checks the references between the sections of the configuration.

    Arguments:
        config: the configuration to validate.

    Returns:
        The same configuration.

    Raises:
        ConfigError: if an application refers to an unknown registry.
    """
    for app_name, app in config.apps.items():
        for registry in app.registries:
            if registry not in config.registries:
                raise ConfigError(f"unknown registry {registry}", app=app_name)

    if config.retry.attempts < 1:
        raise ConfigError("retry attempts must be at least 1")

    return config


def load_config(path: Path | str, overrides: Optional[Dict[str, Any]] = None) -> Config:
    """Loads the configuration from a file.

    Arguments:
        path: configuration file's path.
        overrides: top level keys replacing the ones read from the file.
    """
    try:
        data = toml.load(path)

    except (OSError, toml.TomlDecodeError) as exc:
        raise ConfigError(f"cannot read configuration {path}", cause=exc) from exc

    data.update(overrides or {})

    try:
        config = structure(data, Config)

    except (ClassValidationError, KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid configuration {path}", cause=exc) from exc

    return validate_config(config)
