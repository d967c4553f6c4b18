"""Register the Docker plugin."""
from typing import Sequence, Type

from hoist.core.engine import Engine
from hoist.core.registry import Registry
from hoist.plugins.docker.engine import DockerEngine
from hoist.plugins.docker.registry import DockerHubRegistry


def namespace() -> str:
    """Returns the namespace for the Docker plugin."""
    return "docker"


def engines() -> Sequence[Type[Engine]]:
    """Returns all Docker engines."""
    return [DockerEngine]


def registries() -> Sequence[Type[Registry]]:
    """Returns all Docker registries."""
    return [DockerHubRegistry]
