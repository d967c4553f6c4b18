"""Representation of a reference to a container image."""
import re
from typing import Optional

from attrs import define, evolve, field

__all__ = ["ImageReference", "is_valid_repository", "is_valid_tag"]

_REPOSITORY_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_HOST = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]*(?::[0-9]+)?$")


def is_valid_repository(repository: str) -> bool:
    """Checks if the repository name is valid.

    Valid repository names MUST match the following requirements:

    * have at least one character
    * contain only lowercase alphanumeric characters and separators (`.`, `_`, `-`)
    * separators cannot start or end a path component
    * path components are separated by `/` and cannot be empty
    """
    if len(repository) == 0:
        return False

    return all(_REPOSITORY_COMPONENT.match(component) for component in repository.split("/"))


def is_valid_tag(tag: str) -> bool:
    """Checks if the tag is valid.

    A tag has at most 128 characters, it starts with an alphanumeric character or `_`
    and contains only alphanumeric characters, `_`, `.` or `-`.
    """
    return _TAG.match(tag) is not None


def _looks_like_host(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


@define(frozen=True, kw_only=True, order=True)
class ImageReference:
    """Represents a tagged image either local or stored in a remote registry.

    Arguments:
        registry: the registry host (i.e. `123456789012.dkr.ecr.us-east-1.amazonaws.com`
            or a Docker Hub username). Empty for local images.
        repository: the repository name (i.e. `myapp`).
        tag: the image tag (i.e. `latest`).
    """

    registry: str = field(default="")
    repository: str = field()
    tag: str = field()

    @registry.validator
    def check_registry(self, _, value):  # pylint: disable=no-self-use
        """Validates the registry host."""
        if value and _HOST.match(value) is None:
            raise ValueError(f"invalid registry host {value}")

    @repository.validator
    def check_repository(self, _, value):  # pylint: disable=no-self-use
        """Validates the repository name."""
        if not is_valid_repository(value):
            raise ValueError(f"invalid repository name {value}")

    @tag.validator
    def check_tag(self, _, value):  # pylint: disable=no-self-use
        """Validates the tag."""
        if not is_valid_tag(value):
            raise ValueError(f"invalid tag {value}")

    def __str__(self):
        return f"{self.name}:{self.tag}"

    @property
    def name(self) -> str:
        """Returns the image name without the tag (i.e. `me/myapp`)."""
        if not self.registry:
            return self.repository

        return f"{self.registry}/{self.repository}"

    @property
    def is_local(self) -> bool:
        """True if the image does not belong to a remote registry."""
        return not self.registry

    def with_registry(self, registry: str) -> "ImageReference":
        """Returns the same image reference placed in a different registry."""
        return evolve(self, registry=registry)

    @classmethod
    def parse(cls, value: str, registry: Optional[str] = None) -> "ImageReference":
        """Creates an image reference from its string representation.

        The registry host is detected from the first path component when it
        contains `.` or `:` or is `localhost`. Hosts that cannot be detected this
        way, such as Docker Hub usernames, must be passed via `registry`.

        Arguments:
            value: the reference to parse (i.e. `myapp:latest`,
                `123456789012.dkr.ecr.us-east-1.amazonaws.com/myapp:v1`).
            registry: the registry host, if known.

        Returns:
            The image reference represented by the given string.

        Raises:
            ValueError: if the reference is invalid or has no tag.
        """
        name, sep, tag = value.rpartition(":")
        if not sep or "/" in tag:
            raise ValueError(f"image reference {value} has no tag")

        if registry is not None:
            prefix = f"{registry}/" if registry else ""
            if not name.startswith(prefix):
                raise ValueError(f"image reference {value} does not belong to {registry}")

            return cls(registry=registry, repository=name[len(prefix) :], tag=tag)

        head, sep, rest = name.partition("/")
        if sep and _looks_like_host(head):
            return cls(registry=head, repository=rest, tag=tag)

        return cls(repository=name, tag=tag)
