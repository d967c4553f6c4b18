"""Base class for the container engines used to build and push images."""
import abc
from typing import TYPE_CHECKING, Optional

from attrs import define

if TYPE_CHECKING:
    from hoist.core.build import BuildSpec, BuiltImage
    from hoist.core.credential import Credential
    from hoist.core.image import ImageReference


@define(frozen=True, kw_only=True)
class PushResult:
    """Outcome of a successful push.

    Arguments:
        reference: the remote image reference that was pushed.
        digest: the manifest digest reported by the registry, if any.
    """

    reference: "ImageReference"
    digest: Optional[str] = None


class Engine(abc.ABC):
    """Base class to be used for all container engines."""

    @classmethod
    @abc.abstractmethod
    def spec_name(cls) -> str:
        """Returns the name of this type of engine."""
        raise NotImplementedError

    @abc.abstractmethod
    def build(self, spec: "BuildSpec") -> "BuiltImage":
        """Builds an image and tags it locally.

        Raises:
            BuildFailure: if the image cannot be built.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def tag(self, source: "ImageReference", target: "ImageReference"):
        """Adds the tag `target` to the local image `source`."""
        raise NotImplementedError

    @abc.abstractmethod
    def inspect(self, ref: "ImageReference") -> Optional[str]:
        """Returns the identifier of a local image. None if it does not exist."""
        raise NotImplementedError

    @abc.abstractmethod
    def push(self, ref: "ImageReference", credential: "Credential") -> PushResult:
        """Pushes a local tag to its remote registry.

        Raises:
            PublishFailure: categorised by the cause of the failure.
        """
        raise NotImplementedError
