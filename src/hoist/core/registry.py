"""Base class for all the registries supported by hoist."""
import abc
from typing import TYPE_CHECKING

from attrs import define

from hoist.core.errors import LifecycleUnsupported

if TYPE_CHECKING:
    from hoist.core.credential import Credential
    from hoist.core.image import ImageReference
    from hoist.core.lifecycle import LifecycleStore


@define(frozen=True, kw_only=True)
class Registry(abc.ABC):
    """Base class to be used for all registries.

    Implementations must not share connection state between instances, so
    pushes to different registries can run concurrently.

    Arguments:
        name: identifies the registry in the configuration.
    """

    name: str

    @classmethod
    @abc.abstractmethod
    def spec_name(cls) -> str:
        """Returns the name of this type of registry."""
        raise NotImplementedError

    @abc.abstractmethod
    def host(self) -> str:
        """Returns the host prefix used to tag images for this registry."""
        raise NotImplementedError

    @abc.abstractmethod
    def authenticate(self) -> "Credential":
        """Acquires a new credential for this registry.

        Raises:
            PublishFailure: if the authentication service cannot be reached or
                refuses to issue a credential.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def tag_exists(self, ref: "ImageReference", credential: "Credential") -> bool:
        """Checks if a tag is stored in the registry.

        Arguments:
            ref: the remote image reference to look up.
            credential: credential used to query the registry.
        """
        raise NotImplementedError

    def lifecycle_store(self) -> "LifecycleStore":
        """Returns the store used to manage lifecycle policies.

        Raises:
            LifecycleUnsupported: if the registry has no lifecycle policies.
        """
        raise LifecycleUnsupported(
            f"registry type {self.spec_name()} does not support lifecycle policies",
            registry=self.name,
        )
