"""Docker Hub registry."""
import os
from typing import Optional

import docker
import requests
from attrs import define
from docker.errors import DockerException, NotFound

from hoist.core.credential import Credential
from hoist.core.errors import ConfigError, FailureReason, PublishFailure
from hoist.core.image import ImageReference
from hoist.core.registry import Registry
from hoist.plugins.docker.engine import api_failure, failure_reason

DOCKER_HUB = "docker.io"


@define(frozen=True, kw_only=True)
class DockerHubRegistry(Registry):
    """A namespace on Docker Hub.

    The access token is read from an environment variable when
    authenticating and it is never stored in the configuration.

    Arguments:
        username: the Docker Hub user or organization owning the repositories.
        token_env: environment variable containing the access token.
        login: user to authenticate as. Defaults to `username`.
    """

    username: str
    token_env: str = "DOCKERHUB_TOKEN"
    login: Optional[str] = None

    @classmethod
    def spec_name(cls) -> str:
        return "docker_hub"

    def host(self) -> str:
        return self.username

    def authenticate(self) -> Credential:
        token = os.environ.get(self.token_env)
        if not token:
            raise PublishFailure(
                FailureReason.AUTH_EXPIRED,
                f"environment variable {self.token_env} is not set",
                registry=self.name,
            )

        return Credential(registry=self.name, username=self.login or self.username, secret=token)

    def tag_exists(self, ref: ImageReference, credential: Credential) -> bool:
        client = _client()

        try:
            client.images.get_registry_data(
                f"{DOCKER_HUB}/{ref}", auth_config=credential.auth_config()
            )

        except NotFound:
            return False

        except (DockerException, requests.exceptions.RequestException) as exc:
            # Docker Hub answers 401 for repositories that do not exist yet.
            if failure_reason(exc) is FailureReason.AUTH_EXPIRED:
                return False

            raise api_failure(exc, f"cannot look up {ref}") from exc

        return True


def _client() -> docker.DockerClient:
    try:
        return docker.from_env()

    except DockerException as exc:
        raise ConfigError("cannot connect to the Docker daemon", cause=exc) from exc
