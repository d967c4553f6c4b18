"""Docker engine used to build, tag and push images."""
from typing import Optional

import docker
import requests
from docker.errors import BuildError, DockerException, ImageNotFound

from hoist.core.build import BuildSpec, BuiltImage
from hoist.core.credential import Credential
from hoist.core.engine import Engine, PushResult
from hoist.core.errors import BuildFailure, ConfigError, FailureReason, HoistError, PublishFailure
from hoist.core.image import ImageReference
from hoist.plugins.docker.utils import build_log_tail, classify_error, push_digest, push_error
from hoist.utils import log


def failure_reason(exc: Exception) -> Optional[FailureReason]:
    """Returns the failure category of an error raised by the Docker client.

    Returns:
        The failure reason. None if the error cannot be categorised.
    """
    status = getattr(exc, "status_code", None)

    if status == 401:
        return FailureReason.AUTH_EXPIRED

    if status == 429:
        return FailureReason.QUOTA_EXCEEDED

    reason = classify_error(str(exc))
    if reason is not None:
        return reason

    if isinstance(exc, requests.exceptions.RequestException):
        return FailureReason.NETWORK_ERROR

    if status is not None and status >= 500:
        return FailureReason.NETWORK_ERROR

    return None


def api_failure(exc: Exception, message: str) -> HoistError:
    """Converts an error raised by the Docker client into a hoist error.

    Errors that do not belong to a publishing category are never retried.
    """
    reason = failure_reason(exc)
    if reason is None:
        return HoistError(message, cause=exc)

    return PublishFailure(reason, message, cause=exc)


class DockerEngine(Engine):
    """Builds and pushes images using the local Docker daemon.

    Arguments:
        client: the Docker client. Created from the environment on first use.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client

    @classmethod
    def spec_name(cls) -> str:
        return "docker"

    @property
    def client(self) -> docker.DockerClient:
        """The Docker client connected to the daemon.

        Raises:
            ConfigError: if the daemon cannot be reached.
        """
        if self._client is None:
            try:
                self._client = docker.from_env()

            except DockerException as exc:
                raise ConfigError("cannot connect to the Docker daemon", cause=exc) from exc

        return self._client

    def build(self, spec: BuildSpec) -> BuiltImage:
        try:
            image, build_log = self.client.images.build(
                path=spec.source_path,
                dockerfile=spec.dockerfile,
                tag=str(spec.target),
                buildargs=spec.build_args,
                labels=spec.labels,
                rm=True,
                pull=False,
            )

        except BuildError as exc:
            raise BuildFailure(
                f"cannot build {spec.target}:\n{build_log_tail(exc.build_log)}",
                app=spec.app,
                cause=exc,
            ) from exc

        except (DockerException, requests.exceptions.RequestException) as exc:
            raise BuildFailure(f"cannot build {spec.target}", app=spec.app, cause=exc) from exc

        for line in build_log_tail(build_log, lines=5).splitlines():
            log(line)

        return BuiltImage(reference=spec.target, image_id=image.id, tags=[spec.target])

    def tag(self, source: ImageReference, target: ImageReference):
        try:
            image = self.client.images.get(str(source))

        except ImageNotFound as exc:
            raise BuildFailure(f"image {source} does not exist", cause=exc) from exc

        except (DockerException, requests.exceptions.RequestException) as exc:
            raise api_failure(exc, f"cannot tag {source} as {target}") from exc

        try:
            image.tag(target.name, tag=target.tag)

        except (DockerException, requests.exceptions.RequestException) as exc:
            raise api_failure(exc, f"cannot tag {source} as {target}") from exc

    def inspect(self, ref: ImageReference) -> Optional[str]:
        try:
            return self.client.images.get(str(ref)).id

        except ImageNotFound:
            return None

        except (DockerException, requests.exceptions.RequestException) as exc:
            raise BuildFailure(f"cannot inspect {ref}", cause=exc) from exc

    def push(self, ref: ImageReference, credential: Credential) -> PushResult:
        try:
            lines = list(
                self.client.images.push(
                    ref.name,
                    tag=ref.tag,
                    auth_config=credential.auth_config(),
                    stream=True,
                    decode=True,
                )
            )

        except (DockerException, requests.exceptions.RequestException) as exc:
            raise api_failure(exc, f"cannot push {ref}") from exc

        message = push_error(lines)
        if message is not None:
            reason = classify_error(message)
            if reason is None:
                raise HoistError(f"cannot push {ref}: {message}")

            raise PublishFailure(reason, f"cannot push {ref}: {message}")

        return PushResult(reference=ref, digest=push_digest(lines))
