"""AWS ECR registry and lifecycle policy store."""
import base64
from typing import List, Optional

import boto3
from attrs import define
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from hoist.core.credential import Credential
from hoist.core.errors import (
    ConfigError,
    FailureReason,
    HoistError,
    PolicyRejected,
    PublishFailure,
)
from hoist.core.image import ImageReference
from hoist.core.lifecycle import LifecycleStore, StoredImage
from hoist.core.registry import Registry

_AUTH_CODES = {
    "ExpiredTokenException",
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "AccessDeniedException",
}
_QUOTA_CODES = {
    "ThrottlingException",
    "LimitExceededException",
    "TooManyRequestsException",
}
_CONFLICT_CODES = {"ImageTagAlreadyExistsException", "ImageAlreadyExistsException"}


def error_code(exc: ClientError) -> str:
    """Returns the AWS error code of a client error."""
    return exc.response.get("Error", {}).get("Code", "")


def aws_failure(exc: Exception, message: str, registry: str) -> HoistError:
    """Converts an error raised by boto3 into a hoist error."""
    if isinstance(exc, NoCredentialsError):
        reason = FailureReason.AUTH_EXPIRED

    elif isinstance(exc, ClientError):
        code = error_code(exc)

        if code in _AUTH_CODES:
            reason = FailureReason.AUTH_EXPIRED

        elif code in _QUOTA_CODES:
            reason = FailureReason.QUOTA_EXCEEDED

        elif code in _CONFLICT_CODES:
            reason = FailureReason.TAG_CONFLICT

        elif code == "RepositoryNotFoundException":
            return ConfigError(message, registry=registry, cause=exc)

        else:
            return HoistError(message, registry=registry, cause=exc)

    else:
        reason = FailureReason.NETWORK_ERROR

    return PublishFailure(reason, message, registry=registry, cause=exc)


@define(frozen=True, kw_only=True)
class EcrRegistry(Registry):
    """A private AWS ECR registry.

    Every instance creates its own boto3 clients, so different registries
    never share connections.

    Arguments:
        account_id: the AWS account owning the registry.
        region: the AWS region of the registry.
        profile: the AWS profile to use. Defaults to the environment's credentials.
    """

    account_id: str
    region: str
    profile: Optional[str] = None

    @classmethod
    def spec_name(cls) -> str:
        return "aws_ecr"

    def host(self) -> str:
        return f"{self.account_id}.dkr.ecr.{self.region}.amazonaws.com"

    def client(self):
        """Creates a new ECR client for this registry."""
        session = boto3.session.Session(profile_name=self.profile, region_name=self.region)

        return session.client("ecr")

    def authenticate(self) -> Credential:
        try:
            res = self.client().get_authorization_token(registryIds=[self.account_id])

        except (BotoCoreError, ClientError) as exc:
            raise aws_failure(exc, "cannot get an authorization token", self.name) from exc

        data = res["authorizationData"][0]
        username, _, password = (
            base64.b64decode(data["authorizationToken"]).decode("utf-8").partition(":")
        )

        return Credential(
            registry=self.name,
            username=username,
            secret=password,
            expires_at=data.get("expiresAt"),
        )

    def tag_exists(self, ref: ImageReference, credential: Credential) -> bool:
        try:
            self.client().describe_images(
                registryId=self.account_id,
                repositoryName=ref.repository,
                imageIds=[{"imageTag": ref.tag}],
            )

        except ClientError as exc:
            if error_code(exc) in {"ImageNotFoundException", "RepositoryNotFoundException"}:
                return False

            raise aws_failure(exc, f"cannot look up {ref}", self.name) from exc

        except BotoCoreError as exc:
            raise aws_failure(exc, f"cannot look up {ref}", self.name) from exc

        return True

    def lifecycle_store(self) -> "EcrLifecycleStore":
        return EcrLifecycleStore(registry=self)


class EcrLifecycleStore(LifecycleStore):
    """Reads and writes the lifecycle policies of ECR repositories.

    Arguments:
        registry: the registry holding the repositories.
    """

    def __init__(self, registry: EcrRegistry):
        self._registry = registry
        self._client = registry.client()

    def get_policy(self, repository: str) -> Optional[str]:
        try:
            res = self._client.get_lifecycle_policy(
                registryId=self._registry.account_id,
                repositoryName=repository,
            )

        except ClientError as exc:
            if error_code(exc) == "LifecyclePolicyNotFoundException":
                return None

            raise aws_failure(
                exc, f"cannot get lifecycle policy of {repository}", self._registry.name
            ) from exc

        except BotoCoreError as exc:
            raise aws_failure(
                exc, f"cannot get lifecycle policy of {repository}", self._registry.name
            ) from exc

        return res["lifecyclePolicyText"]

    def put_policy(self, repository: str, text: str):
        try:
            self._client.put_lifecycle_policy(
                registryId=self._registry.account_id,
                repositoryName=repository,
                lifecyclePolicyText=text,
            )

        except ClientError as exc:
            if error_code(exc) == "InvalidParameterException":
                raise PolicyRejected(
                    "policy rejected by the registry", registry=self._registry.name, cause=exc
                ) from exc

            raise aws_failure(
                exc, f"cannot put lifecycle policy of {repository}", self._registry.name
            ) from exc

        except BotoCoreError as exc:
            raise aws_failure(
                exc, f"cannot put lifecycle policy of {repository}", self._registry.name
            ) from exc

    def list_images(self, repository: str) -> List[StoredImage]:
        paginator = self._client.get_paginator("describe_images")
        images = []

        try:
            for page in paginator.paginate(
                registryId=self._registry.account_id,
                repositoryName=repository,
            ):
                for detail in page["imageDetails"]:
                    images.append(
                        StoredImage(
                            digest=detail["imageDigest"],
                            pushed_at=detail["imagePushedAt"],
                            tags=detail.get("imageTags", []),
                        )
                    )

        except (BotoCoreError, ClientError) as exc:
            raise aws_failure(
                exc, f"cannot list images of {repository}", self._registry.name
            ) from exc

        return images
