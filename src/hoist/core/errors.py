"""Errors raised by hoist.

Every error carries an exit code used by the command line to report the
failure category, plus enough context (application, registry and underlying
cause) to retry the operation manually.
"""
import enum
from typing import Optional


class HoistError(Exception):
    """Base class for all the errors raised by hoist.

    Arguments:
        message: human readable description of the failure.
        app: name of the application being processed, if any.
        registry: name of the registry involved, if any.
        cause: the underlying error, if any.
    """

    exit_code = 1

    def __init__(
        self,
        message: str,
        app: Optional[str] = None,
        registry: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)

        self.message = message
        self.app = app
        self.registry = registry
        self.cause = cause

    def __str__(self):
        context = []

        if self.app is not None:
            context.append(f"app={self.app}")

        if self.registry is not None:
            context.append(f"registry={self.registry}")

        if self.cause is not None:
            context.append(f"cause={self.cause}")

        if not context:
            return self.message

        return f"{self.message} ({', '.join(context)})"


class ConfigError(HoistError):
    """Raised when the configuration is invalid or refers to unknown items."""

    exit_code = 2


class BuildFailure(HoistError):
    """Raised when an image cannot be built.

    It is never retried: the build inputs have to change before trying again.
    """

    exit_code = 10


@enum.unique
class FailureReason(enum.Enum):
    """Categories of publishing failures.

    Attributes:

    * `AUTH_EXPIRED`: the credential was rejected by the registry.
    * `NETWORK_ERROR`: the registry could not be reached.
    * `QUOTA_EXCEEDED`: the registry refused the push because of rate limits or quotas.
    * `TAG_CONFLICT`: the tag already exists and cannot be overwritten.
    """

    AUTH_EXPIRED = "AUTH_EXPIRED"
    NETWORK_ERROR = "NETWORK_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TAG_CONFLICT = "TAG_CONFLICT"


_PUBLISH_EXIT_CODES = {
    FailureReason.AUTH_EXPIRED: 20,
    FailureReason.NETWORK_ERROR: 21,
    FailureReason.QUOTA_EXCEEDED: 22,
    FailureReason.TAG_CONFLICT: 23,
}


class PublishFailure(HoistError):
    """Raised when an image cannot be pushed to a registry.

    Arguments:
        reason: the failure category.
    """

    def __init__(self, reason: FailureReason, message: str, **kwargs):
        super().__init__(message, **kwargs)

        self.reason = reason

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return _PUBLISH_EXIT_CODES[self.reason]

    def __str__(self):
        return f"[{self.reason.value}] {super().__str__()}"


class PublishCancelled(HoistError):
    """Raised when a push is aborted before completion."""

    exit_code = 130


class PolicyRejected(HoistError):
    """Raised when a lifecycle policy document is malformed.

    Arguments:
        priority: the priority of the offending rule, if it could be determined.
    """

    exit_code = 30

    def __init__(self, message: str, priority: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)

        self.priority = priority

    def __str__(self):
        if self.priority is None:
            return super().__str__()

        return f"rule {self.priority}: {super().__str__()}"


class LifecycleUnsupported(HoistError):
    """Raised when a registry does not support lifecycle policies."""

    exit_code = 31
