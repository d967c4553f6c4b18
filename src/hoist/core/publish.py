"""Publishing of local images to remote registries."""
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, TypeVar

from attrs import define

from hoist.core.build import BuiltImage
from hoist.core.context import Context
from hoist.core.credential import Credential, RegistrySession
from hoist.core.engine import Engine, PushResult
from hoist.core.errors import FailureReason, HoistError, PublishFailure
from hoist.core.image import ImageReference
from hoist.core.registry import Registry
from hoist.core.retry import RetryPolicy
from hoist.utils import error, log, success

ResultT = TypeVar("ResultT")


@define(frozen=True, kw_only=True)
class PublishOutcome:
    """Outcome of publishing an image to a single registry.

    Arguments:
        registry: name of the registry.
        references: the remote references pushed successfully.
        digest: the digest reported by the registry, if any.
        error: the failure that stopped the publishing, if any.
    """

    registry: str
    references: List[ImageReference]
    digest: Optional[str] = None
    error: Optional[HoistError] = None

    @property
    def ok(self) -> bool:
        """True if all the references were pushed."""
        return self.error is None


@define(frozen=True, kw_only=True)
class PublishReport:
    """Outcome of publishing an image to all the requested registries.

    Arguments:
        app: name of the application.
        outcomes: outcome of each registry, indexed by registry name.
    """

    app: str
    outcomes: Dict[str, PublishOutcome]

    @property
    def ok(self) -> bool:
        """True if the image was pushed to all the registries."""
        return all(outcome.ok for outcome in self.outcomes.values())

    def failures(self) -> List[HoistError]:
        """Returns the errors of the failed registries sorted by registry name."""
        return [
            self.outcomes[name].error  # type: ignore[misc]
            for name in sorted(self.outcomes)
            if not self.outcomes[name].ok
        ]

    def raise_for_failures(self):
        """Raises the first failure, if any."""
        failures = self.failures()
        if failures:
            raise failures[0]


def remote_reference(registry: Registry, ref: ImageReference) -> ImageReference:
    """Returns the reference of a local image in a remote registry."""
    return ref.with_registry(registry.host())


class Publisher:
    """Pushes local images to one or more registries.

    Each registry gets its own session, so credentials are acquired lazily,
    cached for the whole batch and never shared between registries. Pushes
    to different registries run concurrently.

    Arguments:
        engine: the container engine performing the pushes.
        retry_policy: how network failures are retried.
        overwrite: push even if a tag already exists remotely.
        cancel: when set, pushes stop at the next attempt.
    """

    def __init__(
        self,
        engine: Engine,
        retry_policy: Optional[RetryPolicy] = None,
        overwrite: bool = False,
        cancel: Optional[threading.Event] = None,
    ):
        self._engine = engine
        self._retry_policy = retry_policy or RetryPolicy()
        self._overwrite = overwrite
        self._cancel = cancel or threading.Event()

    def cancel(self):
        """Requests all the pending pushes to stop."""
        self._cancel.set()

    def push(self, session: RegistrySession, ref: ImageReference, app: str = "") -> PushResult:
        """Pushes a remote reference already tagged locally.

        An expired credential is refreshed exactly once per push, whether it
        is rejected by the tag lookup or by the push itself. Network failures
        are retried according to the retry policy.

        Raises:
            PublishFailure: if the push failed.
            PublishCancelled: if the publisher was cancelled.
        """
        registry = session.registry
        reauthenticated = False

        def _authenticated(func: Callable[[Credential], ResultT]) -> ResultT:
            nonlocal reauthenticated

            try:
                return func(session.credential())

            except PublishFailure as exc:
                if exc.reason is not FailureReason.AUTH_EXPIRED or reauthenticated:
                    raise

            reauthenticated = True
            log(f"credential expired, authenticating again registry={registry.name}")

            return func(session.refresh())

        def _attempt() -> PushResult:
            return _authenticated(lambda credential: self._engine.push(ref, credential))

        def _check_tag():
            if _authenticated(lambda credential: registry.tag_exists(ref, credential)):
                raise PublishFailure(
                    FailureReason.TAG_CONFLICT,
                    f"tag {ref.tag} already exists in {ref.name}",
                    app=app or None,
                    registry=registry.name,
                )

        if not self._overwrite:
            self._retry_policy.call(_check_tag, self._cancel, description=f"lookup {ref}")

        return self._retry_policy.call(_attempt, self._cancel, description=f"push {ref}")

    def publish_to(
        self,
        image: BuiltImage,
        registry: Registry,
        app: str = "",
    ) -> PublishOutcome:
        """Publishes all the tags of an image to a single registry.

        Failures are reported in the outcome rather than raised.
        """
        pushed: List[ImageReference] = []
        digest = None

        with RegistrySession(registry) as session:
            try:
                for local_ref in image.tags or [image.reference]:
                    ref = remote_reference(registry, local_ref)

                    self._engine.tag(local_ref, ref)
                    res = self.push(session, ref, app=app)

                    pushed.append(ref)
                    digest = res.digest or digest

                    success(f"pushed {ref} registry={registry.name} digest={res.digest}")

            except HoistError as exc:
                if exc.app is None:
                    exc.app = app or None

                if exc.registry is None:
                    exc.registry = registry.name

                error(f"failed to publish registry={registry.name}: {exc}")

                return PublishOutcome(
                    registry=registry.name, references=pushed, digest=digest, error=exc
                )

        return PublishOutcome(registry=registry.name, references=pushed, digest=digest)

    def publish(
        self, image: BuiltImage, registries: List[Registry], app: str = ""
    ) -> PublishReport:
        """Publishes an image to several registries concurrently.

        Arguments:
            image: the local image to publish.
            registries: the destination registries.
            app: name of the application, used to report failures.

        Returns:
            The outcome for every registry.
        """
        if not registries:
            return PublishReport(app=app, outcomes={})

        with ThreadPoolExecutor(
            max_workers=len(registries), thread_name_prefix="hoist-publish"
        ) as executor:
            futures = {
                registry.name: executor.submit(self.publish_to, image, registry, app)
                for registry in registries
            }

            try:
                outcomes = {name: future.result() for name, future in futures.items()}

            except KeyboardInterrupt:
                self.cancel()
                raise

        return PublishReport(app=app, outcomes=outcomes)


def publish_app(
    ctx: Context,
    app: str,
    image: BuiltImage,
    registries: Optional[List[str]] = None,
    overwrite: bool = False,
    cancel: Optional[threading.Event] = None,
) -> PublishReport:
    """Publishes the image of an application to its registries.

    Arguments:
        ctx: the context providing engine and registries.
        app: name of the application.
        image: the local image to publish.
        registries: names of the registries to use. Defaults to the ones
            configured for the application.
        overwrite: push even if a tag already exists remotely.
        cancel: when set, pushes stop at the next attempt.
    """
    names = registries or ctx.config.app(app).registries

    publisher = Publisher(
        ctx.engine,
        retry_policy=RetryPolicy.from_config(ctx.config.retry),
        overwrite=overwrite,
        cancel=cancel,
    )

    return publisher.publish(image, [ctx.registry(name) for name in names], app=app)


def verify_published(ctx: Context, registry_name: str, ref: ImageReference) -> bool:
    """Checks if a remote reference exists in a registry."""
    registry = ctx.registry(registry_name)

    with RegistrySession(registry) as session:
        return RetryPolicy.from_config(ctx.config.retry).call(
            lambda: registry.tag_exists(ref, session.credential()),
            description=f"lookup {ref}",
        )
