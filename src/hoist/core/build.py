"""Build orchestration: turns an application configuration into a local image."""
import os
from pathlib import Path
from typing import Dict, List, Optional

from attrs import define, field

from hoist.core.context import Context
from hoist.core.errors import BuildFailure
from hoist.core.image import ImageReference
from hoist.utils import print_waiting, success

REVISION_LABEL = "org.opencontainers.image.revision"
SOURCE_DATE_EPOCH = "SOURCE_DATE_EPOCH"


def _sorted_mapping(value: Dict[str, str]) -> Dict[str, str]:
    return {key: str(value[key]) for key in sorted(value)}


@define(frozen=True, kw_only=True)
class BuildSpec:
    """Everything needed to build an image.

    Build arguments and labels are kept sorted so identical specs always
    produce identical engine invocations.

    Arguments:
        app: name of the application being built.
        source_path: the build context directory.
        dockerfile: path to the Dockerfile, relative to the build context.
        target: the local image reference to create.
        build_args: build arguments passed to the engine.
        labels: labels attached to the image.
        extra_tags: additional local references pointing to the same image.
    """

    app: str
    source_path: str
    target: ImageReference
    dockerfile: str = "Dockerfile"
    build_args: Dict[str, str] = field(factory=dict, converter=_sorted_mapping)
    labels: Dict[str, str] = field(factory=dict, converter=_sorted_mapping)
    extra_tags: List[ImageReference] = field(factory=list)

    @property
    def dockerfile_path(self) -> Path:
        """The Dockerfile's full path."""
        return Path(self.source_path).joinpath(self.dockerfile)


@define(frozen=True, kw_only=True)
class BuiltImage:
    """An image available locally.

    Arguments:
        reference: the local image reference.
        image_id: the engine's identifier of the image content.
        tags: all the local references pointing to the image.
    """

    reference: ImageReference
    image_id: str
    tags: List[ImageReference] = field(factory=list)


def image_tags(ctx: Context, app: str) -> List[str]:
    """Returns the tags to use for an application's image.

    The fixed tags from the configuration are used if present. Otherwise the
    image is tagged with the current revision.
    """
    app_config = ctx.config.app(app)

    if app_config.tags:
        return list(app_config.tags)

    return [f"{app_config.tag_prefix}{ctx.revision}"]


def build_spec_for(ctx: Context, app: str) -> BuildSpec:
    """Creates the build spec of an application from the configuration.

    Arguments:
        ctx: the context containing the configuration.
        app: name of the application.

    Raises:
        ConfigError: if the application is not configured.
        BuildFailure: if the configured repository or tags are invalid.
    """
    app_config = ctx.config.app(app)

    try:
        refs = [
            ImageReference(repository=app_config.repository, tag=tag)
            for tag in image_tags(ctx, app)
        ]

    except ValueError as exc:
        raise BuildFailure("invalid image reference", app=app, cause=exc) from exc

    build_args = dict(app_config.build_args)
    if ctx.commit_time is not None:
        build_args.setdefault(SOURCE_DATE_EPOCH, str(ctx.commit_time))

    labels = dict(app_config.labels)
    labels.setdefault(REVISION_LABEL, ctx.revision)

    return BuildSpec(
        app=app,
        source_path=os.path.normpath(
            os.path.join(ctx.config.project.repo_path, app_config.path)
        ),
        dockerfile=app_config.dockerfile,
        target=refs[0],
        extra_tags=refs[1:],
        build_args=build_args,
        labels=labels,
    )


def check_build_context(spec: BuildSpec):
    """Checks that the build context contains everything needed by the engine.

    Raises:
        BuildFailure: if the build context or the Dockerfile are missing.
    """
    if not os.path.isdir(spec.source_path):
        raise BuildFailure(f"build context {spec.source_path} does not exist", app=spec.app)

    if not spec.dockerfile_path.is_file():
        raise BuildFailure(f"missing Dockerfile {spec.dockerfile_path}", app=spec.app)


def build_image(ctx: Context, spec: BuildSpec) -> BuiltImage:
    """Builds the image described by a build spec.

    Arguments:
        ctx: the context providing the engine.
        spec: the image to build.

    Returns:
        The image available locally, tagged with the target and extra tags of the build.

    Raises:
        BuildFailure: if the image cannot be built.
    """
    check_build_context(spec)

    with print_waiting(f"building {spec.target}"):
        built = ctx.engine.build(spec)

        for ref in spec.extra_tags:
            ctx.engine.tag(spec.target, ref)

    success(f"built image app={spec.app} ref={spec.target} id={built.image_id}")

    return BuiltImage(
        reference=built.reference,
        image_id=built.image_id,
        tags=[built.reference, *spec.extra_tags],
    )


def build_app(ctx: Context, app: str) -> BuiltImage:
    """Builds the image of an application."""
    return build_image(ctx, build_spec_for(ctx, app))


def local_image(ctx: Context, app: str) -> Optional[BuiltImage]:
    """Looks up the local image of an application for the current tags.

    Returns:
        The local image. None if the application was not built yet.
    """
    spec = build_spec_for(ctx, app)

    image_id = ctx.engine.inspect(spec.target)
    if image_id is None:
        return None

    return BuiltImage(
        reference=spec.target,
        image_id=image_id,
        tags=[spec.target, *spec.extra_tags],
    )
