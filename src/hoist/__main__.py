"""Main entrypoint for the `hoist` command."""
import functools
import os
import sys
import threading
from typing import Optional, Tuple

import click
from rich.table import Table

from hoist.core.build import build_app, build_spec_for, local_image
from hoist.core.config import load_config
from hoist.core.context import Context, load_context
from hoist.core.errors import BuildFailure, ConfigError, HoistError, PublishCancelled
from hoist.core.git import get_commit_time, get_current_commit
from hoist.core.lifecycle import PolicyManager, parse_policy
from hoist.core.publish import publish_app, remote_reference, verify_published
from hoist.utils import CONSOLE, error, log, print_exception, print_info, print_waiting, success


def handle_errors(func):
    """Converts hoist errors into an exit code matching their category."""

    @functools.wraps(func)
    def _wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)

        except HoistError as exc:
            if os.environ.get("HOIST_DEBUG"):
                print_exception(str(exc))
            else:
                error(str(exc))

            sys.exit(exc.exit_code)

    return _wrapper


@click.group()
@click.option("-c", "--config", "config_path", default="./hoist.toml")
@click.option("-r", "--revision", default=None)
@click.option("--cwd", default=None)
@click.pass_context
@handle_errors
def cli(ctx: click.Context, config_path: str, revision: Optional[str], cwd: Optional[str]):
    """Entrypoint for the hoist command."""
    if cwd is not None:
        os.chdir(cwd)

    config = load_config(path=config_path)

    commit_time = None
    if revision is None:
        revision = get_current_commit(path=config.project.repo_path)
        commit_time = get_commit_time(path=config.project.repo_path, revision=revision)

    ctx.obj = load_context(config=config, revision=revision, commit_time=commit_time)


@cli.command()
@click.argument("app")
@click.pass_obj
@handle_errors
def build(ctx: Context, app: str):
    """Build the image of an application."""
    log(f"building app={app} revision={ctx.revision}")

    image = build_app(ctx, app)

    for ref in image.tags:
        print_info(str(ref))


@cli.command()
@click.argument("app")
@click.option("--registry", "registries", multiple=True)
@click.option("--overwrite", is_flag=True, default=False)
@click.option("--verify", is_flag=True, default=False)
@click.option("--build/--no-build", "build_missing", default=True)
@click.pass_obj
@handle_errors
def publish(
    ctx: Context,
    app: str,
    registries: Tuple[str, ...],
    overwrite: bool,
    verify: bool,
    build_missing: bool,
):
    """Push the image of an application to its registries."""
    image = local_image(ctx, app)

    if image is None:
        if not build_missing:
            raise BuildFailure(f"image {build_spec_for(ctx, app).target} was not built", app=app)

        image = build_app(ctx, app)

    cancel = threading.Event()

    try:
        with print_waiting(f"publishing {image.reference}"):
            report = publish_app(
                ctx,
                app,
                image,
                registries=list(registries),
                overwrite=overwrite,
                cancel=cancel,
            )

    except KeyboardInterrupt as exc:
        cancel.set()
        raise PublishCancelled("publishing cancelled", app=app) from exc

    table = Table(title="Publish")
    table.add_column("Registry", justify="left")
    table.add_column("Reference")
    table.add_column("Digest")
    table.add_column("Error")

    for name, outcome in sorted(report.outcomes.items()):
        table.add_row(
            name,
            "\n".join(str(ref) for ref in outcome.references),
            outcome.digest or "",
            "" if outcome.error is None else f"[red]{outcome.error}",
        )

    CONSOLE.print(table)

    report.raise_for_failures()

    if verify:
        for name, outcome in sorted(report.outcomes.items()):
            for ref in outcome.references:
                if not verify_published(ctx, name, ref):
                    raise HoistError(f"tag {ref} not found after push", app=app, registry=name)

                success(f"verified {ref} registry={name}")


@cli.command()
@click.option("-e", "--exist", is_flag=True, default=False)
@click.pass_obj
@handle_errors
def apps(ctx: Context, exist: bool):
    """Shows all the applications and their remote tags."""
    table = Table(title="Apps")
    table.add_column("App", justify="left", no_wrap=True)
    table.add_column("Registry")
    table.add_column("Reference")

    if exist:
        table.add_column("Exists", justify="right")

    for app, app_config in sorted(ctx.config.apps.items()):
        spec = build_spec_for(ctx, app)

        for name in app_config.registries:
            ref = remote_reference(ctx.registry(name), spec.target)
            row = [app, name, str(ref)]

            if exist:
                with print_waiting(f"checking if {ref} exists"):
                    row.append("[green] yes" if verify_published(ctx, name, ref) else "no")

            table.add_row(*row)

    CONSOLE.print(table)


def _policy_manager(ctx: Context, registry: Optional[str]) -> PolicyManager:
    if registry is None:
        if len(ctx.registries) != 1:
            raise ConfigError("--registry is required when more than one registry is configured")

        registry = next(iter(ctx.registries))

    return PolicyManager(ctx.registry(registry).lifecycle_store())


@cli.group()
def lifecycle():
    """Manage the lifecycle policies of remote repositories."""


@lifecycle.command("apply")
@click.argument("repository")
@click.argument("policy_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--registry", default=None)
@click.pass_obj
@handle_errors
def lifecycle_apply(ctx: Context, repository: str, policy_file: str, registry: Optional[str]):
    """Replace the lifecycle policy of a repository."""
    with open(policy_file, encoding="utf-8") as fp:
        policy = parse_policy(fp.read())

    manager = _policy_manager(ctx, registry)

    with print_waiting(f"applying lifecycle policy to {repository}"):
        res = manager.apply(repository, policy)

    if res.changed:
        success(
            f"lifecycle policy applied repository={repository} "
            f"previous={res.previous_state.value}"
        )
    else:
        print_info(f"lifecycle policy of {repository} is already up to date")


@lifecycle.command("verify")
@click.argument("repository")
@click.option("--registry", default=None)
@click.pass_obj
@handle_errors
def lifecycle_verify(ctx: Context, repository: str, registry: Optional[str]):
    """Show the active lifecycle policy of a repository."""
    policy = _policy_manager(ctx, registry).verify(repository)

    if policy is None:
        print_info(f"repository {repository} has no lifecycle policy")
        return

    print_info(policy.to_json())


@lifecycle.command("evaluate")
@click.argument("repository")
@click.option("--registry", default=None)
@click.pass_obj
@handle_errors
def lifecycle_evaluate(ctx: Context, repository: str, registry: Optional[str]):
    """List the images the active lifecycle policy would expire."""
    with print_waiting(f"evaluating lifecycle policy of {repository}"):
        images = _policy_manager(ctx, registry).evaluate(repository)

    table = Table(title="Expiration candidates")
    table.add_column("Digest", justify="left", no_wrap=True)
    table.add_column("Tags")
    table.add_column("Pushed at", justify="right")

    for image in images:
        table.add_row(image.digest, ", ".join(image.tags), image.pushed_at.isoformat())

    CONSOLE.print(table)


if __name__ == "__main__":
    cli()  # pylint: disable=no-value-for-parameter
