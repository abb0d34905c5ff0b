# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for dockform.
"""
import functools
import logging
import os

import click

from ..errors import DockformError
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MODELS.orchestration_config import ManifestDocument
from ..PARSERS.compose_parser import ComposeParser, Interpolation
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..VALIDATORS.requirements import RequirementsValidator

logger = logging.getLogger(__name__)


def report_errors(command):
    """Turns library errors into click errors ("Error: ..." and exit status 1)."""
    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except DockformError as e:
            raise click.ClickException(str(e)) from e
    return wrapper


def _read_text(path: str) -> str:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except OSError as e:
        raise click.ClickException(f"Cannot read {path}: {e.strerror}") from e


def load_manifest(ctx) -> ManifestDocument:
    """
    Loads the manifest named by the group options, with variables layered
    from the process environment, the shared env directory and each
    service's own env files.
    """
    compose_file = ctx.obj['file']
    if not os.path.exists(compose_file):
        raise click.ClickException(f"{compose_file} not found.")

    system_env = {} if ctx.obj['no_system_env'] else dict(os.environ)
    shared_contents = []
    env_dir = ctx.obj['env_dir']
    if env_dir:
        for entry in sorted(os.listdir(env_dir)):
            path = os.path.join(env_dir, entry)
            if os.path.isfile(path):
                logger.debug("Loading shared env file %s", path)
                shared_contents.append(_read_text(path))

    base_vars = EnvironmentManager().get_merged_environment(system_env, shared_contents)

    # env_file paths are relative to the manifest's directory
    base_dir = os.path.dirname(os.path.abspath(compose_file))
    parser = ComposeParser(
        variables=base_vars,
        interpolate=Interpolation.SERVICE,
        env_file_reader=lambda path: _read_text(os.path.join(base_dir, path)),
    )
    return parser.parse_file(compose_file)


@click.group()
@click.option('--file', '-f', default='docker-compose.yml', help='Compose file path')
@click.option('--env-dir', type=click.Path(exists=True, file_okay=False),
              help='Directory of shared env files, applied in name order')
@click.option('--no-system-env', is_flag=True, help='Do not use the process environment')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, file, env_dir, no_system_env, verbose):
    """
    dockform - build script and service manifest toolkit.

    Parses, resolves and validates Dockerfile-style build scripts and
    Compose-style manifests.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    ctx.obj['env_dir'] = env_dir
    ctx.obj['no_system_env'] = no_system_env


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--render', is_flag=True, help='Print the canonical build script instead of a summary')
@report_errors
def dockerfile(path, render):
    """Parse a build script."""
    document = DockerfileParser().parse_file(path)
    if render:
        click.echo(document.render(), nl=False)
        return

    click.echo(f"Base image: {document.base_image or '(none)'}")
    click.echo(f"Instructions: {len(document.instructions)}")
    for index, instruction in enumerate(document.instructions, start=1):
        click.echo(f"{index:3}. {instruction.render()}")


@cli.command()
@click.pass_context
@report_errors
def config(ctx):
    """Print the resolved manifest."""
    document = load_manifest(ctx)
    DependencyResolver().resolve_order(document)
    click.echo(document.to_yaml(), nl=False)


@cli.command()
@click.option('--shutdown', is_flag=True, help='Print the shutdown order instead')
@click.pass_context
@report_errors
def order(ctx, shutdown):
    """Print the order services start (or stop) in."""
    document = load_manifest(ctx)
    resolver = DependencyResolver()
    names = resolver.resolve_shutdown_order(document) if shutdown else resolver.resolve_order(document)
    for name in names:
        click.echo(name)


@cli.command()
@click.option('--require-env', multiple=True, help='Variable every service must define')
@click.option('--require-volume', multiple=True, help='Volume every service must mount')
@click.pass_context
@report_errors
def validate(ctx, require_env, require_volume):
    """Check the manifest against requirements."""
    document = load_manifest(ctx)
    DependencyResolver().resolve_order(document)
    RequirementsValidator.validate_required_env_vars(document, require_env)
    RequirementsValidator.validate_required_volumes(document, require_volume)
    click.echo(f"Manifest is valid: {len(document.services)} service(s).")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
