from __future__ import annotations

from datetime import datetime, timezone
import functools
import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click

from github_app_token.core.assertion import Assertion, AssertionBuilder
from github_app_token.core.config import (
    Settings,
    get_settings,
    load_app_id,
    load_installation_id,
    load_private_key,
)
from github_app_token.core.errors import GitHubAppTokenError
from github_app_token.core.github_client import create_session
from github_app_token.core.output import (
    append_env_file,
    credentials_url,
    ensure_writable,
    git_config_paths,
    write_file,
    write_git_config,
)
from github_app_token.core.token_exchange import TokenExchanger
from github_app_token.utils.parsers import parse_permissions
from github_app_token.utils.validators import ensure_repo_full_name


logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool, level: str, log_file: str | None) -> None:
    resolved = logging.DEBUG if verbose else logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.WARNING
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
        force=True,
    )


def _exit_on_error(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report pipeline failures on stderr and exit with the error's code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except GitHubAppTokenError as exc:
            logger.debug("Command failed", exc_info=True)
            click.echo(f"Error: {exc}", err=True)
            sys.exit(exc.exit_code)

    return wrapper


def _identity_options(func: Callable[..., Any]) -> Callable[..., Any]:
    options = [
        click.option("-a", "--app-id", help="The GitHub App ID [env: GITHUB_APP_ID]"),
        click.option(
            "-A", "--app-id-file", help="File containing the GitHub App ID [default: app-id]"
        ),
        click.option(
            "-k", "--private-key", help="The GitHub App private key, in PEM format"
        ),
        click.option(
            "-K",
            "--private-key-file",
            help="File containing the GitHub App private key [default: private-key.pem]",
        ),
        click.option("--log-file", type=click.Path(dir_okay=False), help="Also log to this file"),
        click.option("-v", "--verbose", is_flag=True, help="Verbose output"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


_FILE_OPTIONS = {
    "github_app_id_file": "github_app_id",
    "github_app_private_key_file": "github_app_private_key",
    "github_app_installation_id_file": "github_app_installation_id",
}


def _load_settings(**overrides: Any) -> Settings:
    settings = get_settings()
    for name, value in overrides.items():
        if value is None:
            continue
        setattr(settings, name, value)
        literal = _FILE_OPTIONS.get(name)
        # a file given on the command line beats a literal from the environment
        if literal and overrides.get(literal) is None:
            setattr(settings, literal, None)
    return settings


def _build_assertion(settings: Settings) -> Assertion:
    app_id = load_app_id(settings)
    private_key = load_private_key(settings)
    builder = AssertionBuilder(
        skew_margin=settings.jwt_skew_margin,
        validity_window=settings.jwt_validity_window,
    )
    return builder.build(app_id, private_key, datetime.now(timezone.utc))


def _create_exchanger(settings: Settings) -> TokenExchanger:
    return TokenExchanger(
        api_url=settings.github_api_url,
        max_attempts=settings.max_attempts,
        backoff_base=settings.backoff_base,
        backoff_max=settings.backoff_max,
        request_timeout=settings.request_timeout,
        total_deadline=settings.total_deadline,
    )


def _repo_callback(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    try:
        owner, name = ensure_repo_full_name(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    return f"{owner}/{name}"


def _permissions_callback(ctx: click.Context, param: click.Parameter, value: tuple[str, ...]) -> dict[str, str]:
    try:
        return parse_permissions(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


@click.group()
def cli() -> None:
    """Generate access tokens for a GitHub App installation."""


@cli.command()
@_identity_options
@click.option("--github-api-url", help="The GitHub API URL")
@click.option("-i", "--installation-id", help="The GitHub App installation ID")
@click.option(
    "-I",
    "--installation-id-file",
    help="File containing the installation ID [default: installation-id]",
)
@click.option("-r", "--repo", callback=_repo_callback, help="Look up the installation for this repository (owner/name)")
@click.option("--github-url", help="The GitHub URL (used for Git credential files)")
@click.option(
    "--permission",
    "permissions",
    multiple=True,
    callback=_permissions_callback,
    help="Request a restricted permission, e.g. contents=read (repeatable)",
)
@click.option(
    "--repository",
    "repositories",
    multiple=True,
    help="Restrict the token to this repository name (repeatable)",
)
@click.option(
    "-p",
    "--print",
    "print_style",
    type=click.Choice(["token", "response"]),
    is_flag=False,
    flag_value="token",
    help="Print the token, or the entire JSON response",
)
@click.option("-w", "--write-to", type=click.Path(dir_okay=False), help="Write the token to the given file")
@click.option(
    "-c",
    "--git-config",
    is_flag=False,
    flag_value="~",
    help="Write a .gitconfig and .git-credentials file to the given directory [default: ~]",
)
@click.option("-e", "--env-file", help="Append NAME=<token> to this file, e.g. $GITHUB_ENV")
@click.option("--env-name", default="GITHUB_TOKEN", show_default=True, help="Variable name for --env-file")
@click.option("-f", "--force", is_flag=True, help="Overwrite existing files")
@_exit_on_error
def token(
    app_id: str | None,
    app_id_file: str | None,
    private_key: str | None,
    private_key_file: str | None,
    github_api_url: str | None,
    log_file: str | None,
    verbose: bool,
    installation_id: str | None,
    installation_id_file: str | None,
    repo: str | None,
    github_url: str | None,
    permissions: dict[str, str],
    repositories: tuple[str, ...],
    print_style: str | None,
    write_to: str | None,
    git_config: str | None,
    env_file: str | None,
    env_name: str,
    force: bool,
) -> None:
    """Create an installation access token."""
    settings = _load_settings(
        github_app_id=app_id,
        github_app_id_file=app_id_file,
        github_app_private_key=private_key,
        github_app_private_key_file=private_key_file,
        github_app_installation_id=installation_id,
        github_app_installation_id_file=installation_id_file,
        github_api_url=github_api_url,
        github_url=github_url,
    )
    _configure_logging(verbose, settings.log_level, log_file)

    if write_to:
        ensure_writable([Path(write_to)], force=force)
    if git_config:
        ensure_writable(list(git_config_paths(git_config)), force=force)
        credentials_url(settings.github_url, "")
    if not (write_to or git_config or env_file):
        print_style = print_style or "token"

    resolved_installation = None if repo else load_installation_id(settings)
    assertion = _build_assertion(settings)
    exchanger = _create_exchanger(settings)

    with create_session() as session:
        if resolved_installation is None:
            resolved_installation = exchanger.find_installation_id(assertion, repo, session)
        result = exchanger.exchange(
            assertion,
            resolved_installation,
            session,
            permissions=permissions,
            repositories=repositories,
        )

    if write_to:
        write_file(write_to, result.token, force=force)
    if git_config:
        write_git_config(git_config, settings.github_url, result.token, force=force)
    if env_file:
        append_env_file(env_file, env_name, result.token)
    if print_style == "token":
        click.echo(result.token)
    elif print_style == "response":
        click.echo(result.model_dump_json(indent=2))


@cli.command()
@_identity_options
@_exit_on_error
def jwt(
    app_id: str | None,
    app_id_file: str | None,
    private_key: str | None,
    private_key_file: str | None,
    log_file: str | None,
    verbose: bool,
) -> None:
    """Print a signed App JWT, for calling the App endpoints directly."""
    settings = _load_settings(
        github_app_id=app_id,
        github_app_id_file=app_id_file,
        github_app_private_key=private_key,
        github_app_private_key_file=private_key_file,
    )
    _configure_logging(verbose, settings.log_level, log_file)
    click.echo(_build_assertion(settings).token)


@cli.command()
@_identity_options
@click.option("--github-api-url", help="The GitHub API URL")
@click.option("-r", "--repo", callback=_repo_callback, required=True, help="Repository (owner/name)")
@_exit_on_error
def installation(
    app_id: str | None,
    app_id_file: str | None,
    private_key: str | None,
    private_key_file: str | None,
    github_api_url: str | None,
    log_file: str | None,
    verbose: bool,
    repo: str,
) -> None:
    """Print the installation ID of this App on a repository."""
    settings = _load_settings(
        github_app_id=app_id,
        github_app_id_file=app_id_file,
        github_app_private_key=private_key,
        github_app_private_key_file=private_key_file,
        github_api_url=github_api_url,
    )
    _configure_logging(verbose, settings.log_level, log_file)
    assertion = _build_assertion(settings)
    with create_session() as session:
        click.echo(_create_exchanger(settings).find_installation_id(assertion, repo, session))


@cli.command()
@_exit_on_error
def config() -> None:
    """Print the current configuration summary."""
    settings = get_settings()
    click.echo(f"GitHub URL: {settings.github_url}")
    click.echo(f"GitHub API URL: {settings.github_api_url}")
    click.echo(f"App ID: {settings.github_app_id or 'from ' + settings.github_app_id_file}")
    click.echo(
        "Private key: "
        + ("set" if settings.github_app_private_key else f"from {settings.github_app_private_key_file}")
    )
    click.echo(
        "Installation ID: "
        + (settings.github_app_installation_id or f"from {settings.github_app_installation_id_file}")
    )
    click.echo(f"JWT window: {settings.jwt_validity_window}s (skew {settings.jwt_skew_margin}s)")
    click.echo(
        f"Retries: {settings.max_attempts} attempts, {settings.request_timeout}s per attempt, "
        f"{settings.total_deadline}s total"
    )


if __name__ == "__main__":
    cli()
