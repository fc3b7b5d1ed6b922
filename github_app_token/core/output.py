from __future__ import annotations

import logging
import os
from pathlib import Path
from urllib.parse import quote, urlsplit, urlunsplit

from github_app_token.core.errors import OutputError


logger = logging.getLogger(__name__)


def write_file(path: str | Path, content: str, force: bool = False) -> None:
    """Write ``content`` to ``path``, refusing to replace an existing file unless ``force``."""
    target = Path(path)
    flags = os.O_WRONLY | os.O_CREAT | (os.O_TRUNC if force else os.O_EXCL)
    try:
        fd = os.open(target, flags, 0o600)
    except FileExistsError as exc:
        raise OutputError(f"Refusing to overwrite existing {target}") from exc
    except OSError as exc:
        raise OutputError(f"Failed to write {target}: {exc}") from exc
    try:
        # the mode passed to open only applies when the file is created
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
    except OSError as exc:
        raise OutputError(f"Failed to write {target}: {exc}") from exc
    logger.info("Wrote %s", target)


def append_env_file(path: str | Path, name: str, token: str) -> None:
    """Append ``NAME=token`` to a CI environment file such as $GITHUB_ENV."""
    if not name.isidentifier():
        raise OutputError(f"Invalid environment variable name: {name!r}")
    try:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(f"{name}={token}\n")
    except OSError as exc:
        raise OutputError(f"Failed to append to {path}: {exc}") from exc
    logger.info("Exported %s to %s", name, path)


def credentials_url(github_url: str, token: str) -> str:
    """Return ``github_url`` with ``x-access-token:<token>`` as its userinfo."""
    parts = urlsplit(github_url)
    if not parts.scheme or not parts.hostname:
        raise OutputError(f"Given GitHub URL is invalid: {github_url}")
    host = parts.hostname
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"x-access-token:{quote(token, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path.rstrip("/"), "", ""))


def ensure_writable(paths: list[Path], force: bool = False) -> None:
    """Fail before any output is produced if a target already exists."""
    if force:
        return
    for path in paths:
        if path.exists():
            raise OutputError(f"Refusing to overwrite existing {path}")


def git_config_paths(directory: str | Path) -> tuple[Path, Path]:
    """Return the .gitconfig and .git-credentials paths for ``directory`` (``~`` means $HOME)."""
    if str(directory) == "~":
        home = os.environ.get("HOME")
        if not home:
            raise OutputError("No path specified for Git config.")
        directory = home
    target = Path(directory).expanduser()
    return target / ".gitconfig", target / ".git-credentials"


def write_git_config(directory: str | Path, github_url: str, token: str, force: bool = False) -> None:
    """Write a .gitconfig using the credential store, and the matching .git-credentials."""
    gitconfig, git_credentials = git_config_paths(directory)
    credentials = credentials_url(github_url, token)
    ensure_writable([gitconfig, git_credentials], force=force)

    try:
        gitconfig.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputError(f"Failed to create {gitconfig.parent}: {exc}") from exc

    write_file(gitconfig, f'[credential "{github_url}"]\n    helper = store\n', force=force)
    write_file(git_credentials, f"{credentials}\n", force=force)
