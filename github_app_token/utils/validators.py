from __future__ import annotations

from typing import Any


def ensure_positive_int(value: Any, field_name: str) -> None:
    """Raise if the value is not a positive integer."""
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{field_name} must be a positive integer, got {value!r}")


def ensure_repo_full_name(repo: str) -> tuple[str, str]:
    """Split ``owner/name`` into its parts."""
    owner, _, name = repo.strip().partition("/")
    if not owner or not name or "/" in name:
        raise ValueError(f"Repository must be given as owner/name, got {repo!r}")
    return owner, name
