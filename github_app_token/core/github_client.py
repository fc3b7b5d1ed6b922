from __future__ import annotations

from typing import Any, Protocol

import requests

GITHUB_API_VERSION = "2022-11-28"
USER_AGENT = "github-app-token"


class Transport(Protocol):
    """The HTTP collaborator; ``requests.Session`` satisfies it."""

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response: ...


def default_headers() -> dict[str, str]:
    return {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": GITHUB_API_VERSION,
        "User-Agent": USER_AGENT,
    }


def create_session() -> requests.Session:
    """Return a session carrying the GitHub REST defaults."""
    session = requests.Session()
    session.headers.update(default_headers())
    return session


def bearer_headers(token: str) -> dict[str, str]:
    headers = default_headers()
    headers["Authorization"] = f"Bearer {token}"
    return headers
