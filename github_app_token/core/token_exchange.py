"""Exchange an App assertion for an installation access token.

Only failures that cannot have produced a token are retried: connection
errors, timeouts and 5xx answers. Attempts run one after another and reuse
the same assertion. A 4xx answer means the credentials or the request are
wrong, so it is raised straight away.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import random
import time
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError
import requests

from github_app_token.core.assertion import Assertion
from github_app_token.core.errors import (
    AssertionExpiredError,
    AttemptOutcome,
    AuthorizationError,
    ExhaustedRetriesError,
    FailureKind,
    GitHubAppTokenError,
    ProtocolError,
    RemoteServiceError,
    TransientNetworkError,
)
from github_app_token.core.github_client import Transport, bearer_headers
from github_app_token.utils.validators import ensure_positive_int, ensure_repo_full_name


logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"


class InstallationToken(BaseModel):
    """An installation access token as returned by GitHub.

    Fields GitHub adds beyond the ones declared here are kept as extras.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    token: str = Field(min_length=1)
    expires_at: datetime
    permissions: dict[str, str] = Field(default_factory=dict)
    repository_selection: str | None = None

    def __repr__(self) -> str:
        return (
            f"InstallationToken(expires_at={self.expires_at.isoformat()}, "
            f"permissions={self.permissions})"
        )

    __str__ = __repr__


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenExchanger:
    """Talks to the GitHub App endpoints with an assertion as the bearer credential."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        max_attempts: int = 4,
        backoff_base: float = 1.0,
        backoff_max: float = 8.0,
        request_timeout: float = 10.0,
        total_deadline: float = 60.0,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if request_timeout <= 0 or total_deadline <= 0:
            raise ValueError("request_timeout and total_deadline must be positive")
        self._api_url = api_url.rstrip("/")
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._request_timeout = request_timeout
        self._total_deadline = total_deadline
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self._jitter = jitter

    def exchange(
        self,
        assertion: Assertion,
        installation_id: int,
        transport: Transport,
        permissions: Mapping[str, str] | None = None,
        repositories: Iterable[str] | None = None,
    ) -> InstallationToken:
        """Create one installation token, optionally narrowed to some permissions/repositories."""
        ensure_positive_int(installation_id, "installation_id")
        url = f"{self._api_url}/app/installations/{installation_id}/access_tokens"

        body: dict[str, Any] = {}
        if permissions:
            body["permissions"] = dict(permissions)
        if repositories:
            body["repositories"] = list(repositories)

        response = self._send(assertion, transport, "POST", url, body or None)
        token = self._parse_token(response)
        logger.info(
            "Issued token for installation %s, expires %s",
            installation_id,
            token.expires_at.isoformat(),
        )
        return token

    def find_installation_id(self, assertion: Assertion, repo: str, transport: Transport) -> int:
        """Look up the installation of this App on ``owner/name``."""
        owner, name = ensure_repo_full_name(repo)
        url = f"{self._api_url}/repos/{owner}/{name}/installation"
        data = _json_object(self._send(assertion, transport, "GET", url))

        installation_id = data.get("id")
        if isinstance(installation_id, bool) or not isinstance(installation_id, int) or installation_id <= 0:
            raise ProtocolError(f"Response from GitHub has no valid installation 'id' for {repo}")
        logger.info("Resolved installation %s for %s", installation_id, repo)
        return installation_id

    def _send(
        self,
        assertion: Assertion,
        transport: Transport,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
    ) -> requests.Response:
        self._ensure_fresh(assertion)
        started = self._monotonic()
        attempt = 0
        last_error: GitHubAppTokenError | None = None

        while True:
            remaining = self._total_deadline - (self._monotonic() - started)
            if remaining <= 0 and last_error is not None:
                raise ExhaustedRetriesError(attempt, last_error) from last_error

            attempt += 1
            logger.debug("%s %s (attempt %s/%s)", method, url, attempt, self._max_attempts)
            outcome = self._attempt(
                transport, method, url, assertion, json, min(self._request_timeout, remaining)
            )

            if outcome.kind is FailureKind.SUCCESS:
                return outcome.response
            if outcome.kind is FailureKind.PERMANENT:
                raise outcome.error

            last_error = outcome.error
            if attempt >= self._max_attempts:
                raise ExhaustedRetriesError(attempt, last_error) from last_error

            delay = self._backoff(attempt, outcome.retry_after)
            if self._monotonic() - started + delay >= self._total_deadline:
                raise ExhaustedRetriesError(attempt, last_error) from last_error

            logger.warning(
                "%s; retrying in %.1fs (attempt %s/%s)",
                last_error,
                delay,
                attempt,
                self._max_attempts,
            )
            self._sleep(delay)
            self._ensure_fresh(assertion)

    def _attempt(
        self,
        transport: Transport,
        method: str,
        url: str,
        assertion: Assertion,
        json: dict[str, Any] | None,
        timeout: float,
    ) -> AttemptOutcome:
        try:
            response = transport.request(
                method, url, headers=bearer_headers(assertion.token), json=json, timeout=timeout
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            return AttemptOutcome.transient(TransientNetworkError(f"Request to GitHub failed: {exc}"))
        except requests.RequestException as exc:
            return AttemptOutcome.permanent(ProtocolError(f"Request to GitHub could not be sent: {exc}"))

        status = response.status_code
        if 200 <= status < 300:
            return AttemptOutcome.success(response)

        message = _error_message(response)
        if status >= 500:
            return AttemptOutcome.transient(
                RemoteServiceError(status, message), retry_after=_retry_after(response)
            )
        if status >= 400:
            return AttemptOutcome.permanent(AuthorizationError(status, message))
        return AttemptOutcome.permanent(ProtocolError(f"Unexpected status {status} from GitHub: {message}"))

    def _backoff(self, attempt: int, retry_after: float | None) -> float:
        delay = min(self._backoff_max, self._backoff_base * 2 ** (attempt - 1))
        delay = delay / 2 + self._jitter() * delay / 2
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    def _ensure_fresh(self, assertion: Assertion) -> None:
        if assertion.is_expired(self._clock()):
            raise AssertionExpiredError(
                f"Assertion expired at {assertion.expires_at.isoformat()}; build a new one and retry."
            )

    def _parse_token(self, response: requests.Response) -> InstallationToken:
        data = _json_object(response)
        try:
            return InstallationToken.model_validate(data)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(part) for part in error["loc"]) for error in exc.errors())
            # the validation error echoes input values, which include the token
            raise ProtocolError(f"Response from GitHub has missing or invalid fields: {fields}") from None


def _json_object(response: requests.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise ProtocolError("Response from GitHub is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Response from GitHub is not a JSON object")
    return data


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text or response.reason or ""


def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if isinstance(value, str) and value.strip().isdigit():
        return float(value.strip())
    return None
