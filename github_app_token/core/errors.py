from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class GitHubAppTokenError(Exception):
    """Base class for every failure surfaced by the token pipeline."""

    exit_code = 1


class ConfigurationError(GitHubAppTokenError):
    """Identity inputs are missing, unreadable or malformed."""

    exit_code = 3


class PrivateKeyError(GitHubAppTokenError):
    """The private key cannot be parsed or is of an unsupported type/size."""

    exit_code = 3


class EncodingError(GitHubAppTokenError):
    """The claim set could not be serialized and signed."""

    exit_code = 3


class AuthorizationError(GitHubAppTokenError):
    """GitHub rejected the assertion, the installation or the permissions."""

    exit_code = 4

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"GitHub returned {status}: {message}")
        self.status = status
        self.message = message


class TransientNetworkError(GitHubAppTokenError):
    """The request never completed (connection reset, timeout)."""

    exit_code = 5


class RemoteServiceError(GitHubAppTokenError):
    """GitHub answered with a 5xx status."""

    exit_code = 5

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"GitHub returned {status}: {message}")
        self.status = status
        self.message = message


class ExhaustedRetriesError(GitHubAppTokenError):
    """Transient failures persisted past the attempt budget or deadline."""

    exit_code = 5

    def __init__(self, attempts: int, last_error: GitHubAppTokenError) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class AssertionExpiredError(GitHubAppTokenError):
    """The assertion expired before it could be presented; build a new one."""

    exit_code = 5


class ProtocolError(GitHubAppTokenError):
    """GitHub's response could not be understood."""

    exit_code = 6


class OutputError(GitHubAppTokenError):
    """The token could not be written where it was asked to go."""

    exit_code = 7


class FailureKind(str, Enum):
    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of a single request attempt, tagged by how the caller should react."""

    kind: FailureKind
    response: Any = None
    error: GitHubAppTokenError | None = None
    retry_after: float | None = None

    @classmethod
    def success(cls, response: Any) -> "AttemptOutcome":
        return cls(FailureKind.SUCCESS, response=response)

    @classmethod
    def transient(
        cls, error: GitHubAppTokenError, retry_after: float | None = None
    ) -> "AttemptOutcome":
        return cls(FailureKind.TRANSIENT, error=error, retry_after=retry_after)

    @classmethod
    def permanent(cls, error: GitHubAppTokenError) -> "AttemptOutcome":
        return cls(FailureKind.PERMANENT, error=error)
