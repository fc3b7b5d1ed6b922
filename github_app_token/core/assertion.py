"""GitHub App JWT assertions.

GitHub authenticates an App by a short-lived RS256 JWT whose issuer is the
App ID. The server rejects tokens whose ``exp`` lies more than ten minutes
ahead of its own clock, and tokens issued "in the future" relative to it, so
``iat`` is backdated by a skew margin and the validity window is capped.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from github_app_token.core.errors import EncodingError, PrivateKeyError
from github_app_token.utils.validators import ensure_positive_int


logger = logging.getLogger(__name__)

ALGORITHM = "RS256"
MAX_VALIDITY_WINDOW = 600
MIN_RSA_KEY_SIZE = 2048


@dataclass(frozen=True)
class Assertion:
    """A signed proof of App identity, valid between ``issued_at`` and ``expires_at``."""

    token: str
    issuer: int
    issued_at: datetime
    expires_at: datetime

    @property
    def signature(self) -> str:
        return self.token.rsplit(".", 1)[-1]

    def is_expired(self, at: datetime) -> bool:
        return _as_utc(at) >= self.expires_at

    def __str__(self) -> str:
        return self.token

    def __repr__(self) -> str:
        return (
            f"Assertion(issuer={self.issuer}, issued_at={self.issued_at.isoformat()}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


def load_private_key(private_key: str | bytes) -> rsa.RSAPrivateKey:
    """Parse a PEM private key, accepting only unencrypted RSA keys of at least 2048 bits."""
    data = private_key.encode("utf-8") if isinstance(private_key, str) else private_key
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise PrivateKeyError(
            "Private key does not appear to be an unencrypted key in PEM format."
        ) from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise PrivateKeyError(
            f"Unsupported private key type {type(key).__name__}; GitHub Apps use RSA keys."
        )
    if key.key_size < MIN_RSA_KEY_SIZE:
        raise PrivateKeyError(
            f"RSA key is {key.key_size} bits; at least {MIN_RSA_KEY_SIZE} bits are required."
        )
    return key


class AssertionBuilder:
    """Builds RS256 assertions for a GitHub App."""

    def __init__(self, skew_margin: int = 60, validity_window: int = MAX_VALIDITY_WINDOW) -> None:
        if skew_margin < 0:
            raise ValueError("skew_margin must not be negative")
        if not 0 < validity_window <= MAX_VALIDITY_WINDOW:
            raise ValueError(
                f"validity_window must be between 1 and {MAX_VALIDITY_WINDOW} seconds"
            )
        self._skew_margin = int(skew_margin)
        self._validity_window = int(validity_window)

    @property
    def validity_window(self) -> int:
        return self._validity_window

    def build(self, app_id: int, private_key: str | bytes, now: datetime) -> Assertion:
        ensure_positive_int(app_id, "app_id")
        key = load_private_key(private_key)

        issued = int((_as_utc(now) - timedelta(seconds=self._skew_margin)).timestamp())
        expires = issued + self._validity_window
        claims = {"iat": issued, "exp": expires, "iss": str(app_id)}

        try:
            token = jwt.encode(claims, key, algorithm=ALGORITHM, headers={"typ": "JWT"})
        except (TypeError, ValueError, jwt.PyJWTError) as exc:
            raise EncodingError(f"Failed to encode the JWT claim set: {exc}") from exc

        logger.debug("Built assertion for app %s valid until %s", app_id, expires)
        return Assertion(
            token=token,
            issuer=app_id,
            issued_at=datetime.fromtimestamp(issued, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
