"""
davgate.auth
~~~~~~~~~~~~
Basic-Auth credential checks against the bcrypt hashes declared under
``users:`` in the config file.

Every failure raises a :class:`CredentialError` that still carries an
:class:`Identity`, so the caller can log the attempted username.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Tuple

import bcrypt

from .permissions import PermissionSet

if TYPE_CHECKING:
    from .config import ServerConfig

DEFAULT_COST = 10


@dataclass(frozen=True, slots=True)
class Identity:
    username: str
    authenticated: bool = False
    permissions: PermissionSet = field(default_factory=PermissionSet)

    @classmethod
    def anonymous(cls, username: str = "") -> "Identity":
        return cls(username=username)


class CredentialError(Exception):
    reason = "credential error"

    def __init__(self, identity: Identity, reason: str | None = None):
        self.identity = identity
        super().__init__(reason or self.reason)


class CredentialMissing(CredentialError):
    reason = "username not found or password empty"


class UserNotFound(CredentialError):
    reason = "user not found"


class PasswordMismatch(CredentialError):
    reason = "password doesn't match"


def decode_basic(header_val: str | None) -> Tuple[str, str]:
    if not header_val:
        raise CredentialMissing(Identity.anonymous(), "missing Authorization header")
    scheme, _, token = header_val.strip().partition(" ")
    if scheme.lower() != "basic":
        raise CredentialMissing(Identity.anonymous(), "unsupported auth scheme")
    try:
        decoded = base64.b64decode(token.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise CredentialMissing(Identity.anonymous(), "bad base64") from e
    username, sep, password = decoded.partition(":")
    if not sep:
        raise CredentialMissing(Identity.anonymous(username), "malformed credentials")
    return username, password


def authenticate(cfg: "ServerConfig", username: str, password: str) -> Identity:
    """Verify *username*/*password* against *cfg*.

    With no users configured authentication is switched off and an
    anonymous identity is returned without raising; that is bypass mode,
    not a failed login.
    """
    if not cfg.authentication_needed:
        return Identity.anonymous()

    attempted = Identity.anonymous(username)
    if not username or not password:
        raise CredentialMissing(attempted)

    user = cfg.users.get(username)
    if user is None:
        raise UserNotFound(attempted)

    if not check_password(password, user.password_hash):
        raise PasswordMismatch(attempted)

    return Identity(username=username, authenticated=True, permissions=user.permissions)


def check_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:  # stored value is not a bcrypt hash
        return False


def gen_hash(password: str, rounds: int = DEFAULT_COST) -> str:
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("ascii")
