"""
davgate.acls
~~~~~~~~~~~~
Per-method authorization, applied before a request reaches the WebDAV
engine.  Each method maps to the CRUD capability it needs and to the
status a caller without that capability gets back.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .auth import Identity
from .config import ServerConfig
from .paths import REJECTED, resolve

logger = logging.getLogger(__name__)

DAV_COMPLIANCE = "1, 2"


class AuthorizationError(PermissionError):
    """The caller does not hold the capability an operation needs."""

    def __init__(self, message: str = "forbidden", status: int = 403):
        self.status = status
        super().__init__(message)


class RootProtectedError(AuthorizationError):
    """Deleting or renaming the jail root, refused whatever the flags say."""


@dataclass(frozen=True)
class Rule:
    capability: Optional[str]
    denial: int = 403


POLICY = {
    "OPTIONS": Rule(None),
    "HEAD": Rule("read", 401),
    "PROPFIND": Rule("read", 401),
    "PUT": Rule("create", 403),
    "COPY": Rule("create", 403),
    "MKCOL": Rule("create", 401),
    "LOCK": Rule("create", 401),
    "UNLOCK": Rule("create", 401),
    "DELETE": Rule("delete", 403),
    "MOVE": Rule("update", 401),
    "PROPPATCH": Rule("update", 401),
}

DISALLOWED = frozenset({"GET"})

ALLOWED_METHODS = tuple(POLICY)


@dataclass(frozen=True)
class Decision:
    """Outcome of the method gate.  ``status is None`` means delegate."""

    status: Optional[int] = None
    reason: str = ""
    headers: Tuple[Tuple[str, str], ...] = ()

    @property
    def delegate(self) -> bool:
        return self.status is None

    @property
    def denied(self) -> bool:
        return self.status in (401, 403)


DELEGATE = Decision()


def holds(cfg: ServerConfig, identity: Identity, capability: str) -> bool:
    """True if *identity* may use *capability* under *cfg*.

    With no users configured there is nothing to check against, so every
    capability is granted.
    """
    if not cfg.authentication_needed:
        return True
    return identity.authenticated and identity.permissions.allows(capability)


def require(cfg: ServerConfig, identity: Identity, capability: str, message: str) -> None:
    if not holds(cfg, identity, capability):
        raise AuthorizationError(message)


class ACLChecker:
    def authorize(
        self, cfg: ServerConfig, identity: Identity, method: str, path: str
    ) -> Decision:
        method = method.upper()
        logger.debug(f"Method received: {method} {path} user={identity.username or '-'}")

        if method in DISALLOWED:
            return Decision(405, "method not allowed")

        rule = POLICY.get(method)
        if rule is None:
            return Decision(501, f"method {method} is not implemented")

        if rule.capability is None:
            return Decision(
                200,
                "capability discovery",
                (("Allow", ", ".join(ALLOWED_METHODS)), ("DAV", DAV_COMPLIANCE)),
            )

        if not holds(cfg, identity, rule.capability):
            return Decision(rule.denial, f"{method} needs {rule.capability} permission")

        if method == "PROPFIND" and not holds(cfg, identity, "create"):
            # listing something that isn't there yet; answer like a denial
            physical = resolve(cfg.base_dir, _jail(cfg, identity), path)
            if physical == REJECTED or not os.path.exists(physical):
                return Decision(401, "PROPFIND on a missing resource without create permission")

        return DELEGATE


def _jail(cfg: ServerConfig, identity: Identity) -> Optional[str]:
    if not identity.authenticated:
        return None
    return cfg.jail_for(identity.username)
