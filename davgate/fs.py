"""
davgate.fs
~~~~~~~~~~
The jailed filesystem the WebDAV engine talks to.

Every call takes the caller's :class:`~davgate.auth.Identity` explicitly,
maps the virtual name into that caller's jail and checks the CRUD flag
for the operation before touching the disk.  Pass ``cfg`` to pin a call
to the config snapshot the request started with; without it the live
snapshot is read.
"""

from __future__ import annotations

import logging
import os
import shutil
from typing import IO, List, Optional, Protocol

from .acls import AuthorizationError, RootProtectedError, holds, require
from .auth import Identity
from .config import ServerConfig
from .logger import AuditLogger
from .paths import jail_root, resolve_or_raise

logger = logging.getLogger(__name__)

_WRITE_MODES = set("wax+")


class ConfigSource(Protocol):
    def snapshot(self) -> ServerConfig: ...


class JailFileSystem:
    def __init__(self, source: ConfigSource, audit: Optional[AuditLogger] = None):
        self.source = source
        self.audit = audit or AuditLogger()

    # ------------------------------------------------------------------ #
    # path helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _jail(cfg: ServerConfig, identity: Identity) -> Optional[str]:
        if not identity.authenticated:
            return None
        return cfg.jail_for(identity.username)

    def resolve(self, identity: Identity, name: str, cfg: ServerConfig | None = None) -> str:
        cfg = cfg or self.source.snapshot()
        return resolve_or_raise(cfg.base_dir, self._jail(cfg, identity), name)

    def root(self, identity: Identity, cfg: ServerConfig | None = None) -> str:
        cfg = cfg or self.source.snapshot()
        return jail_root(cfg.base_dir, self._jail(cfg, identity))

    # ------------------------------------------------------------------ #
    # capabilities
    # ------------------------------------------------------------------ #

    def mkdir(self, identity: Identity, name: str, mode: int = 0o777, cfg: ServerConfig | None = None) -> None:
        cfg = cfg or self.source.snapshot()
        path = self.resolve(identity, name, cfg)
        if not holds(cfg, identity, "create"):
            if cfg.log.create:
                logger.warning(f"User {identity.username} unauthorized to create directory {path}")
            raise AuthorizationError("unauthorized to create directory")

        os.mkdir(path, mode)
        if cfg.log.create:
            self.audit.operation("mkdir", identity.username, path=path)

    def open(
        self, identity: Identity, name: str, mode: str = "rb", cfg: ServerConfig | None = None
    ) -> Optional[IO]:
        """Open *name* inside the caller's jail.

        Write modes without the create flag return ``None`` instead of
        raising: the caller can't tell "not permitted" from "nothing to
        open".
        """
        cfg = cfg or self.source.snapshot()
        path = self.resolve(identity, name, cfg)

        writing = bool(_WRITE_MODES.intersection(mode))
        reading = "r" in mode or "+" in mode

        if writing and not holds(cfg, identity, "create"):
            if cfg.log.create:
                logger.warning(f"User {identity.username} unauthorized to create file {path}")
            return None
        if reading:
            require(cfg, identity, "read", "unauthorized to read file")

        f = open(path, mode)
        if cfg.log.read:
            self.audit.operation("open", identity.username, path=path, mode=mode)
        return f

    def remove_all(self, identity: Identity, name: str, cfg: ServerConfig | None = None) -> None:
        cfg = cfg or self.source.snapshot()
        path = self.resolve(identity, name, cfg)
        if path == self.root(identity, cfg):
            raise RootProtectedError("removing the virtual root directory is prohibited")
        require(cfg, identity, "delete", "unauthorized to delete file or directory")

        if not os.path.lexists(path):
            return
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)
        if cfg.log.delete:
            self.audit.operation("delete", identity.username, path=path)

    def rename(
        self, identity: Identity, old_name: str, new_name: str, cfg: ServerConfig | None = None
    ) -> None:
        cfg = cfg or self.source.snapshot()
        old_path = self.resolve(identity, old_name, cfg)
        new_path = self.resolve(identity, new_name, cfg)
        root = self.root(identity, cfg)
        if root in (old_path, new_path):
            raise RootProtectedError("renaming from or to the virtual root directory is prohibited")
        require(cfg, identity, "update", "unauthorized to rename file or directory")

        os.replace(old_path, new_path)
        if cfg.log.update:
            self.audit.operation("rename", identity.username, old_path=old_path, new_path=new_path)

    def stat(
        self, identity: Identity, name: str, cfg: ServerConfig | None = None
    ) -> Optional[os.stat_result]:
        """``os.stat`` inside the jail.

        A missing path seen by a caller without create permission gives
        ``None`` rather than an error; any other failure propagates.
        """
        cfg = cfg or self.source.snapshot()
        path = self.resolve(identity, name, cfg)
        require(cfg, identity, "read", "unauthorized to read file")
        try:
            return os.stat(path)
        except FileNotFoundError:
            if not holds(cfg, identity, "create"):
                logger.debug(f"User {identity.username} has no create permission for missing {path}")
                return None
            raise

    def listdir(self, identity: Identity, name: str, cfg: ServerConfig | None = None) -> List[str]:
        cfg = cfg or self.source.snapshot()
        path = self.resolve(identity, name, cfg)
        require(cfg, identity, "read", "unauthorized to list directory")
        return sorted(os.listdir(path))
