"""
davgate.store
~~~~~~~~~~~~~
The live, hot-reloadable configuration.

Readers call :meth:`ConfigStore.snapshot` once per request and keep that
object for the rest of the request.  A reload parses the file, merges it
onto the current snapshot and swaps the reference in one assignment, so a
reader sees either the old config or the new one, never a mix.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
import threading
from typing import Dict, Optional

from .config import (
    ConfigError,
    ServerConfig,
    UserRecord,
    ensure_directories,
    parse_config,
    read_config,
)
from .permissions import PermissionStringError, parse_permissions

logger = logging.getLogger(__name__)

RELOADABLE_LOG_FLAGS = ("error", "create", "read", "update", "delete")


class ConfigReloadError(ConfigError):
    pass


def _merge_user(username: str, current: UserRecord, updated: UserRecord) -> UserRecord:
    changes: Dict[str, object] = {}

    if current.password_hash != updated.password_hash:
        logger.info(f"Updated password of user {username}")
        changes["password_hash"] = updated.password_hash

    if current.jail_subdir != updated.jail_subdir:
        logger.info(f"Updated subdir of user {username}")
        changes["jail_subdir"] = updated.jail_subdir

    if current.permission_string != updated.permission_string:
        try:
            permissions = parse_permissions(updated.permission_string)
        except PermissionStringError as e:
            logger.error(
                f"Error parsing crud string for user {username}, keeping {current.permissions}: {e}"
            )
        else:
            logger.info(f"Updated crud of user {username} to {permissions}")
            changes["permission_string"] = updated.permission_string
            changes["permissions"] = permissions

    if not changes:
        return current
    return dataclasses.replace(current, **changes)


def merge_config(current: ServerConfig, updated: ServerConfig) -> ServerConfig:
    """Fold *updated* onto *current* and return the merged snapshot.

    Only users and logging toggles are taken from *updated*; listener
    settings (address, port, TLS, prefix, base dir, realm, CORS) need a
    restart.  Neither argument is modified.

    Raises :class:`ConfigReloadError` if *updated* declares no users while
    *current* does: an empty or half-written file must not switch a
    protected server into bypass mode.
    """
    if current.authentication_needed and not updated.authentication_needed:
        raise ConfigReloadError("updated configuration declares no users")

    users: Dict[str, UserRecord] = {}
    for username in current.users:
        if username not in updated.users:
            logger.info(f"Removed user {username} from configuration")

    for username, record in updated.users.items():
        existing = current.users.get(username)
        if existing is None:
            logger.info(f"Added user {username} to configuration")
            users[username] = record
        else:
            users[username] = _merge_user(username, existing, record)

    log_changes = {}
    for flag in RELOADABLE_LOG_FLAGS:
        value = getattr(updated.log, flag)
        if getattr(current.log, flag) != value:
            logger.info(f"Set logging for {flag} operations: enabled={value}")
            log_changes[flag] = value
    log = dataclasses.replace(current.log, **log_changes) if log_changes else current.log

    return dataclasses.replace(current, users=users, log=log)


class ConfigStore:
    def __init__(self, config: ServerConfig, path: str | pathlib.Path | None = None):
        self.path = pathlib.Path(path) if path is not None else None
        self._config = config
        self._lock = threading.Lock()
        self._mtime: Optional[float] = self._stat_mtime()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ #
    # public
    # ------------------------------------------------------------------ #

    def snapshot(self) -> ServerConfig:
        return self._config

    def apply(self, updated: ServerConfig) -> ServerConfig:
        """Merge *updated* onto the live config and publish the result."""
        with self._lock:
            merged = merge_config(self._config, updated)
            ensure_directories(merged)
            self._config = merged
        return merged

    def reload(self) -> bool:
        """Re-read the config file.  On any failure the live config stays."""
        if self.path is None:
            return False
        logger.info(f"Config file changed: {self.path}")
        try:
            updated = parse_config(read_config(self.path), strict=False)
            self.apply(updated)
        except Exception as e:
            err = ConfigReloadError(f"error updating configuration from {self.path}: {e}")
            logger.error(f"{err}; keeping the previous configuration")
            return False
        return True

    def maybe_reload(self) -> bool:
        mtime = self._stat_mtime()
        if mtime is None or mtime == self._mtime:
            return False
        self._mtime = mtime
        return self.reload()

    def watch(self, interval: float = 2.0) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._watch_loop, args=(interval,), name="davgate-config-watch", daemon=True
        )
        self._thread.start()
        return self._thread

    def close(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    # ------------------------------------------------------------------ #
    # private
    # ------------------------------------------------------------------ #

    def _watch_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.maybe_reload()

    def _stat_mtime(self) -> Optional[float]:
        if self.path is None:
            return None
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None
