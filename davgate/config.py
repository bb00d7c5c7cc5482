"""
davgate.config
~~~~~~~~~~~~~~
Config file parsing.

config.yaml
-----------
address: 127.0.0.1
port: 8000
prefix: /dav
dir: /srv/webdav
realm: david
tls:
  certFile: /etc/davgate/cert.pem
  keyFile: /etc/davgate/key.pem
cors:
  origin: https://example.com
  credentials: false
log:
  error: true
  create: true
users:
  lj:
    password: $2b$10$...        # bcrypt, see davgate-hash
    subdir: /littlejohn
    permissions: cru
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .paths import is_within, jail_root
from .permissions import PermissionSet, PermissionStringError, parse_permissions

logger = logging.getLogger(__name__)

CONFIG_ENV = "DAVGATE_CONFIG"
CONFIG_NAMES = ("config.yaml", "config.yml", "config.json")
SEARCH_DIRS = ("./config", "~/.swd", "~/.david", ".")


class ConfigError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class TLSConfig:
    cert_file: str
    key_file: str


@dataclass(frozen=True, slots=True)
class CorsPolicy:
    origin: str = ""
    credentials: bool = False


@dataclass(frozen=True, slots=True)
class LoggingFlags:
    error: bool = True
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False
    production: bool = False
    debug: bool = False


@dataclass(frozen=True, slots=True)
class UserRecord:
    username: str
    password_hash: str
    permission_string: str
    permissions: PermissionSet
    jail_subdir: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ServerConfig:
    address: str = "127.0.0.1"
    port: int = 8000
    prefix: str = ""
    base_dir: str = "/tmp"
    tls: Optional[TLSConfig] = None
    realm: str = "david"
    cors: CorsPolicy = field(default_factory=CorsPolicy)
    log: LoggingFlags = field(default_factory=LoggingFlags)
    users: Mapping[str, UserRecord] = field(default_factory=dict)

    @property
    def authentication_needed(self) -> bool:
        return bool(self.users)

    def jail_for(self, username: str) -> Optional[str]:
        user = self.users.get(username)
        return user.jail_subdir if user else None

    def jail_root(self, username: str = "") -> str:
        return jail_root(self.base_dir, self.jail_for(username))


# --------------------------------------------------------------------- #
# locating and reading
# --------------------------------------------------------------------- #


def find_config_path(explicit: str | os.PathLike | None = None) -> Path:
    if explicit:
        return Path(explicit)

    load_dotenv()
    env_path = os.getenv(CONFIG_ENV)
    if env_path:
        return Path(env_path)

    for directory in SEARCH_DIRS:
        for name in CONFIG_NAMES:
            candidate = Path(directory).expanduser() / name
            if candidate.is_file():
                return candidate
    raise ConfigError(
        f"no config file found (looked for {', '.join(CONFIG_NAMES)} in {', '.join(SEARCH_DIRS)})"
    )


def read_config(path: str | os.PathLike) -> Dict[str, Any]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"malformed config file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping at top level")
    return data


# --------------------------------------------------------------------- #
# parsing
# --------------------------------------------------------------------- #


def _lower_keys(section: Any, name: str) -> Dict[str, Any]:
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return {str(k).lower(): v for k, v in section.items()}


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ConfigError(f"'{name}' must be true or false, got {value!r}")


def _parse_user(name: str, entry: Any, base_dir: str, strict: bool) -> UserRecord:
    entry_fields = _lower_keys(entry, f"users.{name}")
    if entry_fields.get("permissions") is None:
        raise ConfigError(f"user '{name}' must declare permissions")
    if entry_fields.get("password") is None:
        raise ConfigError(f"user '{name}' must declare a password hash")

    perm_string = str(entry_fields["permissions"])
    try:
        permissions = parse_permissions(perm_string)
    except PermissionStringError as e:
        if strict:
            raise ConfigError(f"user '{name}': {e}") from e
        logger.error(f"Error parsing crud string for user {name}: {e}")
        permissions = PermissionSet.denied(perm_string)

    subdir = entry_fields.get("subdir")
    if subdir is not None:
        subdir = str(subdir)
        if not is_within(base_dir or ".", jail_root(base_dir, subdir)):
            raise ConfigError(f"subdir of user '{name}' escapes {base_dir}")

    return UserRecord(
        username=name,
        password_hash=str(entry_fields["password"]),
        permission_string=perm_string,
        permissions=permissions,
        jail_subdir=subdir,
    )


def parse_config(data: Mapping[str, Any], strict: bool = True) -> ServerConfig:
    """Build a :class:`ServerConfig` from the decoded config file.

    Keys are matched case-insensitively.  With ``strict`` an invalid
    permission string is a :class:`ConfigError`; otherwise it is logged
    and the user gets no permissions at all.
    """
    top = _lower_keys(dict(data), "config")
    defaults = ServerConfig()

    base_dir = str(top.get("dir") or defaults.base_dir)

    tls = None
    tls_section = _lower_keys(top.get("tls"), "tls")
    if tls_section:
        if not tls_section.get("certfile") or not tls_section.get("keyfile"):
            raise ConfigError("tls needs both certFile and keyFile")
        tls = TLSConfig(
            cert_file=str(tls_section["certfile"]),
            key_file=str(tls_section["keyfile"]),
        )

    cors_section = _lower_keys(top.get("cors"), "cors")
    cors = CorsPolicy(
        origin=str(cors_section.get("origin") or ""),
        credentials=_as_bool(cors_section.get("credentials", False), "cors.credentials"),
    )

    log_section = _lower_keys(top.get("log"), "log")
    log_defaults = LoggingFlags()
    log = LoggingFlags(
        **{
            f.name: _as_bool(log_section.get(f.name, getattr(log_defaults, f.name)), f"log.{f.name}")
            for f in fields(LoggingFlags)
        }
    )

    users: Dict[str, UserRecord] = {}
    users_section = top.get("users") or {}
    if not isinstance(users_section, dict):
        raise ConfigError("'users' must be a mapping")
    for name, entry in users_section.items():
        users[str(name)] = _parse_user(str(name), entry, base_dir, strict)

    try:
        port = int(top.get("port", defaults.port))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid port {top.get('port')!r}") from e

    return ServerConfig(
        address=str(top.get("address") or defaults.address),
        port=port,
        prefix=str(top.get("prefix") or "").rstrip("/"),
        base_dir=base_dir,
        tls=tls,
        realm=str(top.get("realm") or defaults.realm),
        cors=cors,
        log=log,
        users=users,
    )


def load_config(path: str | os.PathLike | None = None) -> ServerConfig:
    """Startup load: every problem is fatal (raises :class:`ConfigError`)."""
    config_path = find_config_path(path)
    logger.info(f"Parsing config file {config_path}")
    cfg = parse_config(read_config(config_path), strict=True)
    for user in cfg.users.values():
        logger.info(f"Parsed crud string {user.permissions} for user {user.username}")

    if cfg.tls is not None:
        check_tls_files(cfg.tls)

    ensure_directories(cfg)
    return cfg


def check_tls_files(tls: TLSConfig) -> None:
    for label, tls_file in (("keyFile", tls.key_file), ("certFile", tls.cert_file)):
        if not Path(tls_file).is_file():
            raise ConfigError(f"TLS {label} doesn't exist: {tls_file}")


def ensure_directories(cfg: ServerConfig) -> List[str]:
    """Create the base dir and every jail dir that is missing."""
    created: List[str] = []
    base = Path(cfg.base_dir or ".")
    if not base.exists():
        try:
            base.mkdir(parents=True)
        except OSError as e:
            logger.warning(f"Can't create base dir {base}: {e}")
            return created
        logger.info(f"Created base dir {base}")
        created.append(str(base))

    for user in cfg.users.values():
        if user.jail_subdir is None:
            continue
        path = Path(cfg.jail_root(user.username))
        if path.exists():
            continue
        try:
            path.mkdir(parents=True)
        except OSError as e:
            logger.warning(f"Can't create user dir {path}: {e}")
            continue
        logger.info(f"Created user dir {path}")
        created.append(str(path))
    return created
