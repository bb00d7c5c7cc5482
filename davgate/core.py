"""
davgate.core
~~~~~~~~~~~~
WSGI gate in front of WsgiDAV: CORS, Basic auth, per-method ACL and a
last-resort error boundary, served by cheroot.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from cheroot import wsgi
from wsgidav.wsgidav_app import WsgiDAVApp

from .acls import ACLChecker
from .auth import CredentialError, CredentialMissing, Identity, authenticate, decode_basic
from .config import ServerConfig
from .fs import JailFileSystem
from .logger import AuditLogger
from .provider import CONFIG_KEY, IDENTITY_KEY, JailProvider
from .store import ConfigStore
from .tls import ssl_adapter

logger = logging.getLogger(__name__)

Headers = Sequence[Tuple[str, str]]

_REASONS = {
    200: "OK",
    204: "No Content",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    500: "Internal Server Error",
    501: "Not Implemented",
}


class GateError(Exception):
    def __init__(self, status: int, msg: str, headers: Headers = ()):
        self.status = status
        self.msg = msg
        self.headers = tuple(headers)
        super().__init__(f"{status} {msg}")


def run_server(store: ConfigStore, audit: Optional[AuditLogger] = None) -> None:
    cfg = store.snapshot()
    app = build_app(store, audit)
    server = wsgi.Server((cfg.address, cfg.port), app, server_name="davgate")
    if cfg.tls is not None:
        server.ssl_adapter = ssl_adapter(cfg.tls)

    logger.info(
        f"Server is starting and listening on {cfg.address}:{cfg.port} "
        f"(TLS={cfg.tls is not None}, prefix={cfg.prefix or '/'}, dir={cfg.base_dir})"
    )
    try:
        server.start()
    except KeyboardInterrupt:
        logger.info("Server shut down.")
    finally:
        server.stop()
        store.close()


def build_app(store: ConfigStore, audit: Optional[AuditLogger] = None) -> "DavGate":
    cfg = store.snapshot()
    audit = audit or AuditLogger()
    provider = JailProvider(JailFileSystem(store, audit))
    engine = WsgiDAVApp(
        {
            "provider_mapping": {cfg.prefix or "/": provider},
            # authentication happens in DavGate; the engine sees everyone as anonymous
            "simple_dc": {"user_mapping": {"*": True}},
            "http_authenticator": {"accept_basic": True, "accept_digest": False},
            "dir_browser": {"enable": False},
            "lock_storage": True,
            "property_manager": True,
            "logging": {"enable": False},
            "verbose": 1,
        }
    )
    return DavGate(store, engine, audit=audit)


class DavGate:
    def __init__(
        self,
        store: ConfigStore,
        engine: Callable,
        audit: Optional[AuditLogger] = None,
        acl: Optional[ACLChecker] = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.audit = audit or AuditLogger()
        self.acl = acl or ACLChecker()

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        start_ts = time.time()
        cfg = self.store.snapshot()
        method = environ.get("REQUEST_METHOD", "GET").upper()
        peer_ip = client_address(environ)
        seen: Dict[str, str] = {}
        respond = _with_cors(cfg, start_response, seen)
        user = "-"
        path = environ.get("PATH_INFO", "/")

        try:
            if _is_preflight(cfg, environ, method):
                return _simple_response(respond, 204)

            path = _virtual_path(cfg, path)
            identity = self._authenticate(cfg, environ, peer_ip)
            user = identity.username or "-"

            decision = self.acl.authorize(cfg, identity, method, path)
            if not decision.delegate:
                if decision.denied and cfg.log.error:
                    self.audit.deny(user, peer_ip, method, path, decision.reason)
                return _simple_response(respond, decision.status, decision.headers, realm=cfg.realm)

            environ[IDENTITY_KEY] = identity
            environ[CONFIG_KEY] = cfg
            return self.engine(environ, respond)

        except GateError as e:
            return _simple_response(respond, e.status, e.headers, realm=cfg.realm)
        except Exception:
            logger.exception(f"An error occurred handling a {method} request for {path}")
            return _simple_response(respond, 500, exc_info=sys.exc_info())
        finally:
            self.audit.end(
                user,
                method,
                path,
                int(seen.get("status", "0").split(" ", 1)[0] or 0),
                int((time.time() - start_ts) * 1000),
            )

    def _authenticate(self, cfg: ServerConfig, environ: dict, peer_ip: str) -> Identity:
        if not cfg.authentication_needed:
            return authenticate(cfg, "", "")

        try:
            username, password = decode_basic(environ.get("HTTP_AUTHORIZATION"))
        except CredentialMissing:
            raise GateError(401, "Unauthorized") from None

        try:
            identity = authenticate(cfg, username, password)
        except CredentialError as exc:
            if cfg.log.error:
                self.audit.auth_fail(peer_ip, exc.identity.username, str(exc))
            raise GateError(401, "Unauthorized") from None

        if not identity.permissions.read:
            raise GateError(401, "Unauthorized")
        return identity


def client_address(environ: dict) -> str:
    forwarded = environ.get("HTTP_X_FORWARDED_FOR", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return environ.get("REMOTE_ADDR", "-")


def _virtual_path(cfg: ServerConfig, path_info: str) -> str:
    # PEP 3333: PATH_INFO arrives as latin-1 decoded bytes
    try:
        path = path_info.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        path = path_info
    prefix = cfg.prefix
    if not prefix:
        return path or "/"
    if path == prefix or path.startswith(prefix + "/"):
        return path[len(prefix):] or "/"
    raise GateError(404, "Not Found")


def _is_preflight(cfg: ServerConfig, environ: dict, method: str) -> bool:
    return (
        method == "OPTIONS"
        and bool(cfg.cors.origin)
        and environ.get("HTTP_ORIGIN") == cfg.cors.origin
        and bool(environ.get("HTTP_ACCESS_CONTROL_REQUEST_METHOD"))
        and bool(environ.get("HTTP_ACCESS_CONTROL_REQUEST_HEADERS"))
    )


def _cors_headers(cfg: ServerConfig) -> List[Tuple[str, str]]:
    if not cfg.cors.origin:
        return []
    headers = [
        ("Access-Control-Allow-Origin", cfg.cors.origin),
        ("Access-Control-Allow-Headers", "*"),
        ("Access-Control-Allow-Methods", "*"),
    ]
    if cfg.cors.credentials:
        headers.append(("Access-Control-Allow-Credentials", "true"))
    return headers


def _with_cors(cfg: ServerConfig, start_response: Callable, seen: Dict[str, str]) -> Callable:
    extra = _cors_headers(cfg)

    def respond(status, headers, exc_info=None):
        seen["status"] = status
        return start_response(status, list(headers) + extra, exc_info)

    return respond


def _simple_response(
    respond: Callable,
    status: int,
    headers: Headers = (),
    realm: str | None = None,
    exc_info=None,
) -> List[bytes]:
    reason = _REASONS.get(status, "Error")
    body = b"" if status in (200, 204) else f"{status} {reason}".encode()
    head: List[Tuple[str, str]] = []
    if status == 401 and realm:
        head.append(("WWW-Authenticate", f'Basic realm="{realm}"'))
    head.extend(headers)
    if body:
        head.append(("Content-Type", "text/plain; charset=utf-8"))
    head.append(("Content-Length", str(len(body))))
    respond(f"{status} {reason}", head, exc_info)
    return [body]
