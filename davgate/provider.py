"""
davgate.provider
~~~~~~~~~~~~~~~~
WsgiDAV provider backed by :class:`~davgate.fs.JailFileSystem`.

The gate middleware leaves the request's :class:`~davgate.auth.Identity`
in ``environ[IDENTITY_KEY]`` and the config snapshot it checked against
in ``environ[CONFIG_KEY]``; the provider picks both up once per resource
and hands them explicitly to every filesystem call.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from contextlib import contextmanager
from typing import Iterator, List, Optional

from wsgidav import util
from wsgidav.dav_error import HTTP_FORBIDDEN, HTTP_NOT_FOUND, DAVError
from wsgidav.dav_provider import DAVCollection, DAVNonCollection, DAVProvider

from .auth import Identity
from .config import ServerConfig
from .fs import JailFileSystem

logger = logging.getLogger(__name__)

IDENTITY_KEY = "davgate.identity"
CONFIG_KEY = "davgate.config"


def identity_from(environ: dict) -> Identity:
    return environ.get(IDENTITY_KEY) or Identity.anonymous()


def config_from(environ: dict) -> Optional[ServerConfig]:
    return environ.get(CONFIG_KEY)


@contextmanager
def _dav_errors() -> Iterator[None]:
    # PathValidationError is a FileNotFoundError, so bad names read as 404
    try:
        yield
    except FileNotFoundError as e:
        raise DAVError(HTTP_NOT_FOUND) from e
    except PermissionError as e:
        logger.debug(f"Filesystem gate refused: {e}")
        raise DAVError(HTTP_FORBIDDEN) from e


class _JailedResource:
    """Behaviour shared by files and folders."""

    fs: JailFileSystem
    identity: Identity
    cfg: Optional[ServerConfig]
    info: os.stat_result

    def _bind(self, fs: JailFileSystem, info: os.stat_result) -> None:
        self.fs = fs
        self.identity = identity_from(self.environ)
        self.cfg = config_from(self.environ)
        self.info = info

    def get_creation_date(self):
        return self.info.st_ctime

    def get_last_modified(self):
        return self.info.st_mtime

    def support_recursive_delete(self):
        return True

    def delete(self):
        with _dav_errors():
            self.fs.remove_all(self.identity, self.path, cfg=self.cfg)
        self.remove_all_properties(recursive=True)
        self.remove_all_locks(recursive=True)

    def support_recursive_move(self, dest_path):
        return True

    def move_recursive(self, dest_path):
        with _dav_errors():
            self.fs.rename(self.identity, self.path, dest_path, cfg=self.cfg)
        if self.provider.prop_manager:
            dest_res = self.provider.get_resource_inst(dest_path, self.environ)
            if dest_res is not None:
                self.provider.prop_manager.move_properties(
                    self.get_ref_url(),
                    dest_res.get_ref_url(),
                    with_children=True,
                    environ=self.environ,
                )


class JailFile(_JailedResource, DAVNonCollection):
    def __init__(self, path: str, environ: dict, fs: JailFileSystem, info: os.stat_result):
        super().__init__(path, environ)
        self._bind(fs, info)

    def get_content_length(self):
        return self.info.st_size

    def get_content_type(self):
        return util.guess_mime_type(self.path)

    def get_etag(self):
        return f"{self.info.st_ino:x}-{self.info.st_mtime_ns:x}-{self.info.st_size:x}"

    def support_etag(self):
        return True

    def support_ranges(self):
        return True

    def get_content(self):
        with _dav_errors():
            return self.fs.open(self.identity, self.path, "rb", cfg=self.cfg)

    def begin_write(self, *, content_type=None):
        with _dav_errors():
            f = self.fs.open(self.identity, self.path, "wb", cfg=self.cfg)
        if f is None:
            raise DAVError(HTTP_FORBIDDEN)
        return f

    def copy_move_single(self, dest_path, *, is_move):
        with _dav_errors():
            with self.fs.open(self.identity, self.path, "rb", cfg=self.cfg) as src:
                dst = self.fs.open(self.identity, dest_path, "wb", cfg=self.cfg)
                if dst is None:
                    raise DAVError(HTTP_FORBIDDEN)
                with dst:
                    shutil.copyfileobj(src, dst)


class JailFolder(_JailedResource, DAVCollection):
    def __init__(self, path: str, environ: dict, fs: JailFileSystem, info: os.stat_result):
        super().__init__(path, environ)
        self._bind(fs, info)

    def get_member_names(self) -> List[str]:
        with _dav_errors():
            return self.fs.listdir(self.identity, self.path, cfg=self.cfg)

    def get_member(self, name):
        return self.provider.get_resource_inst(util.join_uri(self.path, name), self.environ)

    def create_empty_resource(self, name):
        path = util.join_uri(self.path, name)
        with _dav_errors():
            f = self.fs.open(self.identity, path, "wb", cfg=self.cfg)
        if f is None:
            raise DAVError(HTTP_FORBIDDEN)
        f.close()
        return self.provider.get_resource_inst(path, self.environ)

    def create_collection(self, name):
        with _dav_errors():
            self.fs.mkdir(self.identity, util.join_uri(self.path, name), cfg=self.cfg)

    def copy_move_single(self, dest_path, *, is_move):
        with _dav_errors():
            try:
                self.fs.mkdir(self.identity, dest_path, cfg=self.cfg)
            except FileExistsError:
                pass


class JailProvider(DAVProvider):
    def __init__(self, fs: JailFileSystem):
        super().__init__()
        self.fs = fs

    def is_readonly(self):
        return False

    def get_resource_inst(self, path, environ):
        # the engine asks for the parent of "/" as None
        if path is None:
            return None
        try:
            info = self.fs.stat(identity_from(environ), path, cfg=config_from(environ))
        except FileNotFoundError:
            return None
        except PermissionError as e:
            raise DAVError(HTTP_FORBIDDEN) from e
        if info is None:
            return None
        if stat.S_ISDIR(info.st_mode):
            return JailFolder(path, environ, self.fs, info)
        return JailFile(path, environ, self.fs, info)
