"""
Shared fixtures for the davgate tests.
"""

import base64

import pytest

from davgate.auth import Identity, gen_hash
from davgate.config import ensure_directories, parse_config
from davgate.permissions import parse_permissions
from davgate.store import ConfigStore

PASSWORD = "secret"


@pytest.fixture(scope="session")
def password_hash():
    # cost 4 is the bcrypt minimum; keeps the suite fast
    return gen_hash(PASSWORD, rounds=4)


@pytest.fixture
def make_config(tmp_path, password_hash):
    """Build a ServerConfig rooted at tmp_path from a dict of overrides."""

    def _make(users=None, **overrides):
        data = {"dir": str(tmp_path), **overrides}
        if users:
            data["users"] = {
                name: {"password": password_hash, **entry} for name, entry in users.items()
            }
        cfg = parse_config(data)
        ensure_directories(cfg)
        return cfg

    return _make


@pytest.fixture
def default_users():
    return {
        "admin": {"permissions": "crud"},
        "lj": {"permissions": "cru", "subdir": "/littlejohn"},
        "reader": {"permissions": "r"},
    }


@pytest.fixture
def store(make_config, default_users):
    return ConfigStore(make_config(default_users))


def identity(name, perms):
    return Identity(username=name, authenticated=True, permissions=parse_permissions(perms))


def basic(username, password=PASSWORD):
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {token}"
