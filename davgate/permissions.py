"""
davgate.permissions
~~~~~~~~~~~~~~~~~~~
CRUD permission strings.  A user declares ``permissions: cru`` in the
config file and gets a frozen four-flag set back.
"""

from __future__ import annotations

from dataclasses import dataclass

CAPABILITIES = ("create", "read", "update", "delete")

_FLAGS = {"c": "create", "r": "read", "u": "update", "d": "delete"}


class PermissionStringError(ValueError):
    def __init__(self, raw: str):
        self.raw = raw
        super().__init__(
            f"invalid CRUD permission string {raw!r}: length must be between 1 and 4"
        )


@dataclass(frozen=True, slots=True)
class PermissionSet:
    raw: str = ""
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False

    @classmethod
    def denied(cls, raw: str = "") -> "PermissionSet":
        """All four flags off, keeping *raw* for log output."""
        return cls(raw=raw.lower())

    def allows(self, capability: str) -> bool:
        if capability not in CAPABILITIES:
            raise ValueError(f"unknown capability {capability!r}")
        return getattr(self, capability)

    def __str__(self) -> str:
        return self.raw or "-"


def parse_permissions(value: str | None) -> PermissionSet:
    """Parse a permission string such as ``"crud"`` or ``"R"``.

    Matching is case-insensitive and characters other than c/r/u/d are
    skipped.  Only the length is validated: an empty string or one longer
    than four characters raises :class:`PermissionStringError`.
    """
    raw = (value or "").lower()
    if not 1 <= len(raw) <= 4:
        raise PermissionStringError(value or "")

    flags = {name: False for name in CAPABILITIES}
    for ch in raw:
        name = _FLAGS.get(ch)
        if name:
            flags[name] = True
    return PermissionSet(raw=raw, **flags)
