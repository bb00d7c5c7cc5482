"""
davgate.paths
~~~~~~~~~~~~~
Virtual -> physical path mapping.

Every request path is treated as if it were rooted at ``/`` before it is
joined onto the base directory, so ``../../etc`` can never climb out of
the jail: surplus ``..`` segments simply stop at the virtual root.
"""

from __future__ import annotations

import os
from typing import List, Optional

REJECTED = ""


class PathValidationError(FileNotFoundError):
    """A request path with illegal characters.

    Subclasses FileNotFoundError so callers cannot tell it apart from a
    missing resource.
    """


def _segments(name: str) -> List[str]:
    parts: List[str] = []
    for seg in name.split("/"):
        if seg in ("", "."):
            continue
        if seg == "..":
            if parts:
                parts.pop()
            continue
        parts.append(seg)
    return parts


def is_safe(name: str) -> bool:
    if "\x00" in name:
        return False
    for sep in (os.sep, os.altsep):
        if sep and sep != "/" and sep in name:
            return False
    return True


def resolve(base_dir: str, jail_subdir: Optional[str], name: str) -> str:
    """Return the physical path for *name*, or ``""`` if *name* is unsafe."""
    if not is_safe(name):
        return REJECTED
    root = base_dir or "."
    jail = _segments(jail_subdir) if jail_subdir else []
    return os.path.normpath(os.path.join(root, *jail, *_segments(name)))


def jail_root(base_dir: str, jail_subdir: Optional[str] = None) -> str:
    return resolve(base_dir, jail_subdir, "")


def resolve_or_raise(base_dir: str, jail_subdir: Optional[str], name: str) -> str:
    physical = resolve(base_dir, jail_subdir, name)
    if physical == REJECTED:
        raise PathValidationError(f"illegal path: {name!r}")
    return physical


def is_within(root: str, physical: str) -> bool:
    root = os.path.normpath(root)
    physical = os.path.normpath(physical)
    if root in (".", ""):
        return not os.path.isabs(physical) and physical.split(os.sep)[0] != ".."
    return physical == root or physical.startswith(root.rstrip(os.sep) + os.sep)
