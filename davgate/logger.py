"""
davgate.logger
~~~~~~~~~~~~~~
Human-readable *or* JSON logs, plus an optional JSONL audit file with
daily rotation.

Audit events are plain dicts handed to the ``davgate.audit`` logger;
the formatters below know how to render both those and ordinary string
messages.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_ISO = "%Y-%m-%dT%H:%M:%SZ"

ROOT_LOGGER = "davgate"
AUDIT_LOGGER = "davgate.audit"


def _now() -> str:  # RFC-3339 without microseconds
    return datetime.now(tz=timezone.utc).strftime(_ISO)


class _PlainFormatter(logging.Formatter):
    """ e.g. 2025-06-19T15:07:02Z auth_fail alice 10.0.0.7 user not found """

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record):  # type: ignore[override]
        if not isinstance(record.msg, dict):
            return super().format(record)

        d: Dict[str, Any] = record.msg
        parts = [
            d.get("ts", _now()),
            d.get("event", "-"),
            d.get("user") or "-",
        ]
        event = d.get("event")
        if event == "auth_fail":
            parts.extend([d.get("ip", "-"), d.get("reason", "")])
        elif event == "deny":
            parts.extend(
                [d.get("ip", "-"), d.get("method", "-"), d.get("path", "-"), "DENIED", d.get("reason", "")]
            )
        elif event == "end":
            parts.extend(
                [d.get("method", "-"), d.get("path", "-"), str(d.get("status", "-")), f'{d.get("ms", 0)} ms']
            )
        else:
            parts.extend(
                str(v) for k, v in d.items() if k not in ("ts", "event", "user")
            )
        return " ".join(parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        if isinstance(record.msg, dict):
            entry = dict(record.msg)
            entry.setdefault("ts", _now())
        else:
            entry = {
                "ts": _now(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[0] is not None:
                entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, separators=(",", ":"), default=str)


def setup_logging(
    production: bool = False,
    debug: bool = False,
    audit_path: str | Path | None = None,
) -> logging.Logger:
    """Configure the ``davgate`` logger tree.  Safe to call again."""
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.propagate = False  # don't spam the root logger

    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_JSONFormatter() if production else _PlainFormatter())
    root.addHandler(console)

    audit = logging.getLogger(AUDIT_LOGGER)
    for h in list(audit.handlers):
        audit.removeHandler(h)
        h.close()
    if audit_path:
        jsonl_file = Path(audit_path).with_suffix(".jsonl")
        h = logging.handlers.TimedRotatingFileHandler(
            jsonl_file, when="midnight", backupCount=7, encoding="utf-8"
        )
        h.setFormatter(_JSONFormatter())
        audit.addHandler(h)
    return root


class AuditLogger:
    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logging.getLogger(AUDIT_LOGGER)

    def auth_fail(self, ip: str, supplied_user: str | None, reason: str) -> None:
        self.log.warning(
            {
                "event": "auth_fail",
                "ts": _now(),
                "ip": ip,
                "user": supplied_user or "-",
                "reason": reason,
            }
        )

    def deny(self, user: str, ip: str, method: str, path: str, reason: str) -> None:
        self.log.warning(
            {
                "event": "deny",
                "ts": _now(),
                "user": user or "-",
                "ip": ip,
                "method": method,
                "path": path,
                "reason": reason,
            }
        )

    def operation(self, action: str, user: str, **paths: str) -> None:
        self.log.info({"event": action, "ts": _now(), "user": user or "-", **paths})

    def end(self, user: str, method: str, path: str, status: int, duration_ms: int) -> None:
        self.log.debug(
            {
                "event": "end",
                "ts": _now(),
                "user": user or "-",
                "method": method,
                "path": path,
                "status": status,
                "ms": duration_ms,
            }
        )
