"""Append-only audit trail of privileged actions.

Entries are written as JSON lines and flushed one by one, so a crash still
leaves everything up to the last action on disk. :meth:`AuditLog.finalize`
runs once at the end of a run: it rewrites this run's entries through
:func:`sanitize` and appends the terminal entry. Entries from earlier runs
in the same file are left untouched. Registered secrets are redacted as
entries are recorded, and the file is readable by its owner only.
"""

import logging
import os
import re
from pathlib import Path
from typing import Iterable

from cloudnode.common.exceptions import AuditLogError
from cloudnode.common.models import AuditEntry

logger = logging.getLogger(__name__)

FINAL_ACTION = "workflow"
OUTCOME_SUCCESS = "success"
OUTCOME_ABORT = "abort"
REDACTED = "********"
LOG_MODE = 0o600

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_XTRACE_RE = re.compile(r"^\++(\s|$)")


def sanitize(text: str, secrets: Iterable[str] = ()) -> str:
    """Strip tool trace noise from a diagnostic and redact secrets.

    Drops shell xtrace lines (``+ cmd``), terminal escape sequences and
    carriage-return progress redraws.

    >>> sanitize("+ apt-get install x\\nE: Unable to locate package x")
    'E: Unable to locate package x'
    """
    lines = []
    for line in text.split("\n"):
        line = _ANSI_ESCAPE_RE.sub("", line).rstrip("\r").rsplit("\r", 1)[-1]
        if _XTRACE_RE.match(line.lstrip()):
            continue
        lines.append(line.rstrip())
    result = "\n".join(lines).strip()
    for secret in secrets:
        if secret:
            result = result.replace(secret, REDACTED)
    return result


class AuditLog:
    """Process-wide audit log bound to one file.

    Attributes:
        path: Log file, created with its parent directory if absent
        entries: Entries written by this run, in order
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, LOG_MODE)
        # An existing log may predate the restricted mode.
        os.fchmod(fd, LOG_MODE)
        self._file = os.fdopen(fd, "a", encoding="utf-8")
        self._start = self._file.tell()
        self._secrets: set[str] = set()
        self.entries: list[AuditEntry] = []
        self.finalized = False
        logger.info(f"Audit log opened at {self.path}")

    def add_secret(self, secret: str) -> None:
        """Register a value to redact from this run's entries, on disk and at finalization."""
        if secret:
            self._secrets.add(secret)

    def record(self, action: str, outcome: str, diagnostic: str = "") -> AuditEntry:
        """Append one entry and flush it to disk."""
        if self.finalized:
            raise AuditLogError(f"Audit log {self.path} is finalized")
        entry = AuditEntry(
            action=self._redact(action),
            outcome=outcome,
            diagnostic=self._redact(diagnostic),
        )
        self._write(entry)
        self.entries.append(entry)
        return entry

    def finalize(self, success: bool, reason: str = "") -> AuditEntry:
        """Sanitize this run's entries, append the terminal entry and close.

        Raises:
            AuditLogError: If the log was already finalized
        """
        if self.finalized:
            raise AuditLogError(f"Audit log {self.path} is already finalized")
        self.finalized = True
        try:
            self.entries = [self._sanitized(entry) for entry in self.entries]
            self._file.truncate(self._start)
            for entry in self.entries:
                self._write(entry)
            final = self._sanitized(AuditEntry(
                action=FINAL_ACTION,
                outcome=OUTCOME_SUCCESS if success else OUTCOME_ABORT,
                diagnostic=reason,
            ))
            self._write(final)
            self.entries.append(final)
        finally:
            self._file.close()
        logger.info(f"Audit log finalized: {final.outcome}")
        return final

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def _sanitized(self, entry: AuditEntry) -> AuditEntry:
        return entry.model_copy(update={
            "action": sanitize(entry.action, self._secrets),
            "diagnostic": sanitize(entry.diagnostic, self._secrets),
        })

    def _write(self, entry: AuditEntry) -> None:
        self._file.write(entry.model_dump_json() + "\n")
        self._file.flush()
