"""Tests for the audit log."""

import json
import stat

import pytest

from cloudnode.common.exceptions import AuditLogError
from cloudnode.engine.audit import REDACTED, AuditLog, sanitize


def _lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestSanitize:
    def test_drops_xtrace_lines(self):
        text = "+ apt-get install -y nova-compute\n++ set -x\nE: Unable to locate package"
        assert sanitize(text) == "E: Unable to locate package"

    def test_strips_terminal_escapes_and_redraws(self):
        text = "\x1b[1;31mERROR\x1b[0m: failed\nProgress 10%\rProgress 100%"
        assert sanitize(text) == "ERROR: failed\nProgress 100%"

    def test_keeps_plus_inside_text(self):
        assert sanitize("expected 1+1") == "expected 1+1"

    def test_redacts_secrets(self):
        assert sanitize("Access denied for pw hunter2", ["hunter2"]) == f"Access denied for pw {REDACTED}"


class TestAuditLog:
    """Entry persistence and finalization."""

    def test_record_is_flushed_immediately(self, tmp_path):
        path = tmp_path / "log" / "install.log"
        audit = AuditLog(path)
        audit.record("install package x", "applied")
        entries = _lines(path)
        assert entries[0]["action"] == "install package x"
        assert entries[0]["outcome"] == "applied"
        assert "timestamp" in entries[0]
        audit.finalize(True)

    def test_finalize_appends_terminal_entry(self, tmp_path):
        path = tmp_path / "install.log"
        audit = AuditLog(path)
        audit.record("a", "skipped")
        audit.record("b", "failed", "boom")
        final = audit.finalize(False, "aborted at packages_installed: b: boom")
        assert final.outcome == "abort"
        entries = _lines(path)
        assert [e["action"] for e in entries] == ["a", "b", "workflow"]
        assert entries[-1]["diagnostic"] == "aborted at packages_installed: b: boom"

    def test_finalize_sanitizes_and_redacts(self, tmp_path):
        path = tmp_path / "install.log"
        audit = AuditLog(path)
        audit.add_secret("hunter2")
        audit.record("grant", "failed", "+ mysql -u root\nERROR 1045: bad password hunter2")
        audit.finalize(False, "grant: hunter2")
        text = path.read_text()
        assert "hunter2" not in text
        assert "+ mysql" not in text
        assert _lines(path)[0]["diagnostic"] == f"ERROR 1045: bad password {REDACTED}"

    def test_secret_redacted_before_finalize(self, tmp_path):
        path = tmp_path / "install.log"
        audit = AuditLog(path)
        audit.add_secret("hunter2")
        audit.record("grant", "failed", "ERROR 1045: bad password hunter2")
        assert "hunter2" not in path.read_text()
        assert _lines(path)[0]["diagnostic"] == f"ERROR 1045: bad password {REDACTED}"
        assert audit.entries[0].diagnostic == f"ERROR 1045: bad password {REDACTED}"
        audit.finalize(True)

    def test_log_readable_by_owner_only(self, tmp_path):
        path = tmp_path / "install.log"
        AuditLog(path).finalize(True)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_existing_log_mode_is_restricted(self, tmp_path):
        path = tmp_path / "install.log"
        path.write_text("")
        path.chmod(0o644)
        AuditLog(path).finalize(True)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_earlier_runs_are_preserved(self, tmp_path):
        path = tmp_path / "install.log"
        path.write_text('{"action": "old", "outcome": "applied"}\n')
        audit = AuditLog(path)
        audit.record("new", "applied")
        audit.finalize(True)
        entries = _lines(path)
        assert entries[0] == {"action": "old", "outcome": "applied"}
        assert [e["action"] for e in entries[1:]] == ["new", "workflow"]

    def test_no_writes_after_finalize(self, tmp_path):
        audit = AuditLog(tmp_path / "install.log")
        audit.finalize(True)
        with pytest.raises(AuditLogError):
            audit.record("late", "applied")

    def test_finalize_only_once(self, tmp_path):
        audit = AuditLog(tmp_path / "install.log")
        audit.finalize(True)
        with pytest.raises(AuditLogError):
            audit.finalize(True)
