"""Tests for the Action Runner."""

import json
import subprocess
from unittest.mock import MagicMock

import pytest

from cloudnode.common.exceptions import ActionError
from cloudnode.common.models import OutcomeStatus
from cloudnode.engine.audit import AuditLog
from cloudnode.executor.actions import Action, InstallPackage, WriteFile
from cloudnode.executor.backends import PackageManager
from cloudnode.executor.commands import CommandResult
from cloudnode.executor.runner import ActionRunner


class CountingAction(Action):
    """Action whose goal holds after the first apply."""

    def __init__(self, name="counting", result=None, error=None):
        self.name = name
        self.applied = 0
        self._result = result
        self._error = error

    def describe(self):
        return self.name

    def is_satisfied(self):
        return self.applied > 0

    def apply(self):
        if self._error is not None:
            raise self._error
        self.applied += 1
        return self._result


class UndecodableCheck(Action):
    """Action whose goal check reads bytes it cannot decode."""

    def describe(self):
        return "check undecodable file"

    def is_satisfied(self):
        return b"\xff\xfe\x00bad".decode("utf-8") == "x"

    def apply(self):
        raise AssertionError("apply must not run after a failed check")


@pytest.fixture
def audit(tmp_path):
    log = AuditLog(tmp_path / "install.log")
    yield log
    if not log.finalized:
        log.finalize(True)


@pytest.fixture
def runner(audit):
    return ActionRunner(audit)


class TestPerform:
    """Check-before-mutate and audit recording."""

    def test_second_run_is_skipped(self, runner, audit):
        action = CountingAction()
        assert runner.perform(action).status == OutcomeStatus.APPLIED
        assert runner.perform(action).status == OutcomeStatus.SKIPPED
        assert runner.perform(action).status == OutcomeStatus.SKIPPED
        assert action.applied == 1
        assert [entry.outcome for entry in audit.entries] == ["applied", "skipped", "skipped"]

    def test_package_installed_at_most_once(self, runner, commands, tmp_path):
        action = InstallPackage(PackageManager(commands, tmp_path), "unzip")
        runner.perform(action)
        commands.on("dpkg-query", stdout="install ok installed")
        outcome = runner.perform(action)
        assert outcome.status == OutcomeStatus.SKIPPED
        assert len(commands.ran("apt-get", "install")) == 1

    def test_tool_failure_carries_raw_detail(self, runner, audit):
        result = CommandResult(args=["apt-get"], returncode=100, stderr="E: Unable to locate package x\n")
        outcome = runner.perform(CountingAction("install x", result=result))
        assert outcome.failed
        assert outcome.reason == "E: Unable to locate package x"
        assert audit.entries[-1].diagnostic == "E: Unable to locate package x"

    @pytest.mark.parametrize(
        "error",
        [
            FileNotFoundError(2, "No such file or directory", "apt-get"),
            subprocess.TimeoutExpired(["apt-get"], 1800),
            ActionError("cannot set ownership"),
            ValueError("embedded null byte"),
        ],
    )
    def test_exceptions_become_failures(self, runner, error):
        outcome = runner.perform(CountingAction(error=error))
        assert outcome.failed
        assert outcome.reason.startswith(type(error).__name__)

    def test_failed_check_is_recorded(self, runner, audit):
        outcome = runner.perform(UndecodableCheck())
        assert outcome.failed
        assert outcome.reason.startswith("UnicodeDecodeError")
        assert [(e.action, e.outcome) for e in audit.entries] == [("check undecodable file", "failed")]

    def test_write_over_undecodable_file(self, runner, audit, tmp_path):
        target = tmp_path / "nova.conf"
        target.write_bytes(b"\xff\xfe\x00bad")
        outcome = runner.perform(WriteFile(target, "x\n", 0o640))
        assert outcome.status == OutcomeStatus.APPLIED
        assert target.read_text() == "x\n"
        assert len(audit.entries) == 1

    def test_unexpected_exception_propagates(self, runner):
        with pytest.raises(ZeroDivisionError):
            runner.perform(CountingAction(error=ZeroDivisionError()))

    def test_entry_written_per_call(self, runner, audit):
        runner.perform(CountingAction("one"))
        runner.perform(CountingAction("two"))
        lines = audit.path.read_text().splitlines()
        assert [json.loads(line)["action"] for line in lines] == ["one", "two"]

    def test_already_satisfied_twice(self, runner, commands, tmp_path):
        commands.on("dpkg-query", stdout="install ok installed")
        action = InstallPackage(PackageManager(commands, tmp_path), "unzip")
        assert runner.perform(action).status == OutcomeStatus.SKIPPED
        assert runner.perform(action).status == OutcomeStatus.SKIPPED
        assert commands.ran("apt-get") == []

    def test_one_audit_record_per_call(self):
        audit = MagicMock(spec=AuditLog)
        runner = ActionRunner(audit)
        runner.perform(CountingAction("restart service x"))
        audit.record.assert_called_once_with("restart service x", "applied", "")


class TestPerformAll:
    def test_stops_at_first_failure(self, runner):
        failing = CountingAction("bad", result=CommandResult(args=["x"], returncode=1))
        after = CountingAction("after")
        outcomes = runner.perform_all([CountingAction("before"), failing, after])
        assert [o.status for o in outcomes] == [OutcomeStatus.APPLIED, OutcomeStatus.FAILED]
        assert after.applied == 0
        assert outcomes[-1].reason == "exit status 1"
