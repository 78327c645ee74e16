"""Tests for the cloudnode command line and its exit codes."""

import os

import pytest

from cloudnode import __version__
from cloudnode.cli import main
from cloudnode.common.models import WorkflowResult, WorkflowState
from cloudnode.engine.workflow import Orchestrator


@pytest.fixture(autouse=True)
def host(monkeypatch, tmp_path):
    """Point settings at tmp_path through the environment."""
    os_release = tmp_path / "os-release"
    os_release.write_text("ID=ubuntu\n")
    monkeypatch.setenv("CLOUDNODE_CONFIG_FILE", str(tmp_path / "absent.yml"))
    monkeypatch.setenv("CLOUDNODE_OS_RELEASE_PATH", str(os_release))
    monkeypatch.setenv("CLOUDNODE_AUDIT_LOG_PATH", str(tmp_path / "install.log"))
    monkeypatch.chdir(tmp_path)
    return os_release


class TestUsage:
    """Argument errors exit with 64 before any host check."""

    def test_unknown_role(self, capsys):
        assert main(["--type", "storage"]) == 64
        assert "storage" in capsys.readouterr().err

    def test_unknown_option(self):
        assert main(["--force"]) == 64

    def test_missing_option_value(self):
        assert main(["--type"]) == 64

    def test_help(self, capsys):
        assert main(["--help"]) == 0
        assert "--type" in capsys.readouterr().out

    def test_version(self, capsys):
        assert main(["--version"]) == 0
        assert __version__ in capsys.readouterr().out


class TestPreconditions:
    def test_not_root(self, monkeypatch, capsys):
        monkeypatch.setattr(os, "geteuid", lambda: 1000)
        assert main(["-t", "compute"]) == 77
        assert "root" in capsys.readouterr().err

    def test_unsupported_platform(self, monkeypatch, host):
        monkeypatch.setattr(os, "geteuid", lambda: 0)
        host.write_text("ID=arch\n")
        assert main(["--type", "controller"]) == 72

    def test_missing_os_release(self, monkeypatch, host):
        monkeypatch.setattr(os, "geteuid", lambda: 0)
        host.unlink()
        assert main([]) == 72


class TestWorkflowOutcome:
    """Exit code follows the workflow result."""

    @pytest.fixture
    def outcome(self, monkeypatch):
        def set_result(result):
            monkeypatch.setattr(Orchestrator, "run", lambda self: result)

        return set_result

    def test_success(self, outcome, capsys):
        outcome(WorkflowResult(success=True))
        assert main(["-t", "compute"]) == 0
        assert "provisioned" in capsys.readouterr().out

    def test_action_failure(self, outcome, capsys):
        outcome(WorkflowResult(
            success=False,
            failed_state=WorkflowState.PACKAGES_INSTALLED,
            reason="install package mysql-server: E: Unable to locate package mysql-server",
        ))
        assert main([]) == 70
        err = capsys.readouterr().err
        assert "packages_installed" in err
        assert "Unable to locate package" in err

    def test_interrupted(self, outcome):
        outcome(WorkflowResult(
            success=False,
            failed_state=WorkflowState.INPUT_COLLECTED,
            reason="interrupted by operator",
            interrupted=True,
        ))
        assert main(["--type", "compute"]) == 130
