"""Pytest configuration and shared fixtures.

No test touches the real host: external tools go through
:class:`FakeCommandRunner` and every path in the settings points into a
temporary directory.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

import pytest

from cloudnode.common.config import Settings
from cloudnode.common.models import NodeRole, ProvisioningPlan
from cloudnode.executor.commands import CommandResult

SECRET = "s3cret-pw"

WORKER_ANSWERS = [
    "192.168.1.10",  # controller_host
    "192.168.1.10",  # object_store_host
    "192.168.1.10",  # message_broker_host
    "192.168.1.10",  # database_host
    "192.168.1.20",  # bridge_address
    "192.168.1.255",  # bridge_broadcast
    "255.255.255.0",  # bridge_netmask
    "192.168.1.1",  # bridge_gateway
    "192.168.1.1",  # bridge_nameserver
    "10.0.0.0/8",  # fixed_range
    "64",  # network_size
]

CONTROLLER_ANSWERS = [
    "192.168.1.10",
    "192.168.1.10",
    "192.168.1.10",
    "192.168.1.10",
    "192.168.1.10",
    "192.168.1.255",
    "255.255.255.0",
    "192.168.1.1",
    "192.168.1.1",
    "10.0.0.0/8",
    "64",
    "10.0.0.0/24",  # project_network
    "1",  # network_count
    "64",  # addresses_per_network
    "admin",  # admin_user
    "proj",  # project_name
]


@dataclass
class Call:
    args: list[str]
    input: Optional[str] = None
    env: Optional[Mapping[str, str]] = None


class FakeCommandRunner:
    """Stand-in for CommandRunner that records calls and replays canned results.

    Unmatched commands succeed with empty output. Rules added later win over
    earlier ones, so a test can change the host state between runs.
    """

    def __init__(self):
        self.calls: list[Call] = []
        self._rules: list[tuple[tuple[str, ...], dict]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        raises: Optional[BaseException] = None,
    ) -> None:
        self._rules.insert(0, (prefix, {
            "returncode": returncode,
            "stdout": stdout,
            "stderr": stderr,
            "raises": raises,
        }))

    def run(
        self,
        args: Sequence[str],
        input: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        args = [str(arg) for arg in args]
        self.calls.append(Call(args=args, input=input, env=env))
        for prefix, rule in self._rules:
            if tuple(args[:len(prefix)]) == prefix:
                if rule["raises"] is not None:
                    raise rule["raises"]
                return CommandResult(
                    args=args,
                    returncode=rule["returncode"],
                    stdout=rule["stdout"],
                    stderr=rule["stderr"],
                )
        return CommandResult(args=args, returncode=0)

    def ran(self, *prefix: str) -> list[Call]:
        """Calls whose argv starts with ``prefix``."""
        return [call for call in self.calls if tuple(call.args[:len(prefix)]) == prefix]


def scripted(answers: Iterable[str]):
    """Prompt function returning ``answers`` in order."""
    remaining = iter(answers)

    def prompt(label: str) -> str:
        try:
            return next(remaining)
        except StopIteration:
            raise AssertionError(f"Unexpected prompt: {label!r}")

    return prompt


@pytest.fixture
def commands():
    return FakeCommandRunner()


@pytest.fixture
def settings(tmp_path):
    """Settings with every host path redirected under tmp_path."""
    os_release = tmp_path / "os-release"
    os_release.write_text('NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="22.04"\n')
    return Settings(
        config_file=tmp_path / "absent.yml",
        audit_log_path=tmp_path / "log" / "install.log",
        os_release_path=os_release,
        sources_dir=tmp_path / "sources.list.d",
        service_config_path=tmp_path / "etc" / "nova" / "nova.conf",
        service_config_owner=None,
        service_config_group=None,
        interfaces_path=tmp_path / "etc" / "network" / "interfaces",
        credentials_dir=tmp_path / "creds",
        kvm_device=tmp_path / "dev" / "kvm",
    )


def _plan(answers: list[str], role: NodeRole) -> ProvisioningPlan:
    from cloudnode.collector.collector import InteractiveCollector

    names = [spec.name for spec in InteractiveCollector(role).fields()]
    return ProvisioningPlan(**dict(zip(names, answers)), database_password=SECRET)


@pytest.fixture
def worker_plan():
    return _plan(WORKER_ANSWERS, NodeRole.COMPUTE)


@pytest.fixture
def controller_plan():
    return _plan(CONTROLLER_ANSWERS, NodeRole.CONTROLLER)
