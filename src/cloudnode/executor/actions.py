"""Idempotent actions.

Every mutation of host state is an :class:`Action`. An action knows how to
check whether its goal already holds (:meth:`Action.is_satisfied`) and how
to reach it (:meth:`Action.apply`). Actions must be safe to run again after
a partial failure: the second run must not accumulate changes.

Actions are never applied directly; they go through
:class:`cloudnode.executor.runner.ActionRunner`, which checks, applies,
and records the outcome in the audit log.
"""

import grp
import logging
import os
import pwd
import shutil
import tempfile
from abc import ABCMeta, abstractmethod
from pathlib import Path
from typing import Optional, Sequence

from cloudnode.common.exceptions import ActionError
from cloudnode.executor.backends import (
    AccountManager,
    CloudManager,
    DatabaseEngine,
    Firewall,
    NetworkSubsystem,
    PackageManager,
    ServiceSupervisor,
)
from cloudnode.executor.commands import CommandResult

logger = logging.getLogger(__name__)


class Action(metaclass=ABCMeta):

    @abstractmethod
    def describe(self) -> str:
        """One-line description used in logs and the audit trail. Never contains secrets."""

    def is_satisfied(self) -> bool:
        """Whether the goal state already holds. Naturally idempotent actions always run."""
        return False

    @abstractmethod
    def apply(self) -> Optional[CommandResult]:
        """Reach the goal state. Return the tool result, or None for in-process actions."""

    def __repr__(self):
        return f'<{self.__class__.__name__}: {self.describe()}>'


class RefreshPackageIndex(Action):

    def __init__(self, packages: PackageManager):
        self._packages = packages

    def describe(self):
        return "refresh package index"

    def apply(self):
        return self._packages.refresh_index()


class AddPackageRepository(Action):

    def __init__(self, packages: PackageManager, repository: str):
        self._packages = packages
        self._repository = repository

    def describe(self):
        return f"add package repository {self._repository}"

    def is_satisfied(self):
        return self._packages.has_repository(self._repository)

    def apply(self):
        return self._packages.add_repository(self._repository)


class InstallPackage(Action):

    def __init__(self, packages: PackageManager, name: str):
        self._packages = packages
        self._name = name

    def describe(self):
        return f"install package {self._name}"

    def is_satisfied(self):
        return self._packages.is_installed(self._name)

    def apply(self):
        return self._packages.install(self._name)


class PreseedDebconf(Action):
    """Answer a package's install-time questions before it is installed.

    The answers may hold secrets, so they are sent on stdin and left out of
    the description.
    """

    def __init__(self, packages: PackageManager, package: str, selections: str):
        self._packages = packages
        self._package = package
        self._selections = selections

    def describe(self):
        return f"preseed install answers for {self._package}"

    def is_satisfied(self):
        return self._packages.is_installed(self._package)

    def apply(self):
        return self._packages.preseed(self._selections)


class EnsureDirectory(Action):

    def __init__(self, path: Path, mode: int):
        self._path = Path(path)
        self._mode = mode

    def describe(self):
        return f"create directory {self._path} mode {self._mode:04o}"

    def is_satisfied(self):
        if not self._path.is_dir():
            return False
        return (self._path.stat().st_mode & 0o7777) == self._mode

    def apply(self):
        self._path.mkdir(parents=True, exist_ok=True)
        os.chmod(self._path, self._mode)
        return None


class WriteFile(Action):
    """Write a file with exact content, mode and ownership.

    The file is created with its final mode before any content is written
    and moved into place atomically, so a secret never sits in a readable
    file.
    """

    def __init__(
        self,
        path: Path,
        content: str,
        mode: int,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ):
        self._path = Path(path)
        self._content = content
        self._mode = mode
        self._owner = owner
        self._group = group

    def describe(self):
        ownership = ""
        if self._owner or self._group:
            ownership = f" owner {self._owner or '-'}:{self._group or '-'}"
        return f"write {self._path} mode {self._mode:04o}{ownership}"

    def is_satisfied(self):
        if not self._path.is_file():
            return False
        stat = self._path.stat()
        if (stat.st_mode & 0o7777) != self._mode:
            return False
        if self._owner is not None and _user_name(stat.st_uid) != self._owner:
            return False
        if self._group is not None and _group_name(stat.st_gid) != self._group:
            return False
        return self._path.read_bytes() == self._content.encode("utf-8")

    def apply(self):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            os.fchmod(fd, self._mode)
            with os.fdopen(fd, "wb") as f:
                f.write(self._content.encode("utf-8"))
            if self._owner is not None or self._group is not None:
                try:
                    shutil.chown(tmp_name, user=self._owner, group=self._group)
                except LookupError as e:
                    raise ActionError(f"cannot set ownership of {self._path}: {e}") from e
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return None


class RestartService(Action):

    def __init__(self, services: ServiceSupervisor, name: str):
        self._services = services
        self._name = name

    def describe(self):
        return f"restart service {self._name}"

    def apply(self):
        return self._services.restart(self._name)


class RestartNetworking(Action):
    """Bring up the bridge; skipped once it already carries the address."""

    def __init__(self, network: NetworkSubsystem, interface: str, address: str):
        self._network = network
        self._interface = interface
        self._address = address

    def describe(self):
        return f"restart networking for {self._interface} {self._address}"

    def is_satisfied(self):
        return self._network.has_address(self._interface, self._address)

    def apply(self):
        return self._network.restart()


class EnableIpForwarding(Action):

    def __init__(self, network: NetworkSubsystem):
        self._network = network

    def describe(self):
        return "enable IPv4 forwarding"

    def is_satisfied(self):
        return self._network.ip_forwarding_enabled()

    def apply(self):
        return self._network.enable_ip_forwarding()


class InsertFirewallRule(Action):

    def __init__(
        self,
        firewall: Firewall,
        table: str,
        chain: str,
        rule: Sequence[str],
        append: bool = False,
    ):
        self._firewall = firewall
        self._table = table
        self._chain = chain
        self._rule = list(rule)
        self._append = append

    def describe(self):
        return f"firewall rule {self._table}/{self._chain}: {' '.join(self._rule)}"

    def is_satisfied(self):
        return self._firewall.has_rule(self._table, self._chain, self._rule)

    def apply(self):
        return self._firewall.insert_rule(self._table, self._chain, self._rule, self._append)


class SetDatabaseCredential(Action):

    def __init__(self, database: DatabaseEngine, user: str, secret: str):
        self._database = database
        self._user = user
        self._secret = secret

    def describe(self):
        return f"set database password for {self._user}"

    def is_satisfied(self):
        return self._database.can_authenticate(self._user, self._secret)

    def apply(self):
        return self._database.set_credential(self._user, self._secret)


class CreateDatabase(Action):

    def __init__(self, database: DatabaseEngine, name: str, secret: str):
        self._database = database
        self._name = name
        self._secret = secret

    def describe(self):
        return f"create database {self._name}"

    def is_satisfied(self):
        return self._database.database_exists(self._name, self._secret)

    def apply(self):
        return self._database.create_database(self._name, self._secret)


class GrantDatabaseAccess(Action):

    def __init__(self, database: DatabaseEngine, user: str, scope: str, secret: str):
        self._database = database
        self._user = user
        self._scope = scope
        self._secret = secret

    def describe(self):
        return f"grant database access to {self._user}@{self._scope}"

    def is_satisfied(self):
        return self._database.has_grant(self._user, self._scope, self._secret)

    def apply(self):
        return self._database.grant_access(self._user, self._scope, self._secret)


class MigrateDatabase(Action):

    def __init__(self, database: DatabaseEngine):
        self._database = database

    def describe(self):
        return "migrate database schema"

    def apply(self):
        return self._database.run_migration()


class CreateNetworks(Action):

    def __init__(self, cloud: CloudManager, cidr: str, count: int, size: int):
        self._cloud = cloud
        self._cidr = cidr
        self._count = count
        self._size = size

    def describe(self):
        return f"create {self._count} network(s) of {self._size} addresses in {self._cidr}"

    def is_satisfied(self):
        return self._cloud.has_networks()

    def apply(self):
        return self._cloud.create_networks(self._cidr, self._count, self._size)


class CreateAdminUser(Action):

    def __init__(self, cloud: CloudManager, name: str):
        self._cloud = cloud
        self._name = name

    def describe(self):
        return f"create cloud administrator {self._name}"

    def is_satisfied(self):
        return self._cloud.has_user(self._name)

    def apply(self):
        return self._cloud.create_admin_user(self._name)


class CreateProject(Action):

    def __init__(self, cloud: CloudManager, project: str, admin: str):
        self._cloud = cloud
        self._project = project
        self._admin = admin

    def describe(self):
        return f"create project {self._project} managed by {self._admin}"

    def is_satisfied(self):
        return self._cloud.has_project(self._project)

    def apply(self):
        return self._cloud.create_project(self._project, self._admin)


class ExportCredentials(Action):
    """Export the project's credential bundle and unpack it in place."""

    RC_FILE = "novarc"

    def __init__(
        self,
        cloud: CloudManager,
        project: str,
        admin: str,
        target_dir: Path,
        bundle_name: str,
    ):
        self._cloud = cloud
        self._project = project
        self._admin = admin
        self._target_dir = Path(target_dir)
        self._bundle = self._target_dir / bundle_name

    def describe(self):
        return f"export credentials of {self._project} to {self._target_dir}"

    def is_satisfied(self):
        return self._bundle.is_file() and (self._target_dir / self.RC_FILE).is_file()

    def apply(self):
        result = self._cloud.export_credentials(self._project, self._admin, self._bundle)
        if not result.ok:
            return result
        return self._cloud.unpack_credentials(self._bundle, self._target_dir)


class EnsureGroup(Action):

    def __init__(self, accounts: AccountManager, name: str):
        self._accounts = accounts
        self._name = name

    def describe(self):
        return f"create group {self._name}"

    def is_satisfied(self):
        return self._accounts.group_exists(self._name)

    def apply(self):
        return self._accounts.add_group(self._name)


class EnsureGroupMember(Action):

    def __init__(self, accounts: AccountManager, user: str, group: str):
        self._accounts = accounts
        self._user = user
        self._group = group

    def describe(self):
        return f"add user {self._user} to group {self._group}"

    def is_satisfied(self):
        return self._accounts.is_member(self._user, self._group)

    def apply(self):
        return self._accounts.add_member(self._user, self._group)


class EnsureDeviceGroup(Action):
    """Give a group read-write access to a device node.

    A host without the device (no hardware virtualization) has nothing to
    fix, so the missing device counts as satisfied.
    """

    def __init__(self, accounts: AccountManager, path: Path, group: str):
        self._accounts = accounts
        self._path = Path(path)
        self._group = group

    def describe(self):
        return f"grant group {self._group} read-write on {self._path}"

    def is_satisfied(self):
        if not self._path.exists():
            logger.warning(f"{self._path} not present, hardware virtualization unavailable")
            return True
        return (
            self._accounts.device_group(self._path) == self._group
            and self._accounts.device_group_writable(self._path)
        )

    def apply(self):
        return self._accounts.set_device_group(self._path, self._group)


def _user_name(uid: int) -> Optional[str]:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return None


def _group_name(gid: int) -> Optional[str]:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return None
