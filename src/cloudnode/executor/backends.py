"""Narrow interfaces to the external collaborators.

Each backend pairs a read-only check (``is_*``/``has_*``) with the mutation
it guards. Checks return a bool; mutations return the raw
:class:`CommandResult` so the action runner can record the tool's own
failure detail. Nothing here decides whether to run a mutation.
"""

import grp
import logging
import os
from pathlib import Path
from typing import Optional, Sequence

from cloudnode.executor.commands import CommandResult, CommandRunner

logger = logging.getLogger(__name__)


def _sql_quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class PackageManager:
    """apt/dpkg package manager."""

    def __init__(self, commands: CommandRunner, sources_dir: Path = Path("/etc/apt/sources.list.d")):
        self.commands = commands
        self.sources_dir = Path(sources_dir)

    def is_installed(self, name: str) -> bool:
        result = self.commands.run(["dpkg-query", "-W", "-f=${Status}", name])
        return result.ok and "install ok installed" in result.stdout

    def install(self, name: str) -> CommandResult:
        return self.commands.run(
            ["apt-get", "install", "-y", name],
            env={"DEBIAN_FRONTEND": "noninteractive"},
        )

    def preseed(self, selections: str) -> CommandResult:
        """Feed debconf answers on stdin so they never appear on a command line."""
        return self.commands.run(["debconf-set-selections"], input=selections)

    def has_repository(self, repository: str) -> bool:
        """Check the sources directory for a list file mentioning the repository.

        ``ppa:owner/name`` is matched on ``owner``, which add-apt-repository
        embeds in both the file name and the deb line.
        """
        key = repository.split(":", 1)[-1].split("/", 1)[0]
        if not self.sources_dir.is_dir():
            return False
        for list_file in sorted(self.sources_dir.glob("*.list")):
            if key in list_file.name or key in list_file.read_text(errors="replace"):
                return True
        return False

    def add_repository(self, repository: str) -> CommandResult:
        return self.commands.run(["add-apt-repository", "-y", repository])

    def refresh_index(self) -> CommandResult:
        return self.commands.run(["apt-get", "update"])


class ServiceSupervisor:
    """SysV-compatible ``service`` wrapper."""

    def __init__(self, commands: CommandRunner):
        self.commands = commands

    def restart(self, name: str) -> CommandResult:
        return self.commands.run(["service", name, "restart"])


class DatabaseEngine:
    """MySQL through its command line client.

    Statements are passed on stdin and the password through ``MYSQL_PWD``
    so neither is logged as part of the command line.
    """

    def __init__(self, commands: CommandRunner, admin_user: str = "root"):
        self.commands = commands
        self.admin_user = admin_user

    def _query(self, sql: str, secret: Optional[str]) -> CommandResult:
        env = {"MYSQL_PWD": secret} if secret else None
        return self.commands.run(
            ["mysql", "-u", self.admin_user, "--batch", "--skip-column-names"],
            input=sql,
            env=env,
        )

    def can_authenticate(self, user: str, secret: str) -> bool:
        result = self.commands.run(
            ["mysql", "-u", user, "--batch", "--skip-column-names"],
            input="SELECT 1;",
            env={"MYSQL_PWD": secret},
        )
        return result.ok

    def set_credential(self, user: str, secret: str) -> CommandResult:
        """Set the password of a passwordless account, as left by a fresh install."""
        sql = f"SET PASSWORD FOR {_sql_quote(user)}@'localhost' = PASSWORD({_sql_quote(secret)});"
        return self._query(sql, secret=None)

    def database_exists(self, name: str, secret: str) -> bool:
        result = self._query(f"SHOW DATABASES LIKE {_sql_quote(name)};", secret)
        return result.ok and name in result.stdout.split()

    def create_database(self, name: str, secret: str) -> CommandResult:
        return self._query(f"CREATE DATABASE `{name}`;", secret)

    def has_grant(self, user: str, scope: str, secret: str) -> bool:
        sql = (
            "SELECT User FROM mysql.user "
            f"WHERE User = {_sql_quote(user)} AND Host = {_sql_quote(scope)};"
        )
        result = self._query(sql, secret)
        return result.ok and bool(result.stdout.strip())

    def grant_access(self, user: str, scope: str, secret: str) -> CommandResult:
        sql = (
            f"GRANT ALL PRIVILEGES ON *.* TO {_sql_quote(user)}@{_sql_quote(scope)} "
            f"IDENTIFIED BY {_sql_quote(secret)} WITH GRANT OPTION;\n"
            "FLUSH PRIVILEGES;"
        )
        return self._query(sql, secret)

    def run_migration(self) -> CommandResult:
        return self.commands.run(["nova-manage", "db", "sync"])


class CloudManager:
    """Cloud identity and tenant network administration via ``nova-manage``."""

    def __init__(self, commands: CommandRunner):
        self.commands = commands

    def _listing(self, *args: str) -> list[str]:
        result = self.commands.run(["nova-manage", *args])
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    def has_user(self, name: str) -> bool:
        return any(line.split()[0] == name for line in self._listing("user", "list"))

    def create_admin_user(self, name: str) -> CommandResult:
        return self.commands.run(["nova-manage", "user", "admin", name])

    def has_project(self, name: str) -> bool:
        return any(line.split()[0] == name for line in self._listing("project", "list"))

    def create_project(self, project: str, admin: str) -> CommandResult:
        return self.commands.run(["nova-manage", "project", "create", project, admin])

    def has_networks(self) -> bool:
        # First line of the listing is a column header.
        return len(self._listing("network", "list")) > 1

    def create_networks(self, cidr: str, count: int, size: int) -> CommandResult:
        return self.commands.run(
            ["nova-manage", "network", "create", cidr, str(count), str(size)]
        )

    def export_credentials(self, project: str, admin: str, bundle: Path) -> CommandResult:
        return self.commands.run(
            ["nova-manage", "project", "zipfile", project, admin, str(bundle)]
        )

    def unpack_credentials(self, bundle: Path, target_dir: Path) -> CommandResult:
        return self.commands.run(["unzip", "-o", str(bundle), "-d", str(target_dir)])


class NetworkSubsystem:
    """ifupdown bridge configuration and kernel forwarding."""

    def __init__(
        self,
        commands: CommandRunner,
        ip_forward_path: Path = Path("/proc/sys/net/ipv4/ip_forward"),
    ):
        self.commands = commands
        self.ip_forward_path = Path(ip_forward_path)

    def has_address(self, interface: str, address: str) -> bool:
        result = self.commands.run(["ip", "-4", "-o", "addr", "show", "dev", interface])
        return result.ok and f" {address}/" in result.stdout

    def restart(self) -> CommandResult:
        return self.commands.run(["/etc/init.d/networking", "restart"])

    def ip_forwarding_enabled(self) -> bool:
        try:
            return self.ip_forward_path.read_text().strip() == "1"
        except FileNotFoundError:
            return False

    def enable_ip_forwarding(self) -> CommandResult:
        return self.commands.run(["sysctl", "-w", "net.ipv4.ip_forward=1"])


class Firewall:
    """iptables rule management."""

    def __init__(self, commands: CommandRunner):
        self.commands = commands

    def has_rule(self, table: str, chain: str, rule: Sequence[str]) -> bool:
        result = self.commands.run(["iptables", "-t", table, "-C", chain, *rule])
        return result.ok

    def insert_rule(
        self, table: str, chain: str, rule: Sequence[str], append: bool = False
    ) -> CommandResult:
        verb = "-A" if append else "-I"
        return self.commands.run(["iptables", "-t", table, verb, chain, *rule])


class AccountManager:
    """Local groups, group membership and device ownership."""

    def __init__(self, commands: CommandRunner):
        self.commands = commands

    def group_exists(self, name: str) -> bool:
        return self.commands.run(["getent", "group", name]).ok

    def add_group(self, name: str) -> CommandResult:
        return self.commands.run(["groupadd", name])

    def is_member(self, user: str, group: str) -> bool:
        result = self.commands.run(["id", "-nG", user])
        return result.ok and group in result.stdout.split()

    def add_member(self, user: str, group: str) -> CommandResult:
        return self.commands.run(["usermod", "-aG", group, user])

    def device_group(self, path: Path) -> Optional[str]:
        """Return the owning group name of ``path``, or None if it has no name."""
        gid = os.stat(path).st_gid
        try:
            return grp.getgrgid(gid).gr_name
        except KeyError:
            logger.warning(f"No group name for gid {gid} of {path}")
            return None

    def device_group_writable(self, path: Path) -> bool:
        return (os.stat(path).st_mode & 0o060) == 0o060

    def set_device_group(self, path: Path, group: str) -> CommandResult:
        result = self.commands.run(["chgrp", group, str(path)])
        if not result.ok:
            return result
        return self.commands.run(["chmod", "g+rw", str(path)])
