"""Workflow context threaded through every step."""

import dataclasses
from dataclasses import dataclass
from typing import Optional

from cloudnode.common.config import Settings
from cloudnode.common.models import NodeRole, ProvisioningPlan
from cloudnode.executor.backends import (
    AccountManager,
    CloudManager,
    DatabaseEngine,
    Firewall,
    NetworkSubsystem,
    PackageManager,
    ServiceSupervisor,
)
from cloudnode.executor.commands import CommandRunner
from cloudnode.renderer import ConfigRenderer


@dataclass(frozen=True)
class Backends:
    """One instance of every external collaborator, sharing a command runner."""

    commands: CommandRunner
    packages: PackageManager
    services: ServiceSupervisor
    database: DatabaseEngine
    cloud: CloudManager
    network: NetworkSubsystem
    firewall: Firewall
    accounts: AccountManager

    @classmethod
    def create(cls, commands: CommandRunner, settings: Settings) -> "Backends":
        return cls(
            commands=commands,
            packages=PackageManager(commands, sources_dir=settings.sources_dir),
            services=ServiceSupervisor(commands),
            database=DatabaseEngine(commands, admin_user=settings.database_user),
            cloud=CloudManager(commands),
            network=NetworkSubsystem(commands),
            firewall=Firewall(commands),
            accounts=AccountManager(commands),
        )


@dataclass(frozen=True)
class WorkflowContext:
    """Role, settings, collaborators and, once collected, the plan.

    Frozen: the role can not be reassigned after argument parsing, and the
    plan is attached once by :meth:`with_plan`, which returns a new context.
    """

    role: NodeRole
    settings: Settings
    backends: Backends
    renderer: ConfigRenderer
    plan: Optional[ProvisioningPlan] = None

    @classmethod
    def create(
        cls,
        role: NodeRole,
        settings: Settings,
        commands: Optional[CommandRunner] = None,
    ) -> "WorkflowContext":
        commands = commands or CommandRunner(timeout=settings.command_timeout)
        return cls(
            role=role,
            settings=settings,
            backends=Backends.create(commands, settings),
            renderer=ConfigRenderer(),
        )

    def with_plan(self, plan: ProvisioningPlan) -> "WorkflowContext":
        if self.plan is not None:
            raise RuntimeError("Provisioning plan is already set")
        return dataclasses.replace(self, plan=plan)

    def require_plan(self) -> ProvisioningPlan:
        if self.plan is None:
            raise RuntimeError("Provisioning plan has not been collected yet")
        return self.plan
