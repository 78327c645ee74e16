"""Action lists for each workflow state.

Each builder takes the workflow context and returns the actions that move
the host into the named state, in the order they must run. Builders do
not touch the host; the orchestrator hands their actions to the runner.
"""

from cloudnode.common.models import NodeRole, required_packages, role_services
from cloudnode.engine.context import WorkflowContext
from cloudnode.executor.actions import (
    Action,
    AddPackageRepository,
    CreateAdminUser,
    CreateDatabase,
    CreateNetworks,
    CreateProject,
    EnableIpForwarding,
    EnsureDeviceGroup,
    EnsureDirectory,
    EnsureGroup,
    EnsureGroupMember,
    ExportCredentials,
    GrantDatabaseAccess,
    InsertFirewallRule,
    InstallPackage,
    MigrateDatabase,
    PreseedDebconf,
    RefreshPackageIndex,
    RestartNetworking,
    RestartService,
    SetDatabaseCredential,
    WriteFile,
)

SERVICE_CONFIG_MODE = 0o640
INTERFACES_MODE = 0o644
CREDENTIALS_DIR_MODE = 0o700
REMOTE_DATABASE_SCOPE = "%"
SSH_PORT = 22


def mysql_preseed(secret: str) -> str:
    """Debconf answers that stop mysql-server from prompting for a root password."""
    return (
        f"mysql-server mysql-server/root_password password {secret}\n"
        f"mysql-server mysql-server/root_password_again password {secret}\n"
    )


_PRESEEDS = {
    "mysql-server": mysql_preseed,
}


def dependency_actions(ctx: WorkflowContext) -> list[Action]:
    packages = ctx.backends.packages
    actions: list[Action] = [
        InstallPackage(packages, name) for name in ctx.settings.prerequisite_packages
    ]
    if ctx.settings.package_repository:
        actions.append(AddPackageRepository(packages, ctx.settings.package_repository))
    actions.append(RefreshPackageIndex(packages))
    return actions


def package_actions(ctx: WorkflowContext) -> list[Action]:
    """Install the role's package set, preseeding packages that would prompt."""
    plan = ctx.require_plan()
    packages = ctx.backends.packages
    actions: list[Action] = []
    for name in required_packages(ctx.role):
        preseed = _PRESEEDS.get(name)
        if preseed is not None:
            selections = preseed(plan.database_password.get_secret_value())
            actions.append(PreseedDebconf(packages, name, selections))
        actions.append(InstallPackage(packages, name))
    return actions


def config_actions(ctx: WorkflowContext) -> list[Action]:
    plan = ctx.require_plan()
    settings = ctx.settings
    body = ctx.renderer.render_service_config(plan, ctx.role, settings)
    return [
        WriteFile(
            settings.service_config_path,
            body,
            SERVICE_CONFIG_MODE,
            owner=settings.service_config_owner,
            group=settings.service_config_group,
        ),
    ]


def database_actions(ctx: WorkflowContext) -> list[Action]:
    """Root credential, database, remote grant, schema and tenant networks."""
    plan = ctx.require_plan()
    settings = ctx.settings
    database = ctx.backends.database
    secret = plan.database_password.get_secret_value()
    return [
        SetDatabaseCredential(database, settings.database_user, secret),
        CreateDatabase(database, settings.database_name, secret),
        GrantDatabaseAccess(database, settings.database_user, REMOTE_DATABASE_SCOPE, secret),
        MigrateDatabase(database),
        CreateNetworks(
            ctx.backends.cloud,
            plan.project_network,
            plan.network_count,
            plan.addresses_per_network,
        ),
    ]


def credential_actions(ctx: WorkflowContext) -> list[Action]:
    plan = ctx.require_plan()
    settings = ctx.settings
    cloud = ctx.backends.cloud
    return [
        CreateAdminUser(cloud, plan.admin_user),
        CreateProject(cloud, plan.project_name, plan.admin_user),
        EnsureDirectory(settings.credentials_dir, CREDENTIALS_DIR_MODE),
        ExportCredentials(
            cloud,
            plan.project_name,
            plan.admin_user,
            settings.credentials_dir,
            settings.credentials_bundle,
        ),
    ]


def network_actions(ctx: WorkflowContext) -> list[Action]:
    """Bridge definition and restart; compute nodes also redirect metadata requests."""
    plan = ctx.require_plan()
    settings = ctx.settings
    actions: list[Action] = [
        WriteFile(
            settings.interfaces_path,
            ctx.renderer.render_interfaces(plan, settings),
            INTERFACES_MODE,
        ),
        RestartNetworking(ctx.backends.network, settings.bridge_interface, plan.bridge_address),
    ]
    if ctx.role == NodeRole.COMPUTE:
        actions.append(metadata_redirect(ctx))
    return actions


def metadata_redirect(ctx: WorkflowContext) -> Action:
    """NAT rule sending instance metadata requests to the controller's API."""
    plan = ctx.require_plan()
    settings = ctx.settings
    rule = [
        "-d", f"{settings.metadata_address}/32",
        "-p", "tcp", "-m", "tcp", "--dport", str(settings.metadata_port),
        "-j", "DNAT", "--to-destination", f"{plan.controller_host}:{settings.api_port}",
    ]
    return InsertFirewallRule(ctx.backends.firewall, "nat", "PREROUTING", rule)


def service_actions(ctx: WorkflowContext) -> list[Action]:
    return [RestartService(ctx.backends.services, name) for name in role_services(ctx.role)]


def firewall_actions(ctx: WorkflowContext) -> list[Action]:
    firewall = ctx.backends.firewall
    return [
        InsertFirewallRule(firewall, "filter", "INPUT", ["-p", "icmp", "-j", "ACCEPT"]),
        InsertFirewallRule(
            firewall, "filter", "INPUT", ["-p", "tcp", "--dport", str(SSH_PORT), "-j", "ACCEPT"]
        ),
    ]


def networking_workaround_actions(ctx: WorkflowContext) -> list[Action]:
    """Forwarding and masquerade so instances on the fixed range reach outside."""
    plan = ctx.require_plan()
    settings = ctx.settings
    masquerade = ["-s", plan.fixed_range, "-o", settings.bridge_interface, "-j", "MASQUERADE"]
    return [
        EnableIpForwarding(ctx.backends.network),
        InsertFirewallRule(ctx.backends.firewall, "nat", "POSTROUTING", masquerade, append=True),
    ]


def kvm_actions(ctx: WorkflowContext) -> list[Action]:
    settings = ctx.settings
    accounts = ctx.backends.accounts
    return [
        EnsureGroup(accounts, settings.kvm_group),
        EnsureGroupMember(accounts, settings.service_user, settings.kvm_group),
        EnsureDeviceGroup(accounts, settings.kvm_device, settings.kvm_group),
    ]
