"""
Data models shared by the collector, the action runner and the workflow engine.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from cloudnode.collector.validators import MAX_COUNT, is_cidr, is_count, is_ipv4, is_name


class NodeRole(str, Enum):
    """Installation target selected once per run."""

    CONTROLLER = "controller"
    COMPUTE = "compute"


_CONTROLLER_PACKAGES = (
    "mysql-server",
    "rabbitmq-server",
    "nova-api",
    "nova-objectstore",
    "nova-scheduler",
    "nova-network",
    "nova-compute",
    "euca2ools",
    "unzip",
)
_COMPUTE_PACKAGES = ("nova-compute",)

_CONTROLLER_SERVICES = (
    "libvirt-bin",
    "nova-network",
    "nova-compute",
    "nova-api",
    "nova-objectstore",
    "nova-scheduler",
)
_COMPUTE_SERVICES = ("libvirt-bin", "nova-compute")


def required_packages(role: NodeRole) -> tuple[str, ...]:
    """Return the ordered package set for a role."""
    if role == NodeRole.CONTROLLER:
        return _CONTROLLER_PACKAGES
    return _COMPUTE_PACKAGES


def role_services(role: NodeRole) -> tuple[str, ...]:
    """Return the services restarted at the end of provisioning, in order."""
    if role == NodeRole.CONTROLLER:
        return _CONTROLLER_SERVICES
    return _COMPUTE_SERVICES


class OutcomeStatus(str, Enum):
    SKIPPED = "skipped"
    APPLIED = "applied"
    FAILED = "failed"


class ActionOutcome(BaseModel):
    """Result of a single Action Runner invocation."""

    model_config = ConfigDict(frozen=True)

    action: str = Field(description="Description of the action")
    status: OutcomeStatus
    reason: str = Field(default="", description="Raw failure detail from the tool")

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    @classmethod
    def skipped(cls, action: str) -> "ActionOutcome":
        return cls(action=action, status=OutcomeStatus.SKIPPED)

    @classmethod
    def applied(cls, action: str) -> "ActionOutcome":
        return cls(action=action, status=OutcomeStatus.APPLIED)

    @classmethod
    def failure(cls, action: str, reason: str) -> "ActionOutcome":
        return cls(action=action, status=OutcomeStatus.FAILED, reason=reason)


class AuditEntry(BaseModel):
    """One line of the audit log."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action: str
    outcome: str
    diagnostic: str = ""


class WorkflowState(str, Enum):
    INIT = "init"
    SAFETY_CHECKED = "safety_checked"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"
    INPUT_COLLECTED = "input_collected"
    PACKAGES_INSTALLED = "packages_installed"
    CONFIG_WRITTEN = "config_written"
    DATABASE_INITIALIZED = "database_initialized"
    CREDENTIALS_GENERATED = "credentials_generated"
    NETWORK_CONFIGURED = "network_configured"
    SERVICES_RESTARTED = "services_restarted"
    FIREWALL_CONFIGURED = "firewall_configured"
    NETWORKING_WORKAROUND_APPLIED = "networking_workaround_applied"
    KVM_PERMISSIONS_FIXED = "kvm_permissions_fixed"
    CLOSED = "closed"


class WorkflowResult(BaseModel):
    """Terminal report of a workflow run."""

    state: WorkflowState = WorkflowState.CLOSED
    success: bool
    failed_state: Optional[WorkflowState] = Field(
        default=None, description="State whose transition failed"
    )
    reason: str = ""
    interrupted: bool = False
    outcomes: list[ActionOutcome] = Field(default_factory=list)


_ADDRESS_FIELDS = (
    "controller_host",
    "object_store_host",
    "message_broker_host",
    "database_host",
    "bridge_address",
    "bridge_broadcast",
    "bridge_netmask",
    "bridge_gateway",
    "bridge_nameserver",
)
CONTROLLER_ONLY_FIELDS = (
    "project_network",
    "network_count",
    "addresses_per_network",
    "admin_user",
    "project_name",
)


class ProvisioningPlan(BaseModel):
    """Validated operator input driving the workflow.

    Every field is re-checked with the same predicates the interactive
    collector applies, so an instance never holds unvalidated input.
    Controller-only fields are ``None`` on compute plans.
    """

    model_config = ConfigDict(frozen=True)

    controller_host: str
    object_store_host: str
    message_broker_host: str
    database_host: str

    bridge_address: str
    bridge_broadcast: str
    bridge_netmask: str
    bridge_gateway: str
    bridge_nameserver: str

    fixed_range: str
    network_size: int
    project_network: Optional[str] = None
    network_count: Optional[int] = None
    addresses_per_network: Optional[int] = None

    admin_user: Optional[str] = None
    project_name: Optional[str] = None

    database_password: SecretStr

    @field_validator(*_ADDRESS_FIELDS)
    @classmethod
    def validate_address(cls, v: str) -> str:
        if not is_ipv4(v):
            raise ValueError(f"not a dotted-quad IPv4 address: {v!r}")
        return v

    @field_validator("fixed_range", "project_network")
    @classmethod
    def validate_cidr(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_cidr(v):
            raise ValueError(f"not an address/prefix range: {v!r}")
        return v

    @field_validator("network_size", "network_count", "addresses_per_network", mode="before")
    @classmethod
    def validate_count(cls, v):
        if v is None or isinstance(v, bool):
            return v
        if not is_count(str(v)):
            raise ValueError(f"not a whole number up to {MAX_COUNT}: {v!r}")
        return int(v)

    @field_validator("admin_user", "project_name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_name(v):
            raise ValueError(f"invalid name: {v!r}")
        return v

    @field_validator("database_password")
    @classmethod
    def validate_password(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("database password must not be empty")
        return v

    def missing_fields(self, role: NodeRole) -> list[str]:
        """Return the role's required fields that are unset."""
        if role != NodeRole.CONTROLLER:
            return []
        return [name for name in CONTROLLER_ONLY_FIELDS if getattr(self, name) is None]
