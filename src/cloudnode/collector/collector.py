"""Interactive collection of the provisioning plan.

Each plan field is described by a :class:`FieldSpec`. The collector asks
for the fields of the selected role in order, substitutes a default on
empty input where one is known, and loops on a field until its validator
accepts the answer. The only way out of a prompt is valid input or an
interrupt, which propagates to the caller.
"""

import getpass
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import typer

from cloudnode.collector.validators import is_cidr, is_count, is_ipv4, is_name
from cloudnode.common.config import Settings
from cloudnode.common.models import NodeRole, ProvisioningPlan

logger = logging.getLogger(__name__)

_IPV4_HINT = "Enter a dotted-quad IPv4 address such as 192.168.1.10."
_CIDR_HINT = "Enter an address range such as 10.0.0.0/24."
_COUNT_HINT = "Enter a whole number using digits only, at most 4294967296."
_NAME_HINT = "Use letters, digits, '.', '_', '@' or '-', starting with a letter or digit."


@dataclass(frozen=True)
class FieldSpec:
    """How to ask for, and validate, one plan field."""

    name: str
    prompt: str
    validator: Callable[[str], bool]
    hint: str
    controller_only: bool = False


FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("controller_host", "Controller (API) host address", is_ipv4, _IPV4_HINT),
    FieldSpec("object_store_host", "Object store host address", is_ipv4, _IPV4_HINT),
    FieldSpec("message_broker_host", "Message broker host address", is_ipv4, _IPV4_HINT),
    FieldSpec("database_host", "Database host address", is_ipv4, _IPV4_HINT),
    FieldSpec("bridge_address", "Bridge address of this host", is_ipv4, _IPV4_HINT),
    FieldSpec("bridge_broadcast", "Bridge broadcast address", is_ipv4, _IPV4_HINT),
    FieldSpec("bridge_netmask", "Bridge netmask", is_ipv4, _IPV4_HINT),
    FieldSpec("bridge_gateway", "Bridge gateway", is_ipv4, _IPV4_HINT),
    FieldSpec("bridge_nameserver", "Nameserver", is_ipv4, _IPV4_HINT),
    FieldSpec("fixed_range", "Fixed range for all tenant networks", is_cidr, _CIDR_HINT),
    FieldSpec("network_size", "Usable addresses in the fixed range", is_count, _COUNT_HINT),
    FieldSpec(
        "project_network", "Address range for the project", is_cidr, _CIDR_HINT,
        controller_only=True,
    ),
    FieldSpec(
        "network_count", "Number of networks to create", is_count, _COUNT_HINT,
        controller_only=True,
    ),
    FieldSpec(
        "addresses_per_network", "Addresses per network", is_count, _COUNT_HINT,
        controller_only=True,
    ),
    FieldSpec("admin_user", "Cloud administrator name", is_name, _NAME_HINT, controller_only=True),
    FieldSpec("project_name", "Project name", is_name, _NAME_HINT, controller_only=True),
)

_SERVICE_HOST_FIELDS = (
    "controller_host",
    "object_store_host",
    "message_broker_host",
    "database_host",
)


def build_defaults(role: NodeRole, settings: Settings, host: dict[str, str]) -> dict[str, str]:
    """Combine inspected host values with configured tenant defaults.

    On a controller the service hosts default to this host's own address.
    """
    defaults = {
        "fixed_range": settings.default_fixed_range,
        "network_size": str(settings.default_network_size),
        "project_network": settings.default_project_network,
        "network_count": str(settings.default_network_count),
        "addresses_per_network": str(settings.default_addresses_per_network),
    }
    defaults.update(host)
    own_address = host.get("bridge_address")
    if role == NodeRole.CONTROLLER and own_address:
        for name in _SERVICE_HOST_FIELDS:
            defaults[name] = own_address
    return defaults


class InteractiveCollector:
    """Builds a :class:`ProvisioningPlan` from operator answers.

    Attributes:
        role: Node role; selects which fields are asked
        defaults: Values substituted for empty answers, keyed by field name
    """

    def __init__(
        self,
        role: NodeRole,
        defaults: Optional[dict[str, str]] = None,
        prompt_func: Callable[[str], str] = input,
        secret_func: Callable[[str], str] = getpass.getpass,
        echo: Callable[[str], None] = typer.echo,
    ):
        self.role = role
        self.defaults = dict(defaults or {})
        self._prompt = prompt_func
        self._secret = secret_func
        self._echo = echo

    def fields(self) -> list[FieldSpec]:
        if self.role == NodeRole.CONTROLLER:
            return list(FIELDS)
        return [spec for spec in FIELDS if not spec.controller_only]

    def ask(self, spec: FieldSpec) -> str:
        """Prompt until ``spec.validator`` accepts the answer and return it."""
        default = self.defaults.get(spec.name)
        label = f"{spec.prompt} [{default}]: " if default else f"{spec.prompt}: "
        while True:
            value = self._prompt(label).strip()
            if not value and default:
                value = default
            if spec.validator(value):
                return value
            logger.debug(f"Rejected {spec.name}={value!r}")
            self._echo(f"Invalid value {value!r} for {spec.prompt.lower()}. {spec.hint}")

    def ask_secret(self) -> str:
        """Read the database root password twice without echo.

        Starts over from the first entry until both entries match and are
        non-empty.
        """
        while True:
            first = self._secret("Database root password: ")
            second = self._secret("Database root password (again): ")
            if not first:
                self._echo("The password must not be empty.")
                continue
            if first != second:
                self._echo("The passwords do not match. Try again.")
                continue
            return first

    def collect(self) -> ProvisioningPlan:
        """Ask every field of the role and return the frozen plan."""
        answers: dict[str, str] = {}
        for spec in self.fields():
            answers[spec.name] = self.ask(spec)
        answers["database_password"] = self.ask_secret()
        plan = ProvisioningPlan(**answers)
        missing = plan.missing_fields(self.role)
        if missing:
            raise ValueError(f"Plan is missing fields for {self.role.value}: {missing}")
        logger.info(
            f"Collected plan for {self.role.value}: "
            f"controller={plan.controller_host} bridge={plan.bridge_address}"
        )
        return plan
