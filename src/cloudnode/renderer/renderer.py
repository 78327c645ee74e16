"""Config Renderer for node configuration artifacts.

Turns a provisioning plan into file bodies using Jinja2 templates. Rendering
is pure: writing the results to disk, with ownership and permissions, is an
action performed by the workflow.
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from cloudnode.common.config import Settings
from cloudnode.common.exceptions import TemplateRenderError
from cloudnode.common.models import NodeRole, ProvisioningPlan

logger = logging.getLogger(__name__)

SERVICE_CONFIG_TEMPLATE = "nova.conf.j2"
INTERFACES_TEMPLATE = "interfaces.j2"


class ConfigRenderer:
    """Renders the service flag file and the bridge interface definition."""

    def __init__(self, templates_dir: Optional[Path] = None):
        """Initialize renderer.

        Args:
            templates_dir: Path to Jinja2 templates directory
                          (defaults to ./templates relative to this file)
        """
        self.templates_dir = templates_dir or Path(__file__).parent / "templates"

        if not self.templates_dir.exists():
            raise FileNotFoundError(f"Templates directory not found: {self.templates_dir}")

        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            undefined=StrictUndefined,
        )

    def _render(self, template_name: str, **context) -> str:
        try:
            template = self.env.get_template(template_name)
            return template.render(**context)
        except TemplateError as e:
            raise TemplateRenderError(f"Failed to render {template_name}: {e}") from e

    def render_service_config(
        self, plan: ProvisioningPlan, role: NodeRole, settings: Settings
    ) -> str:
        """Render the service flag file.

        The database password is embedded in the connection string, so the
        result must only be written to an access-restricted file.
        """
        body = self._render(
            SERVICE_CONFIG_TEMPLATE,
            plan=plan,
            role=role.value,
            database_user=settings.database_user,
            database_password=quote(plan.database_password.get_secret_value(), safe=""),
            database_name=settings.database_name,
            api_port=settings.api_port,
            network_manager=settings.network_manager,
            bridge_interface=settings.bridge_interface,
            public_interface=settings.public_interface,
            libvirt_type=settings.libvirt_type,
        )
        logger.debug(f"Rendered {SERVICE_CONFIG_TEMPLATE} for {role.value}")
        return body

    def render_interfaces(self, plan: ProvisioningPlan, settings: Settings) -> str:
        """Render the static bridge definition for the interfaces file."""
        return self._render(
            INTERFACES_TEMPLATE,
            plan=plan,
            bridge_interface=settings.bridge_interface,
            public_interface=settings.public_interface,
        )
