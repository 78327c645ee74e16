"""Configuration management using Pydantic Settings.

Loads environment variables (CLOUDNODE_* prefix) and an optional .env file,
and provides defaults matching a stock Debian/Ubuntu host. Also supports
YAML overrides from ~/.cloudnode/cloudnode.yml or /etc/cloudnode/cloudnode.yml.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "CLOUDNODE_"


class Settings(BaseSettings):
    """Provisioning settings loaded from environment variables and YAML.

    Environment variables take precedence over the YAML file, which takes
    precedence over the defaults below.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    config_file: Optional[Path] = None
    """Explicit YAML override file. When unset the standard locations are searched."""

    # Logging
    log_level: str = "INFO"
    """Python logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    audit_log_path: Path = Path("/var/log/cloudnode/install.log")
    """Append-only audit trail of every privileged action."""

    # Host checks
    os_release_path: Path = Path("/etc/os-release")
    supported_platforms: list[str] = ["ubuntu", "debian"]
    """Accepted values of ID in os-release."""

    command_timeout: int = 1800
    """Seconds an external tool may run before it is treated as failed."""

    # Packages
    prerequisite_packages: list[str] = ["python-software-properties"]
    package_repository: str = "ppa:nova-core/release"
    """Extra repository added before installing. Empty string disables it."""

    sources_dir: Path = Path("/etc/apt/sources.list.d")

    # Service configuration
    service_config_path: Path = Path("/etc/nova/nova.conf")
    service_config_owner: Optional[str] = "root"
    service_config_group: Optional[str] = "nova"
    service_user: str = "nova"

    # Database
    database_name: str = "nova"
    database_user: str = "root"

    # Cloud identity
    credentials_dir: Path = Path("/root/creds")
    credentials_bundle: str = "novacreds.zip"

    # Networking
    interfaces_path: Path = Path("/etc/network/interfaces")
    bridge_interface: str = "br100"
    public_interface: str = "eth0"
    metadata_address: str = "169.254.169.254"
    metadata_port: int = 80
    api_port: int = 8773
    network_manager: str = "nova.network.manager.FlatDHCPManager"

    # Tenant network defaults offered at the prompts
    default_fixed_range: str = "10.0.0.0/8"
    default_network_size: int = 64
    default_project_network: str = "10.0.0.0/24"
    default_network_count: int = 1
    default_addresses_per_network: int = 64

    # Hypervisor
    libvirt_type: str = "kvm"
    kvm_group: str = "kvm"
    kvm_device: Path = Path("/dev/kvm")

    def __init__(self, **data) -> None:
        """Initialize settings with environment and file-based overrides.

        Loads overrides from:
        1. config_file when given, otherwise
        2. ~/.cloudnode/cloudnode.yml (user home)
        3. /etc/cloudnode/cloudnode.yml (system)
        """
        super().__init__(**data)
        self._load_file_config(explicit=set(data))

    def _load_file_config(self, explicit: set[str]) -> None:
        """Apply YAML overrides that are not already set by env or arguments."""
        if self.config_file is not None:
            config_paths = [self.config_file]
        else:
            config_paths = [
                Path.home() / ".cloudnode" / "cloudnode.yml",
                Path("/etc/cloudnode/cloudnode.yml"),
            ]

        config_file_path = None
        for path in config_paths:
            if path.exists():
                config_file_path = path
                break
        if config_file_path is None:
            return

        try:
            with open(config_file_path) as f:
                file_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {config_file_path}: {e}")
            return

        if not isinstance(file_config, dict):
            logger.warning(f"Ignoring {config_file_path}: top level must be a mapping")
            return

        for key, value in file_config.items():
            if key not in type(self).model_fields or key == "config_file":
                logger.warning(f"Unknown setting {key!r} in {config_file_path}")
                continue
            if key in explicit or os.getenv(ENV_PREFIX + key.upper()) is not None:
                continue
            setattr(self, key, value)
        logger.info(f"Loaded config overrides from {config_file_path}")
