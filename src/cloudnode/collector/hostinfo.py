"""Read the host's current network settings to offer as prompt defaults."""

import ipaddress
import logging
import subprocess
from pathlib import Path
from typing import Optional

from cloudnode.collector.validators import is_ipv4
from cloudnode.executor.commands import CommandRunner

logger = logging.getLogger(__name__)


class HostInspector:
    """Derives default answers from the primary (default-route) interface.

    Nothing found is not an error: the collector simply shows no default.
    """

    def __init__(self, commands: CommandRunner, resolv_conf: Path = Path("/etc/resolv.conf")):
        self.commands = commands
        self.resolv_conf = Path(resolv_conf)

    def defaults(self) -> dict[str, str]:
        """Return known values keyed by plan field name.

        Keys: ``bridge_address``, ``bridge_netmask``, ``bridge_broadcast``,
        ``bridge_gateway``, ``bridge_nameserver``.
        """
        found: dict[str, str] = {}
        try:
            gateway, interface = self._default_route()
            if gateway:
                found["bridge_gateway"] = gateway
            if interface:
                found.update(self._interface_address(interface))
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Could not inspect host network: {e}")
        nameserver = self._nameserver()
        if nameserver:
            found["bridge_nameserver"] = nameserver
        logger.debug(f"Host defaults: {found}")
        return found

    def _default_route(self) -> tuple[Optional[str], Optional[str]]:
        result = self.commands.run(["ip", "-4", "route", "show", "default"])
        if not result.ok:
            return None, None
        for line in result.stdout.splitlines():
            words = line.split()
            if not words or words[0] != "default":
                continue
            gateway = _word_after(words, "via")
            interface = _word_after(words, "dev")
            if gateway is not None and not is_ipv4(gateway):
                gateway = None
            return gateway, interface
        return None, None

    def _interface_address(self, interface: str) -> dict[str, str]:
        result = self.commands.run(["ip", "-4", "-o", "addr", "show", "dev", interface])
        if not result.ok:
            return {}
        for line in result.stdout.splitlines():
            words = line.split()
            cidr = _word_after(words, "inet")
            if cidr is None:
                continue
            try:
                iface = ipaddress.IPv4Interface(cidr)
            except ValueError:
                continue
            broadcast = _word_after(words, "brd")
            if broadcast is None or not is_ipv4(broadcast):
                broadcast = str(iface.network.broadcast_address)
            return {
                "bridge_address": str(iface.ip),
                "bridge_netmask": str(iface.netmask),
                "bridge_broadcast": broadcast,
            }
        return {}

    def _nameserver(self) -> Optional[str]:
        try:
            lines = self.resolv_conf.read_text(errors="replace").splitlines()
        except OSError as e:
            logger.warning(f"Could not read {self.resolv_conf}: {e}")
            return None
        for line in lines:
            words = line.split()
            if len(words) >= 2 and words[0] == "nameserver" and is_ipv4(words[1]):
                return words[1]
        return None


def _word_after(words: list[str], keyword: str) -> Optional[str]:
    try:
        return words[words.index(keyword) + 1]
    except (ValueError, IndexError):
        return None
