"""Rendering of configuration artifacts from the provisioning plan."""

from cloudnode.renderer.renderer import ConfigRenderer

__all__ = ["ConfigRenderer"]
