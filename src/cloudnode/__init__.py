"""cloudnode: provision a host as a controller or compute node."""

__version__ = "0.3.0"
