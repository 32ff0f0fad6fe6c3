"""First-boot provisioning agent for infrastructure virtual machines."""

from .__version__ import __version__

__all__ = ["__version__"]
