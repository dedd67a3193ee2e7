"""SSH connection helpers."""

from .master import SSHMasterManager

__all__ = ["SSHMasterManager"]
