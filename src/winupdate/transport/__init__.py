"""Staging and command channels"""

from .base import BaseTransport, RemoteHost
from .local import LocalTransport
from .ssh import SSHTransport

__all__ = ["BaseTransport", "RemoteHost", "LocalTransport", "SSHTransport"]
