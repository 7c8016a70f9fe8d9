"""Abstract base class for transports"""

import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple


class RemoteHost:
    """Represents a target machine"""

    def __init__(self, host: str, user: str, port: int = 22, ssh_options: Optional[dict] = None):
        """Initialize remote host

        Args:
            host: Hostname or IP address (can be SSH config alias)
            user: Username for authentication
            port: SSH port (default: 22)
            ssh_options: Optional per-target SSH options (key_file, password, etc.)
        """
        self.host = host
        self.user = user
        self.port = port
        self.ssh_options = ssh_options or {}

    def __repr__(self) -> str:
        return f"RemoteHost({self.user}@{self.host}:{self.port})"


class BaseTransport(ABC):
    """Abstract base for the staging and command channels

    Implementations raise TransportError for channel failures. A non-zero exit
    code from a command is not a channel failure.
    """

    @abstractmethod
    def write_file(self, remote_host: RemoteHost, data: bytes, name: str) -> str:
        """Write ``data`` to a new file called ``name`` and close it

        Args:
            remote_host: Target machine
            data: Full file contents
            name: Unique file name chosen by the caller

        Returns:
            Location of the finalized file, usable in commands on the target
        """
        pass

    @abstractmethod
    def remove_file(self, remote_host: RemoteHost, location: str) -> None:
        """Remove a previously written file"""
        pass

    @abstractmethod
    def execute_remote(self, remote_host: RemoteHost, command: str,
                       cancel_event: Optional[threading.Event] = None) -> Tuple[int, str, str]:
        """Run a command and block until it exits

        Args:
            remote_host: Target machine
            command: Command line to run
            cancel_event: Optional event; when set, stop waiting for the command

        Returns:
            Tuple of (exit_code, stdout, stderr)
        """
        pass

    def reset(self, remote_host: RemoteHost) -> None:
        """Drop any cached connection to the host"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close transport connections"""
        pass
