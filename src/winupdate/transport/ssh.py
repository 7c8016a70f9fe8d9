"""SSH/SFTP transport implementation"""

import logging
import os
import posixpath
import re
import threading
import time
from typing import Tuple, Optional, Dict, Any

import paramiko
from paramiko import SSHClient, AutoAddPolicy, WarningPolicy

from winupdate.core.errors import TransportError, WorkflowCancelledError
from .base import BaseTransport, RemoteHost

logger = logging.getLogger(__name__)

# SFTP servers on Windows report paths like /C:/Users/admin
_SFTP_DRIVE_PATH = re.compile(r"^/[A-Za-z]:")


def to_windows_location(sftp_path: str) -> str:
    """Convert an SFTP path into one PowerShell accepts"""
    if _SFTP_DRIVE_PATH.match(sftp_path):
        return sftp_path[1:]
    return sftp_path


class SSHTransport(BaseTransport):
    """SSH command channel with SFTP staging"""

    def __init__(self, key_file: Optional[str] = None, password: Optional[str] = None,
                 ssh_config: Optional[str] = None, skip_host_verification: bool = False,
                 allow_agent: bool = True, look_for_keys: bool = True,
                 staging_dir: Optional[str] = None, poll_interval: float = 0.5):
        """Initialize SSH transport

        Args:
            key_file: Path to SSH private key (defaults to ~/.ssh/id_rsa if it exists)
            password: SSH password (used if key_file not available)
            ssh_config: Path to SSH config file (auto-detected if None)
            skip_host_verification: Skip SSH host key verification (insecure, for testing only)
            allow_agent: Allow SSH agent for key discovery (default: True)
            look_for_keys: Look for discoverable keys in ~/.ssh/ (default: True)
            staging_dir: Directory on the target for staged scripts (default: SFTP home directory)
            poll_interval: Seconds between checks of a running command
        """
        self.key_file = None
        if key_file:
            expanded_key = os.path.expanduser(key_file)
            if os.path.exists(expanded_key):
                self.key_file = expanded_key
            else:
                logger.warning(f"SSH key file not found: {expanded_key}, will use password auth if available")
        else:
            default_key = os.path.expanduser("~/.ssh/id_rsa")
            if os.path.exists(default_key):
                self.key_file = default_key

        self.password = password
        self.allow_agent = allow_agent
        self.look_for_keys = look_for_keys
        self.staging_dir = staging_dir
        self.poll_interval = poll_interval
        self.clients: Dict[str, SSHClient] = {}
        self.command_locks: Dict[str, threading.Lock] = {}
        self.clients_lock = threading.Lock()
        self.ssh_config_parser = None
        self.skip_host_verification = skip_host_verification
        if skip_host_verification:
            logger.warning("SSH host key verification is DISABLED - only use for testing!")
        self._load_ssh_config(ssh_config)

    def _load_ssh_config(self, ssh_config_path: Optional[str] = None) -> None:
        """Load SSH config file, auto-detecting ~/.ssh/config"""
        if ssh_config_path is None:
            ssh_config_path = os.path.expanduser("~/.ssh/config")
        else:
            ssh_config_path = os.path.expanduser(ssh_config_path)

        if os.path.exists(ssh_config_path):
            try:
                self.ssh_config_parser = paramiko.SSHConfig.from_path(ssh_config_path)
                logger.info(f"Loaded SSH config from {ssh_config_path}")
            except Exception as e:
                logger.warning(f"Failed to load SSH config from {ssh_config_path}: {e}")
                self.ssh_config_parser = None
        else:
            logger.debug(f"SSH config not found at {ssh_config_path}")
            self.ssh_config_parser = None

    def _merge_ssh_config(self, remote_host: RemoteHost) -> Dict[str, Any]:
        """Merge SSH config with precedence: per-target > global > SSH config file

        Args:
            remote_host: Remote host configuration

        Returns:
            Keyword arguments for paramiko SSHClient.connect()
        """
        config: Dict[str, Any] = {}

        if self.ssh_config_parser:
            ssh_config = self.ssh_config_parser.lookup(remote_host.host)
            config["hostname"] = ssh_config.get("hostname", remote_host.host)
            config["port"] = int(ssh_config.get("port", remote_host.port))
            config["username"] = ssh_config.get("user", remote_host.user)

            identity_files = ssh_config.get("identityfile", [])
            if identity_files:
                config["key_filename"] = identity_files

            if "proxyjump" in ssh_config:
                config["sock"] = paramiko.ProxyCommand(f"ssh -W %h:%p {ssh_config['proxyjump']}")
            elif "proxycommand" in ssh_config:
                config["sock"] = paramiko.ProxyCommand(ssh_config["proxycommand"])
        else:
            config["hostname"] = remote_host.host
            config["port"] = remote_host.port
            config["username"] = remote_host.user

        if self.key_file:
            if not config.get("key_filename"):
                config["key_filename"] = self.key_file
        else:
            config.pop("key_filename", None)

        if self.password:
            config["password"] = self.password

        options = remote_host.ssh_options
        if options:
            if "key_file" in options:
                expanded_key = os.path.expanduser(options["key_file"])
                if os.path.exists(expanded_key):
                    config["key_filename"] = expanded_key
                else:
                    logger.warning(f"Per-target SSH key file not found: {expanded_key}")
                    config.pop("key_filename", None)
            if "password" in options:
                config["password"] = options["password"]
            if "port" in options:
                config["port"] = options["port"]
            if "user" in options:
                config["username"] = options["user"]

        config.setdefault("timeout", 10)
        config["allow_agent"] = self.allow_agent
        config["look_for_keys"] = self.look_for_keys

        return config

    @staticmethod
    def _host_key(remote_host: RemoteHost) -> str:
        return f"{remote_host.host}:{remote_host.port}"

    def _get_client(self, remote_host: RemoteHost) -> SSHClient:
        """Get or create the SSH client for a host

        Raises:
            TransportError: Connection or authentication failed
        """
        host_key = self._host_key(remote_host)

        with self.clients_lock:
            if host_key not in self.clients:
                connect_config = self._merge_ssh_config(remote_host)
                client = SSHClient()

                if self.skip_host_verification:
                    client.set_missing_host_key_policy(WarningPolicy())
                else:
                    client.set_missing_host_key_policy(AutoAddPolicy())

                try:
                    logger.debug(f"Connecting to {remote_host.host} (resolved: {connect_config['hostname']})")
                    client.connect(**connect_config)
                except (paramiko.SSHException, OSError) as e:
                    client.close()
                    raise TransportError(f"Failed to connect to {remote_host.host}: {e}") from e

                self.clients[host_key] = client
                logger.info(f"Connected to {remote_host.host}")

            return self.clients[host_key]

    def _command_lock(self, remote_host: RemoteHost) -> threading.Lock:
        """Lock allowing one outstanding command per host"""
        with self.clients_lock:
            return self.command_locks.setdefault(self._host_key(remote_host), threading.Lock())

    def write_file(self, remote_host: RemoteHost, data: bytes, name: str) -> str:
        """Write ``data`` to ``name`` in the staging directory over SFTP

        Returns:
            Location of the written file in Windows form (e.g. C:/Windows/Temp/x.ps1)
        """
        client = self._get_client(remote_host)
        try:
            sftp = client.open_sftp()
            try:
                staging_dir = self.staging_dir or sftp.normalize(".")
                remote_path = posixpath.join(staging_dir.replace("\\", "/"), name)
                logger.debug(f"Writing {len(data)} bytes to {remote_host.host}:{remote_path}")
                try:
                    with sftp.open(remote_path, "wb") as remote_file:
                        remote_file.write(data)
                except (paramiko.SSHException, OSError):
                    self._remove_partial(sftp, remote_path)
                    raise
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Failed to write {name} to {remote_host.host}: {e}") from e

        return to_windows_location(remote_path)

    @staticmethod
    def _remove_partial(sftp, remote_path: str) -> None:
        try:
            sftp.remove(remote_path)
        except (paramiko.SSHException, OSError) as e:
            logger.debug(f"Could not remove partial file {remote_path}: {e}")

    def remove_file(self, remote_host: RemoteHost, location: str) -> None:
        client = self._get_client(remote_host)
        try:
            sftp = client.open_sftp()
            try:
                sftp.remove(location)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Failed to remove {location} on {remote_host.host}: {e}") from e

    def execute_remote(self, remote_host: RemoteHost, command: str,
                       cancel_event: Optional[threading.Event] = None) -> Tuple[int, str, str]:
        """Run a command over SSH and block until it exits

        stdout and stderr are collected separately while the command runs.
        Setting ``cancel_event`` closes the channel and raises
        WorkflowCancelledError; the remote process is not guaranteed to stop.

        Returns:
            Tuple of (exit_code, stdout, stderr)
        """
        with self._command_lock(remote_host):
            client = self._get_client(remote_host)
            logger.debug(f"Executing on {remote_host.host}: {command}")

            try:
                _, stdout, stderr = client.exec_command(command)
                channel = stdout.channel
                out_chunks = []
                err_chunks = []

                while not channel.exit_status_ready():
                    if cancel_event is not None and cancel_event.is_set():
                        channel.close()
                        raise WorkflowCancelledError(f"Command on {remote_host.host} cancelled")
                    if channel.recv_ready():
                        out_chunks.append(channel.recv(32768))
                    elif channel.recv_stderr_ready():
                        err_chunks.append(channel.recv_stderr(32768))
                    else:
                        time.sleep(self.poll_interval)

                return_code = channel.recv_exit_status()
                out_chunks.append(stdout.read())
                err_chunks.append(stderr.read())
            except (paramiko.SSHException, OSError) as e:
                self.reset(remote_host)
                raise TransportError(f"Failed to execute command on {remote_host.host}: {e}") from e

        if return_code == -1:
            self.reset(remote_host)
            raise TransportError(f"Connection to {remote_host.host} closed before the command reported an exit status")

        stdout_str = b"".join(out_chunks).decode("utf-8", errors="replace")
        stderr_str = b"".join(err_chunks).decode("utf-8", errors="replace")
        logger.debug(f"Command completed with return code: {return_code}")

        return return_code, stdout_str, stderr_str

    def reset(self, remote_host: RemoteHost) -> None:
        """Close and forget the cached client so the next call reconnects"""
        with self.clients_lock:
            client = self.clients.pop(self._host_key(remote_host), None)
        if client is not None:
            try:
                client.close()
            except Exception as e:
                logger.debug(f"Error closing SSH connection to {remote_host.host}: {e}")

    def close(self) -> None:
        """Close all SSH connections"""
        with self.clients_lock:
            for client in self.clients.values():
                try:
                    client.close()
                except Exception as e:
                    logger.warning(f"Error closing SSH connection: {e}")

            self.clients.clear()
        logger.info("Closed SSH connections")
