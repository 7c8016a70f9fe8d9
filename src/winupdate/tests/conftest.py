"""Pytest configuration and shared fixtures"""

import threading
import tempfile
import pytest
from unittest.mock import MagicMock

from winupdate.core.config import UpdateSettings
from winupdate.core.errors import TransportError
from winupdate.transport.base import BaseTransport, RemoteHost


class FakeTransport(BaseTransport):
    """In-memory transport recording every write and command

    ``exit_codes`` is consumed one entry per command; the last entry repeats.
    Entries that are exceptions are raised instead of returned.
    ``responder(remote_host, command)`` overrides ``exit_codes`` when given; it
    returns an exit code, an exception, or a full (code, stdout, stderr) tuple.
    """

    def __init__(self, exit_codes=None, write_failures=0, responder=None, stdout="", stderr=""):
        self.exit_codes = list(exit_codes if exit_codes is not None else [0])
        self.write_failures = write_failures
        self.responder = responder
        self.stdout = stdout
        self.stderr = stderr
        self.files = {}
        self.names = []
        self.removed = []
        self.commands = []
        self.resets = []
        self.write_calls = 0
        self.closed = False
        self.lock = threading.Lock()

    def write_file(self, remote_host, data, name):
        with self.lock:
            self.write_calls += 1
            self.names.append(name)
            if self.write_failures:
                if self.write_failures > 0:
                    self.write_failures -= 1
                raise TransportError("disk full")
            location = f"C:/Windows/Temp/{name}"
            self.files[location] = bytes(data)
            return location

    def remove_file(self, remote_host, location):
        with self.lock:
            self.removed.append(location)

    def execute_remote(self, remote_host, command, cancel_event=None):
        with self.lock:
            self.commands.append((remote_host.host, command))
            if self.responder is not None:
                code = self.responder(remote_host, command)
            elif len(self.exit_codes) > 1:
                code = self.exit_codes.pop(0)
            else:
                code = self.exit_codes[0]
        if isinstance(code, Exception):
            raise code
        if isinstance(code, tuple):
            return code
        return code, self.stdout, self.stderr

    def reset(self, remote_host):
        self.resets.append(remote_host.host)

    def close(self):
        self.closed = True

    @property
    def command_count(self):
        return len(self.commands)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def make_transport():
    """Factory for FakeTransport instances"""
    return FakeTransport


@pytest.fixture
def remote_host():
    return RemoteHost(host="win-01.example.com", user="Administrator", port=22)


@pytest.fixture
def fast_settings():
    """Update settings with no delays between attempts"""
    return UpdateSettings(
        upload_retry_attempts=5,
        upload_retry_delay=0,
        upload_timeout=60,
        update_retry_attempts=3,
        update_retry_delay=0,
        update_timeout=60,
        restart_timeout=60,
        install_all=True,
    )


@pytest.fixture
def mock_ssh_client():
    """Mock SSH client for transport tests"""
    client = MagicMock()
    sftp = MagicMock()

    client.open_sftp.return_value = sftp
    sftp.normalize.return_value = "/C:/Users/Administrator"
    sftp.close.return_value = None

    return client, sftp


@pytest.fixture
def mock_command(mock_ssh_client):
    """Wire exec_command on the mock client to a finished command"""
    client, _ = mock_ssh_client
    stdout = MagicMock()
    stderr = MagicMock()
    channel = stdout.channel
    channel.exit_status_ready.return_value = True
    channel.recv_ready.return_value = False
    channel.recv_stderr_ready.return_value = False
    channel.recv_exit_status.return_value = 0
    stdout.read.return_value = b""
    stderr.read.return_value = b""
    client.exec_command.return_value = (MagicMock(), stdout, stderr)
    return stdout, stderr, channel
