"""Tests for LocalTransport"""

import os
import subprocess
import sys
import threading
import time

import pytest
from unittest.mock import MagicMock, patch

from winupdate.core.errors import TransportError, WorkflowCancelledError
from winupdate.transport.base import RemoteHost
from winupdate.transport.local import LocalTransport

LOCALHOST = RemoteHost(host="localhost", user="")

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")


class TestLocalTransportFiles:
    """Test staging into a local directory"""

    def test_write_file(self, temp_dir):
        transport = LocalTransport(staging_dir=temp_dir)

        location = transport.write_file(LOCALHOST, b"Write-Output 1", "a.ps1")

        assert location == os.path.join(temp_dir, "a.ps1")
        with open(location, "rb") as f:
            assert f.read() == b"Write-Output 1"

    def test_write_refuses_existing_file(self, temp_dir):
        transport = LocalTransport(staging_dir=temp_dir)
        transport.write_file(LOCALHOST, b"first", "a.ps1")

        with pytest.raises(TransportError):
            transport.write_file(LOCALHOST, b"second", "a.ps1")

        with open(os.path.join(temp_dir, "a.ps1"), "rb") as f:
            assert f.read() == b"first"

    def test_write_into_missing_directory(self, temp_dir):
        transport = LocalTransport(staging_dir=os.path.join(temp_dir, "missing"))

        with pytest.raises(TransportError):
            transport.write_file(LOCALHOST, b"data", "a.ps1")

    def test_remove_file(self, temp_dir):
        transport = LocalTransport(staging_dir=temp_dir)
        location = transport.write_file(LOCALHOST, b"data", "a.ps1")

        transport.remove_file(LOCALHOST, location)
        assert not os.path.exists(location)

        # Removing again is not an error
        transport.remove_file(LOCALHOST, location)


@posix_only
class TestLocalTransportExecute:
    """Test running commands with subprocess"""

    def test_stdout_and_exit_code(self):
        transport = LocalTransport(poll_interval=0.05)
        assert transport.execute_remote(LOCALHOST, "echo hello") == (0, "hello\n", "")

    def test_separate_stderr(self):
        transport = LocalTransport(poll_interval=0.05)
        code, out, err = transport.execute_remote(LOCALHOST, "echo out; echo err 1>&2; exit 3")

        assert code == 3
        assert out == "out\n"
        assert err == "err\n"

    def test_cancel_stops_waiting(self):
        transport = LocalTransport(poll_interval=0.05)
        event = threading.Event()
        event.set()

        with pytest.raises(WorkflowCancelledError):
            transport.execute_remote(LOCALHOST, "sleep 5", cancel_event=event)


class TestLocalTransportProcessHandling:
    """Test command serialisation and cleanup with a mocked Popen"""

    def test_one_command_at_a_time(self):
        transport = LocalTransport(poll_interval=0.05)
        state = {"active": 0, "peak": 0}
        counter_lock = threading.Lock()

        def start(*args, **kwargs):
            process = MagicMock()
            process.returncode = 0

            def communicate(timeout=None):
                with counter_lock:
                    state["active"] += 1
                    state["peak"] = max(state["peak"], state["active"])
                time.sleep(0.1)
                with counter_lock:
                    state["active"] -= 1
                return b"done\n", b""

            process.communicate.side_effect = communicate
            return process

        results = []
        with patch("winupdate.transport.local.subprocess.Popen", side_effect=start):
            threads = [
                threading.Thread(target=lambda: results.append(transport.execute_remote(LOCALHOST, "cmd")))
                for _ in range(3)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=10)

        assert results == [(0, "done\n", "")] * 3
        assert state["peak"] == 1

    def test_cancel_closes_pipes(self):
        transport = LocalTransport(poll_interval=0.05)
        process = MagicMock()
        process.communicate.side_effect = subprocess.TimeoutExpired("cmd", 0.05)
        event = threading.Event()
        event.set()

        with patch("winupdate.transport.local.subprocess.Popen", return_value=process):
            with pytest.raises(WorkflowCancelledError):
                transport.execute_remote(LOCALHOST, "cmd", cancel_event=event)

        process.stdout.close.assert_called_once()
        process.stderr.close.assert_called_once()
        process.poll.assert_called_once()
        process.kill.assert_not_called()
