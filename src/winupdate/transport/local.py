"""Local transport: stage into a local directory and run commands with subprocess"""

import logging
import os
import subprocess
import tempfile
import threading
from typing import Optional, Tuple

from winupdate.core.errors import TransportError, WorkflowCancelledError
from .base import BaseTransport, RemoteHost

logger = logging.getLogger(__name__)


class LocalTransport(BaseTransport):
    """Runs the workflow against the machine winupdate itself runs on"""

    def __init__(self, staging_dir: Optional[str] = None, poll_interval: float = 0.5):
        """Initialize local transport

        Args:
            staging_dir: Directory for staged scripts (default: the system temp directory)
            poll_interval: Seconds between checks of a running command
        """
        self.staging_dir = staging_dir
        self.poll_interval = poll_interval
        self.command_lock = threading.Lock()

    def write_file(self, remote_host: RemoteHost, data: bytes, name: str) -> str:
        directory = os.path.expanduser(self.staging_dir) if self.staging_dir else tempfile.gettempdir()
        path = os.path.join(directory, name)
        try:
            # "x" refuses to overwrite another invocation's file
            f = open(path, "xb")
        except OSError as e:
            raise TransportError(f"Failed to create {path}: {e}") from e

        try:
            with f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            try:
                os.remove(path)
            except OSError:
                logger.debug(f"Could not remove partial file {path}")
            raise TransportError(f"Failed to write {path}: {e}") from e

        logger.debug(f"Wrote {len(data)} bytes to {path}")
        return path

    def remove_file(self, remote_host: RemoteHost, location: str) -> None:
        try:
            os.remove(location)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise TransportError(f"Failed to remove {location}: {e}") from e

    def execute_remote(self, remote_host: RemoteHost, command: str,
                       cancel_event: Optional[threading.Event] = None) -> Tuple[int, str, str]:
        with self.command_lock:
            logger.debug(f"Executing locally: {command}")
            try:
                process = subprocess.Popen(
                    command,
                    shell=True,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
            except OSError as e:
                raise TransportError(f"Failed to start command: {e}") from e

            while True:
                try:
                    stdout, stderr = process.communicate(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    if cancel_event is not None and cancel_event.is_set():
                        self._release(process)
                        raise WorkflowCancelledError("Local command cancelled")

        logger.debug(f"Command completed with return code: {process.returncode}")
        return (
            process.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    @staticmethod
    def _release(process: subprocess.Popen) -> None:
        """Close the pipes of a command left running; the child is not killed"""
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()
        # Reaps the child if it already exited
        process.poll()

    def close(self) -> None:
        pass
