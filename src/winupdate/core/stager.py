"""Stages the update script onto the target"""

import logging
import threading
import uuid
from typing import Optional

from winupdate.core.errors import ConfigurationError, WinUpdateError
from winupdate.core.retry import RetryPolicy, run_with_retry
from winupdate.core.ui import Ui, LogUi
from winupdate.transport.base import BaseTransport, RemoteHost

logger = logging.getLogger(__name__)

SCRIPT_PREFIX = "Invoke-WinUpdate"
SCRIPT_SUFFIX = ".ps1"


def unique_script_name() -> str:
    """A file name no other attempt or invocation will pick"""
    return f"{SCRIPT_PREFIX}-{uuid.uuid4().hex}{SCRIPT_SUFFIX}"


class Stager:
    """Writes the payload to a fresh file on the target, retrying under its own policy"""

    def __init__(self, transport: BaseTransport, remote_host: RemoteHost, policy: RetryPolicy,
                 ui: Optional[Ui] = None, cancel_event: Optional[threading.Event] = None):
        self.transport = transport
        self.remote_host = remote_host
        self.policy = policy
        self.ui = ui or LogUi()
        self.cancel_event = cancel_event

    def _attempt(self, payload: bytes, attempt: int) -> str:
        # Fresh name per attempt so a half-written file from a failed attempt is never reused
        return self.transport.write_file(self.remote_host, payload, unique_script_name())

    def stage(self, payload: bytes) -> str:
        """Stage the payload and return its location on the target

        Raises:
            ConfigurationError: The payload is empty
            RetryExhaustedError: Every attempt failed or the upload timeout elapsed
        """
        if not payload:
            raise ConfigurationError("contents of the Windows Update script are empty")

        self.ui.say("Creating/Uploading Windows Update script to specified target.")

        location = run_with_retry(
            self.policy,
            lambda attempt: self._attempt(payload, attempt),
            cancel_event=self.cancel_event,
            description=f"Upload to {self.remote_host.host}",
        )

        logger.info(f"Staged {len(payload)} bytes at {self.remote_host.host}:{location}")
        return location

    def discard(self, location: str) -> None:
        """Remove a staged file once it is no longer needed"""
        try:
            self.transport.remove_file(self.remote_host, location)
            logger.debug(f"Removed {location} on {self.remote_host.host}")
        except WinUpdateError as e:
            logger.warning(f"Failed to remove staged script {location} on {self.remote_host.host}: {e}")
