"""Restarts a target after updates and waits for it to come back"""

import logging
import threading
from typing import Optional

from winupdate.core.command import BOOT_TIME_COMMAND, RESTART_COMMAND
from winupdate.core.errors import TransportError
from winupdate.core.retry import RetryPolicy, run_with_retry, wait_or_cancel
from winupdate.core.ui import Ui, LogUi
from winupdate.transport.base import BaseTransport, RemoteHost

logger = logging.getLogger(__name__)


class Restarter:
    """Issues the restart command, then waits until the target reports a new boot time

    A target that still answers after the restart command has not necessarily
    restarted: sshd keeps serving for a while during shutdown, and the command
    itself can fail. The boot time read before the restart is the reference;
    the target counts as restarted only once it reports a different one.
    """

    def __init__(self, transport: BaseTransport, remote_host: RemoteHost, policy: RetryPolicy,
                 ui: Optional[Ui] = None, cancel_event: Optional[threading.Event] = None):
        self.transport = transport
        self.remote_host = remote_host
        self.policy = policy
        self.ui = ui or LogUi()
        self.cancel_event = cancel_event

    def boot_time(self) -> str:
        """Read the target's last boot time

        Raises:
            TransportError: The target did not answer or reported nothing
        """
        exit_code, stdout, stderr = self.transport.execute_remote(
            self.remote_host, BOOT_TIME_COMMAND, cancel_event=self.cancel_event
        )
        marker = stdout.strip()
        if exit_code != 0 or not marker:
            raise TransportError(
                f"Could not read boot time of {self.remote_host.host} (exit code {exit_code}): {stderr.strip()}"
            )
        return marker

    def _wait_for_new_boot(self, previous: str) -> str:
        try:
            current = self.boot_time()
        except TransportError:
            self.transport.reset(self.remote_host)
            raise
        if current == previous:
            raise TransportError(f"{self.remote_host.host} has not restarted yet (booted {current})")
        return current

    def restart(self) -> None:
        """Restart the target and block until it is back with a new boot time

        Raises:
            TransportError: The boot time could not be read before restarting
            RetryExhaustedError: The target did not come back within restart_timeout
            WorkflowCancelledError: The cancel event was set
        """
        previous = self.boot_time()
        logger.debug(f"{self.remote_host.host} last booted {previous}")

        self.ui.say("Restarting machine to finish installing updates...")
        try:
            exit_code, _, stderr = self.transport.execute_remote(
                self.remote_host, RESTART_COMMAND, cancel_event=self.cancel_event
            )
            if exit_code != 0:
                logger.warning(f"Restart command on {self.remote_host.host} exited with {exit_code}: {stderr.strip()}")
        except TransportError as e:
            # The connection usually drops while the machine goes down
            logger.debug(f"Restart command on {self.remote_host.host} lost its connection: {e}")

        self.transport.reset(self.remote_host)

        self.ui.say("Waiting for machine to become available...")
        wait_or_cancel(self.policy.delay_for(1), self.cancel_event, f"Restart of {self.remote_host.host}")

        current = run_with_retry(
            self.policy,
            lambda attempt: self._wait_for_new_boot(previous),
            cancel_event=self.cancel_event,
            description=f"Restart of {self.remote_host.host}",
        )
        logger.info(f"{self.remote_host.host} booted at {current}")
        self.ui.say("Machine successfully restarted.")
