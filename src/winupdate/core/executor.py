"""Runs the staged update script and classifies its exit code"""

import enum
import logging
import threading
from typing import Iterable, Optional

from winupdate.core.command import build_update_command
from winupdate.core.errors import (
    EmptyLocationError,
    ExitCodeError,
    RetryExhaustedError,
    UpdateFailedError,
)
from winupdate.core.retry import RetryPolicy, run_with_retry
from winupdate.core.ui import Ui, LogUi
from winupdate.transport.base import BaseTransport, RemoteHost

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
# Legacy "updates installed, restart required" code
EXIT_RESTART_REQUIRED = 101
# HRESULT_FROM_WIN32(101) (0x80070065), the restart code wrapped as an HRESULT
EXIT_RESTART_REQUIRED_HRESULT = 2147942501

RESTART_PENDING_CODES = frozenset({EXIT_RESTART_REQUIRED, EXIT_RESTART_REQUIRED_HRESULT})


class ExitClassification(enum.Enum):
    SUCCESS = "success"
    RESTART_PENDING = "restart_pending"
    FAILURE = "failure"


def classify_exit_code(exit_code: int) -> ExitClassification:
    if exit_code == EXIT_SUCCESS:
        return ExitClassification.SUCCESS
    if exit_code in RESTART_PENDING_CODES:
        return ExitClassification.RESTART_PENDING
    return ExitClassification.FAILURE


class ExitOutcome:
    """Result of one run of the update script"""

    def __init__(self, exit_code: int, classification: Optional[ExitClassification] = None):
        self.exit_code = exit_code
        self.classification = classification or classify_exit_code(exit_code)

    @property
    def succeeded(self) -> bool:
        return self.classification is not ExitClassification.FAILURE

    @property
    def restart_pending(self) -> bool:
        return self.classification is ExitClassification.RESTART_PENDING

    @property
    def retryable(self) -> bool:
        return self.classification is ExitClassification.FAILURE

    def __eq__(self, other) -> bool:
        if not isinstance(other, ExitOutcome):
            return NotImplemented
        return (self.exit_code, self.classification) == (other.exit_code, other.classification)

    def __repr__(self) -> str:
        return f"ExitOutcome(exit_code={self.exit_code}, classification={self.classification.name})"


class Executor:
    """Runs the update script through the command channel under its own retry policy"""

    def __init__(self, transport: BaseTransport, remote_host: RemoteHost, policy: RetryPolicy,
                 ui: Optional[Ui] = None, script_args: Iterable[str] = (),
                 cancel_event: Optional[threading.Event] = None):
        self.transport = transport
        self.remote_host = remote_host
        self.policy = policy
        self.ui = ui or LogUi()
        self.script_args = list(script_args)
        self.cancel_event = cancel_event
        self.last_exit_code: Optional[int] = None

    def _attempt(self, command: str, attempt: int) -> ExitOutcome:
        exit_code, stdout, stderr = self.transport.execute_remote(
            self.remote_host, command, cancel_event=self.cancel_event
        )
        self.last_exit_code = exit_code

        for line in stdout.splitlines():
            self.ui.say(line)
        if stderr.strip():
            logger.warning(f"Update script stderr on {self.remote_host.host}:\n{stderr.rstrip()}")

        outcome = ExitOutcome(exit_code)
        if outcome.retryable:
            raise ExitCodeError(exit_code)

        if outcome.restart_pending:
            self.ui.say(f"Windows Update completed, restart pending (exit code {exit_code}).")
        return outcome

    def execute(self, location: str) -> ExitOutcome:
        """Run the script staged at ``location``

        Returns:
            Outcome of the first successful run (SUCCESS or RESTART_PENDING)

        Raises:
            EmptyLocationError: ``location`` is empty
            UpdateFailedError: Every run failed; carries the last observed exit code
            WorkflowCancelledError: The cancel event was set
        """
        if not location:
            raise EmptyLocationError("unable to run Windows Update script: file path is empty")

        self.ui.say("Running Windows update...")
        self.last_exit_code = None
        command = build_update_command(location, self.script_args)

        try:
            return run_with_retry(
                self.policy,
                lambda attempt: self._attempt(command, attempt),
                cancel_event=self.cancel_event,
                description=f"Windows Update on {self.remote_host.host}",
            )
        except RetryExhaustedError as e:
            raise UpdateFailedError(
                f"Windows Update script failed on {self.remote_host.host}: {e}",
                exit_code=self.last_exit_code,
            ) from e
