"""Stage-then-execute workflow for a single target"""

import enum
import logging
import threading
from typing import Optional

from winupdate.core.config import UpdateSettings
from winupdate.core.errors import (
    ContractViolationError,
    EmptyLocationError,
    UpdateFailedError,
)
from winupdate.core.executor import ExitClassification, ExitOutcome, Executor
from winupdate.core.stager import Stager
from winupdate.core.ui import Ui, LogUi
from winupdate.transport.base import BaseTransport, RemoteHost

logger = logging.getLogger(__name__)


class WorkflowState(enum.Enum):
    START = "start"
    STAGING = "staging"
    STAGED = "staged"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"


class WorkflowResult:
    """Final exit code and its classification"""

    def __init__(self, final_exit_code: int, classification: ExitClassification):
        self.final_exit_code = final_exit_code
        self.classification = classification

    @classmethod
    def from_outcome(cls, outcome: ExitOutcome) -> "WorkflowResult":
        return cls(outcome.exit_code, outcome.classification)

    @property
    def restart_pending(self) -> bool:
        return self.classification is ExitClassification.RESTART_PENDING

    def __repr__(self) -> str:
        return f"WorkflowResult(final_exit_code={self.final_exit_code}, classification={self.classification.name})"


class Orchestrator:
    """Stages the payload on one target, then runs it

    Each instance performs exactly one staging pass and one execution pass;
    retries happen inside Stager and Executor.
    """

    def __init__(self, settings: UpdateSettings, transport: BaseTransport, remote_host: RemoteHost,
                 payload: bytes, ui: Optional[Ui] = None,
                 cancel_event: Optional[threading.Event] = None):
        """Initialize orchestrator

        Args:
            settings: Update settings (retry budgets, script arguments)
            transport: Staging and command channel
            remote_host: Target machine
            payload: Script contents to stage
            ui: Status sink
            cancel_event: External cancellation signal
        """
        self.settings = settings
        self.transport = transport
        self.remote_host = remote_host
        self.payload = payload
        self.ui = ui or LogUi(prefix=remote_host.host)
        self.cancel_event = cancel_event
        self.state = WorkflowState.START
        self.location: Optional[str] = None

        self.stager = Stager(transport, remote_host, settings.upload_policy(),
                             ui=self.ui, cancel_event=cancel_event)
        self.executor = Executor(transport, remote_host, settings.update_policy(),
                                 ui=self.ui, script_args=settings.script_args(),
                                 cancel_event=cancel_event)

    def _transition(self, state: WorkflowState) -> None:
        logger.debug(f"{self.remote_host.host}: {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> WorkflowResult:
        """Execute the workflow

        Returns:
            WorkflowResult for a SUCCESS or RESTART_PENDING run

        Raises:
            ConfigurationError: Empty payload
            RetryExhaustedError: Staging budget ran out
            EmptyLocationError: Staging returned no location
            UpdateFailedError: The script kept failing; carries the exit code
            WorkflowCancelledError: The cancel event was set
        """
        if self.state is not WorkflowState.START:
            raise ContractViolationError(f"workflow for {self.remote_host.host} already ran")

        self.ui.say("Starting Windows Update Provisioner.")

        try:
            self._transition(WorkflowState.STAGING)
            location = self.stager.stage(self.payload)

            if not location:
                raise EmptyLocationError()
            self.location = location
            self._transition(WorkflowState.STAGED)
            self.ui.say(f"Successfully created Windows Update script: {location}")

            self._transition(WorkflowState.EXECUTING)
            try:
                outcome = self.executor.execute(location)
            finally:
                if self.settings.cleanup_script:
                    self.stager.discard(location)

            if not outcome.succeeded:
                raise UpdateFailedError(
                    f"Windows Update script exited with non-zero exit status: {outcome.exit_code}",
                    exit_code=outcome.exit_code,
                )
        except Exception:
            self._transition(WorkflowState.FAILED)
            raise

        self._transition(WorkflowState.DONE)
        return WorkflowResult.from_outcome(outcome)
