"""
Error classes for winupdate.

The retry loop uses these to decide what to do with a failed attempt:
- TransientError: retried under the active RetryPolicy
- PermanentError: raised straight through, never retried

Exhaustion of a retry budget is reported as RetryExhaustedError, which keeps
the most recent attempt error as ``last_error`` (and as ``__cause__``).
"""

from typing import Optional


class WinUpdateError(Exception):
    """Base exception for winupdate."""
    pass


class PermanentError(WinUpdateError):
    """Error that no amount of retrying will fix."""
    pass


class ConfigurationError(PermanentError):
    """
    Invalid configuration or input.

    Examples:
    - Empty payload
    - Category id that is not a UUID
    - Unparseable duration

    Raised before any remote activity begins.
    """
    pass


class ContractViolationError(PermanentError):
    """An internal invariant was broken (as opposed to the environment failing)."""
    pass


class EmptyLocationError(ContractViolationError):
    """Staging reported success but produced no location."""

    def __init__(self, message: str = "expected a staged location after uploading the update script, but it was empty"):
        super().__init__(message)


class UpdateFailedError(PermanentError):
    """The update script finished with a failing exit code after all retries."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class TransientError(WinUpdateError):
    """
    Transient error - safe to retry.

    Examples:
    - SFTP write or close failure
    - SSH connection dropped
    - Update script exited with a non-whitelisted code
    """
    pass


class TransportError(TransientError):
    """Failure in the file transfer or command channel."""
    pass


class ExitCodeError(TransientError):
    """A single run of the update script exited with a failing code."""

    def __init__(self, exit_code: int):
        super().__init__(f"Windows Update script exited with non-zero exit status: {exit_code}")
        self.exit_code = exit_code


class RetryExhaustedError(WinUpdateError):
    """A retry budget ran out. ``last_error`` is the final attempt's error."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class AttemptsExhaustedError(RetryExhaustedError):
    """All allowed attempts failed."""
    pass


class RetryTimeoutError(RetryExhaustedError):
    """The overall timeout elapsed before an attempt succeeded."""
    pass


class WorkflowCancelledError(WinUpdateError):
    """The cancellation signal was set while the workflow was running."""
    pass
