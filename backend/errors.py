"""Error taxonomy shared by the daemon, the sinks and the API."""

from typing import Optional


class SpeedCheckerError(Exception):
    """Base class for all measurement pipeline errors."""


class ProcessTimeout(SpeedCheckerError):
    """The external tool outlived its deadline and was killed."""

    def __init__(self, command: str, timeout: float, pid: Optional[int] = None):
        self.command = command
        self.timeout = timeout
        self.pid = pid
        super().__init__(f"{command} timed out after {timeout:g}s")


class ProcessExecutionFailed(SpeedCheckerError):
    """The external tool could not be started or exited non-zero."""

    def __init__(
        self,
        command: str,
        detail: str,
        returncode: Optional[int] = None,
        stdout: bytes = b"",
        stderr: bytes = b"",
    ):
        self.command = command
        self.detail = detail
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{command} failed: {detail}")


class ProcessCancelled(ProcessExecutionFailed):
    """The daemon was asked to stop while the tool was running."""

    def __init__(self, command: str):
        super().__init__(command, "cancelled by shutdown")


class NormalizationFailed(SpeedCheckerError):
    """Tool output could not be turned into a canonical record."""

    def __init__(self, source: str, reason: str, raw: bytes = b""):
        self.source = source
        self.reason = reason
        self.raw = raw
        super().__init__(f"failed to parse {source} output: {reason}")


class NoEligibleHosts(SpeedCheckerError):
    """No active host exists for a category.  A skip signal, not a failure."""

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"no active {category} hosts")


class HostNotFound(SpeedCheckerError):
    def __init__(self, host_id: int):
        self.host_id = host_id
        super().__init__(f"host {host_id} not found")


class PersistenceWriteFailed(SpeedCheckerError):
    """Direct-storage write failed."""


class SubmissionUnreachable(SpeedCheckerError):
    """The remote API could not be reached."""


class SubmissionRejected(SpeedCheckerError):
    """The remote API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"submission rejected with HTTP {status_code}: {body[:200]}")


def http_status_for(error: SpeedCheckerError) -> int:
    """HTTP status for a test run requested over the API that failed."""
    if isinstance(error, ProcessTimeout):
        return 504
    if isinstance(error, ProcessCancelled):
        return 503
    if isinstance(error, (SubmissionUnreachable, SubmissionRejected)):
        return 502
    return 500
