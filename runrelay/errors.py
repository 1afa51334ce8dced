from __future__ import annotations


class RelayError(Exception):
    """Base class for errors that end a run session."""


class TransportError(RelayError):
    """The run service could not be reached or answered with a server-side error."""


class RunFailedError(RelayError):
    def __init__(self, reason: str, *, code: str | None = None, run_id: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.code = code
        self.run_id = run_id


class RunCancelledError(RelayError):
    def __init__(self, run_id: str | None = None) -> None:
        super().__init__(f"run {run_id} was cancelled" if run_id else "run was cancelled")
        self.run_id = run_id


class OutputSubmissionError(RelayError):
    def __init__(self, message: str, *, run_id: str | None = None, status: str | None = None) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.status = status
