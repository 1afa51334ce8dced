from __future__ import annotations

import logging

from .errors import OutputSubmissionError, RunCancelledError, TransportError
from .service.base import ABORTED_STATUSES, ActionOutput, Run, RunService
from .session import SessionContext

logger = logging.getLogger(__name__)

RETRY_PROMPT = "Retry the last execution."

# Structured codes and content-free messages the service reports for failures
# that go away on resubmission.
TRANSIENT_FAILURE_CODES = frozenset({"server_error"})
TRANSIENT_FAILURE_MESSAGES = ("sorry, something went wrong",)


class RetrySupervisor:
    def __init__(
        self,
        service: RunService,
        *,
        submit_max_retries: int = 3,
        submit_retry_delay: float = 2.0,
        run_max_retries: int = 1,
    ) -> None:
        self.service = service
        self.submit_max_retries = max(0, int(submit_max_retries))
        self.submit_retry_delay = max(0.0, float(submit_retry_delay))
        self.run_max_retries = max(0, int(run_max_retries))

    def is_transient_failure(self, run: Run) -> bool:
        code = (run.failure_code or "").strip().lower()
        if code in TRANSIENT_FAILURE_CODES:
            return True
        message = (run.failure_message or "").strip().lower()
        return any(message.startswith(marker) for marker in TRANSIENT_FAILURE_MESSAGES)

    def should_retry_run(self, run: Run, retries_used: int) -> bool:
        """A failed run is resubmitted only if transient and the retry budget is not spent."""
        if retries_used >= self.run_max_retries:
            return False
        return self.is_transient_failure(run)

    def submit_outputs(self, ctx: SessionContext, outputs: list[ActionOutput]) -> Run | None:
        """
        Submit a complete output batch for ``ctx.run_id``.

        Transport errors are retried after a fixed delay, each time re-checking
        the run first: a run that failed or was cancelled meanwhile is not
        retried, and a run that left ``requires_action`` or now requests a
        different set of actions already got the batch.
        Returns the run as last seen, or None if it was never fetched.
        """
        run_id = ctx.run_id or ""
        answered = {out.request_id for out in outputs}
        try:
            return self.service.submit_action_outputs(ctx.thread_id, run_id, outputs)
        except TransportError as exc:
            last_error: Exception = exc

        for attempt in range(1, self.submit_max_retries + 1):
            print(
                f"  [retry] submitting outputs failed ({_short(last_error)}), "
                f"retrying in {self.submit_retry_delay:.1f}s ({attempt}/{self.submit_max_retries})"
            )
            if ctx.cancel_event.wait(self.submit_retry_delay):
                raise RunCancelledError(run_id)
            try:
                current = self.service.get_run(ctx.thread_id, run_id)
            except TransportError as exc:
                last_error = exc
                continue
            if current.status in ABORTED_STATUSES:
                raise OutputSubmissionError(
                    f"run {run_id} is {current.status}; abandoning output submission",
                    run_id=run_id,
                    status=current.status,
                )
            if current.status != "requires_action":
                logger.debug("run %s already left requires_action (%s)", run_id, current.status)
                return current
            if {r.id for r in current.action_requests} != answered:
                # The earlier submission landed and the run asked for a new batch.
                logger.debug("run %s moved on to a new action batch", run_id)
                return current
            try:
                return self.service.submit_action_outputs(ctx.thread_id, run_id, outputs)
            except TransportError as exc:
                last_error = exc

        raise OutputSubmissionError(
            f"submitting outputs for run {run_id} failed after {self.submit_max_retries} retries: {last_error}",
            run_id=run_id,
        )


def _short(exc: Exception, max_len: int = 120) -> str:
    text = str(exc) or exc.__class__.__name__
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
