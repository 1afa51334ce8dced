"""
Run lifecycle state machine.

The poller checks the run status every ``poll_interval`` seconds while a
spinner advances on its own faster tick. Both stop before the poller acts on
a status, so polling and acting never overlap:

    queued / in_progress -> wait
    requires_action      -> dispatch the batch, submit all outputs, wait again
    completed            -> return the latest assistant message
    failed               -> resubmit once if transient, otherwise raise
    cancelled / expired  -> raise
"""

from __future__ import annotations

import logging
import sys
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TextIO

from .dispatcher import ToolDispatcher
from .errors import RunCancelledError, RunFailedError, TransportError
from .retry import RETRY_PROMPT, RetrySupervisor
from .service.base import PENDING_STATUSES, Run, RunService
from .session import SessionContext

logger = logging.getLogger(__name__)

NO_RESPONSE = "No response"
MAX_CONSECUTIVE_POLL_ERRORS = 3

EventHandler = Callable[[dict[str, Any]], None]


class Spinner:
    """Rotating glyph rendered on a background thread until stopped."""

    SYMBOLS = ("|", "/", "-", "\\")

    def __init__(
        self,
        *,
        interval: float = 0.1,
        stream: TextIO | None = None,
        label: str = "Waiting for assistant's response",
    ) -> None:
        self.interval = max(0.01, float(interval))
        self.stream = stream if stream is not None else sys.stdout
        self.label = label
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._spin, name="spinner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self.stream.write("\r" + " " * (len(self.label) + 2) + "\r")
        self.stream.flush()

    def _spin(self) -> None:
        while not self._stop.wait(self.interval):
            symbol = self.SYMBOLS[self.ticks % len(self.SYMBOLS)]
            self.stream.write(f"\r{self.label} {symbol}")
            self.stream.flush()
            self.ticks += 1


class RunPoller:
    def __init__(
        self,
        service: RunService,
        dispatcher: ToolDispatcher,
        retry: RetrySupervisor,
        *,
        poll_interval: float = 0.5,
        spinner_interval: float = 0.1,
        progress_stream: TextIO | None = None,
        on_event: EventHandler | None = None,
    ) -> None:
        self.service = service
        self.dispatcher = dispatcher
        self.retry = retry
        self.poll_interval = max(0.0, float(poll_interval))
        self.spinner_interval = spinner_interval
        self.progress_stream = progress_stream
        self.on_event = on_event

    def drive(self, ctx: SessionContext) -> str:
        """Drive ``ctx.run_id`` to a terminal state and return the assistant's reply."""
        retries_used = 0
        while True:
            run = self._wait_until_actionable(ctx)
            self._emit_event({"type": "run_status", "run_id": run.id, "thread_id": ctx.thread_id, "status": run.status})

            if run.status == "requires_action":
                self._handle_requires_action(ctx, run)
                continue

            if run.status in {"completed", "incomplete"}:
                ctx.run_id = None
                return self._final_text(ctx, run)

            if run.status == "failed":
                reason = run.failure_message or run.failure_code or "unknown error"
                if self.retry.should_retry_run(run, retries_used):
                    retries_used += 1
                    print(f"  [retry] run {run.id} failed transiently ({reason}), resubmitting")
                    self._resubmit(ctx)
                    continue
                ctx.run_id = None
                raise RunFailedError(reason, code=run.failure_code, run_id=run.id)

            ctx.run_id = None
            if run.status == "cancelled":
                raise RunCancelledError(run.id)
            if run.status == "expired":
                raise RunFailedError("run expired", code="expired", run_id=run.id)
            raise RunFailedError(f"unexpected run status '{run.status}'", run_id=run.id)

    def _wait_until_actionable(self, ctx: SessionContext) -> Run:
        run_id = ctx.run_id or ""
        poll_errors = 0
        with self._progress():
            while True:
                if ctx.cancel_event.wait(self.poll_interval):
                    raise RunCancelledError(run_id)
                try:
                    run = self.service.get_run(ctx.thread_id, run_id)
                except TransportError as exc:
                    poll_errors += 1
                    if poll_errors >= MAX_CONSECUTIVE_POLL_ERRORS:
                        raise
                    logger.warning(
                        "polling run %s failed (%d/%d): %s", run_id, poll_errors, MAX_CONSECUTIVE_POLL_ERRORS, exc
                    )
                    continue
                poll_errors = 0
                if run.status not in PENDING_STATUSES:
                    return run

    def _handle_requires_action(self, ctx: SessionContext, run: Run) -> None:
        requests = run.action_requests
        self._emit_event(
            {
                "type": "actions_dispatched",
                "run_id": run.id,
                "thread_id": ctx.thread_id,
                "request_ids": [r.id for r in requests],
            }
        )
        outputs = self.dispatcher.dispatch(requests, ctx)
        if ctx.cancelled:
            # Local actions ran to completion; their results are dropped.
            raise RunCancelledError(run.id)
        self.retry.submit_outputs(ctx, outputs)
        self._emit_event(
            {
                "type": "outputs_submitted",
                "run_id": run.id,
                "thread_id": ctx.thread_id,
                "count": len(outputs),
            }
        )

    def _resubmit(self, ctx: SessionContext) -> None:
        self.service.post_message(ctx.thread_id, "user", RETRY_PROMPT)
        new_run = self.service.create_run(ctx.thread_id, ctx.assistant_id)
        previous, ctx.run_id = ctx.run_id, new_run.id
        self._emit_event(
            {
                "type": "run_retry",
                "previous_run_id": previous,
                "run_id": new_run.id,
                "thread_id": ctx.thread_id,
            }
        )

    def _final_text(self, ctx: SessionContext, run: Run) -> str:
        messages = [m for m in self.service.list_messages(ctx.thread_id) if m.role == "assistant"]
        for message in messages:
            if message.run_id == run.id and message.text:
                return message.text
        for message in messages:
            if message.text:
                return message.text
        return NO_RESPONSE

    @contextmanager
    def _progress(self) -> Iterator[None]:
        if self.progress_stream is None:
            yield
            return
        spinner = Spinner(interval=self.spinner_interval, stream=self.progress_stream)
        spinner.start()
        try:
            yield
        finally:
            spinner.stop()

    def _emit_event(self, event: dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception:
            # Event handlers are best-effort and should not break run execution.
            return
