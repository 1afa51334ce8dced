"""Tests for RetrySupervisor."""

from __future__ import annotations

import unittest

from fakes import FakeRunService, failed, requires, status

from runrelay.errors import OutputSubmissionError, RunCancelledError, TransportError
from runrelay.retry import RetrySupervisor
from runrelay.service.base import ActionOutput, Run
from runrelay.session import SessionContext


def _run(code: str | None = None, message: str | None = None) -> Run:
    return Run(id="run_x", thread_id="t", assistant_id="a", status="failed", failure_code=code, failure_message=message)


class RunFailureClassificationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.retry = RetrySupervisor(FakeRunService(), run_max_retries=1)

    def test_generic_message_is_transient(self) -> None:
        self.assertTrue(self.retry.is_transient_failure(_run(message="Sorry, something went wrong.")))

    def test_server_error_code_is_transient(self) -> None:
        self.assertTrue(self.retry.is_transient_failure(_run(code="server_error", message="anything")))

    def test_other_failures_are_fatal(self) -> None:
        self.assertFalse(self.retry.is_transient_failure(_run(code="invalid_prompt", message="Bad prompt")))
        self.assertFalse(self.retry.is_transient_failure(_run()))

    def test_retry_budget_is_one(self) -> None:
        run = _run(message="Sorry, something went wrong.")
        self.assertTrue(self.retry.should_retry_run(run, 0))
        self.assertFalse(self.retry.should_retry_run(run, 1))


class OutputSubmissionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.service = FakeRunService()
        self.service.script("asst", [requires(("c1", "list_files", "{}"))])
        self.thread_id = self.service.create_thread()
        run = self.service.create_run(self.thread_id, "asst")
        self.ctx = SessionContext(thread_id=self.thread_id, assistant_id="asst", run_id=run.id)
        self.outputs = [ActionOutput(request_id="c1", output="[]")]
        self.retry = RetrySupervisor(self.service, submit_max_retries=3, submit_retry_delay=0)

    def _script_recheck(self, *steps) -> None:
        self.service._steps[self.ctx.run_id] = list(steps)

    def test_success_on_first_attempt(self) -> None:
        self.retry.submit_outputs(self.ctx, self.outputs)
        self.assertEqual(len(self.service.submitted), 1)

    def test_transport_error_is_retried_while_run_awaits_outputs(self) -> None:
        self._script_recheck(requires(("c1", "list_files", "{}")))
        self.service.submit_errors = [TransportError("connection reset")]
        self.retry.submit_outputs(self.ctx, self.outputs)
        self.assertEqual(self.service.call_names().count("submit_action_outputs"), 2)
        self.assertEqual(self.service.submitted[0][1], self.outputs)

    def test_retry_stops_when_run_failed_independently(self) -> None:
        self._script_recheck(failed(message="boom"))
        self.service.submit_errors = [TransportError("reset"), TransportError("reset")]
        with self.assertRaises(OutputSubmissionError) as cm:
            self.retry.submit_outputs(self.ctx, self.outputs)
        self.assertEqual(cm.exception.status, "failed")
        self.assertEqual(self.service.call_names().count("submit_action_outputs"), 1)

    def test_retry_stops_when_run_cancelled(self) -> None:
        self._script_recheck(status("cancelled"))
        self.service.submit_errors = [TransportError("reset")]
        with self.assertRaises(OutputSubmissionError):
            self.retry.submit_outputs(self.ctx, self.outputs)

    def test_run_that_moved_on_is_not_resubmitted(self) -> None:
        self._script_recheck(status("in_progress"))
        self.service.submit_errors = [TransportError("timeout")]
        run = self.retry.submit_outputs(self.ctx, self.outputs)
        self.assertEqual(run.status, "in_progress")
        self.assertEqual(self.service.call_names().count("submit_action_outputs"), 1)

    def test_batch_not_resubmitted_when_run_asks_for_new_actions(self) -> None:
        self._script_recheck(requires(("c2", "read_file", '{"filePath": "a.txt"}')))
        self.service.submit_errors = [TransportError("response lost")]
        run = self.retry.submit_outputs(self.ctx, self.outputs)
        self.assertEqual([r.id for r in run.action_requests], ["c2"])
        self.assertEqual(self.service.call_names().count("submit_action_outputs"), 1)
        self.assertEqual(self.service.submitted, [])

    def test_gives_up_after_max_retries(self) -> None:
        self._script_recheck(requires(("c1", "list_files", "{}")))
        self.service.submit_errors = [TransportError("reset")] * 4
        with self.assertRaises(OutputSubmissionError):
            self.retry.submit_outputs(self.ctx, self.outputs)
        self.assertEqual(self.service.call_names().count("submit_action_outputs"), 4)

    def test_non_transport_errors_propagate(self) -> None:
        self.service.submit_errors = [ValueError("bad request")]
        with self.assertRaises(ValueError):
            self.retry.submit_outputs(self.ctx, self.outputs)

    def test_cancel_during_backoff(self) -> None:
        self.service.submit_errors = [TransportError("reset")]
        self.ctx.cancel_event.set()
        with self.assertRaises(RunCancelledError):
            self.retry.submit_outputs(self.ctx, self.outputs)


if __name__ == "__main__":
    unittest.main()
