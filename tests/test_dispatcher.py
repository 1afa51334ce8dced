"""Tests for ToolDispatcher: classification, fan-out/fan-in and error absorption."""

from __future__ import annotations

import tempfile
import threading
import unittest
from pathlib import Path
from typing import Any

from runrelay.agents import Agent, AgentRegistry
from runrelay.dispatcher import (
    PARSE_ERROR_OUTPUT,
    AgentCall,
    LocalToolCall,
    MalformedCall,
    ToolDispatcher,
)
from runrelay.service.base import ActionRequest
from runrelay.session import SessionContext
from runrelay.tools import ToolResult, default_tool_registry


class RecordingStarter:
    def __init__(self, reply: str = "agent reply") -> None:
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    def __call__(self, *, parent: SessionContext, assistant_id: str, prompt: str, thread_id: str | None = None) -> str:
        self.calls.append({"parent": parent, "assistant_id": assistant_id, "prompt": prompt, "thread_id": thread_id})
        return self.reply


class ToolDispatcherTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp.cleanup)
        self.workspace = Path(self.temp.name)
        self.tools = default_tool_registry(self.workspace)
        self.agents = AgentRegistry(max_depth=3)
        self.agents.register(
            Agent(name="developer", assistant_id="asst_dev", prompt_template=lambda args: f"Build {args['featureDetails']}")
        )
        self.starter = RecordingStarter("Implemented feature X")
        self.dispatcher = ToolDispatcher(tools=self.tools, agents=self.agents, start_session=self.starter)
        self.ctx = SessionContext(thread_id="thread_1", assistant_id="asst_pm", run_id="run_1")

    def test_classify_resolves_call_kind_once(self) -> None:
        tool = self.dispatcher.classify(ActionRequest("1", "list_files", "{}"))
        agent = self.dispatcher.classify(ActionRequest("2", "call_developer", '{"featureDetails": "X"}'))
        unknown_agent = self.dispatcher.classify(ActionRequest("3", "call_nobody", "{}"))
        bad = self.dispatcher.classify(ActionRequest("4", "read_file", "{oops"))
        not_object = self.dispatcher.classify(ActionRequest("5", "read_file", "[1, 2]"))
        self.assertIsInstance(tool, LocalToolCall)
        self.assertIsInstance(agent, AgentCall)
        self.assertIsNotNone(agent.agent)
        self.assertIsInstance(unknown_agent, AgentCall)
        self.assertIsNone(unknown_agent.agent)
        self.assertIsInstance(bad, MalformedCall)
        self.assertIsInstance(not_object, MalformedCall)

    def test_empty_arguments_parse_as_empty_record(self) -> None:
        call = self.dispatcher.classify(ActionRequest("1", "list_files", ""))
        self.assertIsInstance(call, LocalToolCall)
        self.assertEqual(call.args, {})

    def test_list_files_scenario(self) -> None:
        (self.workspace / "a.txt").write_text("")
        (self.workspace / "b.txt").write_text("")
        outputs = self.dispatcher.dispatch([ActionRequest("1", "list_files", "{}")], self.ctx)
        self.assertEqual([(o.request_id, o.output) for o in outputs], [("1", '["a.txt","b.txt"]')])

    def test_malformed_payload_yields_parse_error_output(self) -> None:
        outputs = self.dispatcher.dispatch(
            [ActionRequest("7", "read_file", "{not json"), ActionRequest("8", "list_files", "{}")],
            self.ctx,
        )
        self.assertEqual(outputs[0].request_id, "7")
        self.assertEqual(outputs[0].output, PARSE_ERROR_OUTPUT)
        self.assertEqual(outputs[0].output, "An error occurred parsing arguments")
        self.assertEqual(outputs[1].request_id, "8")

    def test_unknown_names_produce_not_found_outputs(self) -> None:
        outputs = self.dispatcher.dispatch(
            [ActionRequest("1", "format_disk", "{}"), ActionRequest("2", "call_nobody", "{}")],
            self.ctx,
        )
        self.assertEqual(outputs[0].output, "Tool format_disk not found")
        self.assertEqual(outputs[1].output, "Assistant call_nobody not found")

    def test_agent_call_output_is_nested_reply(self) -> None:
        outputs = self.dispatcher.dispatch(
            [ActionRequest("call_9", "call_developer", '{"featureDetails": "feature X"}')],
            self.ctx,
        )
        self.assertEqual(outputs[0].request_id, "call_9")
        self.assertEqual(outputs[0].output, "Implemented feature X")
        self.assertEqual(self.starter.calls[0]["assistant_id"], "asst_dev")
        self.assertEqual(self.starter.calls[0]["prompt"], "Build feature X")
        self.assertIs(self.starter.calls[0]["parent"], self.ctx)

    def test_one_output_per_request_regardless_of_failures(self) -> None:
        def explode(root: Path, args: dict) -> ToolResult:
            raise OSError("disk on fire")

        self.tools.register("explode", "Fails.", {}, explode)
        requests = [
            ActionRequest("a", "explode", "{}"),
            ActionRequest("b", "list_files", "{}"),
            ActionRequest("c", "nope", "{}"),
            ActionRequest("d", "read_file", "}"),
            ActionRequest("e", "call_developer", '{"featureDetails": "Y"}'),
        ]
        outputs = self.dispatcher.dispatch(requests, self.ctx)
        self.assertEqual([o.request_id for o in outputs], ["a", "b", "c", "d", "e"])
        self.assertTrue(all(isinstance(o.output, str) and o.output for o in outputs))
        self.assertIn("disk on fire", outputs[0].output)

    def test_batch_runs_concurrently_and_keeps_pairing(self) -> None:
        barrier = threading.Barrier(3, timeout=5)

        def make(label: str):
            def handler(root: Path, args: dict) -> ToolResult:
                barrier.wait()
                return ToolResult.success(label)

            return handler

        for label in ("x", "y", "z"):
            self.tools.register(f"wait_{label}", "Waits for the others.", {}, make(label))
        requests = [ActionRequest(f"id_{label}", f"wait_{label}", "{}") for label in ("z", "x", "y")]
        outputs = self.dispatcher.dispatch(requests, self.ctx)
        self.assertEqual([(o.request_id, o.output) for o in outputs], [("id_z", "z"), ("id_x", "x"), ("id_y", "y")])

    def test_agent_calls_skipped_once_cancelled(self) -> None:
        self.ctx.cancel_event.set()
        outputs = self.dispatcher.dispatch(
            [ActionRequest("1", "call_developer", '{"featureDetails": "X"}'), ActionRequest("2", "list_files", "{}")],
            self.ctx,
        )
        self.assertEqual(outputs[0].output, "Assistant call_developer not called: run cancelled")
        self.assertEqual(outputs[1].output, "[]")
        self.assertEqual(self.starter.calls, [])

    def test_empty_batch(self) -> None:
        self.assertEqual(self.dispatcher.dispatch([], self.ctx), [])


if __name__ == "__main__":
    unittest.main()
