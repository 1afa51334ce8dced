from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Union

from .agents import Agent, AgentRegistry, SessionStarter
from .service.base import ActionOutput, ActionRequest
from .session import SessionContext
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

PARSE_ERROR_OUTPUT = "An error occurred parsing arguments"


@dataclass
class LocalToolCall:
    request: ActionRequest
    args: dict[str, Any]


@dataclass
class AgentCall:
    request: ActionRequest
    args: dict[str, Any]
    agent: Agent | None


@dataclass
class MalformedCall:
    request: ActionRequest
    reason: str


ActionCall = Union[LocalToolCall, AgentCall, MalformedCall]


class ToolDispatcher:
    """Runs one requires-action batch: classify, fan out, join, pair outputs with request ids."""

    def __init__(
        self,
        *,
        tools: ToolRegistry,
        agents: AgentRegistry,
        start_session: SessionStarter,
        max_workers: int = 8,
    ) -> None:
        self.tools = tools
        self.agents = agents
        self.start_session = start_session
        self.max_workers = max(1, int(max_workers))

    def classify(self, request: ActionRequest) -> ActionCall:
        try:
            args = json.loads(request.arguments_json) if request.arguments_json.strip() else {}
        except json.JSONDecodeError as exc:
            return MalformedCall(request=request, reason=str(exc))
        if not isinstance(args, dict):
            return MalformedCall(request=request, reason=f"expected an object, got {type(args).__name__}")
        if self.agents.is_agent_call(request.name):
            return AgentCall(request=request, args=args, agent=self.agents.resolve(request.name))
        return LocalToolCall(request=request, args=args)

    def dispatch(self, requests: list[ActionRequest], ctx: SessionContext) -> list[ActionOutput]:
        """Execute every request concurrently; one output per request, in request order."""
        if not requests:
            return []
        calls = [self.classify(request) for request in requests]
        workers = min(len(calls), self.max_workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="action") as pool:
            futures = [pool.submit(self._execute, call, ctx) for call in calls]
            return [
                ActionOutput(request_id=call.request.id, output=future.result())
                for call, future in zip(calls, futures)
            ]

    def _execute(self, call: ActionCall, ctx: SessionContext) -> str:
        name = call.request.name
        try:
            if isinstance(call, MalformedCall):
                logger.warning("could not parse arguments for %s (%s): %s", name, call.request.id, call.reason)
                return PARSE_ERROR_OUTPUT
            if isinstance(call, AgentCall):
                print(f"  [agent] {name}({_truncate(call.request.arguments_json, 96)})")
                if call.agent is None:
                    return f"Assistant {name} not found"
                if ctx.cancelled:
                    return f"Assistant {name} not called: run cancelled"
                output = self.agents.call(call.agent, call.args, parent=ctx, start_session=self.start_session)
            else:
                print(f"  [tool] {name}({_truncate(call.request.arguments_json, 96)})")
                output = self.tools.execute(name, call.args)
        except Exception as exc:
            logger.exception("action %s (%s) raised", name, call.request.id)
            return f"Action {name} failed with error {exc}"
        logger.debug("action %s (%s) -> %s", name, call.request.id, _truncate(output, 200))
        return output


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
