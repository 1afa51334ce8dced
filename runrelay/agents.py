"""
Agent personas hosted as assistants on the run service.

Calling an agent starts a nested RunSession against the persona's assistant.
The nested session's final text becomes the result of the originating action;
failures are reported as text so the calling batch always completes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from .errors import RelayError
from .session import SessionContext

logger = logging.getLogger(__name__)

AGENT_CALL_PREFIX = "call_"

PromptTemplate = Callable[[dict[str, Any]], str]


class SessionStarter(Protocol):
    def __call__(
        self,
        *,
        parent: SessionContext,
        assistant_id: str,
        prompt: str,
        thread_id: str | None = None,
    ) -> str: ...


@dataclass
class Agent:
    name: str
    assistant_id: str
    prompt_template: PromptTemplate
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @property
    def call_name(self) -> str:
        return f"{AGENT_CALL_PREFIX}{self.name}"


class AgentRegistry:
    def __init__(self, *, max_depth: int = 3) -> None:
        self.max_depth = max(0, int(max_depth))
        self._agents: dict[str, Agent] = {}

    def register(self, agent: Agent) -> None:
        self._agents[agent.call_name] = agent

    @staticmethod
    def is_agent_call(name: str) -> bool:
        return name.startswith(AGENT_CALL_PREFIX)

    def resolve(self, call_name: str) -> Agent | None:
        return self._agents.get(call_name)

    def names(self) -> list[str]:
        return list(self._agents)

    def definitions(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": agent.call_name,
                    "description": agent.description,
                    "parameters": agent.parameters,
                },
            }
            for agent in self._agents.values()
        ]

    def call(
        self,
        agent: Agent,
        args: dict[str, Any],
        *,
        parent: SessionContext,
        start_session: SessionStarter,
    ) -> str:
        """Run ``agent`` as a nested session and return its final text. Never raises."""
        if parent.depth + 1 > self.max_depth:
            return (
                f"Assistant {agent.call_name} not called: agent nesting depth limit reached "
                f"({parent.depth}/{self.max_depth})"
            )
        thread_id = args.get("thread_id") or args.get("threadId")
        if thread_id is not None and not isinstance(thread_id, str):
            thread_id = str(thread_id)
        if thread_id and parent.holds_thread(thread_id):
            return f"Assistant {agent.call_name} not called: thread {thread_id} is busy with the calling run"
        try:
            prompt = agent.prompt_template(args)
        except (KeyError, TypeError, ValueError) as exc:
            return f"Assistant {agent.call_name} failed: invalid arguments ({exc})"
        try:
            return start_session(
                parent=parent,
                assistant_id=agent.assistant_id,
                prompt=prompt,
                thread_id=thread_id or None,
            )
        except RelayError as exc:
            logger.debug("nested session for %s failed", agent.call_name, exc_info=True)
            return f"Assistant {agent.call_name} failed: {exc}"
        except Exception as exc:
            logger.exception("unexpected error in nested session for %s", agent.call_name)
            return f"Assistant {agent.call_name} failed: {exc}"


# ---------------------------------------------------------------------------
# Default personas
# ---------------------------------------------------------------------------


def _text(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"missing required argument '{key}'")
    return value


def _names(args: dict[str, Any], key: str) -> list[str]:
    value = args.get(key) or []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _feature_prompt(lead: str, use_files: str, create_files: str) -> PromptTemplate:
    def build(args: dict[str, Any]) -> str:
        prompt = f"{lead}{_text(args, 'featureDetails')}"
        files = _names(args, "files")
        if files:
            prompt += f". {use_files}{', '.join(files)}"
        to_create = _names(args, "createFiles")
        if to_create:
            prompt += f". {create_files}{', '.join(to_create)}"
        return prompt

    return build


_THREAD_PARAM = {
    "type": "string",
    "description": "Optional existing thread to continue instead of starting a new one.",
}

_FEATURE_PARAMS = {
    "type": "object",
    "properties": {
        "featureDetails": {"type": "string", "description": "What the feature should do."},
        "files": {"type": "array", "items": {"type": "string"}, "description": "Existing files involved."},
        "createFiles": {"type": "array", "items": {"type": "string"}, "description": "Files to create."},
        "thread_id": _THREAD_PARAM,
    },
    "required": ["featureDetails"],
}


def _single_text_params(key: str, description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {key: {"type": "string", "description": description}, "thread_id": _THREAD_PARAM},
        "required": [key],
    }


def default_agent_registry(assistant_ids: dict[str, str], *, max_depth: int = 3) -> AgentRegistry:
    """Register the built-in personas that have an assistant id configured."""
    personas = [
        Agent(
            name="project_manager",
            assistant_id="",
            prompt_template=lambda args: _text(args, "message"),
            description="Ask the project manager to plan or coordinate work.",
            parameters=_single_text_params("message", "Message for the project manager."),
        ),
        Agent(
            name="project_architect",
            assistant_id="",
            prompt_template=lambda args: _text(args, "requirements"),
            description="Ask the project architect to design the project from requirements.",
            parameters=_single_text_params("requirements", "Project requirements."),
        ),
        Agent(
            name="feature_architect",
            assistant_id="",
            prompt_template=_feature_prompt(
                "Give an implementation proposal for this feature: ",
                "Use the following files: ",
                "Files to create: ",
            ),
            description="Ask the feature architect for an implementation proposal.",
            parameters=_FEATURE_PARAMS,
        ),
        Agent(
            name="feature_architect_reviewer",
            assistant_id="",
            prompt_template=_feature_prompt(
                "Implementation proposal: ",
                "Use the following files: ",
                "Files to create: ",
            ),
            description="Ask the feature architect reviewer to review an implementation proposal.",
            parameters=_FEATURE_PARAMS,
        ),
        Agent(
            name="developer",
            assistant_id="",
            prompt_template=_feature_prompt(
                "Feature to implement: ",
                "Use the following files for this feature: ",
                "Create the following files for this feature: ",
            ),
            description="Ask the developer to implement a feature.",
            parameters=_FEATURE_PARAMS,
        ),
        Agent(
            name="code_reviewer",
            assistant_id="",
            prompt_template=lambda args: _text(args, "implementationReport"),
            description="Ask the code reviewer to review an implementation report.",
            parameters=_single_text_params("implementationReport", "Report of what was implemented."),
        ),
    ]
    registry = AgentRegistry(max_depth=max_depth)
    for persona in personas:
        assistant_id = (assistant_ids.get(persona.name) or "").strip()
        if not assistant_id:
            continue
        persona.assistant_id = assistant_id
        registry.register(persona)
    return registry
