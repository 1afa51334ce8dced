from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar, cast

import openai
from openai import OpenAI

from ..errors import TransportError
from .base import ActionOutput, ActionRequest, Run, RunService, RunStatus, ThreadMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SDK errors worth another attempt: the request never reached the run or the
# service answered with a server-side/rate-limit error.
_TRANSPORT_ERRORS: tuple[type[Exception], ...] = (
    openai.APIConnectionError,
    openai.InternalServerError,
    openai.RateLimitError,
)


class OpenAIRunService(RunService):
    """Run service backed by the OpenAI Assistants API (``client.beta.threads``)."""

    def __init__(self, *, api_key: str | None = None, base_url: str | None = None, client: Any = None) -> None:
        self._client = client if client is not None else OpenAI(api_key=api_key, base_url=base_url)

    @property
    def _threads(self) -> Any:
        return self._client.beta.threads

    def create_thread(self) -> str:
        thread = self._call(self._threads.create)
        logger.debug("created thread %s", thread.id)
        return thread.id

    def post_message(self, thread_id: str, role: str, text: str) -> None:
        self._call(self._threads.messages.create, thread_id=thread_id, role=role, content=text)

    def create_run(self, thread_id: str, assistant_id: str) -> Run:
        run = self._call(self._threads.runs.create, thread_id=thread_id, assistant_id=assistant_id)
        logger.debug("created run %s on thread %s for %s", run.id, thread_id, assistant_id)
        return _to_run(run, thread_id=thread_id)

    def get_run(self, thread_id: str, run_id: str) -> Run:
        run = self._call(self._threads.runs.retrieve, run_id=run_id, thread_id=thread_id)
        return _to_run(run, thread_id=thread_id)

    def list_runs(self, thread_id: str, limit: int = 1) -> list[Run]:
        page = self._call(self._threads.runs.list, thread_id=thread_id, limit=limit, order="desc")
        return [_to_run(run, thread_id=thread_id) for run in (page.data or [])]

    def submit_action_outputs(self, thread_id: str, run_id: str, outputs: list[ActionOutput]) -> Run:
        run = self._call(
            self._threads.runs.submit_tool_outputs,
            run_id=run_id,
            thread_id=thread_id,
            tool_outputs=[{"tool_call_id": out.request_id, "output": out.output} for out in outputs],
        )
        return _to_run(run, thread_id=thread_id)

    def cancel_run(self, thread_id: str, run_id: str) -> None:
        self._call(self._threads.runs.cancel, run_id=run_id, thread_id=thread_id)
        logger.debug("requested cancel of run %s on thread %s", run_id, thread_id)

    def list_messages(self, thread_id: str, limit: int = 20) -> list[ThreadMessage]:
        page = self._call(self._threads.messages.list, thread_id=thread_id, limit=limit, order="desc")
        return [
            ThreadMessage(
                role=str(msg.role),
                text=_message_text(getattr(msg, "content", None)),
                run_id=getattr(msg, "run_id", None),
            )
            for msg in (page.data or [])
        ]

    def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return fn(*args, **kwargs)
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(str(exc)) from exc


def _to_run(raw: Any, *, thread_id: str) -> Run:
    last_error = getattr(raw, "last_error", None)
    requests: list[ActionRequest] = []
    required = getattr(raw, "required_action", None)
    if required is not None and getattr(required, "type", None) == "submit_tool_outputs":
        for tc in required.submit_tool_outputs.tool_calls or []:
            fn = getattr(tc, "function", None)
            if fn is None:
                continue
            requests.append(ActionRequest(id=tc.id, name=fn.name, arguments_json=fn.arguments or ""))
    return Run(
        id=raw.id,
        thread_id=getattr(raw, "thread_id", None) or thread_id,
        assistant_id=str(getattr(raw, "assistant_id", "") or ""),
        status=cast(RunStatus, str(raw.status)),
        failure_code=getattr(last_error, "code", None) if last_error is not None else None,
        failure_message=getattr(last_error, "message", None) if last_error is not None else None,
        action_requests=requests,
    )


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if getattr(block, "type", None) != "text":
            continue
        text = getattr(block, "text", None)
        value = getattr(text, "value", None)
        if isinstance(value, str) and value:
            parts.append(value)
    return "\n".join(parts)
