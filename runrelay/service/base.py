from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal

RunStatus = Literal[
    "queued",
    "in_progress",
    "requires_action",
    "cancelling",
    "cancelled",
    "failed",
    "completed",
    "incomplete",
    "expired",
]

# Statuses during which the poller only waits.
PENDING_STATUSES: frozenset[str] = frozenset({"queued", "in_progress", "cancelling"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"cancelled", "failed", "completed", "incomplete", "expired"})
ABORTED_STATUSES: frozenset[str] = frozenset({"cancelled", "cancelling", "failed", "expired"})


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


@dataclass
class ActionRequest:
    id: str
    name: str
    arguments_json: str


@dataclass
class ActionOutput:
    request_id: str
    output: str


@dataclass
class Run:
    id: str
    thread_id: str
    assistant_id: str
    status: RunStatus
    failure_code: str | None = None
    failure_message: str | None = None
    action_requests: list[ActionRequest] = field(default_factory=list)


@dataclass
class ThreadMessage:
    role: str
    text: str
    run_id: str | None = None


class RunService(ABC):
    """Request/response contract of the hosted run-execution service."""

    @abstractmethod
    def create_thread(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def post_message(self, thread_id: str, role: str, text: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def create_run(self, thread_id: str, assistant_id: str) -> Run:
        raise NotImplementedError

    @abstractmethod
    def get_run(self, thread_id: str, run_id: str) -> Run:
        raise NotImplementedError

    @abstractmethod
    def list_runs(self, thread_id: str, limit: int = 1) -> list[Run]:
        """Most recent runs first."""
        raise NotImplementedError

    @abstractmethod
    def submit_action_outputs(self, thread_id: str, run_id: str, outputs: list[ActionOutput]) -> Run:
        raise NotImplementedError

    @abstractmethod
    def cancel_run(self, thread_id: str, run_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_messages(self, thread_id: str, limit: int = 20) -> list[ThreadMessage]:
        """Most recent messages first."""
        raise NotImplementedError
