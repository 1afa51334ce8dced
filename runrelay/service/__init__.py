from .base import (
    ABORTED_STATUSES,
    PENDING_STATUSES,
    TERMINAL_STATUSES,
    ActionOutput,
    ActionRequest,
    Run,
    RunService,
    RunStatus,
    ThreadMessage,
    is_terminal,
)
from .openai_service import OpenAIRunService

__all__ = [
    "ABORTED_STATUSES",
    "PENDING_STATUSES",
    "TERMINAL_STATUSES",
    "ActionOutput",
    "ActionRequest",
    "OpenAIRunService",
    "Run",
    "RunService",
    "RunStatus",
    "ThreadMessage",
    "is_terminal",
]
