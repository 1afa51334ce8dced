from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

PERSONAS = (
    "project_manager",
    "project_architect",
    "feature_architect",
    "feature_architect_reviewer",
    "developer",
    "code_reviewer",
)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else default
    except ValueError:
        value = default
    return max(minimum, value)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(minimum, value)


@dataclass
class RelayConfig:
    api_key: str | None = None
    base_url: str | None = None
    entry_assistant_id: str | None = None
    assistant_ids: dict[str, str] = field(default_factory=dict)
    poll_interval: float = 0.5
    spinner_interval: float = 0.1
    submit_max_retries: int = 3
    submit_retry_delay: float = 2.0
    run_max_retries: int = 1
    max_agent_depth: int = 3
    max_parallel_actions: int = 8
    threads_file: str = str(Path(".runrelay") / "threads.txt")
    recent_threads: int = 5
    cancel_grace_seconds: float = 2.0
    stale_run_timeout: float = 10.0
    nested_lane_timeout: float = 300.0

    @classmethod
    def from_env(cls) -> "RelayConfig":
        assistant_ids: dict[str, str] = {}
        for persona in PERSONAS:
            value = (os.getenv(f"RUNRELAY_ASSISTANT_{persona.upper()}") or "").strip()
            if value:
                assistant_ids[persona] = value
        entry = (os.getenv("RUNRELAY_ENTRY_ASSISTANT") or "").strip() or assistant_ids.get("project_manager")
        threads_file = (os.getenv("RUNRELAY_THREADS_FILE") or "").strip() or str(
            Path.cwd() / ".runrelay" / "threads.txt"
        )
        return cls(
            api_key=os.getenv("OPENAI_API_KEY"),
            base_url=os.getenv("OPENAI_BASE_URL"),
            entry_assistant_id=entry,
            assistant_ids=assistant_ids,
            poll_interval=_env_float("RUNRELAY_POLL_INTERVAL", 0.5, minimum=0.05),
            spinner_interval=_env_float("RUNRELAY_SPINNER_INTERVAL", 0.1, minimum=0.02),
            submit_max_retries=_env_int("RUNRELAY_SUBMIT_MAX_RETRIES", 3),
            submit_retry_delay=_env_float("RUNRELAY_SUBMIT_RETRY_SECONDS", 2.0),
            run_max_retries=_env_int("RUNRELAY_RUN_MAX_RETRIES", 1),
            max_agent_depth=_env_int("RUNRELAY_MAX_AGENT_DEPTH", 3),
            max_parallel_actions=_env_int("RUNRELAY_MAX_PARALLEL_ACTIONS", 8, minimum=1),
            threads_file=threads_file,
            recent_threads=_env_int("RUNRELAY_RECENT_THREADS", 5, minimum=1),
            cancel_grace_seconds=_env_float("RUNRELAY_CANCEL_GRACE_SECONDS", 2.0),
            stale_run_timeout=_env_float("RUNRELAY_STALE_RUN_TIMEOUT", 10.0),
            nested_lane_timeout=_env_float("RUNRELAY_NESTED_LANE_TIMEOUT", 300.0),
        )
